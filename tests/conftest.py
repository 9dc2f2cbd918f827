"""Pytest configuration for servicetop tests."""
import sys
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from servicetop.app.provisioning.orchestrator import OrchestratorConfig


@pytest.fixture
def orchestrator_config():
    """Workflow configuration with one parent domain and one mount target."""
    return OrchestratorConfig(
        region='us-east-1',
        ecs_cluster='servicetop-test',
        execution_role_arn='arn:aws:iam::123456789012:role/ecsTaskExecutionRole',
        listener_arn='arn:aws:elasticloadbalancing:us-east-1:123456789012:listener/app/shared/abc/def',
        security_group_id='sg-0123',
        vpc_id='vpc-0456',
        elb_token='elb-shared-token',
        parent_domains=('example.com',),
        dns_zone_id='zone-1',
        dns_target='ingress.example.com',
        proxy_user='proxy-user',
        proxy_pass='proxy-pass',
    )
