"""Workspace request model and input validation.

Validation happens before any remote call; everything here raises
``WorkspaceValidationError`` (HTTP 400).
"""

from __future__ import annotations

import re
import secrets
from dataclasses import dataclass

from .errors import WorkspaceValidationError

# Target-group names are capped at 32 characters and must be DNS-label safe.
_NAME_RE = re.compile(r'^[a-z0-9](?:[a-z0-9-]{0,30}[a-z0-9])?$')
_VERSION_RE = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$')

CUSTOM_EXIT_PREFIX = 'cc-'

US_STATES = (
    'alabama', 'alaska', 'arizona', 'arkansas', 'california',
    'colorado', 'connecticut', 'delaware', 'florida', 'georgia',
    'hawaii', 'idaho', 'illinois', 'indiana', 'iowa',
    'kansas', 'kentucky', 'louisiana', 'maine', 'maryland',
    'massachusetts', 'michigan', 'minnesota', 'mississippi', 'missouri',
    'montana', 'nebraska', 'nevada', 'new_hampshire', 'new_jersey',
    'new_mexico', 'new_york', 'north_carolina', 'north_dakota', 'ohio',
    'oklahoma', 'oregon', 'pennsylvania', 'rhode_island', 'south_carolina',
    'south_dakota', 'tennessee', 'texas', 'utah', 'vermont',
    'virginia', 'washington', 'west_virginia', 'wisconsin', 'wyoming',
)
EXIT_REGIONS = frozenset(f'us_{state}' for state in US_STATES)

# Short word lists for generated names; uniqueness comes from the third word.
_ADJECTIVES = (
    'amber', 'brisk', 'calm', 'dusty', 'eager', 'fuzzy', 'gentle', 'hollow',
    'icy', 'jolly', 'keen', 'lucky', 'mellow', 'nimble', 'odd', 'proud',
    'quiet', 'rapid', 'shy', 'tidy', 'vivid', 'witty', 'young', 'zesty',
)
_NOUNS = (
    'acorn', 'badger', 'canyon', 'delta', 'ember', 'falcon', 'glacier',
    'harbor', 'island', 'juniper', 'kestrel', 'lagoon', 'meadow', 'nebula',
    'orchard', 'pebble', 'quarry', 'river', 'summit', 'thicket', 'valley',
    'willow', 'yarrow', 'zephyr',
)


def generate_name() -> str:
    """Random three-word dashed name, e.g. ``brisk-falcon-meadow``."""
    return '-'.join((
        secrets.choice(_ADJECTIVES),
        secrets.choice(_NOUNS),
        secrets.choice(_NOUNS),
    ))


def validate_exit_region(exit_region: str | None) -> str:
    """Return the normalized exit tag or raise.

    Accepted: empty/absent, one of the 50 ``us_<state>`` tags, or any value
    starting with ``cc-``.
    """
    value = (exit_region or '').strip()
    if not value:
        return ''
    if value in EXIT_REGIONS or value.startswith(CUSTOM_EXIT_PREFIX):
        return value
    raise WorkspaceValidationError(f'invalid exit region {value!r}')


def validate_name(name: str) -> str:
    if not _NAME_RE.match(name):
        raise WorkspaceValidationError(
            f'invalid workspace name {name!r}: lowercase letters, digits and '
            'hyphens only, at most 32 characters'
        )
    return name


def validate_version(version: str | None) -> str:
    value = (version or '').strip()
    if not value:
        raise WorkspaceValidationError('version is required')
    if not _VERSION_RE.match(value):
        raise WorkspaceValidationError(f'invalid image version {value!r}')
    return value


@dataclass(frozen=True, slots=True)
class WorkspaceRequest:
    """Accepted, immutable input of one provisioning run."""

    name: str
    image_version: str
    exit_region: str = ''

    @classmethod
    def build(
        cls,
        *,
        name: str | None,
        version: str | None,
        exit_region: str | None,
        default_version: str,
        name_generator=generate_name,
    ) -> WorkspaceRequest:
        """Validate raw query values, filling the name and version defaults."""
        return cls(
            name=validate_name((name or '').strip() or name_generator()),
            image_version=validate_version(version or default_version),
            exit_region=validate_exit_region(exit_region),
        )


def validate_workspace_list(workspaces: list[str]) -> list[str]:
    """Reject an empty batch and invalid names; order is preserved."""
    if not workspaces:
        raise WorkspaceValidationError('workspaces must not be empty')
    return [validate_name(name) for name in workspaces]
