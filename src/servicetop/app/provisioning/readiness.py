"""Readiness polling for resources that wait on a prerequisite's lifecycle.

EFS refuses mount targets (409 ``IncorrectFileSystemLifeCycleState``) until
the file system leaves ``creating``. The poller resubmits the same creation
request at a fixed interval until the answer is anything else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..protocols import Transport
from ..resources import ResourceDescriptor
from .decoder import Retryable, decode_response, unwrap
from .errors import RetriesExhausted

logger = logging.getLogger(__name__)

NOT_READY = 'IncorrectFileSystemLifeCycleState'
DEFAULT_INTERVAL_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 120


class ReadinessPoller:
    """Submit ``resource`` until its prerequisite is ready."""

    def __init__(
        self,
        *,
        transport: Transport,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        not_ready_codes: frozenset[str] = frozenset({NOT_READY}),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        self._transport = transport
        self._interval = interval_seconds
        self._max_attempts = max_attempts
        self._not_ready_codes = not_ready_codes
        self._sleep = sleep

    async def create(self, resource: ResourceDescriptor, *, step: str) -> Any:
        """Return the decoded creation payload.

        Raises:
            UpstreamFatal: any non-readiness failure.
            RetriesExhausted: still not ready after ``max_attempts`` submissions.
        """
        last_code = NOT_READY
        for attempt in range(1, self._max_attempts + 1):
            response = await self._transport.fetch(resource)
            result = decode_response(
                response, step=step, retryable_codes=self._not_ready_codes,
            )
            if not isinstance(result, Retryable):
                return unwrap(result)

            last_code = result.code
            logger.info(
                'Prerequisite of %s not ready (%s), attempt %d/%d',
                resource.kind,
                result.code,
                attempt,
                self._max_attempts,
                extra={'step': step},
            )
            if attempt < self._max_attempts:
                await self._sleep(self._interval)

        raise RetriesExhausted(step=step, code=last_code, attempts=self._max_attempts)
