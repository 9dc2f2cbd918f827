"""Listener-rule priority allocation.

Priorities must be unique per listener, and several runs may allocate at the
same time. The persisted counter is only a starting hint: the load balancer's
own ``PriorityInUse`` check is what keeps priorities unique.

    1. read counter (default 1)
    2. CreateRule at the candidate
    3. PriorityInUse -> candidate + 1, go to 2
    4. any other outcome ends the loop
    5. on success persist candidate + 1

Counter read and write are not atomic. Two concurrent runs can read the same
value; the loser of the remote race moves upward, and whichever run writes
last decides the stored value. A stale (too low) counter only costs extra
conflict round trips.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from ..protocols import KeyValueStore, Transport
from ..resources import ListenerRule
from .decoder import Fatal, Retryable, decode_response, unwrap
from .errors import RetriesExhausted, UpstreamFatal

logger = logging.getLogger(__name__)

PRIORITY_KEY = 'priority'
PRIORITY_IN_USE = 'PriorityInUse'
DEFAULT_MAX_ATTEMPTS = 100
STEP = 'allocate_listener_rules'


@dataclass(frozen=True, slots=True)
class Allocation:
    """Winning priority and the decoded CreateRule response."""

    priority: int
    attempts: int
    payload: Any


def _parse_counter(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return 1
    try:
        value = int(raw)
    except ValueError:
        logger.warning('Ignoring non-integer priority counter %r', raw)
        return 1
    return max(value, 1)


class PriorityAllocator:
    """Create a listener rule at the first free priority at or above the counter."""

    def __init__(
        self,
        *,
        transport: Transport,
        store: KeyValueStore,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        key: str = PRIORITY_KEY,
    ) -> None:
        if max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        self._transport = transport
        self._store = store
        self._max_attempts = max_attempts
        self._key = key

    async def read_counter(self) -> int:
        try:
            raw = await self._store.get(self._key)
        except Exception as exc:
            raise UpstreamFatal(f'cannot read priority counter: {exc}', step=STEP) from exc
        return _parse_counter(raw)

    async def allocate(self, rule: ListenerRule) -> Allocation:
        """Create ``rule`` at a free priority and advance the counter past it.

        Raises:
            UpstreamFatal: any non-conflict failure from the load balancer.
            RetriesExhausted: ``max_attempts`` candidates were all in use.
        """
        candidate = await self.read_counter()

        for attempt in range(1, self._max_attempts + 1):
            logger.info(
                'Deploying ListenerRule for %s with priority %d',
                rule.host,
                candidate,
                extra={'priority': candidate, 'attempt': attempt},
            )
            response = await self._transport.fetch(replace(rule, priority=candidate))
            result = decode_response(
                response,
                step=STEP,
                retryable_codes=frozenset({PRIORITY_IN_USE}),
            )
            if isinstance(result, Retryable):
                logger.info('Priority %d in use', candidate)
                candidate += 1
                continue
            if isinstance(result, Fatal):
                raise result.error

            payload = unwrap(result)
            await self._persist(candidate + 1)
            return Allocation(priority=candidate, attempts=attempt, payload=payload)

        raise RetriesExhausted(
            step=STEP, code=PRIORITY_IN_USE, attempts=self._max_attempts,
        )

    async def _persist(self, next_value: int) -> None:
        try:
            await self._store.put(self._key, str(next_value))
        except Exception as exc:
            raise UpstreamFatal(
                f'rule created but priority counter not saved: {exc}', step=STEP,
            ) from exc
