"""Response decoding: raw HTTP response -> StepResult.

The AWS APIs behind a workspace answer in three dialects:

  - ``text/xml``    Query APIs (ELBv2, EC2). Errors carry ``<Code>``.
  - ``text/plain``  only ever used by the backing services to report errors,
                    so it is Fatal even with a 2xx status.
  - anything else   JSON (EFS, ECS). Errors carry ``ErrorCode`` or ``__type``.

Callers pass the set of error codes they know how to retry; a non-2xx whose
code is in that set decodes to ``Retryable`` instead of ``Fatal``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping
from xml.etree import ElementTree as ET

from .errors import UpstreamFatal

logger = logging.getLogger(__name__)

_REASONS = {
    400: 'Bad Request',
    401: 'Unauthorized',
    403: 'Forbidden',
    404: 'Not Found',
    409: 'Conflict',
    429: 'Too Many Requests',
    500: 'Internal Server Error',
    502: 'Bad Gateway',
    503: 'Service Unavailable',
}


@dataclass(frozen=True, slots=True)
class RawResponse:
    """Transport-neutral response: status, lower-cased headers, body bytes."""

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b''

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        return self.headers.get('content-type', '')

    @property
    def reason(self) -> str:
        return _REASONS.get(self.status_code, '')

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')


@dataclass(frozen=True, slots=True)
class Success:
    payload: Any


@dataclass(frozen=True, slots=True)
class Retryable:
    code: str
    status_code: int = 0
    detail: str = ''


@dataclass(frozen=True, slots=True)
class Fatal:
    error: UpstreamFatal


StepResult = Success | Retryable | Fatal


def unwrap(result: StepResult) -> Any:
    """Return the payload of a Success, raise otherwise.

    A ``Retryable`` reaching this point means no loop handles that code for
    the step, so it is as fatal as any other error.
    """
    if isinstance(result, Success):
        return result.payload
    if isinstance(result, Fatal):
        raise result.error
    raise UpstreamFatal(
        f'unhandled retryable error {result.code}: {result.detail}',
        status_code=result.status_code,
        response_body=result.detail,
    )


# ── XML ─────────────────────────────────────────────────────────────


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _element_to_value(element: ET.Element) -> Any:
    children = list(element)
    if not children:
        return (element.text or '').strip()
    out: dict[str, Any] = {}
    for child in children:
        key = _local_name(child.tag)
        value = _element_to_value(child)
        if key in out:
            existing = out[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                out[key] = [existing, value]
        else:
            out[key] = value
    return out


def xml_to_dict(text: str) -> dict[str, Any]:
    """Parse an XML document into nested dicts, namespaces stripped.

    Repeated sibling tags become lists; a single child stays a scalar/dict,
    so readers should go through :func:`as_list` where repetition is possible.
    """
    root = ET.fromstring(text)
    return {_local_name(root.tag): _element_to_value(root)}


def as_list(value: Any) -> list[Any]:
    if value is None or value == '':
        return []
    if isinstance(value, list):
        return value
    return [value]


def _xml_error_code(text: str) -> str:
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return ''
    for element in root.iter():
        if _local_name(element.tag) == 'Code' and element.text:
            return element.text.strip()
    return ''


# ── JSON ────────────────────────────────────────────────────────────


def _json_error_code(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ''
    code = payload.get('ErrorCode') or payload.get('__type') or ''
    return str(code).rsplit('#', 1)[-1]


# ── Decoder ─────────────────────────────────────────────────────────


def _fatal(response: RawResponse, step: str, body: str) -> Fatal:
    status_line = f'{response.status_code} {response.reason}'.strip()
    return Fatal(UpstreamFatal(
        f'HTTP Error {status_line}: {body}',
        step=step,
        status_code=response.status_code,
        response_body=body,
    ))


def decode_response(
    response: RawResponse,
    *,
    step: str = '',
    retryable_codes: frozenset[str] = frozenset(),
) -> StepResult:
    """Normalize ``response`` into Success, Retryable or Fatal."""
    content_type = response.content_type
    logger.debug(
        'Processing response with content-type %s',
        content_type or '<none>',
        extra={'step': step, 'status_code': response.status_code},
    )
    text = response.text()

    if 'text/xml' in content_type or 'application/xml' in content_type:
        if not response.ok:
            code = _xml_error_code(text)
            if code and code in retryable_codes:
                return Retryable(code, response.status_code, text)
            return _fatal(response, step, text)
        try:
            return Success(xml_to_dict(text))
        except ET.ParseError as exc:
            return _fatal(response, step, f'malformed XML ({exc}): {text[:200]}')

    if 'text/plain' in content_type:
        return _fatal(response, step, text)

    try:
        payload = json.loads(text) if text.strip() else {}
    except ValueError:
        return _fatal(response, step, f'malformed JSON: {text[:200]}')

    if not response.ok:
        code = _json_error_code(payload)
        if code and code in retryable_codes:
            return Retryable(code, response.status_code, text)
        return _fatal(response, step, text)
    return Success(payload)
