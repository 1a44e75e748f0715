"""Decoding of SkyFi response bodies.

The platform answers either with the raw payload or with an envelope
`{"success": bool, "data"?: ..., "error"?: {"code"?, "message"?}}`. The two
shapes are decoded once, at the HTTP boundary, into a tagged union.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from skyfi_mcp.domain.models.errors import SkyFiError, error_for_kind, kind_from_code

logger = logging.getLogger(__name__)

DEFAULT_ENVELOPE_ERROR_MESSAGE = "API request failed"

@dataclass(frozen=True)
class EnvelopeError:
    code: Optional[str] = None
    message: Optional[str] = None

@dataclass(frozen=True)
class Envelope:
    """A `{success, data?, error?}` wrapper."""
    success: bool
    data: Any = None
    error: Optional[EnvelopeError] = None

    def to_error(self, status_code: Optional[int] = None) -> SkyFiError:
        """Classifies an unsuccessful envelope by its error code."""
        code = self.error.code if self.error else None
        message = (self.error.message if self.error else None) or DEFAULT_ENVELOPE_ERROR_MESSAGE
        return error_for_kind(kind_from_code(code), message, status_code=status_code, code=code, details=self.data)

@dataclass(frozen=True)
class RawPayload:
    """Any body that is not an envelope, passed through unchanged."""
    payload: Any = None

ResponseBody = Union[Envelope, RawPayload]

def _is_envelope(body: Any) -> bool:
    return isinstance(body, dict) and isinstance(body.get("success"), bool)

def decode_body(body: Any) -> ResponseBody:
    """Tags an already-parsed JSON body as Envelope or RawPayload."""
    if not _is_envelope(body):
        return RawPayload(body)

    raw_error = body.get("error")
    error: Optional[EnvelopeError] = None
    if isinstance(raw_error, dict):
        code = raw_error.get("code")
        error = EnvelopeError(code=str(code) if code is not None else None, message=raw_error.get("message"))
    elif isinstance(raw_error, str):
        error = EnvelopeError(message=raw_error)
    return Envelope(success=body["success"], data=body.get("data"), error=error)

def parse_text(text: str) -> ResponseBody:
    """Parses a response text; empty bodies decode to RawPayload(None)."""
    if not text or not text.strip():
        return RawPayload(None)
    try:
        parsed = json.loads(text)
    except ValueError:
        logger.debug("Response body is not JSON; passing text through")
        return RawPayload(text)
    return decode_body(parsed)

def unwrap(body: ResponseBody, status_code: Optional[int] = None) -> Any:
    """Returns the payload of a decoded 2xx body, raising for failed envelopes."""
    if isinstance(body, Envelope):
        if not body.success:
            raise body.to_error(status_code)
        return body.data
    return body.payload

def error_message_from(body: Any) -> Optional[str]:
    """Best-effort extraction of a human message from an error body."""
    if not isinstance(body, dict):
        return body if isinstance(body, str) and body.strip() else None
    if isinstance(body.get("message"), str):
        return body["message"]
    error = body.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(error, str):
        return error
    detail = body.get("detail")
    if isinstance(detail, str):
        return detail
    if detail is not None:
        return json.dumps(detail)
    return None

def error_details_from(body: Any) -> Dict[str, Any]:
    return body if isinstance(body, dict) else {"body": body}
