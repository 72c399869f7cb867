"""
Decoding of vendor text into a ReplacementResponse.

Models do not always return clean JSON even when asked to. Decoding is
attempted directly first; when that fails a best-effort cleanup is applied
once before giving up.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from .errors import MalformedResponse
from .models import ReplacementResponse
from .usage import UsageMetadata

logger = logging.getLogger(__name__)

_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


def _escape_control_characters(text: str) -> str:
    """Escape raw newlines and tabs that appear inside JSON string literals."""
    result = []
    in_string = False
    escaped = False
    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char in _ESCAPES:
                result.append(_ESCAPES[char])
                continue
        elif char == '"':
            in_string = True
        result.append(char)
    return "".join(result)


def clean_json_text(text: str) -> Optional[str]:
    """Trim surrounding prose and escape raw control characters.

    Returns:
        The cleaned text, or None if the text contains no JSON object at all
    """
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end < start:
        return None
    if not text.startswith("{"):
        text = text[start:]
        end -= start
    if not text.endswith("}"):
        text = text[:end + 1]
    return _escape_control_characters(text)


def try_recover(text: str) -> Optional[ReplacementResponse]:
    """Apply the cleanup once and decode again.

    A recovered response without any replacement counts as a failure.
    """
    cleaned = clean_json_text(text)
    if cleaned is None:
        return None
    try:
        response = ReplacementResponse.model_validate_json(cleaned)
    except ValidationError:
        return None
    if not response.replacements:
        return None
    return response


def decode_replacements(text: str, usage: Optional[UsageMetadata] = None) -> ReplacementResponse:
    """Decode vendor text as a ReplacementResponse, recovering if needed.

    Args:
        text: Text content returned by the vendor
        usage: Usage of the attempt, attached to the error on failure

    Returns:
        The decoded response

    Raises:
        MalformedResponse: If neither direct decoding nor recovery succeeds
    """
    try:
        return ReplacementResponse.model_validate_json(text)
    except ValidationError as exc:
        logger.debug("Direct decode failed, trying recovery: %s", exc.errors()[:1])

    recovered = try_recover(text)
    if recovered is None:
        raise MalformedResponse("Response could not be decoded as replacements", usage)
    logger.info("Recovered malformed response with %d replacement(s)", len(recovered.replacements))
    return recovered
