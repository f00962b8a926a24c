"""
Fallible parsing of model JSON output.

Parsing is two explicit steps that each return a ParseResult instead of
raising: a strict parse, then a single repair attempt that pulls the JSON
out of code fences or the outermost {...} span.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from utils.exceptions import SchemaError

logger = logging.getLogger(__name__)

_FENCE_PATTERNS = [
    re.compile(r'```json\s*(.*?)\s*```', re.DOTALL),
    re.compile(r'```\s*(.*?)\s*```', re.DOTALL),
]


@dataclass
class ParseResult:
    ok: bool
    data: Any = None
    error: Optional[str] = None
    repaired: bool = False

    def unwrap(self, context: Optional[Dict[str, Any]] = None) -> Any:
        """Return the parsed value or raise SchemaError."""
        if self.ok:
            return self.data
        raise SchemaError(self.error or "Failed to parse JSON response", context=context)


def _loads(text: str) -> ParseResult:
    try:
        return ParseResult(ok=True, data=json.loads(text))
    except (json.JSONDecodeError, ValueError) as e:
        return ParseResult(ok=False, error=f"Invalid JSON: {e}")


def parse_strict(text: Optional[str]) -> ParseResult:
    if not text or not text.strip():
        return ParseResult(ok=False, error="Empty response from model")
    return _loads(text.strip())


def parse_repaired(text: Optional[str]) -> ParseResult:
    """Second attempt: fenced block first, then the outermost object."""
    if not text:
        return ParseResult(ok=False, error="Empty response from model")

    candidates: List[str] = []
    for pattern in _FENCE_PATTERNS:
        candidates.extend(pattern.findall(text))

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start:end + 1])

    for candidate in candidates:
        result = _loads(candidate)
        if result.ok:
            result.repaired = True
            return result

    return ParseResult(ok=False, error="Could not extract JSON from model response")


def parse_model_json(text: Optional[str]) -> ParseResult:
    """Strict parse, then one repair attempt."""
    result = parse_strict(text)
    if result.ok:
        return result

    repaired = parse_repaired(text)
    if repaired.ok:
        logger.info("Recovered JSON from model response after repair")
        return repaired

    logger.warning(f"Could not extract JSON from: {(text or '')[:300]}")
    return repaired


def expect_object(result: ParseResult) -> ParseResult:
    """Narrow a successful parse to a JSON object."""
    if result.ok and not isinstance(result.data, dict):
        return ParseResult(ok=False, error=f"Expected a JSON object, got {type(result.data).__name__}")
    return result


def list_field(data: Dict[str, Any], key: str) -> List[Any]:
    """Read a field that should hold an array. Any other value reads as empty."""
    value = data.get(key)
    if isinstance(value, list):
        return value
    if value is not None:
        logger.warning(f"Expected a list for '{key}', got {type(value).__name__}")
    return []


def text_field(value: Any, default: str = "") -> str:
    """A scalar model value as stripped text. Containers and null give the default."""
    if value is None or isinstance(value, (dict, list)):
        return default
    return str(value).strip() or default
