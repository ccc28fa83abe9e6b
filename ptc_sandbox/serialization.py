"""
Defensive JSON serialization of script outputs and call payloads
"""

import json
import logging
from typing import Any, Mapping

from .exceptions import SerializationError

logger = logging.getLogger(__name__)


def round_trip(value: Any) -> Any:
    """Structural copy through JSON; raises ``SerializationError``"""
    try:
        return json.loads(json.dumps(value, ensure_ascii=False, allow_nan=False))
    except (TypeError, ValueError, RecursionError) as e:
        raise SerializationError(type(value).__name__, str(e))


def to_serializable(value: Any) -> Any:
    """
    Return a JSON-representable copy of ``value``. Never raises.

    1. Structural round trip of the whole value.
    2. For mappings and sequences, round trip each field on its own and
       coerce the fields that fail with ``str()``.
    3. Otherwise substitute a diagnostic object describing the value.
    """
    try:
        return round_trip(value)
    except SerializationError as e:
        logger.warning(f"Output serialization failed: {e}")

    if isinstance(value, Mapping):
        try:
            safe_output = {}
            for key, item in value.items():
                try:
                    safe_output[str(key)] = round_trip(item)
                except SerializationError:
                    safe_output[str(key)] = _safe_str(item)
            return safe_output
        except Exception as e:
            logger.warning(f"Field-wise serialization failed: {e}")
            return {
                "message": "Output contained non-serializable data",
                "type": type(value).__name__,
                "keys": _safe_keys(value),
            }

    if isinstance(value, (list, tuple, set, frozenset)):
        items = []
        for item in value:
            try:
                items.append(round_trip(item))
            except SerializationError:
                items.append(_safe_str(item))
        return items

    return {"value": _safe_str(value), "type": type(value).__name__}


def _safe_str(value: Any) -> str:
    try:
        return str(value)
    except Exception:
        return f"<unprintable {type(value).__name__}>"


def _safe_keys(value: Mapping) -> list[str]:
    try:
        return [str(k) for k in value.keys()]
    except Exception:
        return []


def estimate_size(value: Any) -> int:
    """Length of the JSON form of ``value`` in characters"""
    if isinstance(value, str):
        return len(value)
    try:
        return len(json.dumps(value, ensure_ascii=False, default=str))
    except (TypeError, ValueError, RecursionError):
        return len(_safe_str(value))
