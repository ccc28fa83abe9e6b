"""
Defensive data-access helpers available inside every orchestration script.

Capability results vary in shape, especially across bridged servers. These
helpers never raise on a missing key, a ``None`` or an unexpected type; they
fall back to the supplied default instead.
"""

import json
from typing import Any, Callable, Iterable, Mapping, Sequence

_MISSING = object()

# Exceptions a predicate may raise on an unexpected item shape
_SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)


def _split_path(path: Any) -> list:
    if path is None:
        return []
    if isinstance(path, str):
        return [part for part in path.split(".") if part != ""]
    if isinstance(path, (list, tuple)):
        return list(path)
    return [path]


def _step(current: Any, key: Any) -> Any:
    if isinstance(current, Mapping):
        if key in current:
            return current[key]
        if isinstance(key, str) and key.lstrip("-").isdigit() and int(key) in current:
            return current[int(key)]
        return _MISSING
    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        try:
            return current[int(key)]
        except (ValueError, TypeError, IndexError):
            return _MISSING
    return _MISSING


def safe_get(obj: Any, path: Any, default: Any = None) -> Any:
    """
    Nested lookup by dotted path (``"a.b.0.c"``) or key list.

    Returns ``default`` when any step is missing or the value found is None.
    """
    current = obj
    for key in _split_path(path):
        current = _step(current, key)
        if current is _MISSING or current is None:
            return default
    return default if current is None else current


def to_array(value: Any) -> list:
    """Coerce any value to a list: None -> [], scalars and dicts -> [value]"""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, (str, bytes, Mapping)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return [value]


def safe_map(value: Any, fn: Callable[[Any], Any]) -> list:
    """Map over any value after ``to_array``"""
    return [fn(item) for item in to_array(value)]


def safe_filter(value: Any, fn: Callable[[Any], Any]) -> list:
    """Filter any value; items on which the predicate fails are dropped"""
    kept = []
    for item in to_array(value):
        try:
            if fn(item):
                kept.append(item)
        except _SHAPE_ERRORS:
            continue
    return kept


def first(value: Any, default: Any = None) -> Any:
    items = to_array(value)
    return items[0] if items else default


def length(value: Any) -> int:
    """len() that returns 0 for None and unsized values"""
    if value is None:
        return 0
    try:
        return len(value)
    except TypeError:
        return 0


def is_success(response: Any) -> bool:
    """Whether a capability response indicates success"""
    if response is None:
        return False
    if isinstance(response, Mapping):
        if "success" in response:
            return bool(response["success"])
        if "isError" in response:
            return not response["isError"]
        if response.get("error"):
            return False
    return True


def _content_texts(response: Mapping) -> list[str]:
    return [
        item.get("text", "")
        for item in to_array(response.get("content"))
        if isinstance(item, Mapping) and item.get("type") == "text"
    ]


def extract_data(response: Any, default: Any = None) -> Any:
    """Pull the payload out of the common response envelopes"""
    if response is None:
        return default
    if isinstance(response, Mapping):
        if "success" in response and "data" in response:
            data = response["data"]
            return default if data is None else data
        if response.get("structuredContent") is not None:
            return response["structuredContent"]
        if "content" in response:
            texts = _content_texts(response)
            if not texts:
                return default
            joined = "\n".join(texts)
            try:
                return json.loads(joined)
            except ValueError:
                return joined
        if "data" in response:
            return response["data"]
    return response


def extract_text(response: Any, default: str = "") -> str:
    """Text output of a response (command output, scraped page, ...)"""
    if response is None:
        return default
    if isinstance(response, str):
        return response
    if isinstance(response, Mapping):
        if "success" in response and "data" in response:
            if not response["success"]:
                return response.get("error_text") or default
            return extract_text(response["data"], default)
        if "content" in response:
            texts = _content_texts(response)
            return "\n".join(texts) if texts else default
        for key in ("text", "output", "stdout", "markdown", "content"):
            value = response.get(key)
            if isinstance(value, str):
                return value
    try:
        return json.dumps(response, default=str)
    except (TypeError, ValueError):
        return default


def get_command_output(response: Any) -> dict:
    """``{"success", "output", "error"}`` view of a command-style response"""
    ok = is_success(response)
    error = None
    if not ok:
        error = (
            safe_get(response, "error_text")
            or safe_get(response, "error")
            or extract_text(response)
            or "Command failed"
        )
    return {
        "success": ok,
        "output": extract_text(response) if ok else "",
        "error": error,
    }


SCRIPT_HELPERS: dict[str, Callable] = {
    "safe_get": safe_get,
    "safe_map": safe_map,
    "safe_filter": safe_filter,
    "to_array": to_array,
    "first": first,
    "length": length,
    "is_success": is_success,
    "extract_data": extract_data,
    "extract_text": extract_text,
    "get_command_output": get_command_output,
}
