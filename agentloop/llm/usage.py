"""Token usage normalization."""

from typing import Any, Mapping


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_usage(
    *,
    input: Any = 0,
    output: Any = 0,
    cached: Any = 0,
    cache_write: Any = 0,
    reasoning: Any = 0,
    total: Any = None,
    breakdowns: Mapping[str, Mapping[str, Any] | None] | None = None,
) -> dict[str, Any]:
    """Build the vendor-neutral usage map.

    Scalar counters come first; ``breakdowns`` adds nested per-category maps
    (for example ``input_details``) with their scalar entries kept as-is.
    """
    usage: dict[str, Any] = {
        "input": _as_int(input),
        "cached": _as_int(cached),
        "cache_write": _as_int(cache_write),
        "output": _as_int(output),
    }
    reasoning_tokens = _as_int(reasoning)
    if reasoning_tokens:
        usage["reasoning"] = reasoning_tokens
    if total is None:
        usage["total"] = usage["input"] + usage["cached"] + usage["cache_write"] + usage["output"]
    else:
        usage["total"] = _as_int(total)

    for name, values in (breakdowns or {}).items():
        if not isinstance(values, Mapping):
            continue
        entries = {key: value for key, value in values.items() if isinstance(value, (int, float, str))}
        if entries:
            usage[name] = entries
    return usage
