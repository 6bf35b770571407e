from __future__ import annotations

from typing import Any


def normalize_anthropic_usage(usage: dict[str, Any] | None) -> dict[str, int | None]:
    usage_data = usage or {}

    input_tokens = _to_int(
        usage_data.get("input_tokens") or usage_data.get("prompt_tokens")
    )
    output_tokens = _to_int(
        usage_data.get("output_tokens") or usage_data.get("completion_tokens")
    )
    cache_read_tokens = _to_int(usage_data.get("cache_read_input_tokens"))

    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": _sum_tokens(input_tokens, output_tokens),
        "cache_read_tokens": cache_read_tokens,
    }


def sum_usage(usages: list[dict[str, int | None]]) -> dict[str, int | None]:
    totals: dict[str, int | None] = {}
    for usage in usages:
        for key, value in usage.items():
            if value is None:
                totals.setdefault(key, None)
                continue
            totals[key] = (totals.get(key) or 0) + value
    return totals


def _sum_tokens(input_tokens: int | None, output_tokens: int | None) -> int | None:
    if input_tokens is None and output_tokens is None:
        return None

    return int((input_tokens or 0) + (output_tokens or 0))


def _to_int(value: Any) -> int | None:
    if value is None:
        return None

    return int(value)
