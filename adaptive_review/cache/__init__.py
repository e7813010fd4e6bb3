from .response_cache import ResponseCache, make_cache_key, serialize_payload, usage_totals

__all__ = [
    "ResponseCache",
    "make_cache_key",
    "serialize_payload",
    "usage_totals",
]
