import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping

_SLUG_STRIP = re.compile(r"[^\w\s-]")
_SLUG_HYPHENATE = re.compile(r"[-\s_]+")


def filter_excluded_keys(record: Mapping[str, Any], excluded_keys: Iterable[str]) -> Dict[str, Any]:
    """Return a shallow copy of ``record`` without ``excluded_keys``; unknown keys are ignored."""
    excluded = set(excluded_keys)
    return {key: value for key, value in record.items() if key not in excluded}


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def slugify(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    normalized = _SLUG_STRIP.sub("", normalized).strip().lower()
    return _SLUG_HYPHENATE.sub("-", normalized).strip("-")
