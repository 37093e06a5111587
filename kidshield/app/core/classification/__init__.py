"""Domain classification shared by the foreground and sinkhole engines."""

from app.core.classification.domain_classifier import (
    DEFAULT_KEYWORDS,
    Classification,
    classify,
    explain,
    is_gambling_domain,
    matches_blacklist_entry,
    matches_domain,
    normalize_domain,
)

__all__ = [
    "DEFAULT_KEYWORDS",
    "Classification",
    "classify",
    "explain",
    "is_gambling_domain",
    "matches_blacklist_entry",
    "matches_domain",
    "normalize_domain",
]
