"""Store implementations."""

from .base import RetentionPolicy, RetentionStore, apply_retention
from .json_store import JsonRetentionStore, scope_path

__all__ = [
    "JsonRetentionStore",
    "RetentionPolicy",
    "RetentionStore",
    "apply_retention",
    "scope_path",
]
