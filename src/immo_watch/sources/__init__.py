"""Source adapters and registry."""

from .base import BrowserListingSource, Source
from .browser import BrowserSession, FetchError, ListingsNotFound, SourceError
from .immoscout import ImmoScoutSource
from .kleinanzeigen import KleinanzeigenSource
from .registry import (
    SourceRegistrationError,
    create_source,
    register_source,
    registered_source_types,
)

__all__ = [
    "BrowserListingSource",
    "BrowserSession",
    "FetchError",
    "ImmoScoutSource",
    "KleinanzeigenSource",
    "ListingsNotFound",
    "Source",
    "SourceError",
    "SourceRegistrationError",
    "create_source",
    "register_source",
    "registered_source_types",
]
