from __future__ import annotations

import logging
from typing import Callable

from immo_watch.config import PlatformSettings

from .base import Source
from .browser import BrowserSession

logger = logging.getLogger(__name__)

SourceFactory = Callable[[PlatformSettings, BrowserSession], Source]

_FACTORIES: dict[str, SourceFactory] = {}


class SourceRegistrationError(ValueError):
    """Raised for unknown or doubly registered platform types."""


def register_source(platform_type: str) -> Callable[[SourceFactory], SourceFactory]:
    """Register a factory for ``platforms[].type`` values in the config."""

    def decorator(factory: SourceFactory) -> SourceFactory:
        existing = _FACTORIES.get(platform_type)
        if existing is not None and existing is not factory:
            raise SourceRegistrationError(f"Platform type '{platform_type}' is already registered")
        _FACTORIES[platform_type] = factory
        return factory

    return decorator


def create_source(settings: PlatformSettings, session: BrowserSession) -> Source:
    try:
        factory = _FACTORIES[settings.type]
    except KeyError:
        known = ", ".join(registered_source_types()) or "none"
        raise SourceRegistrationError(
            f"Platform '{settings.id}' has unknown type '{settings.type}' (known: {known})"
        ) from None

    source = factory(settings, session)
    logger.debug(
        "Platform %s uses %s (max_pages=%d)",
        settings.id,
        type(source).__name__,
        settings.max_pages,
    )
    return source


def registered_source_types() -> list[str]:
    return sorted(_FACTORIES)
