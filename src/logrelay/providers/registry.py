"""Provider registry: discover, validate, and instantiate provider adapters.

Discovery order:
  1. Built-in adapters registered at import time.
  2. Entry points under the "logrelay.providers" group (third-party packages).
  3. Factories registered at runtime via ProviderRegistry.register().

A registration is a zero-argument factory so every ``create()`` call yields
an independent provider with its own connection state.
"""
from __future__ import annotations

import importlib.metadata
import logging
from typing import Callable

from . import emby, jellyfin, prowlarr, radarr, sonarr
from .base import Provider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], Provider]


class UnknownProviderError(KeyError):
    """No provider is registered under the requested id."""


class ProviderRegistry:
    """Central registry of provider factories keyed by provider id.

    Usage::

        registry = ProviderRegistry()
        registry.discover()  # loads entry-point providers

        provider = registry.create("jellyfin")
    """

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, provider_id: str, factory: ProviderFactory) -> None:
        if not callable(factory):
            raise TypeError(f"{factory!r} is not a provider factory")
        self._factories[provider_id] = factory
        logger.debug("Registered provider: %s", provider_id)

    def create(self, provider_id: str) -> Provider:
        factory = self._factories.get(provider_id)
        if factory is None:
            raise UnknownProviderError(provider_id)
        provider = factory()
        if not isinstance(provider, Provider):
            raise TypeError(f"Factory for {provider_id!r} returned {provider!r}, not a Provider")
        return provider

    def get(self, provider_id: str) -> ProviderFactory | None:
        return self._factories.get(provider_id)

    def list_providers(self) -> list[str]:
        return sorted(self._factories)

    def discover(self) -> int:
        """Load factories from the 'logrelay.providers' entry-point group.

        Returns the number of providers successfully registered.
        """
        loaded = 0
        try:
            eps = importlib.metadata.entry_points(group="logrelay.providers")
        except Exception as exc:
            logger.warning("Entry-point discovery failed: %s", exc)
            return 0

        for ep in eps:
            if ep.name in self._factories:
                continue
            try:
                factory = ep.load()
                self.register(ep.name, factory)
                loaded += 1
            except Exception as exc:
                logger.warning("Failed to load provider %r: %s", ep.name, exc)

        return loaded


def build_default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("jellyfin", jellyfin.create_provider)
    registry.register("emby", emby.create_provider)
    registry.register("sonarr", sonarr.create_provider)
    registry.register("radarr", radarr.create_provider)
    registry.register("prowlarr", prowlarr.create_provider)
    return registry


# Module-level singleton shared across the application
default_registry = build_default_registry()
