"""Resolve a requested model/provider pair to a concrete model descriptor."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from ..config import DEFAULT_MAX_TOKENS, Settings
from .completion import await_cancellable

__all__ = [
    "AUTO_MODEL",
    "ModelDescriptor",
    "ModelResolutionError",
    "ModelResolver",
    "ProviderSpec",
    "ResolvedModel",
]

LOGGER = logging.getLogger(__name__)

AUTO_MODEL = "auto"


class ModelResolutionError(RuntimeError):
    """Raised when a provider has no candidate model at all."""


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    """A model offered by a provider."""

    name: str
    provider: str
    label: str = ""
    max_token_allowed: int | None = None


ModelLister = Callable[[], Union[Sequence[ModelDescriptor], Awaitable[Sequence[ModelDescriptor]]]]


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    """A model provider with a static catalogue and an optional live listing."""

    name: str
    static_models: tuple[ModelDescriptor, ...] = ()
    list_models: ModelLister | None = None
    supports_prompt_cache: bool = False

    def find(self, model: str) -> ModelDescriptor | None:
        return next((entry for entry in self.static_models if entry.name == model), None)


@dataclass(frozen=True, slots=True)
class ResolvedModel:
    descriptor: ModelDescriptor
    provider: ProviderSpec
    max_tokens: int
    fell_back: bool = False

    @property
    def supports_prompt_cache(self) -> bool:
        # Aggregators expose cache-capable models as "anthropic/<model>".
        return self.provider.supports_prompt_cache or "anthropic" in self.descriptor.name.lower()


class ModelResolver:
    """Looks up models in provider catalogues, fetching live lists on a miss."""

    def __init__(
        self,
        providers: Iterable[ProviderSpec],
        *,
        default_provider: str,
        default_model: str,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self._providers = {spec.name: spec for spec in providers}
        if not self._providers:
            raise ValueError("At least one provider must be registered")
        self._default_provider = default_provider
        self._default_model = default_model
        self._default_max_tokens = default_max_tokens

    @classmethod
    def from_settings(cls, providers: Iterable[ProviderSpec], settings: Settings) -> ModelResolver:
        return cls(
            providers,
            default_provider=settings.models.default_provider,
            default_model=settings.models.default_model,
            default_max_tokens=settings.models.default_max_tokens,
        )

    @property
    def default_pair(self) -> tuple[str, str]:
        return self._default_model, self._default_provider

    def provider(self, name: str | None) -> ProviderSpec:
        """Return the named provider, or the default one for unknown names."""
        if name and name in self._providers:
            return self._providers[name]
        fallback = self._providers.get(self._default_provider)
        if fallback is None:
            raise ModelResolutionError(f"Default provider {self._default_provider} is not registered")
        if name:
            LOGGER.warning("Provider [%s] is not registered. Using default provider [%s].", name, fallback.name)
        return fallback

    async def resolve(
        self,
        model: str | None,
        provider: str | None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> ResolvedModel:
        """Return the descriptor and output-token cap for ``model`` on ``provider``.

        ``auto`` and missing values map to the configured default pair. When
        neither the static nor the live list has the model, the first listed
        entry is used and a warning is logged.
        """
        if not model or model == AUTO_MODEL:
            model, provider = self._default_model, self._default_provider
        spec = self.provider(provider)

        descriptor = spec.find(model)
        fell_back = False
        if descriptor is None:
            candidates = [*spec.static_models, *await self._list_dynamic(spec, cancel_event)]
            if not candidates:
                raise ModelResolutionError(f"No models found for provider {spec.name}")
            descriptor = next((entry for entry in candidates if entry.name == model), None)
            if descriptor is None:
                descriptor = candidates[0]
                fell_back = True
                LOGGER.warning(
                    "MODEL [%s] not found in provider [%s]. Falling back to first model. %s",
                    model,
                    spec.name,
                    descriptor.name,
                )

        max_tokens = descriptor.max_token_allowed or self._default_max_tokens
        return ResolvedModel(descriptor=descriptor, provider=spec, max_tokens=max_tokens, fell_back=fell_back)

    async def _list_dynamic(
        self,
        spec: ProviderSpec,
        cancel_event: asyncio.Event | None,
    ) -> list[ModelDescriptor]:
        if spec.list_models is None:
            return []
        listed: Any = spec.list_models()
        if inspect.isawaitable(listed):
            listed = await await_cancellable(listed, cancel_event)
        return list(listed or ())
