"""Convenience exports for model resolution and streaming completion clients."""

from .completion import CompletionClient, CompletionRequest, StreamPart, UsageTotals, await_cancellable
from .resolver import (
    AUTO_MODEL,
    ModelDescriptor,
    ModelResolutionError,
    ModelResolver,
    ProviderSpec,
    ResolvedModel,
)

__all__ = [
    "AUTO_MODEL",
    "CompletionClient",
    "CompletionRequest",
    "ModelDescriptor",
    "ModelResolutionError",
    "ModelResolver",
    "ProviderSpec",
    "ResolvedModel",
    "StreamPart",
    "UsageTotals",
    "await_cancellable",
]
