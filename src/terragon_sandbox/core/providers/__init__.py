"""Sandbox providers.

- base.py: Session base class, retry wrapper, provider registry and chooser
- daytona.py: Daytona backend
- e2b.py: E2B backend
"""

from terragon_sandbox.config.core import CoreConfig
from terragon_sandbox.core.providers.base import (
    BaseSandboxSession,
    ProviderRegistry,
    RetryPolicy,
    SandboxProvider,
    call_with_retry,
    choose_sandbox_provider,
    is_transient_error,
)


def build_default_registry(config: CoreConfig) -> ProviderRegistry:
    """Register the built-in backend for every enabled provider.

    ``docker`` has no built-in backend; register one explicitly to use it.
    """
    registry = ProviderRegistry(config)
    enabled = config.sandbox.enabled_providers

    if "e2b" in enabled:
        from terragon_sandbox.core.providers.e2b import E2BProvider

        registry.register(E2BProvider(config))
    if "daytona" in enabled:
        from terragon_sandbox.core.providers.daytona import DaytonaProvider

        registry.register(DaytonaProvider(config))

    return registry


__all__ = [
    "BaseSandboxSession",
    "ProviderRegistry",
    "RetryPolicy",
    "SandboxProvider",
    "build_default_registry",
    "call_with_retry",
    "choose_sandbox_provider",
    "is_transient_error",
]
