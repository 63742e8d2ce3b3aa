"""Backend factory and initialization."""

from __future__ import annotations

from typing import Optional

from ..config import RestoreOperatorConfig, load_config
from .base import BoshBackend, CloudProvider
from .inmemory import InMemoryBoshBackend


def get_backend(
    backend: Optional[str] = None,
    config: Optional[RestoreOperatorConfig] = None,
    cloud_provider: Optional[CloudProvider] = None,
) -> BoshBackend:
    """Factory function to get the configured orchestrator backend."""

    config = config or load_config()
    backend = (backend or config.backend).lower()

    if backend == "inmemory":
        return InMemoryBoshBackend(polling=config.polling)
    elif backend == "director":
        from .director import BoshDirectorBackend

        return BoshDirectorBackend(
            config.director, cloud_provider=cloud_provider, polling=config.polling
        )
    else:
        raise ValueError(f"Unsupported orchestrator backend: {backend}")


__all__ = ["BoshBackend", "CloudProvider", "InMemoryBoshBackend", "get_backend"]
