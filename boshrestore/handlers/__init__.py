"""Phase handlers of the restore workflow."""

from __future__ import annotations

from typing import Dict, Optional

from ..backend import BoshBackend
from ..config import PollingConfig
from ..constants import DEFAULT_PATCH_ATTEMPTS
from ..contracts import Phase
from ..store import WorkflowStore
from .attach_disk import AttachDiskHandler
from .base import PhaseHandler
from .bosh_start import BoshStartHandler
from .bosh_stop import BoshStopHandler
from .create_disk import CreateDiskHandler
from .run_errands import RunErrandsHandler

HANDLER_CLASSES = (
    BoshStopHandler,
    CreateDiskHandler,
    AttachDiskHandler,
    RunErrandsHandler,
    BoshStartHandler,
)


def build_handlers(
    store: WorkflowStore,
    backend: BoshBackend,
    polling: Optional[PollingConfig] = None,
    patch_attempts: int = DEFAULT_PATCH_ATTEMPTS,
) -> Dict[Phase, PhaseHandler]:
    """Instantiate one handler per in-progress phase."""
    return {
        cls.phase: cls(store, backend, polling=polling, patch_attempts=patch_attempts)
        for cls in HANDLER_CLASSES
    }


__all__ = [
    "PhaseHandler",
    "BoshStopHandler",
    "CreateDiskHandler",
    "AttachDiskHandler",
    "RunErrandsHandler",
    "BoshStartHandler",
    "HANDLER_CLASSES",
    "build_handlers",
]
