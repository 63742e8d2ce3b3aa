"""boshrestore: durable restore workflows for BOSH-deployed service instances."""

from .backend import BoshBackend, InMemoryBoshBackend, get_backend
from .contracts import (
    ChangeNotification,
    Phase,
    RestoreRequest,
    WorkflowRecord,
)
from .controller import RestoreController
from .registry import JobRegistry, ServiceRegistry
from .service import BoshRestoreService
from .store import WorkflowStore, get_store
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "BoshBackend",
    "BoshRestoreService",
    "ChangeNotification",
    "InMemoryBoshBackend",
    "JobRegistry",
    "Phase",
    "RestoreController",
    "RestoreRequest",
    "ServiceRegistry",
    "WorkflowRecord",
    "WorkflowStore",
    "get_backend",
    "get_store",
    "get_transport",
]
