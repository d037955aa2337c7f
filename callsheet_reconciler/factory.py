"""Factory helpers for constructing store collaborators from configuration."""
from __future__ import annotations

import importlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from .config import ConfigurationError, PipelineConfig
from .guard import ProtectedRecordGuard
from .orchestrator import UploadOrchestrator

DEFAULT_STORE_CLASSES: Mapping[str, str] = {
    "contacts": "callsheet_reconciler.stores.memory.MemoryContactStore",
    "dnc": "callsheet_reconciler.stores.memory.MemoryDncRegistry",
    "agents": "callsheet_reconciler.stores.memory.MemoryAgentDirectory",
    "uploads": "callsheet_reconciler.stores.memory.MemoryUploadStore",
    "call_list": "callsheet_reconciler.stores.memory.MemoryCallListStore",
    "rejections": "callsheet_reconciler.stores.memory.MemoryRejectionStore",
    "audit": "callsheet_reconciler.stores.memory.MemoryAuditSink",
}


@dataclass
class StoreBundle:
    contacts: Any
    dnc: Any
    agents: Any
    uploads: Any
    call_list: Any
    rejections: Any
    audit: Any


def _load_class(path: str):
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ConfigurationError(f"Invalid store class path '{path}'")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"Module '{module_name}' does not define '{attr}'") from exc


def build_stores(config: Mapping[str, Any]) -> StoreBundle:
    """Instantiate every collaborator named in the ``stores`` section.

    Each role takes ``class`` (dotted path) and ``options`` (constructor
    keyword arguments); roles left out fall back to the in-memory stores.
    """

    section = config.get("stores", {}) or {}
    if not isinstance(section, Mapping):
        raise ConfigurationError("The 'stores' section must be a mapping of role to store settings")
    unknown = sorted(set(section) - set(DEFAULT_STORE_CLASSES))
    if unknown:
        raise ConfigurationError(f"Unknown store role(s): {', '.join(unknown)}")

    built: Dict[str, Any] = {}
    for role, default_class in DEFAULT_STORE_CLASSES.items():
        store_cfg = section.get(role) or {}
        class_path = store_cfg.get("class", default_class)
        options = store_cfg.get("options", {}) or {}
        store_cls = _load_class(class_path)
        try:
            built[role] = store_cls(**options)
        except TypeError as exc:
            raise ConfigurationError(f"Invalid options for store '{role}': {exc}") from exc
    return StoreBundle(**built)


def build_orchestrator(
    stores: StoreBundle,
    pipeline_config: Optional[PipelineConfig] = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> UploadOrchestrator:
    return UploadOrchestrator(
        stores.contacts,
        stores.dnc,
        stores.uploads,
        stores.call_list,
        stores.rejections,
        stores.audit,
        agents=stores.agents,
        config=pipeline_config,
        clock=clock,
    )


def build_guard(stores: StoreBundle) -> ProtectedRecordGuard:
    return ProtectedRecordGuard(stores.call_list, stores.rejections, stores.uploads)


__all__ = ["DEFAULT_STORE_CLASSES", "StoreBundle", "build_guard", "build_orchestrator", "build_stores"]
