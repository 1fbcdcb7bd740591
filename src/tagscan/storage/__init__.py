"""Durable storage client and upload orchestration."""

from tagscan.storage.durable_storage import DurableStorage, TransientStorageError
from tagscan.storage.upload_orchestrator import UploadOrchestrator

__all__ = [
    "DurableStorage",
    "TransientStorageError",
    "UploadOrchestrator",
]
