"""
Record stores for the circuit lab notebook.

All backends share the RecordStore contract; which one is used is decided
once, from configuration, by ``create_record_store``.
"""

import logging

from config import Settings, get_firestore_client
from database import create_database_engine

from ..errors import StoreError
from .base import RecordStore, allocate_sequence_number, writable_fields
from .local_store import LocalFileRecordStore
from .memory_store import MemoryRecordStore
from .sql_store import SqlRecordStore

logger = logging.getLogger(__name__)


def create_record_store(settings: Settings) -> RecordStore:
    """Build the record store selected by ``settings.storage_backend``."""
    backend = settings.storage_backend
    logger.info(f"Using {backend} record store")

    if backend == "memory":
        return MemoryRecordStore(owner_id=settings.owner_id)

    if backend == "local":
        return LocalFileRecordStore(
            settings.local_store_path,
            owner_id=settings.owner_id,
            seed_initial_record=settings.seed_initial_record
        )

    if backend == "database":
        engine = create_database_engine(settings.database_url, echo=settings.database_echo)
        return SqlRecordStore(engine, owner_id=settings.owner_id)

    if backend == "firestore":
        from .firestore_store import FirestoreRecordStore

        client = get_firestore_client(settings)
        if client is None:
            raise StoreError("Firestore backend selected but FIRESTORE_PROJECT_ID is not set")
        return FirestoreRecordStore(client, collection=settings.firestore_collection, owner_id=settings.owner_id)

    raise StoreError(f"Unknown storage backend: {backend}")


__all__ = [
    "RecordStore",
    "MemoryRecordStore",
    "LocalFileRecordStore",
    "SqlRecordStore",
    "allocate_sequence_number",
    "writable_fields",
    "create_record_store",
]
