"""
Firestore record store for the circuit lab notebook.

This module provides persistent, realtime-synced storage using Google Cloud
Firestore. A snapshot listener on the records collection turns remote
changes (from other sessions or tabs) into full re-list notifications.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from ..errors import RecordNotFoundError, StoreError
from ..models import ExperimentRecord, RecordDraft
from ..serialization import record_from_document
from .base import RecordStore, RecordsCallback, Unsubscribe, allocate_sequence_number, writable_fields

logger = logging.getLogger(__name__)


class FirestoreRecordStore(RecordStore):
    """
    Firestore-based record store with realtime change notifications.
    """

    storage_type = "firestore"

    def __init__(self, client: Any, collection: str = "experiment_records", owner_id: Optional[str] = None):
        """
        Initialize Firestore record store.

        Args:
            client: A ``google.cloud.firestore.Client``
            collection: Name of the records collection
            owner_id: Identity stamped on created records
        """
        super().__init__(owner_id=owner_id)
        self.firestore_client = client
        self.RECORDS_COLLECTION = collection
        self._watch = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def collection(self):
        return self.firestore_client.collection(self.RECORDS_COLLECTION)

    @staticmethod
    def _snapshot_to_record(snapshot) -> ExperimentRecord:
        data = snapshot.to_dict() or {}
        data['id'] = snapshot.id
        return record_from_document(data)

    async def list(self) -> List[ExperimentRecord]:
        try:
            query = self.collection.order_by('created_at', direction=firestore.Query.DESCENDING)
            return [self._snapshot_to_record(doc) for doc in query.stream()]
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore error listing records: {str(e)}")
            raise StoreError(f"Firestore error: {str(e)}")
        except ValueError as e:
            logger.error(f"Malformed record document in Firestore: {str(e)}")
            raise StoreError(f"Malformed record document: {str(e)}")

    def _stored_max_sequence(self) -> Optional[int]:
        query = (
            self.collection
            .order_by('sequence_number', direction=firestore.Query.DESCENDING)
            .limit(1)
        )
        for doc in query.stream():
            return (doc.to_dict() or {}).get('sequence_number')
        return None

    async def create(self, draft: RecordDraft) -> ExperimentRecord:
        owner_id = self.require_owner()
        try:
            # Not transactional: a concurrent writer can still race this read
            stored_max = self._stored_max_sequence()
            now = datetime.now(timezone.utc)

            record_dict = draft.model_dump()
            record_dict['sequence_number'] = allocate_sequence_number(draft.sequence_number, stored_max)
            record_dict['user_id'] = owner_id
            record_dict['created_at'] = now
            record_dict['updated_at'] = now

            doc_ref = self.collection.document()
            doc_ref.set(record_dict)
            record = record_from_document({**record_dict, 'id': doc_ref.id})
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore error creating record: {str(e)}")
            raise StoreError(f"Firestore error: {str(e)}")
        except (TypeError, ValueError) as e:
            logger.error(f"Malformed record data in Firestore: {str(e)}")
            raise StoreError(f"Malformed record data: {str(e)}")

        logger.info(f"Saved record {record.id} (sequence {record.sequence_number}) to Firestore")

        await self.notify_subscribers()
        return record

    async def update(self, record_id: str, fields: Dict[str, Any]) -> ExperimentRecord:
        changes = writable_fields(fields)
        try:
            doc_ref = self.collection.document(record_id)
            snapshot = doc_ref.get()
            if not snapshot.exists:
                raise RecordNotFoundError(record_id)

            merged = self._snapshot_to_record(snapshot).merged(changes)
            update_dict = merged.model_dump(include=set(changes))
            update_dict['updated_at'] = datetime.now(timezone.utc)
            doc_ref.update(update_dict)
        except google_exceptions.NotFound:
            raise RecordNotFoundError(record_id)
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore error updating record {record_id}: {str(e)}")
            raise StoreError(f"Firestore error: {str(e)}", record_id=record_id)
        except ValueError as e:
            logger.error(f"Malformed data for record {record_id}: {str(e)}")
            raise StoreError(f"Malformed record data: {str(e)}", record_id=record_id)

        record = merged.model_copy(update={'updated_at': update_dict['updated_at']})
        logger.info(f"Updated record {record_id} in Firestore")

        await self.notify_subscribers()
        return record

    async def delete(self, record_id: str) -> None:
        try:
            doc_ref = self.collection.document(record_id)
            if not doc_ref.get().exists:
                raise RecordNotFoundError(record_id)
            doc_ref.delete()
        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Firestore error deleting record {record_id}: {str(e)}")
            raise StoreError(f"Firestore error: {str(e)}", record_id=record_id)

        logger.info(f"Deleted record {record_id} from Firestore")
        await self.notify_subscribers()

    # === Realtime listener ===

    def subscribe(self, callback: RecordsCallback) -> Unsubscribe:
        unsubscribe = super().subscribe(callback)
        if self._watch is None:
            self._start_watch()

        def unsubscribe_and_stop() -> None:
            unsubscribe()
            if not self._subscribers:
                self._stop_watch()

        return unsubscribe_and_stop

    def _start_watch(self) -> None:
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; Firestore realtime updates disabled")
            return
        self._watch = self.collection.on_snapshot(self._on_snapshot)
        logger.info(f"Listening for changes on Firestore collection {self.RECORDS_COLLECTION}")

    def _stop_watch(self) -> None:
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
            logger.info(f"Stopped listening on Firestore collection {self.RECORDS_COLLECTION}")

    def _on_snapshot(self, collection_snapshot, changes, read_time) -> None:
        """Runs on the listener thread; hands the re-list to the event loop."""
        if self._loop is None or self._loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self.notify_subscribers(), self._loop)

    def close(self) -> None:
        self._stop_watch()
        super().close()

    def get_storage_stats(self) -> Dict[str, Any]:
        """
        Get storage statistics.

        Returns:
            Dictionary with storage statistics
        """
        try:
            records_count = len(list(self.collection.stream()))
            return {
                "storage_type": self.storage_type,
                "records_count": records_count,
                "firestore_project": self.firestore_client.project,
                "listening": self._watch is not None,
            }
        except Exception as e:
            logger.error(f"Error getting storage stats: {str(e)}")
            return {"error": str(e)}
