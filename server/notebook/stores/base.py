"""
Record store interface.

Every persistence backend implements this contract: list, create, update and
delete records, plus a coarse change subscription that delivers a fresh full
listing after any mutation. The controller only ever talks to this interface.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..errors import AuthError
from ..models import PROTECTED_FIELDS, ExperimentRecord, RecordDraft

logger = logging.getLogger(__name__)

RecordsCallback = Callable[[List[ExperimentRecord]], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


def allocate_sequence_number(proposed: int, stored_max: Optional[int]) -> int:
    """Keep the proposed number unless the store already holds one as large."""
    if stored_max is not None and proposed <= stored_max:
        return stored_max + 1
    return proposed


def writable_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Drop identity and bookkeeping keys a caller may not overwrite."""
    return {key: value for key, value in fields.items() if key not in PROTECTED_FIELDS}


class RecordStore(ABC):
    """Abstract record store with in-process change notifications."""

    storage_type = "abstract"

    def __init__(self, owner_id: Optional[str] = None):
        self.owner_id = owner_id or None
        self._subscribers: List[RecordsCallback] = []

    def require_owner(self) -> str:
        """Return the owner id or raise AuthError."""
        if not self.owner_id:
            raise AuthError()
        return self.owner_id

    @abstractmethod
    async def list(self) -> List[ExperimentRecord]:
        """Return all records, newest first."""

    @abstractmethod
    async def create(self, draft: RecordDraft) -> ExperimentRecord:
        """Insert a new record owned by the current user."""

    @abstractmethod
    async def update(self, record_id: str, fields: Dict[str, Any]) -> ExperimentRecord:
        """Replace the given top-level fields of a record."""

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Remove a record permanently."""

    def subscribe(self, callback: RecordsCallback) -> Unsubscribe:
        """
        Register a callback receiving the full record list after each change.

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def notify_subscribers(self) -> None:
        """Re-list and deliver the result to every subscriber."""
        if not self._subscribers:
            return
        try:
            records = await self.list()
        except Exception as e:
            logger.error(f"Error listing records for change notification: {str(e)}")
            return
        await self.deliver(records)

    async def deliver(self, records: List[ExperimentRecord]) -> None:
        """Hand a record list to every subscriber, isolating their failures."""
        for callback in list(self._subscribers):
            try:
                result = callback(list(records))
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Records subscriber failed: {str(e)}")

    def close(self) -> None:
        """Release resources held by the store."""
        self._subscribers.clear()
