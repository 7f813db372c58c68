"""
SQLAlchemy record store.

Persists records to the ``experiment_records`` table and notifies in-process
subscribers after each committed change.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from database import ExperimentRecordRow, create_session_factory, create_tables, get_session, check_db_connection

from ..errors import RecordNotFoundError, StoreError
from ..models import ExperimentRecord, RecordDraft
from .base import RecordStore, allocate_sequence_number, writable_fields

logger = logging.getLogger(__name__)


def row_to_record(row: ExperimentRecordRow) -> ExperimentRecord:
    """Convert a table row to a record model."""
    return ExperimentRecord(
        id=row.id,
        user_id=row.user_id,
        sequence_number=row.sequence_number,
        timestamp=row.timestamp,
        experimenter=row.experimenter or "",
        transistors=row.transistors or {},
        capacitors=row.capacitors or {},
        voltages=row.voltages or {},
        waveform_image=row.waveform_image,
        observations=row.observations or "",
        created_at=row.created_at,
        updated_at=row.updated_at
    )


class SqlRecordStore(RecordStore):
    """Record store on a relational database."""

    storage_type = "database"

    def __init__(self, engine: Engine, owner_id: Optional[str] = None, create_schema: bool = True):
        super().__init__(owner_id=owner_id)
        self.engine = engine
        self.session_factory = create_session_factory(engine)
        if create_schema:
            create_tables(engine)

    async def list(self) -> List[ExperimentRecord]:
        try:
            with get_session(self.session_factory) as session:
                rows = (
                    session.query(ExperimentRecordRow)
                    .order_by(ExperimentRecordRow.created_at.desc(), ExperimentRecordRow.sequence_number.desc())
                    .all()
                )
                return [row_to_record(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Database error listing records: {str(e)}")
            raise StoreError(f"Database error: {str(e)}")
        except ValueError as e:
            logger.error(f"Malformed record row: {str(e)}")
            raise StoreError(f"Malformed record row: {str(e)}")

    async def create(self, draft: RecordDraft) -> ExperimentRecord:
        owner_id = self.require_owner()
        try:
            with get_session(self.session_factory) as session:
                # Allocate inside the insert transaction
                stored_max = session.query(func.max(ExperimentRecordRow.sequence_number)).scalar()
                data = draft.model_dump()
                data['sequence_number'] = allocate_sequence_number(draft.sequence_number, stored_max)

                row = ExperimentRecordRow(user_id=owner_id, **data)
                session.add(row)
                session.flush()
                session.refresh(row)
                record = row_to_record(row)
        except SQLAlchemyError as e:
            logger.error(f"Database error creating record: {str(e)}")
            raise StoreError(f"Database error: {str(e)}")
        except ValueError as e:
            logger.error(f"Malformed record data: {str(e)}")
            raise StoreError(f"Malformed record data: {str(e)}")

        logger.info(f"Created record {record.id} (sequence {record.sequence_number})")
        await self.notify_subscribers()
        return record

    async def update(self, record_id: str, fields: Dict[str, Any]) -> ExperimentRecord:
        try:
            with get_session(self.session_factory) as session:
                row = session.query(ExperimentRecordRow).filter(ExperimentRecordRow.id == record_id).first()
                if row is None:
                    raise RecordNotFoundError(record_id)

                # Validate through the model so nested maps are plain JSON
                changes = writable_fields(fields)
                merged = row_to_record(row).merged(changes).model_dump()
                for key in changes:
                    setattr(row, key, merged[key])
                row.updated_at = datetime.now()
                session.flush()
                record = row_to_record(row)
        except SQLAlchemyError as e:
            logger.error(f"Database error updating record {record_id}: {str(e)}")
            raise StoreError(f"Database error: {str(e)}", record_id=record_id)
        except ValueError as e:
            logger.error(f"Malformed data for record {record_id}: {str(e)}")
            raise StoreError(f"Malformed record data: {str(e)}", record_id=record_id)

        logger.info(f"Updated record {record_id}")
        await self.notify_subscribers()
        return record

    async def delete(self, record_id: str) -> None:
        try:
            with get_session(self.session_factory) as session:
                row = session.query(ExperimentRecordRow).filter(ExperimentRecordRow.id == record_id).first()
                if row is None:
                    raise RecordNotFoundError(record_id)
                session.delete(row)
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting record {record_id}: {str(e)}")
            raise StoreError(f"Database error: {str(e)}", record_id=record_id)

        logger.info(f"Deleted record {record_id}")
        await self.notify_subscribers()

    def get_storage_stats(self) -> Dict[str, Any]:
        """Row count and connection health."""
        healthy = check_db_connection(self.session_factory)
        count = 0
        if healthy:
            with get_session(self.session_factory) as session:
                count = session.query(ExperimentRecordRow).count()
        return {
            "storage_type": self.storage_type,
            "records_count": count,
            "connection_status": "healthy" if healthy else "unhealthy",
            "database_type": self.engine.dialect.name,
        }

    def close(self) -> None:
        super().close()
        self.engine.dispose()
