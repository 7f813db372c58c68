"""
JSON export of the notebook.
"""

import json
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import ExperimentRecord
from .serialization import record_to_document


def iso_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a trailing Z."""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%S.') + f"{moment.microsecond // 1000:03d}Z"


class ExportDocument(BaseModel):
    """A timestamped snapshot of every record, ready to download."""
    exported_at: str
    filename: str
    record_count: int
    records: List[ExperimentRecord] = Field(default_factory=list)

    def to_json(self) -> str:
        """Indented JSON of the export body."""
        return json.dumps({
            "exported_at": self.exported_at,
            "record_count": self.record_count,
            "records": [record_to_document(record) for record in self.records],
        }, indent=2)


def build_export(records: List[ExperimentRecord], now: Optional[datetime] = None) -> ExportDocument:
    """Snapshot ``records`` without touching them."""
    stamp = iso_timestamp(now or datetime.now(timezone.utc))
    return ExportDocument(
        exported_at=stamp,
        filename=f"experiment_records_{stamp}.json",
        record_count=len(records),
        records=[record.model_copy(deep=True) for record in records],
    )
