"""
Document translation for experiment records.

Records are persisted in two shapes: the snake_case shape used by the
database stores and the local backup, and the legacy camelCase shape used by
the local-only notebook file. This module converts both to and from
ExperimentRecord objects, defaulting any field the source document lacks.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .models import ExperimentRecord

logger = logging.getLogger(__name__)

# legacy key -> canonical key
LEGACY_KEYS = {
    "sequenceNumber": "sequence_number",
    "waveformImage": "waveform_image",
    "userId": "user_id",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}


def datetime_to_iso_string(dt: Optional[datetime]) -> Optional[str]:
    """Convert datetime to ISO string format, passing None through."""
    if dt is None:
        return None
    return dt.isoformat()


def iso_string_to_datetime(iso_string: Optional[str]) -> Optional[datetime]:
    """Convert ISO string to datetime object.

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object, or None for an empty value
    """
    if not iso_string:
        return None
    if isinstance(iso_string, datetime):
        return iso_string
    # Handle various ISO formats
    if iso_string.endswith('Z'):
        iso_string = iso_string[:-1] + '+00:00'
    return datetime.fromisoformat(iso_string)


def generate_record_id() -> str:
    """Short random id in the style of the local-only notebook."""
    return uuid.uuid4().hex[:8]


def record_to_document(record: ExperimentRecord) -> Dict[str, Any]:
    """Serialize a record to a JSON-compatible snake_case dictionary."""
    document = record.model_dump()
    document['created_at'] = datetime_to_iso_string(record.created_at)
    document['updated_at'] = datetime_to_iso_string(record.updated_at)
    return document


def record_to_legacy_document(record: ExperimentRecord) -> Dict[str, Any]:
    """Serialize a record to the camelCase shape of the local-only notebook."""
    document = record_to_document(record)
    for legacy_key, key in LEGACY_KEYS.items():
        document[legacy_key] = document.pop(key)
    return document


def _first(document: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = document.get(key)
        if value is not None:
            return value
    return None


def record_from_document(document: Dict[str, Any], default_sequence: int = 0) -> ExperimentRecord:
    """Build a record from either persisted shape.

    Args:
        document: snake_case or camelCase record dictionary
        default_sequence: sequence number used when the document has none

    Returns:
        ExperimentRecord with absent fields defaulted

    Raises:
        ValueError: If the document is not a mapping or fails validation
    """
    if not isinstance(document, dict):
        raise ValueError(f"Record document must be an object, got {type(document).__name__}")

    sequence_number = _first(document, "sequence_number", "sequenceNumber")
    created_at = iso_string_to_datetime(_first(document, "created_at", "createdAt"))
    timestamp = document.get("timestamp")
    if timestamp is None:
        timestamp = int(created_at.timestamp() * 1000) if created_at else 0

    return ExperimentRecord.model_validate({
        "id": str(document.get("id") or generate_record_id()),
        "user_id": _first(document, "user_id", "userId") or "",
        "sequence_number": default_sequence if sequence_number is None else sequence_number,
        "timestamp": timestamp,
        "experimenter": document.get("experimenter") or "",
        "transistors": document.get("transistors") or {},
        "capacitors": document.get("capacitors") or {},
        "voltages": document.get("voltages") or {},
        "waveform_image": _first(document, "waveform_image", "waveformImage") or None,
        "observations": document.get("observations") or "",
        "created_at": created_at,
        "updated_at": iso_string_to_datetime(_first(document, "updated_at", "updatedAt")),
    })


def needs_migration(document: Dict[str, Any]) -> bool:
    """True when loading ``document`` has to invent its id or sequence number."""
    return not document.get("id") or _first(document, "sequence_number", "sequenceNumber") is None


def records_from_documents(documents: Iterable[Dict[str, Any]], legacy: bool = False) -> List[ExperimentRecord]:
    """Translate a display-ordered list of documents into records.

    Legacy documents lacking a sequence number are numbered
    ``total - index`` so display order stays strictly descending; other
    documents default to 0.
    """
    documents = list(documents)
    total = len(documents)
    records = []
    for index, document in enumerate(documents):
        default_sequence = total - index if legacy else 0
        records.append(record_from_document(document, default_sequence=default_sequence))
    return records


def records_to_json(records: Iterable[ExperimentRecord], legacy: bool = False) -> str:
    """Serialize records to indented JSON text."""
    convert = record_to_legacy_document if legacy else record_to_document
    return json.dumps([convert(record) for record in records], indent=2)


def records_from_json(text: str, legacy: bool = False) -> List[ExperimentRecord]:
    """Parse JSON text produced by ``records_to_json`` or an older notebook.

    Raises:
        ValueError: If the text is not a JSON array of record objects
    """
    data = json.loads(text)
    if not isinstance(data, list):
        raise ValueError("Expected a JSON array of records")
    return records_from_documents(data, legacy=legacy)
