"""
Data models for the circuit lab notebook.

This module defines the Pydantic models for experiment records and the fixed
parameter name sets a record's maps are drawn from.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


TRANSISTOR_NAMES = [
    "M_r", "M_dp", "M_dn", "M_ONp", "M_ONn", "M_OFFp", "M_OFFn",
    "M_R1a", "M_R2a", "M_R3a",
    "M_invp", "M_invn",
    "M_R1b", "M_R2b", "M_R3b",
    "M_ref", "M_RA", "M_CA"
]

CAPACITOR_NAMES = ["C1", "C2", "C3"]

VOLTAGE_NAMES = ["V_diff", "V_don", "V_doff", "V_refr"]

# Fields copied verbatim by duplicate and undo
CONTENT_FIELDS = (
    "experimenter",
    "transistors",
    "capacitors",
    "voltages",
    "waveform_image",
    "observations",
)

# Identity and bookkeeping owned by the store, never submitted in a patch
PROTECTED_FIELDS = ("id", "user_id", "created_at", "updated_at", "timestamp")


def now_millis() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class TransistorGeometry(BaseModel):
    """Width and length of one transistor, as typed by the experimenter."""
    W: str = ""
    L: str = ""


class RecordDraft(BaseModel):
    """Content submitted to a store when creating a record."""
    sequence_number: int = 0
    timestamp: int = Field(default_factory=now_millis)
    experimenter: str = ""
    transistors: Dict[str, TransistorGeometry] = Field(default_factory=dict)
    capacitors: Dict[str, str] = Field(default_factory=dict)
    voltages: Dict[str, str] = Field(default_factory=dict)
    waveform_image: Optional[str] = None
    observations: str = ""


class ExperimentRecord(RecordDraft):
    """A stored experiment record."""
    id: str
    user_id: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def content(self) -> Dict[str, Any]:
        """Deep copy of the content fields."""
        return self.model_dump(include=set(CONTENT_FIELDS))

    def to_draft(self, sequence_number: int, timestamp: Optional[int] = None) -> RecordDraft:
        """Build a draft with this record's content and fresh numbering."""
        return RecordDraft(
            sequence_number=sequence_number,
            timestamp=timestamp if timestamp is not None else now_millis(),
            **self.content()
        )

    def merged(self, patch: Dict[str, Any]) -> "ExperimentRecord":
        """Return a copy with top-level keys of ``patch`` replaced."""
        data = self.model_dump()
        data.update(patch)
        return ExperimentRecord.model_validate(data)


def _check_names(values: Optional[Dict[str, Any]], allowed: List[str], kind: str):
    if values is None:
        return values
    unknown = sorted(set(values) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown {kind} name(s): {', '.join(unknown)}")
    return values


class RecordPatch(BaseModel):
    """Field edits accepted from clients. Maps are replaced whole."""
    experimenter: Optional[str] = None
    transistors: Optional[Dict[str, TransistorGeometry]] = None
    capacitors: Optional[Dict[str, str]] = None
    voltages: Optional[Dict[str, str]] = None
    waveform_image: Optional[str] = None
    observations: Optional[str] = None

    model_config = {"extra": "forbid"}

    @field_validator('transistors')
    def validate_transistor_names(cls, v):
        """Restrict transistor keys to the configured names."""
        return _check_names(v, TRANSISTOR_NAMES, "transistor")

    @field_validator('capacitors')
    def validate_capacitor_names(cls, v):
        """Restrict capacitor keys to the configured names."""
        return _check_names(v, CAPACITOR_NAMES, "capacitor")

    @field_validator('voltages')
    def validate_voltage_names(cls, v):
        """Restrict voltage keys to the configured names."""
        return _check_names(v, VOLTAGE_NAMES, "voltage")

    def to_fields(self) -> Dict[str, Any]:
        """Only the keys the client actually sent."""
        return self.model_dump(exclude_unset=True)
