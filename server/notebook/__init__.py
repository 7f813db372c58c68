"""
Circuit lab notebook.

Experiment records, their stores and the controller that keeps the
displayed records in sync with the active store.
"""

from .backup import LocalBackup
from .controller import NotebookController, NotebookState
from .errors import AuthError, BackupError, NotebookError, RecordNotFoundError, StoreError
from .export import ExportDocument, build_export
from .models import (
    CAPACITOR_NAMES,
    TRANSISTOR_NAMES,
    VOLTAGE_NAMES,
    ExperimentRecord,
    RecordDraft,
    RecordPatch,
    TransistorGeometry,
)

__all__ = [
    "LocalBackup",
    "NotebookController",
    "NotebookState",
    "AuthError",
    "BackupError",
    "NotebookError",
    "RecordNotFoundError",
    "StoreError",
    "ExportDocument",
    "build_export",
    "CAPACITOR_NAMES",
    "TRANSISTOR_NAMES",
    "VOLTAGE_NAMES",
    "ExperimentRecord",
    "RecordDraft",
    "RecordPatch",
    "TransistorGeometry",
]
