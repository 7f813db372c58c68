"""
Pytest configuration and fixtures for notebook tests.

Controller and store coroutines are driven with ``asyncio.run`` inside
ordinary test functions.
"""

import pytest
from typing import Any, Dict, List, Set

from ..controller import NotebookController
from ..errors import StoreError
from ..models import ExperimentRecord, RecordDraft, TransistorGeometry
from ..stores.memory_store import MemoryRecordStore


OWNER_ID = "lab-user"


class FlakyStore(MemoryRecordStore):
    """Memory store whose operations can be made to fail on demand."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_on: Set[str] = set()
        self.calls: List[str] = []

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise StoreError("Store unreachable")

    async def list(self) -> List[ExperimentRecord]:
        self._maybe_fail("list")
        return await super().list()

    async def create(self, draft: RecordDraft) -> ExperimentRecord:
        self._maybe_fail("create")
        return await super().create(draft)

    async def update(self, record_id: str, fields: Dict[str, Any]) -> ExperimentRecord:
        self._maybe_fail("update")
        return await super().update(record_id, fields)

    async def delete(self, record_id: str) -> None:
        self._maybe_fail("delete")
        return await super().delete(record_id)


@pytest.fixture
def store() -> FlakyStore:
    """Empty store with an authenticated owner."""
    return FlakyStore(owner_id=OWNER_ID)


@pytest.fixture
def controller(store) -> NotebookController:
    """Controller over the flaky store, not yet started."""
    return NotebookController(store)


@pytest.fixture
def populated_content() -> Dict[str, Any]:
    """Content fields of a fully filled-in record."""
    return {
        'experimenter': 'Ada',
        'transistors': {
            'M_r': TransistorGeometry(W='2u', L='180n'),
            'M_dp': TransistorGeometry(W='1u', L='360n'),
        },
        'capacitors': {'C1': '100f', 'C3': '1p'},
        'voltages': {'V_diff': '150', 'V_refr': '400'},
        'waveform_image': 'data:image/png;base64,iVBORw0KGgo=',
        'observations': 'Ringing on the falling edge',
    }


@pytest.fixture
def legacy_documents() -> List[Dict[str, Any]]:
    """Entries as written by the local-only notebook, newest first."""
    return [
        {
            'id': 'a1b2c3d4',
            'timestamp': 1700000300000,
            'transistors': {'M_r': {'W': '2u', 'L': '180n'}},
            'capacitors': {'C1': '100f'},
            'waveformImage': None,
            'observations': 'third',
        },
        {
            'id': 'e5f6a7b8',
            'timestamp': 1700000200000,
            'experimenter': 'Ada',
            'transistors': {},
            'capacitors': {},
            'voltages': {'V_don': '300'},
            'waveformImage': 'data:image/png;base64,AAAA',
            'observations': 'second',
        },
        {
            'id': 'c9d0e1f2',
            'timestamp': 1700000100000,
            'transistors': {},
            'capacitors': {},
            'waveformImage': None,
            'observations': 'first',
        },
    ]
