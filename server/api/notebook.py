"""
FastAPI endpoints for the circuit lab notebook.

This module exposes the notebook controller over REST, plus a WebSocket that
pushes the full notebook state to every connected client whenever records or
the error banner change.
"""

import logging
from typing import Any, Dict, List, Set

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from pydantic import BaseModel, Field

from notebook import (
    CAPACITOR_NAMES,
    TRANSISTOR_NAMES,
    VOLTAGE_NAMES,
    NotebookController,
    NotebookState,
    RecordPatch,
)

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/api/notebook", tags=["notebook"])


class ParameterNamesResponse(BaseModel):
    """Response model for the configured parameter names."""
    transistors: List[str] = Field(..., description="Transistor names, each with W and L")
    capacitors: List[str] = Field(..., description="Capacitor names")
    voltages: List[str] = Field(..., description="Voltage names (mV)")


class StateBroadcaster:
    """Sends notebook state to every open WebSocket."""

    def __init__(self):
        self.connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.add(websocket)
        logger.info(f"WebSocket connected ({len(self.connections)} open)")

    def disconnect(self, websocket: WebSocket) -> None:
        self.connections.discard(websocket)
        logger.info(f"WebSocket disconnected ({len(self.connections)} open)")

    async def broadcast(self, state: NotebookState) -> None:
        message = {"type": "state", "data": state.model_dump(mode="json")}
        for websocket in list(self.connections):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping WebSocket after send failure: {str(e)}")
                self.disconnect(websocket)


def get_controller(request: Request) -> NotebookController:
    """Dependency returning the app's notebook controller."""
    return request.app.state.controller


# API Endpoints
@router.get("/records", response_model=NotebookState)
async def list_records(controller: NotebookController = Depends(get_controller)):
    """Current records, newest first, with the error banner and undo count."""
    return controller.state()


@router.post("/records", response_model=NotebookState)
async def create_record(controller: NotebookController = Depends(get_controller)):
    """
    Create a blank record.

    The record is numbered after the current maximum and inherits the
    experimenter of the newest record.
    """
    await controller.create()
    return controller.state()


@router.post("/records/{record_id}/duplicate", response_model=NotebookState)
async def duplicate_record(record_id: str, controller: NotebookController = Depends(get_controller)):
    """Create a new record with the content of an existing one."""
    await controller.duplicate(record_id)
    return controller.state()


@router.patch("/records/{record_id}", response_model=NotebookState)
async def update_record(
    record_id: str,
    patch: RecordPatch,
    controller: NotebookController = Depends(get_controller)
):
    """
    Apply field edits to a record.

    Only the keys present in the body change; parameter maps are replaced
    whole.
    """
    await controller.update(record_id, patch.to_fields())
    return controller.state()


@router.delete("/records/{record_id}", response_model=NotebookState)
async def delete_record(record_id: str, controller: NotebookController = Depends(get_controller)):
    """Delete a record, keeping its content for undo."""
    await controller.delete(record_id)
    return controller.state()


@router.post("/undo", response_model=NotebookState)
async def undo_delete(controller: NotebookController = Depends(get_controller)):
    """Restore the most recently deleted record as a new record."""
    await controller.undo_delete()
    return controller.state()


@router.post("/reload", response_model=NotebookState)
async def reload_records(controller: NotebookController = Depends(get_controller)):
    """Reload every record from the store."""
    await controller.load()
    return controller.state()


@router.delete("/error", response_model=NotebookState)
async def dismiss_error(controller: NotebookController = Depends(get_controller)):
    """Clear the error banner."""
    await controller.dismiss_error()
    return controller.state()


@router.get("/export")
async def export_records(controller: NotebookController = Depends(get_controller)):
    """Download every displayed record as a JSON file."""
    document = controller.export()
    logger.info(f"Exported {document.record_count} records as {document.filename}")
    return Response(
        content=document.to_json(),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'}
    )


@router.get("/names", response_model=ParameterNamesResponse)
async def parameter_names():
    """Names of the transistors, capacitors and voltages a record can hold."""
    return ParameterNamesResponse(
        transistors=TRANSISTOR_NAMES,
        capacitors=CAPACITOR_NAMES,
        voltages=VOLTAGE_NAMES
    )


@router.get("/stats")
async def storage_stats(controller: NotebookController = Depends(get_controller)) -> Dict[str, Any]:
    """Statistics about the active record store."""
    stats = {"storage_type": controller.store.storage_type}
    get_stats = getattr(controller.store, "get_storage_stats", None)
    if get_stats is not None:
        stats.update(get_stats())
    stats["displayed_records"] = len(controller.records)
    stats["undo_available"] = len(controller.deleted)
    return stats


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket streaming notebook state.

    Sends the current state on connect and after every change; answers
    ``{"type": "ping"}`` with ``{"type": "pong"}``.
    """
    broadcaster: StateBroadcaster = websocket.app.state.broadcaster
    controller: NotebookController = websocket.app.state.controller

    await broadcaster.connect(websocket)
    try:
        await websocket.send_json({"type": "state", "data": controller.state().model_dump(mode="json")})

        while True:
            data = await websocket.receive_json()
            if data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
            else:
                await websocket.send_json({
                    "type": "error",
                    "data": {"message": f"Unknown message type: {data.get('type')}"}
                })
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {str(e)}")
    finally:
        broadcaster.disconnect(websocket)
