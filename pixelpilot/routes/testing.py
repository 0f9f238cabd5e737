from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from pixelpilot.routes.errors import to_http
from pixelpilot.schemas import RunPayload
from pixelpilot.services.errors import PixelPilotError
from pixelpilot.services.orchestrator import RunOrchestrator, get_orchestrator
from pixelpilot.services.pipeline import RunPipeline, get_pipeline
from pixelpilot.services.progress import ProgressChannel, Subscription, get_progress_channel

LOGGER = logging.getLogger("pixelpilot.routes.testing")

router = APIRouter(tags=["testing"])

PipelineDep = Depends(get_pipeline)
OrchestratorDep = Depends(get_orchestrator)
ChannelDep = Depends(get_progress_channel)


@router.post("/api/projects/{project_id}/test")
async def run_tests(
    project_id: str,
    payload: Optional[RunPayload] = None,
    pipeline: RunPipeline = PipelineDep,
) -> Dict[str, Any]:
    filter_labels = payload.filter if payload else None
    try:
        report = await run_in_threadpool(pipeline.run_tests, project_id, filter_labels)
    except (PixelPilotError, ValueError) as exc:
        raise to_http(exc) from exc
    return report.model_dump(by_alias=True, mode="json")


@router.post("/api/projects/{project_id}/approve")
async def approve(
    project_id: str,
    payload: Optional[RunPayload] = None,
    pipeline: RunPipeline = PipelineDep,
) -> Dict[str, Any]:
    filter_labels = payload.filter if payload else None
    try:
        return await run_in_threadpool(pipeline.approve, project_id, filter_labels)
    except (PixelPilotError, ValueError) as exc:
        raise to_http(exc) from exc


@router.get("/api/projects/{project_id}/test-results")
async def test_results(project_id: str, pipeline: RunPipeline = PipelineDep) -> Dict[str, Any]:
    try:
        report = pipeline.latest_report(project_id)
    except PixelPilotError as exc:
        raise to_http(exc) from exc
    if report is None:
        raise HTTPException(status_code=404, detail="No test results found")
    body = report.model_dump(by_alias=True, mode="json")
    body.update(report.summary())
    return body


@router.post("/api/projects/{project_id}/terminate")
async def terminate(project_id: str, orchestrator: RunOrchestrator = OrchestratorDep) -> Dict[str, Any]:
    if not orchestrator.terminate(project_id):
        raise HTTPException(status_code=404, detail="No active engine process for this project")
    return {"terminated": True, "projectId": project_id}


async def _pump(websocket: WebSocket, subscription: Subscription) -> None:
    while True:
        event = await run_in_threadpool(subscription.get, 0.5)
        if event is not None:
            await websocket.send_json(event.as_message())


@router.websocket("/ws/progress")
async def progress_socket(websocket: WebSocket, channel: ProgressChannel = ChannelDep) -> None:
    subscription = channel.subscribe()
    await websocket.accept()
    pump = asyncio.create_task(_pump(websocket, subscription))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        LOGGER.debug("Progress client disconnected")
    finally:
        pump.cancel()
        channel.unsubscribe(subscription)
        try:
            await pump
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            LOGGER.debug("Progress pump stopped: %s", exc)
