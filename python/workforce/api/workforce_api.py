"""
Workforce — FastAPI application entry point.

Provides the REST surface over the registry:
- /health — service health status
- /api/departments — departments and their stats
- /api/members — registration, status changes, stats and probe health
- /api/tasks — creation, status transitions and reassignment
- /api/requests — free-text requests turned into tasks
- /api/status, /api/scaling — coordinator and auto-scaler summaries
- /api/events/{kind} — registry events as Server-Sent Events
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from workforce.di_container import get_container, shutdown_container
from workforce.events import Subscription
from workforce.exceptions import WorkforceError
from workforce.models import (
    Member,
    MemberRole,
    MemberStatus,
    Priority,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

PING_INTERVAL = 30.0


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class MemberCreateRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str
    role: MemberRole
    department_id: str
    specializations: List[str] = Field(default_factory=list)
    max_concurrent: int = Field(default=3, ge=1)
    endpoint: str = ""
    auth_method: str = ""
    capabilities: Dict[str, bool] = Field(default_factory=dict)
    metadata: Dict[str, str] = Field(default_factory=dict)


class MemberStatusRequest(BaseModel):
    status: MemberStatus


class TaskCreateRequest(BaseModel):
    id: str = ""
    title: str
    description: str = ""
    type: str = ""
    priority: Priority = Priority.MEDIUM
    department_id: str = ""
    assigned_role: Optional[MemberRole] = None
    requested_by: str = ""
    required_skills: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    estimated_hours: float = Field(default=0.0, ge=0.0)
    metadata: Dict[str, str] = Field(default_factory=dict)


class TaskStatusRequest(BaseModel):
    status: TaskStatus
    results: Dict[str, Any] = Field(default_factory=dict)


class ReassignRequest(BaseModel):
    reason: str = ""


class SubmitRequest(BaseModel):
    prompt: str = Field(min_length=1)
    requested_by: str = "user"


# ---------------------------------------------------------------------------
# Application lifecycle
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI):
    logger.info("Workforce API starting up")
    container = get_container()
    await container.startup()
    yield
    await container.shutdown()
    shutdown_container()
    logger.info("Workforce API shutting down")


app = FastAPI(
    title="Workforce",
    version="0.1.0",
    description="Task routing and auto-scaling engine",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkforceError)
async def workforce_error_handler(request: Request, exc: WorkforceError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("Request failed: path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})


# ---------------------------------------------------------------------------
# Health & summaries
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    container = get_container()
    manager = container.manager
    return {
        "status": "healthy",
        "running": manager.is_running,
        "departments": len(manager.list_departments()),
        "members": len(manager.list_members()),
        "services": container.status(),
    }


@app.get("/api/status")
async def department_status():
    return get_container().coordinator.get_department_status()


@app.get("/api/scaling")
async def scaling_status():
    return get_container().manager.auto_scaler.get_scaling_status()


# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------


@app.get("/api/departments")
async def list_departments():
    return [d.to_dict() for d in get_container().manager.list_departments()]


@app.get("/api/departments/{department_id}")
async def get_department(department_id: str):
    return get_container().manager.get_department(department_id).to_dict()


@app.get("/api/departments/{department_id}/stats")
async def get_department_stats(department_id: str):
    return get_container().manager.get_department_stats(department_id).to_dict()


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@app.get("/api/members")
async def list_members(department_id: Optional[str] = None):
    return [m.to_dict() for m in get_container().manager.list_members(department_id)]


@app.post("/api/members", status_code=201)
async def register_member(req: MemberCreateRequest):
    member = get_container().manager.register_member(Member(**req.model_dump()))
    return member.to_dict()


@app.get("/api/members/{member_id}")
async def get_member(member_id: str):
    return get_container().manager.get_member(member_id).to_dict()


@app.delete("/api/members/{member_id}", status_code=204)
async def unregister_member(member_id: str):
    get_container().manager.unregister_member(member_id)


@app.put("/api/members/{member_id}/status")
async def update_member_status(member_id: str, req: MemberStatusRequest):
    return get_container().manager.update_member_status(member_id, req.status).to_dict()


@app.get("/api/members/{member_id}/stats")
async def get_member_stats(member_id: str):
    return get_container().manager.get_member_stats(member_id).to_dict()


@app.get("/api/members/{member_id}/health")
async def get_member_health(member_id: str):
    return get_container().manager.health_checker.get_member_health(member_id).to_dict()


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@app.get("/api/tasks")
async def list_tasks(department_id: Optional[str] = None, status: Optional[TaskStatus] = None):
    return [t.to_dict() for t in get_container().manager.list_tasks(department_id, status)]


@app.post("/api/tasks", status_code=201)
async def create_task(req: TaskCreateRequest):
    task = get_container().manager.create_task(Task(**req.model_dump()))
    return task.to_dict()


@app.post("/api/requests", status_code=201)
async def submit_request(req: SubmitRequest):
    task = get_container().coordinator.submit_request(req.prompt, req.requested_by)
    return task.to_dict()


@app.get("/api/tasks/{task_id}")
async def get_task(task_id: str):
    return get_container().manager.get_task(task_id).to_dict()


@app.put("/api/tasks/{task_id}/status")
async def update_task_status(task_id: str, req: TaskStatusRequest):
    task = get_container().manager.update_task_status(task_id, req.status, req.results or None)
    return task.to_dict()


@app.post("/api/tasks/{task_id}/reassign")
async def reassign_task(task_id: str, req: ReassignRequest):
    return get_container().manager.reassign_task(task_id, req.reason).to_dict()


# ---------------------------------------------------------------------------
# Event streams
# ---------------------------------------------------------------------------


async def event_stream(subscription: Subscription, kind: str, ping_interval: float = PING_INTERVAL):
    """SSE frames for one subscription; pings keep idle connections open."""
    try:
        while True:
            try:
                event = await subscription.get(timeout=ping_interval)
            except asyncio.TimeoutError:
                yield {"event": "ping", "data": ""}
                continue
            if event is None:
                break
            yield {
                "event": f"{kind}.{event.type.value}",
                "data": json.dumps(event.payload.to_dict()),
            }
    finally:
        subscription.close()


@app.get("/api/events/{kind}")
async def stream_events(kind: str):
    """Stream department, member or task events as Server-Sent Events."""
    manager = get_container().manager
    subscribers = {
        "department": manager.subscribe_department_events,
        "member": manager.subscribe_member_events,
        "task": manager.subscribe_task_events,
    }
    subscribe = subscribers.get(kind)
    if subscribe is None:
        raise HTTPException(status_code=404, detail=f"Unknown event kind: {kind}")
    return EventSourceResponse(event_stream(subscribe(), kind))
