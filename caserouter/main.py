"""REST API for the work-item routing and escalation core."""

import asyncio
import logging
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from caserouter.config import (
    NOTIFICATION_DISPATCH_INTERVAL,
    NOTIFICATION_DISPATCH_LIMIT,
    REDIS_URL,
    SEED_MOCK_AGENTS,
    STORE_BACKEND,
    WEBHOOK_URL,
)
from caserouter.core import RoutingCore, build_core, seed_mock_agents
from caserouter.errors import DependencyFailure, ItemNotFound, ValidationFailure
from caserouter.models import (
    Agent,
    AssignmentRecord,
    EscalationOutcome,
    EscalationRecord,
    EscalationRunSummary,
    EscalationStatus,
    FailureRecord,
    LifecycleResult,
    WorkItem,
)
from caserouter.notifications import Notifier, run_dispatch_loop

logger = logging.getLogger(__name__)

_core: RoutingCore | None = None
_arq_pool = None
_dispatch_task: asyncio.Task | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _core, _arq_pool, _dispatch_task
    _core = build_core(STORE_BACKEND)
    if SEED_MOCK_AGENTS:
        try:
            seed_mock_agents(_core.store)
        except DependencyFailure as e:
            logger.warning("Could not seed mock agents (Redis down?): %s", e)
    _arq_pool = None
    _dispatch_task = None
    if STORE_BACKEND == "redis":
        try:
            from arq import create_pool
            from arq.connections import RedisSettings
            _arq_pool = await create_pool(RedisSettings.from_dsn(REDIS_URL))
        except Exception as e:
            logger.warning("Redis/ARQ pool unavailable: %s. POST /escalations/run will return 503.", e)
    else:
        # The worker only sees Redis; an in-memory core runs its escalations via /escalations/run-now
        # and drains its own outbox here.
        logger.info("Store backend %s: notifications dispatched in-process, worker pool disabled.", STORE_BACKEND)
        notifier = Notifier(_core.outbox, webhook_url=WEBHOOK_URL)
        _dispatch_task = asyncio.create_task(
            run_dispatch_loop(notifier, NOTIFICATION_DISPATCH_INTERVAL, NOTIFICATION_DISPATCH_LIMIT)
        )
    try:
        yield
    finally:
        if _dispatch_task is not None:
            _dispatch_task.cancel()
            try:
                await _dispatch_task
            except asyncio.CancelledError:
                pass
            _dispatch_task = None
        if _arq_pool is not None:
            await _arq_pool.close()
            _arq_pool = None


app = FastAPI(
    title="Work Item Routing & Escalation",
    description="Skill/workload-aware assignment, SLA targets and tiered escalation.",
    version="0.1.0",
    lifespan=lifespan,
)


def get_core() -> RoutingCore:
    if _core is None:
        raise HTTPException(status_code=503, detail="Core not initialised")
    return _core


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation failed",
            "errors": [{"item_id": e.item_id, "field": e.field, "message": e.message} for e in exc.errors],
        },
    )


@app.exception_handler(ItemNotFound)
async def item_not_found_handler(request: Request, exc: ItemNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(DependencyFailure)
async def dependency_failure_handler(request: Request, exc: DependencyFailure) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc), "component": exc.component})


# --- Work items ---


@app.post("/items", status_code=201, response_model=LifecycleResult)
def create_items(payloads: list[WorkItem], core: RoutingCore = Depends(get_core)) -> LifecycleResult:
    """Create a batch of work items: defaults, SLA targets, validation, then routing of queued items."""
    return core.on_item_created(payloads)


@app.post("/items/updates", response_model=LifecycleResult)
def update_items(payloads: list[WorkItem], core: RoutingCore = Depends(get_core)) -> LifecycleResult:
    """Apply a batch of updated items; previous states are read from the store."""
    previous = core.store.get_items(p.id for p in payloads)
    return core.on_item_updated(payloads, previous)


@app.get("/items/{item_id}", response_model=WorkItem)
def get_item(item_id: str, core: RoutingCore = Depends(get_core)) -> WorkItem:
    item = core.store.get_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Item not found")
    return item


class EscalationRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Why the item is being escalated")
    actor: str = Field(default="api", description="Who requested the escalation")


@app.post("/items/{item_id}/escalate", response_model=EscalationOutcome)
def escalate_item(
    item_id: str,
    payload: EscalationRequest,
    core: RoutingCore = Depends(get_core),
) -> EscalationOutcome:
    """Escalate one item to the next tier now, outside the scheduled run."""
    outcome = core.escalate_manually(item_id, payload.reason, actor=payload.actor)
    if outcome.status == EscalationStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Item not found")
    if outcome.status == EscalationStatus.FAILED:
        raise HTTPException(status_code=503, detail="Escalation could not be persisted")
    return outcome


# --- Escalation runs ---


class EscalationRunAccepted(BaseModel):
    job_id: str
    message: str = Field(default="Accepted for processing")


@app.post("/escalations/run", status_code=202, response_model=EscalationRunAccepted)
async def enqueue_escalation_run() -> EscalationRunAccepted:
    """Enqueue an escalation pass on the worker and return 202 immediately (redis backend only)."""
    pool = _arq_pool
    if STORE_BACKEND != "redis":
        raise HTTPException(status_code=503, detail="Worker runs need STORE_BACKEND=redis; use /escalations/run-now")
    if pool is None:
        raise HTTPException(status_code=503, detail="Worker pool not ready")
    job = await pool.enqueue_job("run_escalation_batch")
    job_id = job.job_id if job else str(uuid4())
    return EscalationRunAccepted(job_id=job_id)


@app.post("/escalations/run-now", response_model=EscalationRunSummary)
def run_escalations_now(core: RoutingCore = Depends(get_core)) -> EscalationRunSummary:
    """Run an escalation pass in-process (single-instance deployments, operators)."""
    return core.run_escalation_batch()


# --- Agents (catalog editing) ---


@app.put("/agents/{agent_id}", response_model=Agent)
def upsert_agent(agent_id: str, agent: Agent, core: RoutingCore = Depends(get_core)) -> Agent:
    """Register or update an agent."""
    if agent.id != agent_id:
        raise HTTPException(status_code=400, detail="Agent id does not match path")
    core.store.upsert_agent(agent)
    return core.store.get_agent(agent_id) or agent


@app.get("/agents", response_model=list[Agent])
def list_agents(core: RoutingCore = Depends(get_core)) -> list[Agent]:
    return core.store.list_agents()


@app.get("/agents/{agent_id}", response_model=Agent)
def get_agent(agent_id: str, core: RoutingCore = Depends(get_core)) -> Agent:
    agent = core.store.get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


# --- Audit log ---


def _clamp_limit(limit: int) -> int:
    return limit if 1 <= limit <= 500 else 100


@app.get("/audit/assignments", response_model=list[AssignmentRecord])
def audit_assignments(limit: int = 100, core: RoutingCore = Depends(get_core)) -> list[AssignmentRecord]:
    return core.store.list_assignment_records(limit=_clamp_limit(limit))


@app.get("/audit/escalations", response_model=list[EscalationRecord])
def audit_escalations(limit: int = 100, core: RoutingCore = Depends(get_core)) -> list[EscalationRecord]:
    return core.store.list_escalation_records(limit=_clamp_limit(limit))


@app.get("/audit/failures", response_model=list[FailureRecord])
def audit_failures(limit: int = 100, core: RoutingCore = Depends(get_core)) -> list[FailureRecord]:
    return core.store.list_failure_records(limit=_clamp_limit(limit))


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "store": STORE_BACKEND, "worker_pool": _arq_pool is not None}
