from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from deployflow.config import Settings
from deployflow.model import EventKind, Trigger

from .db import SessionLocal, create_tables
from .models import InstanceResult, Run, now_utc
from .redisq import dequeue_run, enqueue_run
from .settings import CLAIM_TIMEOUT_SECONDS

app = FastAPI(title="deployflow control plane")

TERMINAL = ("succeeded", "failed", "skipped")

# -------------------- Schemas --------------------

class TriggerRequest(BaseModel):
    branch: str
    event_kind: EventKind = EventKind.PUSH
    sha: str | None = None

class TriggerResponse(BaseModel):
    run_id: str
    status: str

class ClaimRequest(BaseModel):
    worker_id: str

class ClaimedRun(BaseModel):
    run_id: str
    branch: str
    event_kind: EventKind
    sha: str | None

class InstancePayload(BaseModel):
    label: str
    status: str
    diagnostics: str | None = None

class CompleteRequest(BaseModel):
    worker_id: str
    status: str  # succeeded|failed|skipped
    instances: list[InstancePayload] = Field(default_factory=list)

class RunResponse(BaseModel):
    id: str
    branch: str
    event_kind: str
    sha: str | None
    status: str
    created_at: datetime
    finished_at: datetime | None
    instances: list[InstancePayload]

# -------------------- Startup --------------------

@app.on_event("startup")
async def startup() -> None:
    await create_tables()


def _parse_id(run_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(run_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Run not found")

# -------------------- Endpoints --------------------

@app.post("/triggers", response_model=TriggerResponse)
async def create_trigger(req: TriggerRequest):
    """Source-control webhook: record the run, queue it if the branch is eligible."""
    trigger = Trigger(branch=req.branch, event_kind=req.event_kind, sha=req.sha)
    eligible = trigger.eligible(Settings.from_env().allowed_branches)

    async with SessionLocal() as s:
        async with s.begin():
            run = Run(
                branch=req.branch,
                event_kind=req.event_kind.value,
                sha=req.sha,
                status="queued" if eligible else "skipped",
                finished_at=None if eligible else now_utc(),
            )
            s.add(run)
            await s.flush()
            run_id = str(run.id)

    # push to Redis after DB commit
    if eligible:
        await enqueue_run(run_id)

    return TriggerResponse(run_id=run_id, status="queued" if eligible else "skipped")

@app.post("/runs/claim", response_model=ClaimedRun)
async def claim(req: ClaimRequest):
    while True:
        run_id = await dequeue_run(timeout_s=CLAIM_TIMEOUT_SECONDS)
        if not run_id:
            return Response(status_code=204)

        async with SessionLocal() as s:
            async with s.begin():
                run = await s.get(Run, uuid.UUID(run_id))
                # stale queue entries (deleted or already claimed runs) are dropped
                if not run or run.status != "queued":
                    continue
                run.status = "running"
                run.worker_id = req.worker_id
                return ClaimedRun(
                    run_id=run_id,
                    branch=run.branch,
                    event_kind=EventKind(run.event_kind),
                    sha=run.sha,
                )

@app.post("/runs/{run_id}/complete")
async def complete(run_id: str, req: CompleteRequest):
    if req.status not in TERMINAL:
        raise HTTPException(status_code=400, detail=f"status must be one of {'|'.join(TERMINAL)}")

    async with SessionLocal() as s:
        async with s.begin():
            run = await s.get(Run, _parse_id(run_id))
            if not run:
                raise HTTPException(status_code=404, detail="Run not found")
            if run.status in TERMINAL:
                raise HTTPException(status_code=409, detail=f"Run already {run.status}")
            if run.worker_id != req.worker_id:
                raise HTTPException(status_code=403, detail="Run claimed by a different worker")

            run.status = req.status
            run.finished_at = now_utc()
            for inst in req.instances:
                run.instances.append(
                    InstanceResult(label=inst.label, status=inst.status, diagnostics=inst.diagnostics)
                )

    return {"ok": True}

@app.get("/runs/{run_id}", response_model=RunResponse)
async def get_run(run_id: str):
    """Get a run and the terminal status of each job instance."""
    async with SessionLocal() as s:
        run = await s.get(Run, _parse_id(run_id))
        if not run:
            raise HTTPException(status_code=404, detail="Run not found")

        return RunResponse(
            id=str(run.id),
            branch=run.branch,
            event_kind=run.event_kind,
            sha=run.sha,
            status=run.status,
            created_at=run.created_at,
            finished_at=run.finished_at,
            instances=[
                InstancePayload(label=i.label, status=i.status, diagnostics=i.diagnostics)
                for i in run.instances
            ],
        )
