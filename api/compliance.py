"""
api.compliance
==============

FastAPI router for the compliance checklist of a startup.

Endpoints cover reading the grouped task list, explicit syncs, verifier
status edits, applicability toggles, evidence uploads and statistics.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from regtrack.countries import normalize_country_for_display, professional_titles
from regtrack.entities import EntityGraph
from regtrack.errors import BackendError, SessionBusyError, TaskMetadataMissingError
from regtrack.lifecycle import can_edit
from regtrack.models import ComplianceTask, Party, Upload, VerificationStatus, ViewerRole
from regtrack.service import ComplianceService
from regtrack.uploads import FilePayload
from .deps import get_service

router = APIRouter(tags=["compliance"])

logger = logging.getLogger(__name__)


# ---------- request bodies ----------
class StatusUpdate(BaseModel):
    party: Party
    status: str
    role: str


class ApplicabilityUpdate(BaseModel):
    is_applicable: bool
    role: str = ViewerRole.STARTUP.value


# ---------- serialization helpers ----------
def _upload_to_dict(upload: Upload) -> Dict[str, Any]:
    return {
        "id": upload.id,
        "file_name": upload.file_name,
        "file_url": upload.file_url,
        "uploaded_by": upload.uploaded_by,
        "file_size": upload.file_size,
        "file_type": upload.file_type,
        "created_at": upload.created_at.isoformat() if upload.created_at else None,
    }


def _task_to_dict(task: ComplianceTask) -> Dict[str, Any]:
    return {
        "task_id": task.task_id,
        "entity_identifier": task.entity_identifier,
        "entity_display_name": task.entity_display_name,
        "year": task.year,
        "task": task.task,
        "frequency": task.frequency.value if task.frequency else None,
        "description": task.description,
        "ca_required": task.ca_required,
        "cs_required": task.cs_required,
        "ca_status": task.display_status(Party.CA).value,
        "cs_status": task.display_status(Party.CS).value,
        "ca_type": task.ca_type,
        "cs_type": task.cs_type,
        "is_applicable": task.is_applicable,
        "can_upload": task.can_upload,
        "uploads": [_upload_to_dict(u) for u in task.uploads],
    }


def _require_profile(svc: ComplianceService, startup_id: int):
    profile = svc.startups.profile(startup_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Startup {startup_id} not found")
    return profile


def _require_owner_role(svc: ComplianceService, role: str) -> ViewerRole:
    viewer = ViewerRole.parse(role)
    if viewer.value not in svc.settings.upload_roles:
        raise HTTPException(status_code=403, detail=f"Role {viewer.value} may not manage evidence or applicability")
    return viewer


# ---------- GET /startups/{id}/compliance/tasks ----------
@router.get("/startups/{startup_id}/compliance/tasks")
def get_tasks(
    startup_id: int,
    role: str = Query(ViewerRole.STARTUP.value, description="Viewer role (CA, CS, Startup, Admin, …)"),
    svc: ComplianceService = Depends(get_service),
):
    """
    Grouped checklist of a startup.

    Resyncs status rows first when the entity-defining profile fields
    changed since the last request, then reloads and recomputes the
    aggregate for *role*.
    """
    viewer = ViewerRole.parse(role)
    profile = _require_profile(svc, startup_id)
    session = svc.sessions.get(startup_id)
    if not session.resync_if_changed(profile, viewer):
        session.load(viewer)

    code = normalize_country_for_display(profile.country)
    ca_title, cs_title = professional_titles(code)
    return {
        "startup_id": startup_id,
        "role": viewer.value,
        "aggregate_status": session.aggregate_status.value if session.aggregate_status else None,
        "titles": {"ca": ca_title, "cs": cs_title},
        "entities": [
            {"name": name, "tasks": [_task_to_dict(t) for t in tasks]}
            for name, tasks in session.grouped(profile).items()
        ],
        "structure": EntityGraph.from_profile(profile).to_json(),
    }


# ---------- POST /startups/{id}/compliance/sync ----------
@router.post("/startups/{startup_id}/compliance/sync")
def sync_tasks(
    startup_id: int,
    role: str = Query(ViewerRole.STARTUP.value),
    svc: ComplianceService = Depends(get_service),
):
    _require_profile(svc, startup_id)
    session = svc.sessions.get(startup_id)
    try:
        created = session.sync(ViewerRole.parse(role))
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"created": created, "aggregate_status": str(session.aggregate_status)}


# ---------- POST /startups/{id}/compliance/regenerate ----------
@router.post("/startups/{startup_id}/compliance/regenerate")
def regenerate_tasks(
    startup_id: int,
    role: str = Query(ViewerRole.STARTUP.value),
    svc: ComplianceService = Depends(get_service),
):
    """Drop every status row of the startup and recreate them from the rules."""
    _require_profile(svc, startup_id)
    session = svc.sessions.get(startup_id)
    try:
        created = session.sync(ViewerRole.parse(role), regenerate=True)
    except SessionBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"created": created, "aggregate_status": str(session.aggregate_status)}


# ---------- PUT /startups/{id}/compliance/tasks/{task_id}/status ----------
@router.put("/startups/{startup_id}/compliance/tasks/{task_id}/status")
def update_status(
    startup_id: int,
    task_id: str,
    body: StatusUpdate,
    svc: ComplianceService = Depends(get_service),
):
    """
    Verifier decision on one column of a task.

    403 when the role does not own the column, 404 when the task is
    unknown, 409 for a disallowed transition, 502 when the store rejects
    the write.
    """
    viewer = ViewerRole.parse(body.role)
    if not can_edit(viewer, body.party):
        raise HTTPException(status_code=403, detail=f"{viewer.value} cannot edit the {body.party.value} column")
    try:
        status = VerificationStatus.coerce(body.status)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    session = svc.sessions.get(startup_id)
    try:
        task = session.set_status(task_id, body.party, status, viewer)
    except TaskMetadataMissingError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except BackendError as e:
        logger.error(f"Status update of {task_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "task": _task_to_dict(task) if task else None,
        "aggregate_status": str(session.aggregate_status),
    }


# ---------- PUT /startups/{id}/compliance/tasks/{task_id}/applicability ----------
@router.put("/startups/{startup_id}/compliance/tasks/{task_id}/applicability")
def update_applicability(
    startup_id: int,
    task_id: str,
    body: ApplicabilityUpdate,
    svc: ComplianceService = Depends(get_service),
):
    """Owner toggle; 403 for roles outside the owner roles."""
    viewer = _require_owner_role(svc, body.role)
    session = svc.sessions.get(startup_id)
    try:
        task = session.set_applicability(task_id, body.is_applicable, viewer)
    except TaskMetadataMissingError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except BackendError as e:
        logger.error(f"Applicability update of {task_id} failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))
    return {"task": _task_to_dict(task), "aggregate_status": str(session.aggregate_status)}


# ---------- POST /startups/{id}/compliance/tasks/{task_id}/uploads ----------
def _link_upload(svc: ComplianceService, viewer: ViewerRole, startup_id: int, task_id: str,
                 uploaded_by: str, payload: Optional[FilePayload], external_url: Optional[str]):
    session = svc.sessions.get(startup_id)
    task = session.task(task_id) or svc.materializer.find(startup_id, task_id)
    if task is not None and not task.can_upload:
        raise HTTPException(status_code=409, detail=f"Task {task_id} is marked not applicable")

    result = svc.linkage.upload_document(
        startup_id, task_id, uploaded_by, file=payload, external_url=external_url,
    )
    if not result.success:
        raise HTTPException(status_code=502, detail=result.error)

    session.load(viewer)
    return {"upload_id": result.upload_id, "status_update_error": result.status_update_error}


@router.post("/startups/{startup_id}/compliance/tasks/{task_id}/uploads", status_code=201)
async def upload_document(
    startup_id: int,
    task_id: str,
    uploaded_by: str = Form(...),
    role: str = Form(ViewerRole.STARTUP.value),
    external_url: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    svc: ComplianceService = Depends(get_service),
):
    """
    Attach a file (multipart) or an external document link to a task.

    Only the multipart read happens on the event loop; storage, database
    and RPC calls run in the threadpool.
    """
    viewer = _require_owner_role(svc, role)
    has_url = bool(external_url and external_url.strip())
    if (file is None) == (not has_url):
        raise HTTPException(status_code=422, detail="Provide exactly one of 'file' or 'external_url'")

    payload: Optional[FilePayload] = None
    if file is not None:
        payload = FilePayload(
            name=file.filename or "document",
            content=await file.read(),
            content_type=file.content_type or "application/octet-stream",
        )

    return await run_in_threadpool(
        _link_upload, svc, viewer, startup_id, task_id, uploaded_by,
        payload, external_url if has_url else None,
    )


# ---------- DELETE /uploads/{upload_id} ----------
@router.delete("/uploads/{upload_id}")
def delete_upload(
    upload_id: int,
    role: str = Query(ViewerRole.STARTUP.value),
    svc: ComplianceService = Depends(get_service),
):
    _require_owner_role(svc, role)
    if not svc.linkage.delete_upload(upload_id):
        raise HTTPException(status_code=404, detail="Upload not found")
    return {"deleted": upload_id}


# ---------- GET /startups/{id}/compliance/stats ----------
@router.get("/startups/{startup_id}/compliance/stats", response_model=Dict[str, Any])
def get_stats(startup_id: int, svc: ComplianceService = Depends(get_service)):
    _require_profile(svc, startup_id)
    return svc.stats(startup_id).to_dict()
