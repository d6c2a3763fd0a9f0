"""
regtrack.uploads
================

Evidence uploads and their effect on task status.

Attaching a document moves every required party that is still Pending
to Submitted; removing the last document of a task moves Submitted back
to Pending.  Verified and Rejected are never touched from here.

The upload row is the primary effect: a failed status update is
reported next to a successful upload, never rolled back into it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from regtrack.errors import BackendError, StatusConstraintError
from regtrack.lifecycle import Actor, is_allowed
from regtrack.materializer import TaskMaterializer
from regtrack.models import Party, VerificationStatus
from regtrack.storage import StorageError
from regtrack.stores import StatusStore, UploadStore

logger = logging.getLogger(__name__)

EXTERNAL_FILE_NAME = "cloud-drive-document.pdf"
EXTERNAL_FILE_TYPE = "application/pdf"
MISSING_METADATA = (
    "Missing required fields to create the compliance_checks record: "
    "task information not found."
)


@dataclass
class FilePayload:
    """Binary document received from the client."""
    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1] if "." in self.name else "bin"


@dataclass
class UploadResult:
    success: bool
    upload_id: Optional[int] = None
    error: Optional[str] = None
    status_update_error: Optional[str] = None


def storage_key(startup_id: int, task_id: str, extension: str, now_ms: Optional[int] = None) -> str:
    """``<startupId>/<taskId>/<epoch-ms>.<ext>``"""
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{startup_id}/{task_id}/{stamp}.{extension}"


class UploadLinkage:
    """
    Stores evidence for a task and keeps the task's statuses in step.

    Parameters
    ----------
    uploads, statuses
        Upload rows and status rows.
    materializer : TaskMaterializer
        Source of task metadata when no status row exists yet.
    storage
        Object storage backend (``put`` / ``remove`` / ``owns``).
    """

    def __init__(self, uploads: UploadStore, statuses: StatusStore,
                 materializer: TaskMaterializer, storage) -> None:
        self._uploads = uploads
        self._statuses = statuses
        self._materializer = materializer
        self._storage = storage

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------
    def upload_document(
        self,
        startup_id: int,
        task_id: str,
        uploaded_by: str,
        file: Optional[FilePayload] = None,
        external_url: Optional[str] = None,
    ) -> UploadResult:
        """
        Attach a document to *task_id*: either binary *file* content or an
        *external_url* (stored as-is, nothing is uploaded).
        """
        external_url = (external_url or "").strip() or None
        if (file is None) == (external_url is None):
            return UploadResult(False, error="exactly one of a file or an external URL is required")

        try:
            ca_required, cs_required = self._required_parties(startup_id, task_id)
        except Exception as exc:
            logger.warning("Could not resolve required parties for %s: %s", task_id, exc)
            ca_required = cs_required = False

        try:
            if external_url is not None:
                logger.info("Linking external document for %s (startup %s)", task_id, startup_id)
                upload = self._uploads.insert(
                    startup_id, task_id,
                    file_name=EXTERNAL_FILE_NAME,
                    file_url=external_url,
                    uploaded_by=uploaded_by,
                    file_size=0,
                    file_type=EXTERNAL_FILE_TYPE,
                )
            else:
                key = storage_key(startup_id, task_id, file.extension)
                url = self._storage.put(key, file.content, file.content_type)
                upload = self._uploads.insert(
                    startup_id, task_id,
                    file_name=file.name,
                    file_url=url,
                    uploaded_by=uploaded_by,
                    file_size=file.size,
                    file_type=file.content_type,
                )
        except (StorageError, BackendError) as exc:
            logger.error("Upload for %s (startup %s) failed: %s", task_id, startup_id, exc)
            return UploadResult(False, error=str(exc))

        result = UploadResult(True, upload_id=upload.id)
        error = self.mark_submitted(startup_id, task_id, ca_required, cs_required)
        if error:
            logger.warning("Status update failed but upload %s succeeded: %s", upload.id, error)
            result.status_update_error = error
        return result

    def mark_submitted(self, startup_id: int, task_id: str,
                       ca_required: bool, cs_required: bool) -> Optional[str]:
        """
        Move each required party that is Pending to Submitted.

        Returns ``None`` on success or the error message to surface.
        """
        try:
            row = self._statuses.get(startup_id, task_id)
            if row is not None:
                values = {
                    "entity_identifier": row.entity_identifier,
                    "entity_display_name": row.entity_display_name,
                    "year": row.year,
                    "task_name": row.task_name,
                }
                current = {Party.CA: row.ca_status, Party.CS: row.cs_status}
            else:
                task = self._materializer.find(startup_id, task_id)
                if task is None:
                    logger.error("No status row and no task definition for %s", task_id)
                    return MISSING_METADATA
                values = {
                    "entity_identifier": task.entity_identifier,
                    "entity_display_name": task.entity_display_name,
                    "year": task.year,
                    "task_name": task.task,
                }
                current = {Party.CA: None, Party.CS: None}

            values.update(ca_required=ca_required, cs_required=cs_required)
            for party, required in ((Party.CA, ca_required), (Party.CS, cs_required)):
                stored = current[party]
                if not required:
                    values[party.status_field] = stored or VerificationStatus.NOT_REQUIRED.value
                    continue
                status = VerificationStatus.coerce(stored)
                if status is VerificationStatus.PENDING and is_allowed(status, VerificationStatus.SUBMITTED, Actor.UPLOAD):
                    values[party.status_field] = VerificationStatus.SUBMITTED.value
                else:
                    values[party.status_field] = stored or VerificationStatus.PENDING.value

            self._statuses.upsert(startup_id, task_id, **values)
            return None
        except StatusConstraintError as exc:
            logger.error("Status store rejected 'Submitted' for %s: %s", task_id, exc)
            return StatusConstraintError.HINT
        except Exception as exc:
            logger.error("Could not mark %s as submitted: %s", task_id, exc)
            return str(exc)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------
    def delete_upload(self, upload_id: int) -> bool:
        """
        Remove an upload; revert Submitted → Pending when it was the last
        document of its task.  Returns ``False`` when nothing was deleted.
        """
        try:
            upload = self._uploads.get(upload_id)
        except Exception:
            logger.exception("Could not read upload %s", upload_id)
            return False
        if upload is None:
            logger.info("Upload %s not found", upload_id)
            return False

        if self._storage.owns(upload.file_url):
            try:
                self._storage.remove(upload.file_url)
            except StorageError as exc:
                logger.warning("Could not remove stored object for upload %s: %s", upload_id, exc)

        try:
            if not self._uploads.delete(upload_id):
                return False
        except BackendError as exc:
            logger.error("Could not delete upload %s: %s", upload_id, exc)
            return False

        try:
            if not self._uploads.for_task(upload.startup_id, upload.task_id):
                self._revert_submitted(upload.startup_id, upload.task_id)
        except Exception as exc:
            logger.warning("Could not revert status of %s after deleting its last upload: %s",
                           upload.task_id, exc)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _required_parties(self, startup_id: int, task_id: str) -> Tuple[bool, bool]:
        row = self._statuses.get(startup_id, task_id)
        ca_required = bool(row.ca_required) if row else False
        cs_required = bool(row.cs_required) if row else False
        if row is None or not (ca_required or cs_required):
            task = self._materializer.find(startup_id, task_id)
            if task is not None:
                ca_required, cs_required = task.ca_required, task.cs_required
        return ca_required, cs_required

    def _revert_submitted(self, startup_id: int, task_id: str) -> None:
        row = self._statuses.get(startup_id, task_id)
        if row is None:
            return
        values = {}
        for party in Party:
            if not getattr(row, party.required_field):
                continue
            status = VerificationStatus.coerce(getattr(row, party.status_field))
            if status is VerificationStatus.SUBMITTED and is_allowed(status, VerificationStatus.PENDING, Actor.DELETE):
                values[party.status_field] = VerificationStatus.PENDING.value
        if values:
            logger.info("No uploads left for %s, reverting %s to Pending", task_id, ", ".join(values))
            self._statuses.update(startup_id, task_id, **values)
