"""FastAPI web application for podfix."""

import logging

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from podfix.config import UpdaterSettings
from podfix.errors import (
    AmbiguousDeclaration,
    InvalidRequirementError,
    LockfileParseError,
    NoViableVersion,
    PodfixError,
    SpecIndexUnavailable,
    VersionConflict,
)
from podfix.models import Credential, Dependency
from podfix.updater import PodfileUpdater

logger = logging.getLogger(__name__)

app = FastAPI(
    title="podfix",
    description="Update a pod requirement in a Podfile and its Podfile.lock",
    version="0.1.0",
)

ERROR_STATUS = {
    AmbiguousDeclaration: 400,
    InvalidRequirementError: 400,
    LockfileParseError: 400,
    NoViableVersion: 422,
    VersionConflict: 422,
    SpecIndexUnavailable: 503,
}


class CredentialModel(BaseModel):
    """Credential for a private spec source.

    Accepts both ``type``/``password`` and ``kind``/``secret`` spellings.
    """
    type: str | None = None
    kind: str | None = None
    host: str
    username: str | None = None
    password: str | None = None
    secret: str | None = None


class UpdateRequest(BaseModel):
    """Request model for updating a pod."""
    podfile: str
    lockfile: str
    pod: str
    requirement: str | None = None
    previous_requirement: str | None = None
    credentials: list[CredentialModel] = Field(default_factory=list)


class UpdateResponse(BaseModel):
    """Response model for a pod update."""
    podfile: str
    lockfile: str
    versions: dict[str, str]
    changed: list[str]
    notes: list[str]
    has_changes: bool


def status_for(error: PodfixError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 400


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


@app.post("/api/update", response_model=UpdateResponse)
async def update_pod(request: UpdateRequest):
    """Update one pod's requirement and re-lock."""
    if not request.podfile.strip():
        raise HTTPException(status_code=400, detail="No Podfile provided")
    if not request.lockfile.strip():
        raise HTTPException(status_code=400, detail="No Podfile.lock provided")

    credentials = [Credential.from_dict(credential.model_dump()) for credential in request.credentials]
    dependency = Dependency(
        name=request.pod,
        requirement=request.requirement,
        previous_requirement=request.previous_requirement,
    )

    try:
        updater = PodfileUpdater(settings=UpdaterSettings.from_env(), credentials=credentials)
        report = await updater.update(request.podfile, request.lockfile, dependency)
    except PodfixError as e:
        raise HTTPException(status_code=status_for(e), detail={"code": e.code, "message": str(e)})
    except Exception as e:
        logger.exception("Update of %s failed", request.pod)
        raise HTTPException(status_code=500, detail=f"Error updating {request.pod}: {type(e).__name__}")

    return UpdateResponse(
        podfile=report.podfile,
        lockfile=report.lockfile,
        versions=report.resolution.versions,
        changed=sorted(report.resolution.changed),
        notes=report.notes,
        has_changes=report.has_changes,
    )
