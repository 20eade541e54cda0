"""
Package and release routes.

Thin HTTP layer over the Registrar. Metadata-only reads (package listing,
package details) go straight to the index services.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..core.errors import Forbidden
from ..core.registrar import ReleaseRegistrar
from ..db.base import get_db
from ..db.services import (
    CommentService,
    DownloadLogService,
    PackageService,
    PackageVersionService,
)
from .deps import Principal, client_ip, get_optional_principal, get_principal, get_registrar

router = APIRouter(prefix="/packages", tags=["packages"])


async def _read_limited(upload: UploadFile, limit: int) -> bytes:
    content = await upload.read(limit + 1)
    if len(content) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds maximum size of {limit} bytes",
        )
    return content


@router.post("/upload", status_code=201)
async def upload_package(
    file: UploadFile = File(...),
    package_id: str = Form(..., alias="packageId"),
    version: str = Form(...),
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    principal: Principal = Depends(get_principal),
    registrar: ReleaseRegistrar = Depends(get_registrar),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Publish a new release from an uploaded artifact."""
    content = await _read_limited(file, settings.max_artifact_bytes)
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    result = await registrar.publish_release(
        package_id,
        version,
        content,
        principal.owner_claim(),
        name=name,
        description=description,
    )
    return {
        "status": "success",
        "message": "Package uploaded and recorded on the ledger",
        "release": result.model_dump(),
    }


@router.get("")
async def list_packages(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """List packages, newest first."""
    return [p.to_dict() for p in PackageService(db).list(limit=limit, offset=offset)]


@router.get("/{package_id}")
async def get_package(
    package_id: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get package metadata with its indexed versions and download summary."""
    package = PackageService(db).get(package_id)
    if not package:
        raise HTTPException(status_code=404, detail="Package not found")

    versions = PackageVersionService(db).list_versions(package_id)
    return {
        **package.to_dict(),
        "versions": versions,
        "downloads": DownloadLogService(db).summary(package_id),
    }


@router.get("/{package_id}/{version}")
async def get_release(
    package_id: str,
    version: str,
    registrar: ReleaseRegistrar = Depends(get_registrar),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get a release as recorded on the ledger, with index details."""
    detail = await registrar.describe_release(package_id, version)
    return {
        **detail.model_dump(),
        "average_rating": CommentService(db).average_rating(package_id, version),
    }


@router.get("/{package_id}/{version}/download-file")
async def download_file(
    package_id: str,
    version: str,
    request: Request,
    principal: Optional[Principal] = Depends(get_optional_principal),
    registrar: ReleaseRegistrar = Depends(get_registrar),
) -> Response:
    """Download the artifact of an ACTIVE release."""
    content = await registrar.fetch_for_download(
        package_id,
        version,
        user_id=principal.user_id if principal else None,
        ip_address=client_ip(request),
    )
    return Response(
        content=content,
        media_type="application/gzip",
        headers={
            "Content-Disposition": f'attachment; filename="{package_id}-{version}.tar.gz"'
        },
    )


@router.post("/{package_id}/{version}/validate-file")
async def validate_file(
    package_id: str,
    version: str,
    file: UploadFile = File(...),
    registrar: ReleaseRegistrar = Depends(get_registrar),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Check an uploaded file against the ledger-recorded hash."""
    content = await _read_limited(file, settings.max_artifact_bytes)
    result = await registrar.validate_artifact(package_id, version, content)
    return {**result.model_dump(), "message": result.message}


@router.put("/{package_id}/{version}/discontinue")
async def discontinue_release(
    package_id: str,
    version: str,
    principal: Principal = Depends(get_principal),
    registrar: ReleaseRegistrar = Depends(get_registrar),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Discontinue one release. Package owner or admin only."""
    if not principal.is_admin and not PackageService(db).is_owner(
        package_id, principal.user_id
    ):
        raise Forbidden(
            "Only package owner or admin can discontinue a release", package_id, version
        )

    release = await registrar.discontinue_release(
        package_id, version, actor_id=principal.user_id
    )
    return {"status": "success", "release": release.to_dict()}


@router.delete("/{package_id}")
async def discontinue_package(
    package_id: str,
    principal: Principal = Depends(get_principal),
    registrar: ReleaseRegistrar = Depends(get_registrar),
) -> Dict[str, Any]:
    """Discontinue every version of a package and remove its metadata. Admin only."""
    if not principal.is_admin:
        raise Forbidden("Admin privileges required", package_id)

    report = await registrar.discontinue_package(package_id, actor_id=principal.user_id)
    return {
        "status": "success" if report.complete else "partial",
        **report.model_dump(),
    }
