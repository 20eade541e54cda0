"""Release comment and rating routes."""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..db.services import CommentService, PackageVersionService
from ..schemas.requests import CommentCreate, CommentUpdate
from .deps import Principal, get_principal

router = APIRouter(prefix="/comments", tags=["comments"])


@router.post("/{package_id}/{version}", status_code=201)
async def add_comment(
    package_id: str,
    version: str,
    comment: CommentCreate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Comment on (and optionally rate) a published release."""
    if not PackageVersionService(db).get(package_id, version):
        raise HTTPException(status_code=404, detail="Package version not found")

    db_comment = CommentService(db).create(
        package_id,
        version,
        principal.user_id,
        comment.comment_text,
        comment.rating,
    )
    return {"status": "success", "comment": db_comment.to_dict()}


@router.get("/{package_id}/{version}")
async def list_comments(
    package_id: str,
    version: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List comments on a release, newest first, with the average rating."""
    service = CommentService(db)
    comments = service.list_for_release(package_id, version)
    return {
        "comments": [c.to_dict() for c in comments],
        "total": len(comments),
        "average_rating": service.average_rating(package_id, version),
    }


@router.put("/{comment_id}")
async def update_comment(
    comment_id: str,
    comment: CommentUpdate,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Edit one's own comment."""
    service = CommentService(db)
    if not service.get(comment_id):
        raise HTTPException(status_code=404, detail="Comment not found")
    if not service.is_owner(comment_id, principal.user_id):
        raise HTTPException(status_code=403, detail="You can only edit your own comments")

    db_comment = service.update(comment_id, comment.comment_text, comment.rating)
    return {"status": "success", "comment": db_comment.to_dict()}


@router.delete("/{comment_id}")
async def delete_comment(
    comment_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Delete a comment. Authors may delete their own; admins any."""
    service = CommentService(db)
    if not service.get(comment_id):
        raise HTTPException(status_code=404, detail="Comment not found")
    if not principal.is_admin and not service.is_owner(comment_id, principal.user_id):
        raise HTTPException(status_code=403, detail="You can only delete your own comments")

    service.delete(comment_id)
    return {"status": "success", "deleted": comment_id}
