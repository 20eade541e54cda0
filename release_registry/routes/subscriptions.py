"""Package subscription routes."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db.base import get_db
from ..db.services import PackageService, SubscriptionService
from .deps import Principal, get_principal

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/{package_id}", status_code=201)
async def subscribe(
    package_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Subscribe the caller to release notifications for a package."""
    if not principal.email:
        raise HTTPException(status_code=400, detail="A subscriber e-mail address is required")
    if not PackageService(db).get(package_id):
        raise HTTPException(status_code=404, detail="Package not found")

    subscription = SubscriptionService(db).subscribe(
        principal.user_id, package_id, principal.email
    )
    return {"status": "success", "subscription": subscription.to_dict()}


@router.delete("/{package_id}")
async def unsubscribe(
    package_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Remove the caller's subscription to a package."""
    if not SubscriptionService(db).unsubscribe(principal.user_id, package_id):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"status": "success", "package_id": package_id}


@router.get("")
async def my_subscriptions(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> List[Dict[str, Any]]:
    """Packages the caller is subscribed to."""
    return [p.to_dict() for p in SubscriptionService(db).list_for_user(principal.user_id)]
