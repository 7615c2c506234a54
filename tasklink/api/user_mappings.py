"""User mapping management endpoints"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from tasklink.api.deps import get_services
from tasklink.models import UserMapping
from tasklink.models.base import get_db
from tasklink.services.runtime import LinkServices

router = APIRouter(prefix="/api/user-mappings", tags=["user-mappings"])


class UserMappingUpsert(BaseModel):
    task_identity: str
    tracker_identity: str
    display_name: Optional[str] = None


class UserMappingResponse(BaseModel):
    id: int
    task_identity: str
    tracker_identity: str
    display_name: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ResolveBatchRequest(BaseModel):
    task_identities: List[str]


@router.get("/", response_model=List[UserMappingResponse])
def list_user_mappings(db: Session = Depends(get_db)):
    """List all user mappings"""
    return db.query(UserMapping).order_by(UserMapping.created_at.desc()).all()


@router.put("/", response_model=UserMappingResponse)
def upsert_user_mapping(
    mapping: UserMappingUpsert,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Create or replace the mapping for a task identity"""
    if not mapping.task_identity.strip() or not mapping.tracker_identity.strip():
        raise HTTPException(status_code=400, detail="Identities must not be blank")
    row = services.resolver(db).save_mapping(
        mapping.task_identity.strip(), mapping.tracker_identity.strip(), mapping.display_name
    )
    db.refresh(row)
    return row


@router.get("/resolve/{task_identity}")
def resolve_user(
    task_identity: str,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Resolve a task identity to a tracker username"""
    return {
        "task_identity": task_identity,
        "tracker_identity": services.resolver(db).resolve(task_identity),
    }


@router.post("/resolve")
def resolve_users(
    request: ResolveBatchRequest,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Resolve several task identities; the directory is asked only about cache misses"""
    return {"resolved": services.resolver(db).resolve_many(request.task_identities)}


@router.get("/reverse/{tracker_identity}")
def reverse_lookup_user(
    tracker_identity: str,
    db: Session = Depends(get_db),
    services: LinkServices = Depends(get_services),
):
    """Find the task identity cached for a tracker username"""
    task_identity = services.resolver(db).reverse_lookup(tracker_identity)
    if task_identity is None:
        raise HTTPException(status_code=404, detail="No mapping for tracker identity")
    return {"tracker_identity": tracker_identity, "task_identity": task_identity}


@router.delete("/{mapping_id}")
def delete_user_mapping(mapping_id: int, db: Session = Depends(get_db)):
    """Delete a user mapping"""
    mapping = db.query(UserMapping).filter(UserMapping.id == mapping_id).first()
    if not mapping:
        raise HTTPException(status_code=404, detail="User mapping not found")

    db.delete(mapping)
    db.commit()
    return {"message": "User mapping deleted successfully"}
