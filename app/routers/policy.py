import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.access import Principal
from app.db import get_db
from app.schemas import (
    DeleteResponse,
    GeoFenceCreate,
    GeoFenceRead,
    GeoFenceUpdate,
    IpWhitelistCreate,
    IpWhitelistRead,
    IpWhitelistUpdate,
)
from app.security import get_current_principal
from app.services import policy_store

# Reads are open to any authenticated principal; writes are checked per call.
router = APIRouter(tags=["policy"])


@router.get("/api/ip-whitelist", response_model=list[IpWhitelistRead])
def list_ip_whitelist(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> list[IpWhitelistRead]:
    return policy_store.list_ip_whitelist(db, principal)


@router.post("/api/ip-whitelist", response_model=IpWhitelistRead, status_code=status.HTTP_201_CREATED)
def create_ip_whitelist_entry(
    payload: IpWhitelistCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> IpWhitelistRead:
    return policy_store.create_ip_whitelist_entry(
        db,
        principal,
        ip_address=payload.ip_address,
        description=payload.description,
    )


@router.put("/api/ip-whitelist/{entry_id}", response_model=IpWhitelistRead)
def update_ip_whitelist_entry(
    entry_id: uuid.UUID,
    payload: IpWhitelistUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> IpWhitelistRead:
    return policy_store.update_ip_whitelist_entry(
        db,
        principal,
        entry_id,
        payload.model_dump(exclude_unset=True),
    )


@router.delete("/api/ip-whitelist/{entry_id}", response_model=DeleteResponse)
def delete_ip_whitelist_entry(
    entry_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    policy_store.delete_ip_whitelist_entry(db, principal, entry_id)
    return DeleteResponse(ok=True, id=entry_id)


@router.get("/api/geo-fences", response_model=list[GeoFenceRead])
def list_geo_fences(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> list[GeoFenceRead]:
    return policy_store.list_geo_fences(db, principal)


@router.post("/api/geo-fences", response_model=GeoFenceRead, status_code=status.HTTP_201_CREATED)
def create_geo_fence(
    payload: GeoFenceCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> GeoFenceRead:
    return policy_store.create_geo_fence(
        db,
        principal,
        name=payload.name,
        latitude=payload.latitude,
        longitude=payload.longitude,
        radius=payload.radius,
    )


@router.put("/api/geo-fences/{fence_id}", response_model=GeoFenceRead)
def update_geo_fence(
    fence_id: uuid.UUID,
    payload: GeoFenceUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> GeoFenceRead:
    return policy_store.update_geo_fence(
        db,
        principal,
        fence_id,
        payload.model_dump(exclude_unset=True),
    )


@router.delete("/api/geo-fences/{fence_id}", response_model=DeleteResponse)
def delete_geo_fence(
    fence_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    policy_store.delete_geo_fence(db, principal, fence_id)
    return DeleteResponse(ok=True, id=fence_id)
