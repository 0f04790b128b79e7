from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from storefront.infrastructure.db import get_db
from storefront.application.principal import Principal
from storefront.application.schemas import StoreProfileRead
from storefront.application.store_profiles import StoreProfileRegistry
from .deps import get_admin

router = APIRouter(prefix="/store", tags=["store"])

@router.get("/active", response_model=StoreProfileRead)
def get_active_store(db: Session = Depends(get_db)):
    return StoreProfileRegistry(db).get_active()

@router.patch("/{profile_id}/activate", response_model=StoreProfileRead)
def activate_store(profile_id: int, principal: Principal = Depends(get_admin), db: Session = Depends(get_db)):
    return StoreProfileRegistry(db).activate(principal, profile_id)
