from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from storefront.domain.models import StoreProfile
from shared.core import get_logger
from .errors import NotFoundError
from .principal import Principal, require_admin

logger = get_logger(__name__)

profiles = StoreProfile.__table__


class StoreProfileRegistry:
    """At most one store profile is active at a time."""

    def __init__(self, db: Session):
        self.db = db

    def get_active(self) -> StoreProfile:
        profile = self.db.scalars(
            select(StoreProfile).where(StoreProfile.is_active.is_(True)).order_by(StoreProfile.id)
        ).first()
        if not profile:
            raise NotFoundError("No active store profile")
        return profile

    def activate(self, principal: Principal, profile_id: int) -> StoreProfile:
        require_admin(principal)
        profile = self.db.get(StoreProfile, profile_id)
        if not profile:
            raise NotFoundError("Store profile not found")

        try:
            # Both statements commit together, so readers never see two active rows
            self.db.execute(
                update(profiles)
                .where(profiles.c.id != profile_id, profiles.c.is_active.is_(True))
                .values(is_active=False)
            )
            self.db.execute(
                update(profiles).where(profiles.c.id == profile_id).values(is_active=True)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.expire_all()
        logger.info(
            f"Store profile {profile_id} activated",
            extra={'extra_fields': {'profile_id': profile_id, 'activated_by': principal.id}}
        )
        return self.db.get(StoreProfile, profile_id)
