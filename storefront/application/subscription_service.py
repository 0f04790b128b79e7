from datetime import date, datetime, time, timedelta, timezone
from math import ceil
from typing import Callable, Iterable, List, Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from storefront.core_settings import Settings, get_settings
from storefront.domain.models import Product, Subscription, SubscriptionItem, utcnow
from storefront.domain.statuses import PaymentMethod, SubscriptionStatus, SubscriptionType, SUBSCRIPTION_WINDOW_DAYS
from shared.core import get_logger
from .errors import StorefrontError, ValidationError, NotFoundError, InvalidStateError
from .notifications import NotificationDispatcher
from .pricing import PricingCalculator
from .principal import Principal, require_admin, require_subscription_access
from .schemas import SubscriptionCreate, SubscriptionUpdate, SubscriptionItemCreate

logger = get_logger(__name__)

subscriptions = Subscription.__table__

DELIVERY_CADENCE = timedelta(days=1)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _start_of(day: date) -> datetime:
    return datetime.combine(day, time.min)


class SubscriptionScheduler:
    """Recurrence, status machine and expiry sweep for subscriptions.

    Deliveries happen daily inside the window ``[start_date, end_date]``;
    the subscription type only decides how long that window is. Every
    status change is a conditional UPDATE on the expected prior status,
    so the sweep and user actions cannot overwrite each other.
    """

    def __init__(
        self,
        db: Session,
        notifier: Optional[NotificationDispatcher] = None,
        settings: Optional[Settings] = None,
        clock: Callable = utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.notifier = notifier or NotificationDispatcher(self.settings)
        self.pricing = PricingCalculator()
        self.clock = clock

    # Recurrence

    @staticmethod
    def calculate_end_date(start_date: datetime, subscription_type) -> datetime:
        days = SUBSCRIPTION_WINDOW_DAYS[SubscriptionType(subscription_type)]
        return start_date + timedelta(days=days)

    @staticmethod
    def next_delivery_after(base: datetime, end_date: datetime) -> Optional[datetime]:
        """The delivery following ``base``, or None once past ``end_date``."""
        candidate = base + DELIVERY_CADENCE
        if candidate > end_date:
            return None
        return candidate

    def calculate_next_delivery_date(self, subscription: Subscription) -> Optional[datetime]:
        base = subscription.last_delivery_date or subscription.start_date
        return self.next_delivery_after(base, subscription.end_date)

    def is_due_for_delivery(self, subscription: Subscription, today: Optional[date] = None) -> bool:
        today = today or self.clock().date()
        return (
            subscription.status == SubscriptionStatus.ACTIVE.value
            and subscription.next_delivery_date.date() <= today
            and today <= subscription.end_date.date()
        )

    # Queries

    def get(self, subscription_id: int) -> Subscription:
        subscription = self.db.get(Subscription, subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    def get_by_id(self, principal: Principal, subscription_id: int) -> Subscription:
        subscription = self.get(subscription_id)
        require_subscription_access(principal, subscription)
        return subscription

    def list(
        self,
        principal: Principal,
        status: Optional[str] = None,
        type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        require_admin(principal)
        page = max(page, 1)
        limit = max(limit, 1)

        query = select(Subscription)
        if status:
            query = query.where(Subscription.status == self._parse(SubscriptionStatus, status).value)
        if type:
            query = query.where(Subscription.type == self._parse(SubscriptionType, type).value)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                Subscription.name.ilike(pattern),
                Subscription.customer_first_name.ilike(pattern),
                Subscription.customer_last_name.ilike(pattern),
                Subscription.customer_email.ilike(pattern),
            ))

        total = self.db.scalar(select(func.count()).select_from(query.subquery()))
        rows = self.db.scalars(
            query.order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return {
            "subscriptions": rows,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": ceil(total / limit) if total else 0,
            },
        }

    def list_for_email(self, email: str) -> List[Subscription]:
        if not email:
            raise ValidationError("User email not found")
        return self.db.scalars(
            select(Subscription)
            .where(func.lower(Subscription.customer_email) == email.lower())
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        ).all()

    def list_due(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Subscription]:
        """Active subscriptions whose next delivery falls within ``[start, end]`` (whole days)."""
        start = start or self.clock().date()
        end = end or start
        if end < start:
            raise ValidationError("Due window end must not precede its start")
        return self.db.scalars(
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.next_delivery_date >= _start_of(start),
                Subscription.next_delivery_date < _start_of(end + timedelta(days=1)),
            )
            .order_by(Subscription.next_delivery_date, Subscription.id)
        ).all()

    def stats(self) -> dict:
        by_status = dict(self.db.execute(
            select(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status)
        ).all())
        by_type = dict(self.db.execute(
            select(Subscription.type, func.count(Subscription.id)).group_by(Subscription.type)
        ).all())
        revenue = self.db.scalar(
            select(func.coalesce(func.sum(Subscription.total_amount), 0))
            .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
        )
        return {
            "status_stats": {s.value: by_status.get(s.value, 0) for s in SubscriptionStatus},
            "total_active_revenue": revenue,
            "type_stats": by_type,
        }

    # Creation and edits

    def create(self, principal: Principal, data: SubscriptionCreate) -> Subscription:
        require_admin(principal)
        if not data.items:
            raise ValidationError("Subscription must contain at least one item")

        items = self._price_items(data.items)
        start = _naive_utc(data.start_date) if data.start_date else self.clock()
        end = self.calculate_end_date(start, data.type)

        subscription = Subscription(
            name=data.name,
            type=SubscriptionType(data.type).value,
            status=SubscriptionStatus.ACTIVE.value,
            items=items,
            total_amount=self.pricing.subscription_total(items),
            start_date=start,
            end_date=end,
            # First delivery is the day after the start
            next_delivery_date=start + DELIVERY_CADENCE,
            payment_method=PaymentMethod(data.payment_method).value,
            delivery_instructions=data.delivery_instructions,
            created_by=principal.id,
        )
        subscription.customer_details = data.customer_details.model_dump()

        try:
            self.db.add(subscription)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(subscription)

        logger.info(
            f"Subscription {subscription.id} created",
            extra={'extra_fields': {
                'subscription_id': subscription.id,
                'type': subscription.type,
                'created_by': principal.id,
                'end_date': subscription.end_date.isoformat(),
            }}
        )
        self.notifier.notify("subscription.created", self._event_payload(subscription))
        return subscription

    def update(self, principal: Principal, subscription_id: int, changes: SubscriptionUpdate) -> Subscription:
        subscription = self.get_by_id(principal, subscription_id)

        try:
            if changes.items is not None:
                if not changes.items:
                    raise ValidationError("Subscription must contain at least one item")
                subscription.items = self._price_items(changes.items)
                subscription.total_amount = self.pricing.subscription_total(subscription.items)
            if changes.name is not None:
                subscription.name = changes.name
            if changes.customer_details is not None:
                subscription.customer_details = changes.customer_details.model_dump(exclude_unset=True)
            if changes.payment_method is not None:
                subscription.payment_method = PaymentMethod(changes.payment_method).value
            if changes.delivery_instructions is not None:
                subscription.delivery_instructions = changes.delivery_instructions
            self.db.commit()
        except (StorefrontError, SQLAlchemyError):
            self.db.rollback()
            raise

        self.db.refresh(subscription)
        return subscription

    def delete(self, principal: Principal, subscription_id: int) -> None:
        require_admin(principal)
        subscription = self.get(subscription_id)
        try:
            self.db.delete(subscription)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info(
            f"Subscription {subscription_id} deleted",
            extra={'extra_fields': {'subscription_id': subscription_id, 'deleted_by': principal.id}}
        )

    # Status machine

    def pause(self, principal: Principal, subscription_id: int) -> Subscription:
        subscription = self.get_by_id(principal, subscription_id)
        return self._transition(
            subscription,
            expected={SubscriptionStatus.ACTIVE},
            values={"status": SubscriptionStatus.PAUSED.value},
            error="Only active subscriptions can be paused",
        )

    def resume(self, principal: Principal, subscription_id: int) -> Subscription:
        subscription = self.get_by_id(principal, subscription_id)
        return self._transition(
            subscription,
            expected={SubscriptionStatus.PAUSED},
            values={"status": SubscriptionStatus.ACTIVE.value},
            error="Only paused subscriptions can be resumed",
        )

    def cancel(self, principal: Principal, subscription_id: int) -> Subscription:
        subscription = self.get_by_id(principal, subscription_id)
        return self._transition(
            subscription,
            expected={SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED},
            values={"status": SubscriptionStatus.CANCELLED.value, "end_date": self.clock()},
            error="Only active or paused subscriptions can be cancelled",
        )

    def complete_delivery(self, principal: Principal, subscription_id: int) -> Subscription:
        require_admin(principal)
        subscription = self.get(subscription_id)

        delivered_at = self.clock()
        next_date = self.next_delivery_after(delivered_at, subscription.end_date)
        values = {"last_delivery_date": delivered_at}
        if next_date is not None:
            values["next_delivery_date"] = next_date
        else:
            values["status"] = SubscriptionStatus.EXPIRED.value
            values["next_delivery_date"] = subscription.end_date

        subscription = self._transition(
            subscription,
            expected={SubscriptionStatus.ACTIVE},
            values=values,
            error="Only active subscriptions can have deliveries completed",
            event="subscription.delivery_completed",
        )
        return subscription

    def sweep_expired(self, today: Optional[date] = None) -> int:
        """Expire every active or paused subscription whose window closed before today."""
        today = today or self.clock().date()
        try:
            result = self.db.execute(
                update(subscriptions)
                .where(
                    subscriptions.c.status.in_([
                        SubscriptionStatus.ACTIVE.value,
                        SubscriptionStatus.PAUSED.value,
                    ]),
                    subscriptions.c.end_date < _start_of(today),
                )
                .values(status=SubscriptionStatus.EXPIRED.value, updated_at=self.clock())
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        count = result.rowcount
        # Loaded instances no longer reflect the bulk update
        self.db.expire_all()
        logger.info(
            f"{count} subscriptions marked as expired",
            extra={'extra_fields': {'count': count, 'cutoff': today.isoformat()}}
        )
        if count:
            self.notifier.notify("subscription.expired_sweep", {"count": count, "cutoff": today.isoformat()})
        return count

    # Helpers

    def _transition(
        self,
        subscription: Subscription,
        expected: Iterable[SubscriptionStatus],
        values: dict,
        error: str,
        event: str = "subscription.status_changed",
    ) -> Subscription:
        expected_values = [s.value for s in expected]
        if subscription.status not in expected_values:
            raise InvalidStateError(error)

        previous = subscription.status
        try:
            result = self.db.execute(
                update(subscriptions)
                .where(
                    subscriptions.c.id == subscription.id,
                    subscriptions.c.status.in_(expected_values),
                )
                .values(updated_at=self.clock(), **values)
            )
            if result.rowcount != 1:
                # Someone else moved it between our read and this write
                self.db.rollback()
                raise InvalidStateError(error)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(subscription)
        logger.info(
            f"Subscription {subscription.id} moved from {previous} to {subscription.status}",
            extra={'extra_fields': {
                'subscription_id': subscription.id,
                'from': previous,
                'to': subscription.status,
            }}
        )
        self.notifier.notify(event, self._event_payload(subscription, previous_status=previous))
        return subscription

    def _price_items(self, items: List[SubscriptionItemCreate]) -> List[SubscriptionItem]:
        priced = []
        for item in items:
            if item.quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            product = self.db.get(Product, item.product_id)
            if not product:
                raise NotFoundError(f"Product not found: {item.product_id}")
            priced.append(SubscriptionItem(product_id=product.id, quantity=item.quantity, price=product.price))
        return priced

    @staticmethod
    def _parse(enum_cls, value):
        try:
            return enum_cls(value)
        except ValueError:
            raise ValidationError(f"Invalid {enum_cls.__name__} value: {value}")

    @staticmethod
    def _event_payload(subscription: Subscription, **extra) -> dict:
        payload = {
            "subscription_id": subscription.id,
            "name": subscription.name,
            "customer_email": subscription.customer_email,
            "status": subscription.status,
            "next_delivery_date": subscription.next_delivery_date.isoformat(),
        }
        payload.update(extra)
        return payload
