from datetime import date, datetime, timedelta
from decimal import Decimal

import pydantic
import pytest

from conftest import customer_details
from storefront.application.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from storefront.application.schemas import SubscriptionCreate, SubscriptionUpdate
from storefront.application.subscription_service import SubscriptionScheduler
from storefront.domain.models import Subscription
from storefront.domain.statuses import SubscriptionStatus, SubscriptionType


@pytest.fixture
def scheduler(db, notifier, clock):
    return SubscriptionScheduler(db, notifier=notifier, clock=clock)


def subscription_request(products, type="weekly", start=datetime(2024, 1, 1), email="alice@example.com"):
    return SubscriptionCreate(
        name="Weekly Fruit Box",
        type=type,
        items=[
            {"product_id": products["apples"], "quantity": 2},
            {"product_id": products["bananas"], "quantity": 1},
        ],
        customer_details=customer_details(email),
        start_date=start,
    )


@pytest.mark.parametrize("kind, days", [("weekly", 7), ("biweekly", 14), ("monthly", 30)])
def test_end_date_by_type(kind, days):
    start = datetime(2024, 1, 1)
    assert SubscriptionScheduler.calculate_end_date(start, kind) == start + timedelta(days=days)


def test_next_delivery_is_daily_within_window():
    end = datetime(2024, 1, 8)
    assert SubscriptionScheduler.next_delivery_after(datetime(2024, 1, 1), end) == datetime(2024, 1, 2)
    assert SubscriptionScheduler.next_delivery_after(datetime(2024, 1, 7), end) == end
    assert SubscriptionScheduler.next_delivery_after(datetime(2024, 1, 8), end) is None


def test_create_sets_window_and_total(scheduler, admin, products, notifier):
    sub = scheduler.create(admin, subscription_request(products))

    assert sub.status == SubscriptionStatus.ACTIVE.value
    assert sub.type == SubscriptionType.WEEKLY.value
    assert sub.start_date == datetime(2024, 1, 1)
    assert sub.end_date == datetime(2024, 1, 8)
    assert sub.next_delivery_date == datetime(2024, 1, 2)
    assert sub.total_amount == Decimal("25.00")
    assert sub.created_by == admin.id
    assert sub.customer_details["email"] == "alice@example.com"
    assert scheduler.calculate_next_delivery_date(sub) == datetime(2024, 1, 2)
    assert notifier.names() == ["subscription.created"]


def test_create_defaults_start_to_now(scheduler, admin, products, clock):
    clock.now = datetime(2024, 3, 10, 8, 0)
    sub = scheduler.create(admin, subscription_request(products, type="monthly", start=None))
    assert sub.start_date == datetime(2024, 3, 10, 8, 0)
    assert sub.end_date == datetime(2024, 4, 9, 8, 0)


def test_create_requires_admin(scheduler, customer, products):
    with pytest.raises(AuthorizationError):
        scheduler.create(customer, subscription_request(products))


def test_create_rejects_unknown_product(scheduler, admin, products):
    request = subscription_request(products)
    request.items[0].product_id = 999
    with pytest.raises(NotFoundError, match="Product not found: 999"):
        scheduler.create(admin, request)


def test_create_rejects_empty_items(scheduler, admin, products):
    request = subscription_request(products)
    request.items = []
    with pytest.raises(ValidationError):
        scheduler.create(admin, request)


def test_completing_deliveries_walks_to_expiry(scheduler, admin, products, clock, notifier):
    sub = scheduler.create(admin, subscription_request(products))

    expected = datetime(2024, 1, 2)
    for day in range(2, 8):
        clock.now = datetime(2024, 1, day)
        assert scheduler.is_due_for_delivery(sub)
        scheduler.complete_delivery(admin, sub.id)
        expected += timedelta(days=1)
        assert sub.next_delivery_date == expected
        assert sub.last_delivery_date == datetime(2024, 1, day)
        assert sub.status == SubscriptionStatus.ACTIVE.value

    assert sub.next_delivery_date == datetime(2024, 1, 8)
    clock.now = datetime(2024, 1, 8)
    scheduler.complete_delivery(admin, sub.id)

    assert sub.status == SubscriptionStatus.EXPIRED.value
    assert sub.next_delivery_date <= sub.end_date
    assert notifier.names().count("subscription.delivery_completed") == 7
    with pytest.raises(InvalidStateError):
        scheduler.complete_delivery(admin, sub.id)


def test_pause_and_resume_guards(scheduler, admin, customer, products):
    sub = scheduler.create(admin, subscription_request(products))

    with pytest.raises(InvalidStateError):
        scheduler.resume(customer, sub.id)

    scheduler.pause(customer, sub.id)
    assert sub.status == SubscriptionStatus.PAUSED.value
    assert not scheduler.is_due_for_delivery(sub, today=date(2024, 1, 2))

    with pytest.raises(InvalidStateError):
        scheduler.pause(customer, sub.id)

    scheduler.resume(customer, sub.id)
    assert sub.status == SubscriptionStatus.ACTIVE.value


def test_cancel_closes_window(scheduler, admin, customer, products, clock):
    sub = scheduler.create(admin, subscription_request(products))
    clock.now = datetime(2024, 1, 3, 12, 0)

    scheduler.cancel(customer, sub.id)

    assert sub.status == SubscriptionStatus.CANCELLED.value
    assert sub.end_date == datetime(2024, 1, 3, 12, 0)
    with pytest.raises(InvalidStateError):
        scheduler.cancel(customer, sub.id)
    with pytest.raises(InvalidStateError):
        scheduler.resume(customer, sub.id)


def test_transition_guard_sees_concurrent_change(db, scheduler, admin, customer, products):
    sub = scheduler.create(admin, subscription_request(products))
    # Another writer expires it behind our loaded instance
    db.execute(
        Subscription.__table__.update()
        .where(Subscription.__table__.c.id == sub.id)
        .values(status=SubscriptionStatus.EXPIRED.value)
    )
    db.commit()

    with pytest.raises(InvalidStateError):
        scheduler.pause(customer, sub.id)
    db.refresh(sub)
    assert sub.status == SubscriptionStatus.EXPIRED.value


def test_only_owner_or_admin_can_act(scheduler, admin, other_customer, products):
    sub = scheduler.create(admin, subscription_request(products))
    with pytest.raises(AuthorizationError):
        scheduler.pause(other_customer, sub.id)
    with pytest.raises(AuthorizationError):
        scheduler.get_by_id(other_customer, sub.id)
    assert scheduler.pause(admin, sub.id).status == SubscriptionStatus.PAUSED.value


def test_owner_match_ignores_email_case(scheduler, admin, customer, products):
    sub = scheduler.create(admin, subscription_request(products, email="Alice@Example.com"))
    assert scheduler.get_by_id(customer, sub.id).id == sub.id
    assert [s.id for s in scheduler.list_for_email(customer.email)] == [sub.id]


def test_sweep_expires_only_closed_windows(db, scheduler, admin, customer, products, clock, notifier):
    old_active = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 1)))
    old_paused = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 2)))
    old_cancelled = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 1)))
    ends_today = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 3)))
    current = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 9)))
    scheduler.pause(customer, old_paused.id)
    scheduler.cancel(customer, old_cancelled.id)

    count = scheduler.sweep_expired(today=date(2024, 1, 10))

    assert count == 2
    statuses = {s.id: db.get(Subscription, s.id).status for s in (old_active, old_paused, old_cancelled, ends_today, current)}
    assert statuses == {
        old_active.id: "expired",
        old_paused.id: "expired",
        old_cancelled.id: "cancelled",
        ends_today.id: "active",
        current.id: "active",
    }
    assert notifier.names()[-1] == "subscription.expired_sweep"
    assert scheduler.sweep_expired(today=date(2024, 1, 10)) == 0


def test_list_due_window(scheduler, admin, customer, products):
    first = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 1)))
    second = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 2)))
    paused = scheduler.create(admin, subscription_request(products, start=datetime(2024, 1, 1)))
    scheduler.pause(customer, paused.id)

    assert [s.id for s in scheduler.list_due(date(2024, 1, 2))] == [first.id]
    assert [s.id for s in scheduler.list_due(date(2024, 1, 2), date(2024, 1, 3))] == [first.id, second.id]
    # Defaults to the clock's day
    assert [s.id for s in scheduler.list_due()] == []
    with pytest.raises(ValidationError):
        scheduler.list_due(date(2024, 1, 3), date(2024, 1, 2))


def test_list_filters_and_search(scheduler, admin, customer, products):
    scheduler.create(admin, subscription_request(products))
    monthly = scheduler.create(admin, subscription_request(products, type="monthly", email="carol@example.com"))

    by_type = scheduler.list(admin, type="monthly")
    assert [s.id for s in by_type["subscriptions"]] == [monthly.id]
    assert by_type["pagination"]["total"] == 1

    found = scheduler.list(admin, search="CAROL")
    assert [s.id for s in found["subscriptions"]] == [monthly.id]

    with pytest.raises(ValidationError):
        scheduler.list(admin, status="dormant")
    with pytest.raises(AuthorizationError):
        scheduler.list(customer)


def test_stats(scheduler, admin, customer, products):
    first = scheduler.create(admin, subscription_request(products))
    scheduler.create(admin, subscription_request(products, type="monthly"))
    scheduler.pause(customer, first.id)

    stats = scheduler.stats()
    assert stats["status_stats"] == {"active": 1, "paused": 1, "cancelled": 0, "expired": 0}
    assert stats["type_stats"] == {"weekly": 1, "monthly": 1}
    assert Decimal(str(stats["total_active_revenue"])) == Decimal("25.00")


def test_update_reprices_items(scheduler, admin, customer, products):
    sub = scheduler.create(admin, subscription_request(products))

    updated = scheduler.update(customer, sub.id, SubscriptionUpdate(
        name="Apple Only",
        items=[{"product_id": products["apples"], "quantity": 1}],
        customer_details={"phone": "+1-555-0199"},
    ))

    assert updated.name == "Apple Only"
    assert updated.total_amount == Decimal("10.00")
    assert len(updated.items) == 1
    assert updated.customer_phone == "+1-555-0199"
    assert updated.customer_first_name == "Alice"


def test_delete(db, scheduler, admin, customer, products):
    sub = scheduler.create(admin, subscription_request(products))
    with pytest.raises(AuthorizationError):
        scheduler.delete(customer, sub.id)
    scheduler.delete(admin, sub.id)
    with pytest.raises(NotFoundError):
        scheduler.get(sub.id)


def test_payment_method_must_be_supported(scheduler, admin, customer, products):
    with pytest.raises(pydantic.ValidationError):
        SubscriptionCreate(**{**subscription_request(products).model_dump(), "payment_method": "bitcoin"})
    with pytest.raises(pydantic.ValidationError):
        SubscriptionUpdate(payment_method="barter")

    sub = scheduler.create(admin, subscription_request(products))
    assert sub.payment_method == "cod"

    updated = scheduler.update(customer, sub.id, SubscriptionUpdate(payment_method="razorpay"))
    assert updated.payment_method == "razorpay"
