from datetime import datetime, timedelta, timezone

import pytest

from kapstone_backend.app.billing import (
    MemberAccount,
    MemberRole,
    PlanCatalog,
    PlanInterval,
    SubscriptionStatus,
    SubscriptionTransition,
    UnknownPlanError,
    map_provider_status,
    role_for_membership,
)
from kapstone_backend.app.billing.models import is_stale_transition

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _account(**overrides) -> MemberAccount:
    values = {"user_id": "u1", "email": "member@example.com", "role": MemberRole.PROFESSIONAL}
    values.update(overrides)
    return MemberAccount(**values)


def test_stale_rule_orders_by_provider_timestamp():
    assert is_stale_transition(None, SubscriptionStatus.NONE, T0) is False
    assert is_stale_transition(T0, SubscriptionStatus.ACTIVE, T0 + timedelta(seconds=1)) is False
    assert is_stale_transition(T0, SubscriptionStatus.ACTIVE, T0 - timedelta(seconds=1)) is True


def test_stale_rule_tie_only_protects_cancellation():
    assert is_stale_transition(T0, SubscriptionStatus.ACTIVE, T0) is False
    assert is_stale_transition(T0, SubscriptionStatus.PAST_DUE, T0) is False
    assert is_stale_transition(T0, SubscriptionStatus.CANCELED, T0) is True


def test_apply_to_records_clock_and_ids():
    transition = SubscriptionTransition(
        status=SubscriptionStatus.ACTIVE,
        grant_role=MemberRole.CLINIC_ADMIN,
        subscription_id="sub_1",
        stripe_customer_id="cus_1",
    )

    updated = transition.apply_to(_account(subscription_ended_at=T0), T0, now=T0 + timedelta(minutes=1))

    assert updated.role == MemberRole.CLINIC_ADMIN
    assert updated.subscription_event_at == T0
    assert updated.subscription_updated_at == T0 + timedelta(minutes=1)
    assert updated.subscription_ended_at is None
    assert updated.subscription_id == "sub_1"
    assert updated.stripe_customer_id == "cus_1"


def test_apply_to_returns_none_for_stale_transition():
    account = _account(subscription_status=SubscriptionStatus.CANCELED, subscription_event_at=T0)
    transition = SubscriptionTransition(status=SubscriptionStatus.ACTIVE)

    assert transition.apply_to(account, T0) is None
    assert transition.apply_to(account, T0 - timedelta(hours=1)) is None


def test_late_checkout_grants_role_without_moving_status_or_clock():
    later = T0 + timedelta(seconds=1)
    account = _account(
        subscription_id="sub_1",
        subscription_status=SubscriptionStatus.PAST_DUE,
        subscription_event_at=later,
    )
    checkout = SubscriptionTransition(
        status=SubscriptionStatus.ACTIVE,
        grant_role=MemberRole.CLINIC_ADMIN,
        subscription_id="sub_1",
        stripe_customer_id="cus_1",
        switches_subscription=True,
    )

    updated = checkout.apply_to(account, T0)

    assert updated.role == MemberRole.CLINIC_ADMIN
    assert updated.subscription_status == SubscriptionStatus.PAST_DUE
    assert updated.subscription_event_at == later
    assert updated.stripe_customer_id == "cus_1"


def test_late_checkout_is_dropped_after_cancellation_or_for_another_subscription():
    checkout = SubscriptionTransition(
        status=SubscriptionStatus.ACTIVE,
        grant_role=MemberRole.CLINIC_ADMIN,
        subscription_id="sub_1",
        switches_subscription=True,
    )
    later = T0 + timedelta(seconds=1)

    canceled = _account(subscription_id="sub_1", subscription_status=SubscriptionStatus.CANCELED, subscription_event_at=later)
    switched = _account(subscription_id="sub_2", subscription_status=SubscriptionStatus.ACTIVE, subscription_event_at=later)

    assert checkout.apply_to(canceled, T0) is None
    assert checkout.apply_to(switched, T0) is None


def test_events_for_another_subscription_are_not_written():
    account = _account(subscription_id="sub_2", subscription_status=SubscriptionStatus.ACTIVE, subscription_event_at=T0)
    deleted = SubscriptionTransition(
        status=SubscriptionStatus.CANCELED,
        downgrade_role=True,
        ended=True,
        subscription_id="sub_1",
    )

    assert deleted.targets_other_subscription(account) is True
    assert deleted.apply_to(account, T0 + timedelta(hours=1)) is None
    assert SubscriptionTransition(status=SubscriptionStatus.ACTIVE, subscription_id="sub_1").targets_other_subscription(
        _account()
    ) is False


def test_cancellation_downgrades_paid_role_and_keeps_super_admin():
    cancel = SubscriptionTransition(status=SubscriptionStatus.CANCELED, downgrade_role=True, ended=True)

    assert cancel.resolve_role(MemberRole.CLINIC_ADMIN) == MemberRole.PROFESSIONAL
    assert cancel.resolve_role(MemberRole.PATIENT) == MemberRole.PATIENT
    assert cancel.resolve_role(MemberRole.SUPER_ADMIN) == MemberRole.SUPER_ADMIN
    assert SubscriptionTransition(
        status=SubscriptionStatus.ACTIVE, grant_role=MemberRole.CLINIC_ADMIN
    ).resolve_role(MemberRole.SUPER_ADMIN) == MemberRole.SUPER_ADMIN

    ended = cancel.apply_to(_account(role=MemberRole.CLINIC_ADMIN), T0, now=T0)
    assert ended.subscription_ended_at == T0


@pytest.mark.parametrize(
    "value, expected",
    [
        ("clinic", MemberRole.CLINIC_ADMIN),
        ("Solo", MemberRole.CLINIC_ADMIN),
        ("clinic_admin", MemberRole.CLINIC_ADMIN),
        ("affiliate", MemberRole.PROFESSIONAL),
        ("professional", MemberRole.PROFESSIONAL),
        ("super_admin", None),
        ("", None),
        (None, None),
    ],
)
def test_role_for_membership(value, expected):
    assert role_for_membership(value) == expected


def test_unrecognized_membership_logs_warning(caplog):
    with caplog.at_level("WARNING"):
        assert role_for_membership("platinum") is None
    assert "platinum" in caplog.text


def test_provider_status_mapping():
    assert map_provider_status("active") == SubscriptionStatus.ACTIVE
    assert map_provider_status("trialing") == SubscriptionStatus.ACTIVE
    assert map_provider_status("unpaid") == SubscriptionStatus.PAST_DUE
    assert map_provider_status("incomplete_expired") == SubscriptionStatus.CANCELED
    assert map_provider_status("incomplete") == SubscriptionStatus.PENDING
    assert map_provider_status("paused") is None
    assert map_provider_status(None) is None


def test_catalog_is_closed():
    catalog = PlanCatalog(
        {
            PlanInterval.WEEKLY: "price_w",
            PlanInterval.MONTHLY: "price_m",
            PlanInterval.YEARLY: "price_y",
        }
    )

    assert [plan.interval for plan in catalog.plans()] == [
        PlanInterval.WEEKLY,
        PlanInterval.MONTHLY,
        PlanInterval.YEARLY,
    ]
    assert catalog.by_price_id("price_y").interval == PlanInterval.YEARLY
    with pytest.raises(UnknownPlanError):
        catalog.by_price_id("price_other")
    with pytest.raises(UnknownPlanError):
        PlanCatalog({PlanInterval.WEEKLY: "price_w"})
