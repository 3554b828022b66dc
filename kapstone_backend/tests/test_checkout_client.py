import json

import httpx
import pytest

from kapstone_backend.app.billing import MemberAccount, PlanCatalog, PlanInterval
from kapstone_backend.app.billing.checkout_client import (
    CHECKOUT_SESSION_PATH,
    CheckoutError,
    CheckoutInitiator,
    LoginRequiredError,
)

CATALOG = PlanCatalog(
    {
        PlanInterval.WEEKLY: "price_weekly",
        PlanInterval.MONTHLY: "price_monthly",
        PlanInterval.YEARLY: "price_yearly",
    }
)
MEMBER = MemberAccount(user_id="user-1", email="member@example.com")


def _initiator(handler, navigated=None) -> CheckoutInitiator:
    return CheckoutInitiator(
        "https://api.test",
        CATALOG,
        navigate=navigated.append if navigated is not None else None,
        transport=httpx.MockTransport(handler),
    )


def test_successful_checkout_navigates_to_provider():
    requests = []
    navigated = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"url": "https://checkout.test/cs_1", "sessionId": "cs_1"})

    url = _initiator(handler, navigated).start_checkout(
        PlanInterval.YEARLY, MEMBER, access_token="jwt-token", membership_type="clinic"
    )

    assert url == "https://checkout.test/cs_1"
    assert navigated == ["https://checkout.test/cs_1"]
    assert requests[0].url.path == CHECKOUT_SESSION_PATH
    assert requests[0].headers["Authorization"] == "Bearer jwt-token"
    assert json.loads(requests[0].content) == {
        "priceId": "price_yearly",
        "userId": "user-1",
        "membershipType": "clinic",
    }


def test_signed_out_member_is_asked_to_log_in_without_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(LoginRequiredError):
        _initiator(handler).start_checkout("monthly", None)


def test_non_2xx_surfaces_error_and_does_not_navigate():
    navigated = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"detail": "Unknown price id"})

    with pytest.raises(CheckoutError) as excinfo:
        _initiator(handler, navigated).start_checkout("weekly", MEMBER)

    assert excinfo.value.status_code == 400
    assert "Unknown price id" in str(excinfo.value)
    assert navigated == []


def test_network_failure_surfaces_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(CheckoutError):
        _initiator(handler).start_checkout("weekly", MEMBER)


def test_response_without_url_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"sessionId": "cs_1"})

    with pytest.raises(CheckoutError):
        _initiator(handler).start_checkout("weekly", MEMBER)


def test_bank_account_checkout_sends_payment_method():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"url": "https://checkout.test/cs_ach"})

    _initiator(handler).start_checkout("monthly", MEMBER, payment_method="us_bank_account")

    assert json.loads(requests[0].content)["paymentMethod"] == "us_bank_account"
