from datetime import datetime, timedelta

import pytest

from coupon_rules import (
    ACTIVE, EXPIRED, INACTIVE, LIMIT_REACHED, check_redeemable, compute_discount, coupon_display_status
)
from errors import ValidationFailed
from models import Coupon

NOW = datetime(2026, 6, 1, 12, 0)
TOMORROW = NOW + timedelta(days=1)
YESTERDAY = NOW - timedelta(days=1)


@pytest.mark.parametrize("is_active,expiry,limit,used,expected", [
    (True, TOMORROW, None, 500, ACTIVE),
    (True, TOMORROW, 10, 9, ACTIVE),
    (True, TOMORROW, 10, 10, LIMIT_REACHED),
    (True, YESTERDAY, None, 0, EXPIRED),
    (True, YESTERDAY, 10, 10, EXPIRED),
    (False, YESTERDAY, 10, 10, INACTIVE),
    (False, TOMORROW, None, 0, INACTIVE),
])
def test_display_status_precedence(is_active, expiry, limit, used, expected):
    assert coupon_display_status(is_active, expiry, limit, used, now=NOW) == expected


def test_display_status_accepts_iso_strings():
    assert coupon_display_status(True, "2026-05-31T23:59:59Z", None, 0, now=NOW) == EXPIRED
    assert coupon_display_status(True, "2026-06-01T12:00:01", None, 0, now=NOW) == ACTIVE
    # 17:00 IST is 11:30 UTC; 08:00 at -05:00 is 13:00 UTC
    assert coupon_display_status(True, "2026-06-01T17:00:00+05:30", None, 0, now=NOW) == EXPIRED
    assert coupon_display_status(True, "2026-06-01T08:00:00-05:00", None, 0, now=NOW) == ACTIVE


def test_compute_discount():
    assert compute_discount("percentage", 10, 500) == 50
    assert compute_discount("percentage", 50, 1000, max_discount_amount=200) == 200
    assert compute_discount("fixed", 150, 100) == 100
    assert compute_discount("fixed", 40, 100) == 40


def test_check_redeemable_rules(make_campaign, db_session):
    campaign = make_campaign()
    other = make_campaign()
    coupon = Coupon(code="ONLYONE", discount_type="fixed", discount_value=30, min_purchase_amount=100,
                    expiry_date=TOMORROW, used_count=0, is_active=True, applicable_campaigns=[campaign])
    db_session.add(coupon)
    db_session.commit()

    assert check_redeemable(coupon, 200, campaign.id, now=NOW) == 30
    with pytest.raises(ValidationFailed, match="not valid for this campaign"):
        check_redeemable(coupon, 200, other.id, now=NOW)
    with pytest.raises(ValidationFailed, match="Minimum purchase"):
        check_redeemable(coupon, 50, campaign.id, now=NOW)
    with pytest.raises(ValidationFailed, match="expired"):
        check_redeemable(coupon, 200, campaign.id, now=TOMORROW + timedelta(seconds=1))


def _coupon_payload(**overrides):
    payload = {
        "code": "summer25",
        "description": "Summer sale",
        "discount_type": "percentage",
        "discount_value": 25,
        "min_purchase_amount": 100,
        "max_discount_amount": 150,
        "expiry_date": (datetime.utcnow() + timedelta(days=30)).isoformat(),
        "usage_limit": 2,
        "applicable_campaigns": [],
    }
    payload.update(overrides)
    return payload


def test_create_coupon(client, auth_headers):
    response = client.post("/api/coupons", json=_coupon_payload(), headers=auth_headers)

    assert response.status_code == 201
    coupon = response.json()["coupon"]
    assert coupon["code"] == "SUMMER25"
    assert coupon["used_count"] == 0
    assert coupon["is_active"] is True
    assert coupon["display_status"] == ACTIVE


def test_duplicate_code_conflicts(client, auth_headers):
    client.post("/api/coupons", json=_coupon_payload(), headers=auth_headers)

    response = client.post("/api/coupons", json=_coupon_payload(code="SUMMER25"), headers=auth_headers)

    assert response.status_code == 409


def test_fixed_coupon_drops_max_discount(client, auth_headers):
    response = client.post(
        "/api/coupons",
        json=_coupon_payload(code="FLAT50", discount_type="fixed", discount_value=50, max_discount_amount=20),
        headers=auth_headers,
    )

    assert response.status_code == 201
    assert response.json()["coupon"]["max_discount_amount"] is None


def test_percentage_over_100_rejected(client, auth_headers):
    response = client.post("/api/coupons", json=_coupon_payload(discount_value=120), headers=auth_headers)

    assert response.status_code == 422
    assert response.json()["message"] == "Percentage discount cannot exceed 100"


def test_invalid_code_rejected(client, auth_headers):
    response = client.post("/api/coupons", json=_coupon_payload(code="no spaces!"), headers=auth_headers)

    assert response.status_code == 422


def test_coupon_with_unknown_campaign(client, auth_headers):
    response = client.post("/api/coupons", json=_coupon_payload(applicable_campaigns=[999]), headers=auth_headers)

    assert response.status_code == 400


def test_update_coupon(client, auth_headers, make_campaign):
    campaign = make_campaign()
    coupon_id = client.post("/api/coupons", json=_coupon_payload(), headers=auth_headers).json()["coupon"]["id"]

    response = client.put(
        f"/api/coupons/{coupon_id}",
        json=_coupon_payload(discount_value=30, applicable_campaigns=[campaign.id]),
        headers=auth_headers,
    )

    assert response.status_code == 200
    coupon = response.json()["coupon"]
    assert coupon["discount_value"] == 30
    assert coupon["applicable_campaigns"] == [{"id": campaign.id, "name": campaign.name}]


def test_toggle_and_delete_coupon(client, auth_headers, db_session):
    coupon_id = client.post("/api/coupons", json=_coupon_payload(), headers=auth_headers).json()["coupon"]["id"]

    toggled = client.patch(f"/api/coupons/{coupon_id}/toggle-status", headers=auth_headers)
    assert toggled.json()["coupon"]["display_status"] == INACTIVE
    assert toggled.json()["message"] == "Coupon deactivated successfully"

    deleted = client.delete(f"/api/coupons/{coupon_id}", headers=auth_headers)
    assert deleted.status_code == 200
    assert client.get(f"/api/coupons/{coupon_id}", headers=auth_headers).status_code == 404


def test_list_coupons(client, auth_headers):
    client.post("/api/coupons", json=_coupon_payload(code="FIRST"), headers=auth_headers)
    client.post("/api/coupons", json=_coupon_payload(code="SECOND"), headers=auth_headers)

    response = client.get("/api/coupons", headers=auth_headers)

    assert {c["code"] for c in response.json()["coupons"]} == {"FIRST", "SECOND"}


def test_validate_coupon(client, auth_headers):
    client.post("/api/coupons", json=_coupon_payload(), headers=auth_headers)

    response = client.post("/api/coupons/validate", json={"code": "summer25", "amount": 400})

    assert response.status_code == 200
    assert response.json()["discount"] == 100
    assert response.json()["final_amount"] == 300


def test_validate_unknown_coupon(client):
    response = client.post("/api/coupons/validate", json={"code": "NOPE", "amount": 400})

    assert response.status_code == 404


def test_apply_coupon_until_limit(client, auth_headers, db_session):
    coupon_id = client.post("/api/coupons", json=_coupon_payload(usage_limit=2), headers=auth_headers).json()["coupon"]["id"]
    body = {"code": "SUMMER25", "amount": 1000}

    assert client.post("/api/coupons/apply", json=body).json()["discount"] == 150
    assert client.post("/api/coupons/apply", json=body).status_code == 200
    third = client.post("/api/coupons/apply", json=body)

    assert third.status_code == 400
    assert third.json()["message"] == "This coupon has reached its usage limit"
    db_session.expire_all()
    coupon = db_session.get(Coupon, coupon_id)
    assert coupon.used_count == 2
    assert client.get(f"/api/coupons/{coupon_id}", headers=auth_headers).json()["coupon"]["display_status"] == LIMIT_REACHED
