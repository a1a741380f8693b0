import ledger
from models import LedgerEntry, User, Withdrawal
from withdrawal_service import DEFAULT_APPROVAL_NOTE


def _request(client, user_id, amount=200, method="upi", details=None):
    return client.post("/api/withdrawals/request", json={
        "user_id": user_id,
        "amount": amount,
        "method": method,
        "details": details if details is not None else {"upi_id": "artist@okaxis"},
    })


def _process(client, auth_headers, withdrawal_id, **body):
    return client.put(f"/api/withdrawals/admin/{withdrawal_id}/process", json=body, headers=auth_headers)


def test_request_debits_wallet(client, make_user, db_session):
    user = make_user(wallet_balance=500)

    response = _request(client, user.id, amount=200)

    assert response.status_code == 201
    withdrawal = response.json()["withdrawal"]
    assert withdrawal["status"] == "pending"
    assert withdrawal["details"] == {"upi_id": "artist@okaxis"}
    assert withdrawal["user"]["mobile"] == user.mobile_number

    db_session.expire_all()
    assert db_session.get(User, user.id).wallet_balance == 300
    assert ledger.ledger_balance(db_session, user.id) == -200


def test_request_with_bank_details(client, make_user):
    user = make_user(wallet_balance=1000)
    bank = {
        "account_holder_name": "Asha Rao",
        "account_number": "123456789012",
        "ifsc_code": "sbin0001234",
        "bank_name": "State Bank of India",
    }

    response = _request(client, user.id, amount=500, method="bank", details={"bank_details": bank})

    assert response.status_code == 201
    details = response.json()["withdrawal"]["details"]["bank_details"]
    assert details["ifsc_code"] == "SBIN0001234"
    assert details["account_holder_name"] == "Asha Rao"


def test_bank_method_requires_bank_details(client, make_user):
    user = make_user(wallet_balance=1000)

    response = _request(client, user.id, method="bank", details={})

    assert response.status_code == 422
    assert response.json()["message"] == "Bank details are required for bank withdrawals"


def test_invalid_upi_rejected(client, make_user, db_session):
    user = make_user(wallet_balance=500)

    response = _request(client, user.id, details={"upi_id": "not-a-upi"})

    assert response.status_code == 422
    assert response.json()["message"] == "Please enter a valid UPI ID"
    assert db_session.query(Withdrawal).count() == 0


def test_insufficient_balance(client, make_user, db_session):
    user = make_user(wallet_balance=150)

    response = _request(client, user.id, amount=200)

    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient wallet balance"
    db_session.expire_all()
    assert db_session.get(User, user.id).wallet_balance == 150
    assert db_session.query(Withdrawal).count() == 0
    assert db_session.query(LedgerEntry).count() == 0


def test_minimum_withdrawal_amount(client, make_user):
    user = make_user(wallet_balance=500)

    response = _request(client, user.id, amount=50)

    assert response.status_code == 400
    assert "Minimum withdrawal amount" in response.json()["message"]


def test_request_for_unknown_user(client):
    response = _request(client, 4242)

    assert response.status_code == 404


def test_approve_keeps_wallet_and_adds_default_note(client, auth_headers, make_user, db_session):
    user = make_user(wallet_balance=500)
    withdrawal_id = _request(client, user.id, amount=200).json()["withdrawal"]["id"]

    response = _process(client, auth_headers, withdrawal_id, status="completed")

    assert response.status_code == 200
    data = response.json()["withdrawal"]
    assert data["status"] == "completed"
    assert data["admin_notes"] == DEFAULT_APPROVAL_NOTE
    assert data["processed_by"] == "admin"
    assert data["processed_at"] is not None
    db_session.expire_all()
    assert db_session.get(User, user.id).wallet_balance == 300


def test_reject_requires_reason(client, auth_headers, make_user, db_session):
    user = make_user(wallet_balance=500)
    withdrawal_id = _request(client, user.id, amount=200).json()["withdrawal"]["id"]

    response = _process(client, auth_headers, withdrawal_id, status="rejected", rejection_reason="   ")

    assert response.status_code == 400
    db_session.expire_all()
    assert db_session.get(Withdrawal, withdrawal_id).status == "pending"
    assert db_session.get(User, user.id).wallet_balance == 300


def test_reject_refunds_wallet(client, auth_headers, make_user, db_session):
    user = make_user(wallet_balance=500)
    withdrawal_id = _request(client, user.id, amount=200).json()["withdrawal"]["id"]

    response = _process(client, auth_headers, withdrawal_id, status="rejected", rejection_reason="UPI ID inactive")

    assert response.status_code == 200
    data = response.json()["withdrawal"]
    assert data["status"] == "rejected"
    assert data["rejection_reason"] == "UPI ID inactive"
    db_session.expire_all()
    assert db_session.get(User, user.id).wallet_balance == 500
    reasons = [e.reason for e in db_session.query(LedgerEntry).order_by(LedgerEntry.id)]
    assert reasons == [ledger.WITHDRAWAL_DEBIT, ledger.WITHDRAWAL_REFUND]


def test_withdrawal_processed_once(client, auth_headers, make_user, db_session):
    user = make_user(wallet_balance=500)
    withdrawal_id = _request(client, user.id, amount=200).json()["withdrawal"]["id"]

    assert _process(client, auth_headers, withdrawal_id, status="rejected", rejection_reason="Wrong UPI").status_code == 200
    again = _process(client, auth_headers, withdrawal_id, status="rejected", rejection_reason="Wrong UPI")

    assert again.status_code == 409
    db_session.expire_all()
    assert db_session.get(User, user.id).wallet_balance == 500


def test_cancel_refunds_wallet(client, make_user, db_session):
    user = make_user(wallet_balance=500)
    withdrawal_id = _request(client, user.id, amount=200).json()["withdrawal"]["id"]

    response = client.post(f"/api/withdrawals/{withdrawal_id}/cancel", json={"user_id": user.id})

    assert response.status_code == 200
    assert response.json()["withdrawal"]["status"] == "cancelled"
    db_session.expire_all()
    assert db_session.get(User, user.id).wallet_balance == 500


def test_cancel_by_other_user_not_found(client, make_user, db_session):
    owner = make_user(wallet_balance=500)
    stranger = make_user()
    withdrawal_id = _request(client, owner.id, amount=200).json()["withdrawal"]["id"]

    response = client.post(f"/api/withdrawals/{withdrawal_id}/cancel", json={"user_id": stranger.id})

    assert response.status_code == 404
    db_session.expire_all()
    assert db_session.get(Withdrawal, withdrawal_id).status == "pending"


def test_cannot_cancel_processed_withdrawal(client, auth_headers, make_user):
    user = make_user(wallet_balance=500)
    withdrawal_id = _request(client, user.id, amount=200).json()["withdrawal"]["id"]
    _process(client, auth_headers, withdrawal_id, status="completed")

    response = client.post(f"/api/withdrawals/{withdrawal_id}/cancel", json={"user_id": user.id})

    assert response.status_code == 409


def test_list_withdrawals_by_status(client, auth_headers, make_user):
    user = make_user(wallet_balance=1000)
    first = _request(client, user.id, amount=200).json()["withdrawal"]["id"]
    second = _request(client, user.id, amount=300).json()["withdrawal"]["id"]
    _process(client, auth_headers, first, status="completed")

    pending = client.get("/api/withdrawals/admin/all", params={"status": "pending"}, headers=auth_headers)
    everything = client.get("/api/withdrawals/admin/all", params={"status": "all"}, headers=auth_headers)

    assert [w["id"] for w in pending.json()["withdrawals"]] == [second]
    assert everything.json()["count"] == 2


def test_export_withdrawals_csv(client, auth_headers, make_user):
    user = make_user(wallet_balance=1000, username="meera")
    _request(client, user.id, amount=250)

    response = client.get("/api/withdrawals/admin/export", params={"format": "csv"}, headers=auth_headers)

    assert response.status_code == 200
    assert "attachment; filename=withdrawals_" in response.headers["content-disposition"]
    assert "meera" in response.text
    assert "artist@okaxis" in response.text
