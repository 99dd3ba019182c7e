"""
Tests for premium activation: webhook signature, payload parsing,
idempotency and the pre-payment / polling helpers.
"""

import hmac
import json
import hashlib

import pytest

from modules.premium import (
    PremiumService,
    WebhookPayloadError,
    WebhookSignatureError,
    parse_support_payload,
    verify_signature,
)
from modules.search_limits import SearchLimiter
from modules.storage import PrePayment, SearchRecord, Supporter

SECRET = "whsec_test"


def sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(**data) -> bytes:
    fields = {
        "supporter_email": "Fan@Example.com",
        "amount": 5,
        "transaction_id": "TXN-1001",
        "support_type": "coffee",
        "supporter_name": "Sam",
        "message": "Love the site",
    }
    fields.update(data)
    return json.dumps({"type": "donation.created", "data": fields}).encode()


def test_verify_signature_accepts_valid_digest():
    body = webhook_body()
    assert verify_signature(body, sign(body), SECRET) is True
    assert verify_signature(body, sign(body).upper(), SECRET) is True


def test_verify_signature_rejects_tampering():
    body = webhook_body()
    signature = sign(body)

    assert verify_signature(body + b" ", signature, SECRET) is False
    assert verify_signature(body, sign(body, "other"), SECRET) is False
    assert verify_signature(body, None, SECRET) is False
    assert verify_signature(body, signature, None) is False


def test_parse_payload_normalizes_fields():
    payment = parse_support_payload(webhook_body(ip_address="203.0.113.7"))

    assert payment.email == "fan@example.com"
    assert payment.amount == 5.0
    assert payment.transaction_id == "TXN-1001"
    assert payment.ip_address == "203.0.113.7"


def test_parse_payload_accepts_payer_email():
    body = webhook_body(supporter_email=None, payer_email="payer@example.com")
    assert parse_support_payload(body).email == "payer@example.com"


@pytest.mark.parametrize("body, message", [
    (b"not json", "Failed to parse body"),
    (json.dumps({"type": "x"}).encode(), "Missing 'data' object"),
    (webhook_body(transaction_id=None), "Missing required fields: transaction_id"),
    (webhook_body(amount=3), "Invalid support amount"),
    (webhook_body(amount="lots"), "Invalid support amount"),
])
def test_parse_payload_rejects_bad_bodies(body, message):
    with pytest.raises(WebhookPayloadError, match=message):
        parse_support_payload(body)


def test_webhook_creates_verified_supporter(db):
    service = PremiumService(db, secret=SECRET)
    body = webhook_body(ip_address="203.0.113.7")

    result = service.handle_webhook(body, sign(body))

    assert result.status == "created"
    assert result.message == "Success"
    with db.session_scope() as session:
        supporter = session.query(Supporter).one()
        assert supporter.verified is True
        assert supporter.unlimited_searches is True
        assert supporter.email == "fan@example.com"
        assert supporter.details["platform"] == "buymeacoffee"
        assert "verified_at" in supporter.details


def test_webhook_is_idempotent(db):
    service = PremiumService(db, secret=SECRET)
    body = webhook_body()

    service.handle_webhook(body, sign(body))
    again = service.handle_webhook(body, sign(body))

    assert again.status == "duplicate"
    assert again.message == "Transaction already processed"
    with db.session_scope() as session:
        assert session.query(Supporter).count() == 1


def test_webhook_bad_signature_writes_nothing(db):
    service = PremiumService(db, secret=SECRET)
    body = webhook_body()

    with pytest.raises(WebhookSignatureError):
        service.handle_webhook(body, "deadbeef")

    with db.session_scope() as session:
        assert session.query(Supporter).count() == 0


def test_webhook_links_pre_payment_uuid(db, visitor):
    service = PremiumService(db, secret=SECRET)
    service.register_pre_payment(visitor, "fan@example.com")

    body = webhook_body()
    result = service.handle_webhook(body, sign(body), source_ip="192.0.2.1")

    assert result.visitor_uuid == visitor.uuid


def test_webhook_links_uuid_from_ip_ledger(db, visitor):
    SearchLimiter(db).consume(visitor)
    service = PremiumService(db, secret=SECRET)

    body = webhook_body(supporter_email="someone@example.com", ip_address=visitor.ip)
    result = service.handle_webhook(body, sign(body), source_ip="192.0.2.1")

    assert result.visitor_uuid == visitor.uuid


def test_webhook_stores_payer_ip_from_pre_payment(db, visitor):
    service = PremiumService(db, secret=SECRET)
    service.register_pre_payment(visitor, "fan@example.com")

    body = webhook_body()
    service.handle_webhook(body, sign(body), source_ip="192.0.2.1")

    with db.session_scope() as session:
        assert session.query(Supporter).one().ip_address == visitor.ip


def test_webhook_never_stores_delivery_ip(db, visitor):
    SearchLimiter(db).consume(visitor)
    service = PremiumService(db, secret=SECRET)

    body = webhook_body(supporter_email="stranger@example.com")
    result = service.handle_webhook(body, sign(body), source_ip=visitor.ip)

    assert result.visitor_uuid is None
    with db.session_scope() as session:
        assert session.query(Supporter).one().ip_address is None
    assert SearchLimiter(db).is_premium(visitor) is False


def test_supporter_becomes_premium(db, visitor):
    service = PremiumService(db, secret=SECRET)
    limiter = SearchLimiter(db, limit=1)
    limiter.consume(visitor)
    assert limiter.check(visitor).can_search is False

    body = webhook_body(visitor_uuid=visitor.uuid)
    service.handle_webhook(body, sign(body))

    status = limiter.check(visitor)
    assert status.can_search is True
    assert status.is_premium is True


def test_register_pre_payment_upserts(db, visitor):
    service = PremiumService(db, secret=SECRET)

    links = service.register_pre_payment(visitor, "First@Example.com")
    service.register_pre_payment(visitor, "second@example.com")

    assert links["return_url"] == f"https://ezstreamto.com/premium-success?uuid={visitor.uuid}"
    assert links["visitor_uuid"] == visitor.uuid
    with db.session_scope() as session:
        rows = session.query(PrePayment).all()
        assert len(rows) == 1
        assert rows[0].email == "second@example.com"


def test_premium_status_lookups(db, visitor):
    service = PremiumService(db, secret=SECRET)
    assert service.premium_status(uuid=visitor.uuid)["is_premium"] is False

    body = webhook_body(visitor_uuid=visitor.uuid)
    service.handle_webhook(body, sign(body))

    by_uuid = service.premium_status(uuid=visitor.uuid)
    assert by_uuid["is_premium"] is True
    assert by_uuid["matched_on"] == "visitor_uuid"

    by_email = service.premium_status(email="FAN@example.com")
    assert by_email["matched_on"] == "email"


def test_search_record_untouched_by_webhook(db, visitor):
    SearchLimiter(db).consume(visitor)
    service = PremiumService(db, secret=SECRET)
    body = webhook_body()
    service.handle_webhook(body, sign(body), source_ip=visitor.ip)

    with db.session_scope() as session:
        assert session.get(SearchRecord, visitor.ip).search_count == 1
