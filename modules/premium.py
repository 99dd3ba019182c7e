"""
Premium activation.
Handles the Buy Me a Coffee webhook that turns a one-time payment into an
unlimited-searches supporter record, plus the pre-payment bookkeeping that
links a payer's email back to their visitor UUID.
"""

import hmac
import json
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Tuple
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from config import Config
from modules.storage import Database, PrePayment, SearchRecord, Supporter, utcnow
from modules.visitor import Visitor

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature-sha256"


class PremiumError(Exception):
    """Base exception for premium errors."""
    pass


class WebhookSignatureError(PremiumError):
    """Raised when the webhook signature is missing or wrong."""
    pass


class WebhookPayloadError(PremiumError):
    """Raised when the webhook body is unusable."""
    pass


class PremiumRequiredError(PremiumError):
    """Raised when a free visitor asks for a premium-only feature."""
    pass


@dataclass
class SupportPayment:
    email: str
    amount: float
    transaction_id: str
    support_type: Optional[str] = None
    supporter_name: Optional[str] = None
    message: Optional[str] = None
    ip_address: Optional[str] = None
    visitor_uuid: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookResult:
    status: str  # 'created' | 'duplicate'
    transaction_id: str
    visitor_uuid: Optional[str] = None

    @property
    def message(self) -> str:
        if self.status == "duplicate":
            return "Transaction already processed"
        return "Success"


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check the HMAC-SHA256 hex digest of the raw request body.

    Args:
        raw_body: Body exactly as received
        signature: Value of the X-Signature-Sha256 header
        secret: Shared webhook secret

    Returns:
        True if the signature matches
    """
    if not signature or not secret:
        return False

    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def parse_support_payload(raw_body: bytes, min_amount: Optional[float] = None) -> SupportPayment:
    """
    Parse and validate the webhook JSON.

    Raises:
        WebhookPayloadError: On malformed JSON, missing fields or an amount
            below the premium minimum
    """
    min_amount = Config.MIN_SUPPORT_AMOUNT if min_amount is None else min_amount

    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise WebhookPayloadError(f"Failed to parse body: {e}")

    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        raise WebhookPayloadError("Missing 'data' object")

    email = data.get("supporter_email") or data.get("payer_email")
    amount = data.get("amount") or data.get("total_amount")
    transaction_id = data.get("transaction_id")

    missing = [name for name, value in
               (("email", email), ("amount", amount), ("transaction_id", transaction_id))
               if not value]
    if missing:
        raise WebhookPayloadError(f"Missing required fields: {', '.join(missing)}")

    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise WebhookPayloadError(f"Invalid support amount: {amount}")

    if amount < min_amount:
        raise WebhookPayloadError(f"Invalid support amount: {amount} (minimum {min_amount})")

    return SupportPayment(
        email=str(email).strip().lower(),
        amount=amount,
        transaction_id=str(transaction_id),
        support_type=data.get("support_type"),
        supporter_name=data.get("supporter_name"),
        message=data.get("message") or data.get("support_note"),
        ip_address=data.get("ip_address"),
        visitor_uuid=data.get("visitor_uuid"),
    )


class PremiumService:
    """Creates supporter records and answers premium-status lookups."""

    def __init__(self, db: Database, secret: Optional[str] = None):
        self.db = db
        self.secret = secret if secret is not None else Config.BMC_WEBHOOK_SECRET

    def _resolve_visitor(self, session, payment: SupportPayment) -> Tuple[Optional[str], Optional[str]]:
        """
        Work out which visitor paid: (visitor_uuid, ip_address).

        Payload fields first, then the pre-payment made with this email, then
        the ledger row for the payload IP. The delivering request's own address
        belongs to Buy Me a Coffee, never to the payer.
        """
        visitor_uuid, ip = payment.visitor_uuid, payment.ip_address

        if not visitor_uuid or not ip:
            pre_payment = session.execute(
                select(PrePayment)
                .where(PrePayment.email == payment.email)
                .order_by(PrePayment.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            if pre_payment:
                visitor_uuid = visitor_uuid or pre_payment.visitor_uuid
                ip = ip or pre_payment.ip_address

        if not visitor_uuid and ip:
            record = session.get(SearchRecord, ip)
            if record and record.visitor_uuid:
                visitor_uuid = record.visitor_uuid

        return visitor_uuid, ip

    def handle_webhook(self, raw_body: bytes, signature: Optional[str],
                       source_ip: Optional[str] = None) -> WebhookResult:
        """
        Process one donation webhook delivery.

        Args:
            raw_body: Raw request body
            signature: X-Signature-Sha256 header value
            source_ip: Address the request came from, for the log only

        Returns:
            WebhookResult ('created' or 'duplicate')

        Raises:
            WebhookSignatureError: Bad or missing signature
            WebhookPayloadError: Unusable payload
        """
        logger.info("Received BMC webhook from %s", source_ip or "unknown")

        if not verify_signature(raw_body, signature, self.secret):
            logger.error("✗ Invalid BMC signature")
            raise WebhookSignatureError("Invalid signature")

        payment = parse_support_payload(raw_body)

        try:
            with self.db.session_scope() as session:
                existing = session.execute(
                    select(Supporter.id).where(Supporter.transaction_id == payment.transaction_id)
                ).scalar_one_or_none()
                if existing is not None:
                    logger.info("Duplicate transaction: %s", payment.transaction_id)
                    return WebhookResult("duplicate", payment.transaction_id)

                visitor_uuid, ip_address = self._resolve_visitor(session, payment)
                now = utcnow()

                session.add(Supporter(
                    email=payment.email,
                    visitor_uuid=visitor_uuid,
                    ip_address=ip_address,
                    transaction_id=payment.transaction_id,
                    amount=payment.amount,
                    verified=True,
                    unlimited_searches=True,
                    support_type=payment.support_type,
                    support_status="active",
                    support_date=now,
                    details={
                        "platform": "buymeacoffee",
                        "supporter_name": payment.supporter_name,
                        "message": payment.message,
                        "verified_at": now.isoformat(),
                    },
                ))

        except IntegrityError:
            logger.info("Duplicate transaction (concurrent delivery): %s", payment.transaction_id)
            return WebhookResult("duplicate", payment.transaction_id)

        logger.info("✓ Support record created for transaction %s (visitor %s)",
                    payment.transaction_id, visitor_uuid or "unknown")
        return WebhookResult("created", payment.transaction_id, visitor_uuid)

    def register_pre_payment(self, visitor: Visitor, email: Optional[str] = None) -> Dict[str, str]:
        """
        Remember who is about to pay, and build the donation links.

        Args:
            visitor: Resolved visitor
            email: Email the visitor will pay with (optional)

        Returns:
            Dict with 'donation_url' and 'return_url'
        """
        email = email.strip().lower() if email and email.strip() else visitor.email

        with self.db.session_scope() as session:
            pre_payment = session.get(PrePayment, visitor.uuid)
            if pre_payment is None:
                session.add(PrePayment(
                    visitor_uuid=visitor.uuid,
                    email=email,
                    ip_address=visitor.ip,
                    created_at=utcnow(),
                ))
            else:
                pre_payment.email = email or pre_payment.email
                pre_payment.ip_address = visitor.ip
                pre_payment.created_at = utcnow()

        return_url = f"{Config.SITE_URL.rstrip('/')}/premium-success?{urlencode({'uuid': visitor.uuid})}"
        return {
            "donation_url": Config.DONATION_URL,
            "return_url": return_url,
            "visitor_uuid": visitor.uuid,
        }

    def premium_status(self, uuid: Optional[str] = None, email: Optional[str] = None,
                       ip: Optional[str] = None) -> Dict[str, Any]:
        """Look up a verified supporter by UUID, email or IP (first match wins, in that order)."""
        lookups = [
            (Supporter.visitor_uuid, uuid),
            (Supporter.email, email.strip().lower() if email else None),
            (Supporter.ip_address, ip),
        ]

        with self.db.session_scope() as session:
            for column, value in lookups:
                if not value:
                    continue
                supporter = session.execute(
                    select(Supporter)
                    .where(column == value)
                    .where(Supporter.verified.is_(True))
                    .limit(1)
                ).scalar_one_or_none()
                if supporter:
                    return {
                        "is_premium": bool(supporter.unlimited_searches),
                        "verified": True,
                        "matched_on": column.key,
                        "support_date": supporter.support_date.isoformat() if supporter.support_date else None,
                    }

        return {"is_premium": False, "verified": False, "matched_on": None, "support_date": None}
