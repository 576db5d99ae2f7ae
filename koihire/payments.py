"""
Escrow settlement and the payment gateway.

Funds are held with Stripe PaymentIntents using manual capture: funding
authorises the charge, release captures it, refund cancels (or refunds) it.
Without a ``STRIPE_SECRET_KEY`` the platform settles internally and every
hold succeeds at once with an ``internal-`` reference.

Functions here add and flush rows but never commit; the calling handler owns
the unit of work.
"""

import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime

import stripe
from fastapi import HTTPException
from sqlalchemy.orm import Session

from . import models
from .config import CURRENCY, MIN_PAYOUT_AMOUNT, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from .lifecycle import advance
from .models import EscrowStatus, PaymentStatus, PayoutMethod, PayoutStatus, TransactionType
from .notifications import notify
from .pricing import feature_plan, round_currency

logger = logging.getLogger(__name__)

stripe.api_key = STRIPE_SECRET_KEY or None

INTERNAL_PREFIX = "internal-"


def gateway_enabled():
    return bool(stripe.api_key)


def to_cents(amount):
    return int(round(amount * 100))


def internal_reference():
    return f"{INTERNAL_PREFIX}{uuid.uuid4().hex}"


@contextmanager
def gateway_call(action):
    try:
        yield
    except stripe.StripeError as exc:
        logger.error("stripe %s failed: %s", action, exc)
        raise HTTPException(status_code=502, detail=f"Payment provider error during {action}")


# Gateway
def create_hold(escrow: models.Escrow, description: str):
    """Authorise ``escrow.amount``; returns (reference, client_secret, settled)."""
    if not gateway_enabled():
        logger.info("stripe not configured, settling escrow %s internally", escrow.id)
        return internal_reference(), None, True
    with gateway_call("payment intent creation"):
        intent = stripe.PaymentIntent.create(
            amount=to_cents(escrow.amount),
            currency=CURRENCY,
            capture_method="manual",
            description=description,
            metadata={"escrow_id": str(escrow.id)},
        )
    return intent.id, intent.client_secret, False


def hold_is_authorised(reference):
    if not reference:
        return False
    if reference.startswith(INTERNAL_PREFIX):
        return True
    with gateway_call("payment intent lookup"):
        intent = stripe.PaymentIntent.retrieve(reference)
    return intent.status in ("requires_capture", "succeeded")


def capture_hold(reference):
    if not reference or reference.startswith(INTERNAL_PREFIX):
        return
    with gateway_call("capture"):
        intent = stripe.PaymentIntent.retrieve(reference)
        if intent.status == "requires_capture":
            stripe.PaymentIntent.capture(reference)


def cancel_hold(reference):
    if not reference or reference.startswith(INTERNAL_PREFIX):
        return
    with gateway_call("refund"):
        intent = stripe.PaymentIntent.retrieve(reference)
        if intent.status == "succeeded":
            stripe.Refund.create(payment_intent=reference)
        elif intent.status != "canceled":
            stripe.PaymentIntent.cancel(reference)


# Escrow
def _price_parts(subject):
    if isinstance(subject, models.Project):
        price = subject.agreed_amount
    else:
        price = subject.package_price
    return price, subject.buyer_fee, subject.seller_commission


def open_escrow(db: Session, amount, project=None, order=None) -> models.Escrow:
    escrow = models.Escrow(
        project_id=project.id if project else None,
        service_order_id=order.id if order else None,
        amount=round_currency(amount),
        status=EscrowStatus.PENDING,
    )
    db.add(escrow)
    db.flush()
    return escrow


def fund_escrow(db: Session, escrow: models.Escrow):
    """Start funding a PENDING escrow; returns the client secret (None when settled already)."""
    if escrow.status != EscrowStatus.PENDING:
        raise HTTPException(status_code=400, detail=f"Escrow is already {escrow.status.value}")
    reference, client_secret, settled = create_hold(escrow, f"KoiHire escrow: {escrow.title}")
    escrow.payment_reference = reference
    if settled:
        mark_funded(db, escrow)
    return client_secret


def confirm_escrow(db: Session, escrow: models.Escrow):
    if escrow.status == EscrowStatus.FUNDED:
        return escrow
    if escrow.status != EscrowStatus.PENDING:
        raise HTTPException(status_code=400, detail=f"Escrow is already {escrow.status.value}")
    if not hold_is_authorised(escrow.payment_reference):
        raise HTTPException(status_code=400, detail="Payment has not been completed")
    return mark_funded(db, escrow)


def mark_funded(db: Session, escrow: models.Escrow):
    advance(escrow, EscrowStatus.FUNDED)
    escrow.funded_at = datetime.now()
    subject = escrow.subject
    subject.payment_status = PaymentStatus.PAID
    db.add(models.Transaction(
        user_id=subject.client_id,
        escrow_id=escrow.id,
        type=TransactionType.DEPOSIT,
        amount=escrow.amount,
        external_reference=escrow.payment_reference,
        description=f"Escrow deposit for {escrow.title}",
    ))
    db.flush()
    notify(db, subject.freelancer_id, "ESCROW_FUNDED", {"escrow_id": escrow.id}, title=escrow.title)
    logger.info("escrow %s funded amount=%.2f ref=%s", escrow.id, escrow.amount, escrow.payment_reference)
    return escrow


def release_escrow(db: Session, escrow: models.Escrow) -> models.Payout:
    """
    Pay a FUNDED escrow out to the freelancer.

    Records the buyer fee and commission as FEE rows, the net earnings as a
    WITHDRAWAL row, bumps the running totals on both users and queues a
    payout.
    """
    advance(escrow, EscrowStatus.RELEASED, detail="Escrow must be funded before it can be released")
    capture_hold(escrow.payment_reference)
    subject = escrow.subject
    price, buyer_fee, commission = _price_parts(subject)
    earnings = round_currency(price - commission)

    escrow.released_at = datetime.now()
    subject.payment_status = PaymentStatus.RELEASED
    db.add_all([
        models.Transaction(
            user_id=subject.client_id, escrow_id=escrow.id, type=TransactionType.FEE,
            amount=buyer_fee, description=f"Service fee for {escrow.title}",
        ),
        models.Transaction(
            user_id=subject.freelancer_id, escrow_id=escrow.id, type=TransactionType.FEE,
            amount=commission, description=f"Platform commission for {escrow.title}",
        ),
        models.Transaction(
            user_id=subject.freelancer_id, escrow_id=escrow.id, type=TransactionType.WITHDRAWAL,
            amount=earnings, description=f"Earnings released for {escrow.title}",
        ),
    ])

    freelancer = subject.freelancer
    client = subject.client
    freelancer.total_earnings = round_currency((freelancer.total_earnings or 0) + earnings)
    client.total_spent = round_currency((client.total_spent or 0) + escrow.amount)

    payout = create_payout(db, freelancer, earnings, escrow)
    notify(
        db, freelancer.id, "PAYMENT_RELEASED", {"escrow_id": escrow.id, "payout_id": payout.id},
        title=escrow.title, amount=earnings,
    )
    logger.info("escrow %s released earnings=%.2f payout=%s", escrow.id, earnings, payout.id)
    return payout


def refund_escrow(db: Session, escrow: models.Escrow, reason: str = None, gateway=True):
    advance(escrow, EscrowStatus.REFUNDED, detail="Only a funded escrow can be refunded")
    if gateway:
        cancel_hold(escrow.payment_reference)
    subject = escrow.subject
    escrow.refunded_at = datetime.now()
    subject.payment_status = PaymentStatus.REFUNDED
    db.add(models.Transaction(
        user_id=subject.client_id,
        escrow_id=escrow.id,
        type=TransactionType.REFUND,
        amount=escrow.amount,
        external_reference=escrow.payment_reference,
        description=reason or f"Refund for {escrow.title}",
    ))
    db.flush()
    notify(db, subject.client_id, "PAYMENT_REFUNDED", {"escrow_id": escrow.id}, title=escrow.title, amount=escrow.amount)
    logger.info("escrow %s refunded amount=%.2f", escrow.id, escrow.amount)
    return escrow


def settle_on_cancel(db: Session, escrow: models.Escrow, reason: str = None):
    """Drop an unfunded escrow or refund a funded one."""
    if escrow is None:
        return
    if escrow.status == EscrowStatus.PENDING:
        cancel_hold(escrow.payment_reference)
        db.delete(escrow)
        db.flush()
    elif escrow.status == EscrowStatus.FUNDED:
        refund_escrow(db, escrow, reason)


def charge_listing_upgrade(db: Session, user: models.User, level, project=None, service=None):
    """
    Bill a featured upgrade for one listing; returns (transaction, client_secret).

    Internal settlement grants the tier at once. With Stripe the transaction
    stays PENDING and the tier is granted by the ``payment_intent.succeeded``
    webhook.
    """
    listing = project or service
    kind = "project" if project is not None else "service"
    price, _ = feature_plan(level)
    description = f"{level.value} upgrade for {kind} \"{listing.title}\""
    client_secret = None
    if gateway_enabled():
        with gateway_call("upgrade charge"):
            intent = stripe.PaymentIntent.create(
                amount=to_cents(price), currency=CURRENCY, description=description,
                metadata={"user_id": str(user.id), f"{kind}_id": str(listing.id), "featured_level": level.value},
            )
        reference, client_secret, state = intent.id, intent.client_secret, "PENDING"
    else:
        reference, state = internal_reference(), "COMPLETED"
    transaction = models.Transaction(
        user_id=user.id, type=TransactionType.FEE, amount=price, status=state,
        external_reference=reference, description=description,
        project=project,
        service=service,
        featured_level=level,
    )
    db.add(transaction)
    db.flush()
    if state == "COMPLETED":
        apply_listing_upgrade(transaction)
    logger.info("listing upgrade charged user=%s %s=%s amount=%.2f state=%s", user.id, kind, listing.id, price, state)
    return transaction, client_secret


def apply_listing_upgrade(transaction: models.Transaction):
    listing = transaction.project or transaction.service
    if listing is None or transaction.featured_level is None:
        return
    _, until = feature_plan(transaction.featured_level)
    listing.featured_level = transaction.featured_level
    listing.featured_until = until


# Payouts
def create_payout(db: Session, freelancer: models.User, amount, escrow: models.Escrow) -> models.Payout:
    payout = models.Payout(
        user_id=freelancer.id,
        project_id=escrow.project_id,
        service_order_id=escrow.service_order_id,
        amount=amount,
        payout_method=freelancer.payout_method,
        payout_email=freelancer.payout_email,
        status=PayoutStatus.PENDING,
    )
    db.add(payout)

    if amount < MIN_PAYOUT_AMOUNT:
        payout.admin_notes = f"Held until earnings reach the {MIN_PAYOUT_AMOUNT:.2f} minimum payout"
    elif not freelancer.has_payout_method():
        payout.admin_notes = "Waiting for the freelancer to add a payout method"
    elif freelancer.payout_method == PayoutMethod.STRIPE_CONNECT:
        payout.external_reference = transfer_to_connect(freelancer, amount, escrow)
        advance(payout, PayoutStatus.COMPLETED)
        payout.processed_at = payout.completed_at = datetime.now()
    db.flush()
    return payout


def transfer_to_connect(freelancer: models.User, amount, escrow: models.Escrow):
    if not gateway_enabled():
        return internal_reference()
    with gateway_call("connect transfer"):
        transfer = stripe.Transfer.create(
            amount=to_cents(amount),
            currency=CURRENCY,
            destination=freelancer.stripe_connect_account_id,
            transfer_group=f"escrow-{escrow.id}",
        )
    return transfer.id


# Webhooks
def parse_webhook(payload: bytes, signature: str):
    if not STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=503, detail="Webhook secret is not configured")
    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(body, signature, STRIPE_WEBHOOK_SECRET, stripe.Webhook.DEFAULT_TOLERANCE)
        return json.loads(body)
    except stripe.SignatureVerificationError:
        logger.warning("rejected webhook with bad signature")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")


def handle_webhook_event(db: Session, event) -> bool:
    """Apply one provider event; returns False when it was seen before."""
    event_id = event["id"]
    if db.query(models.WebhookEvent).filter(models.WebhookEvent.event_id == event_id).first():
        logger.info("webhook %s already processed", event_id)
        return False
    db.add(models.WebhookEvent(event_id=event_id, event_type=event["type"]))

    obj = event["data"]["object"]
    reference = obj.get("payment_intent") if event["type"].startswith("charge.") else obj.get("id")
    escrow = db.query(models.Escrow).filter(models.Escrow.payment_reference == reference).first()

    if escrow is None:
        charge = db.query(models.Transaction).filter(
            models.Transaction.external_reference == reference, models.Transaction.status == "PENDING"
        ).first()
        if charge and event["type"] == "payment_intent.succeeded":
            charge.status = "COMPLETED"
            apply_listing_upgrade(charge)
        elif charge and event["type"] == "payment_intent.payment_failed":
            charge.status = "FAILED"
        else:
            logger.info("webhook %s (%s) matches no escrow", event_id, event["type"])
    elif event["type"] in ("payment_intent.amount_capturable_updated", "payment_intent.succeeded"):
        if escrow.status == EscrowStatus.PENDING:
            mark_funded(db, escrow)
    elif event["type"] == "payment_intent.payment_failed":
        logger.warning("payment failed for escrow %s", escrow.id)
    elif event["type"] == "charge.refunded":
        if escrow.status == EscrowStatus.FUNDED:
            refund_escrow(db, escrow, "Refunded by payment provider", gateway=False)
    db.flush()
    return True
