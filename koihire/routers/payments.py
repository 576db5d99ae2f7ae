import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from .. import models, schemas
from .. import payments as gateway
from ..auth import require_user
from ..database import get_db, paginate
from ..lifecycle import advance
from ..models import EscrowStatus, OrderStatus, PaymentStatus, ProjectStatus, Role, TransactionType
from ..notifications import notify
from .projects import get_project
from .service_orders import get_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


def _project_for_client(db, project_id, user):
    project = get_project(db, project_id)
    if project.client_id != user.id:
        raise HTTPException(status_code=403, detail="Only the project client can do this")
    return project


def _project_escrow(project):
    if project.escrow is None:
        raise HTTPException(status_code=404, detail="No escrow for this project")
    return project.escrow


def _order_escrow(order):
    if order.escrow is None:
        raise HTTPException(status_code=404, detail="No escrow for this order")
    return order.escrow


def _intent_response(escrow, client_secret):
    return {
        "escrow": escrow,
        "client_secret": client_secret,
        "requires_confirmation": escrow.status == EscrowStatus.PENDING,
    }


# POST fund project escrow (client)
@router.post("/projects/{project_id}/fund", response_model=schemas.PaymentIntentOut)
def fund_project(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = _project_for_client(db, project_id, user)
    if project.status != ProjectStatus.IN_PROGRESS or not project.freelancer_id:
        raise HTTPException(status_code=400, detail="Escrow can only be funded for a project in progress")
    if project.escrow is not None:
        raise HTTPException(status_code=409, detail="Escrow already exists for this project")

    escrow = gateway.open_escrow(db, project.total_charged, project=project)
    client_secret = gateway.fund_escrow(db, escrow)
    db.commit()
    db.refresh(escrow)
    return _intent_response(escrow, client_secret)


# POST confirm project payment (client)
@router.post("/projects/{project_id}/confirm", response_model=schemas.EscrowOut)
def confirm_project_payment(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = _project_for_client(db, project_id, user)
    escrow = gateway.confirm_escrow(db, _project_escrow(project))
    db.commit()
    db.refresh(escrow)
    return escrow


# GET project escrow (parties)
@router.get("/projects/{project_id}/escrow", response_model=schemas.EscrowOut)
def project_escrow(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_project(db, project_id)
    if not project.is_party(user.id) and user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Not a party to this project")
    return _project_escrow(project)


# POST release project escrow (client)
@router.post("/projects/{project_id}/release", response_model=schemas.EscrowOut)
def release_project_escrow(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = _project_for_client(db, project_id, user)
    if project.status != ProjectStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Project must be completed before releasing payment")
    escrow = _project_escrow(project)
    gateway.release_escrow(db, escrow)
    db.commit()
    db.refresh(escrow)
    return escrow


# POST refund project escrow (client or admin)
@router.post("/projects/{project_id}/refund", response_model=schemas.EscrowOut)
def refund_project_escrow(
        project_id: int,
        data: schemas.ReasonIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_project(db, project_id)
    if project.client_id != user.id and user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Only the client or an admin can refund")
    escrow = _project_escrow(project)
    gateway.refund_escrow(db, escrow, data.reason)
    db.commit()
    db.refresh(escrow)
    return escrow


# POST pay for a service order (buyer)
@router.post("/service-orders/{order_id}/pay", response_model=schemas.PaymentIntentOut)
def pay_order(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if order.client_id != user.id:
        raise HTTPException(status_code=403, detail="Only the buyer can pay for this order")
    if order.status != OrderStatus.PENDING or order.payment_status != PaymentStatus.PENDING:
        raise HTTPException(status_code=400, detail="Order is not awaiting payment")
    escrow = order.escrow or gateway.open_escrow(db, order.total_amount, order=order)
    client_secret = gateway.fund_escrow(db, escrow)
    db.commit()
    db.refresh(escrow)
    return _intent_response(escrow, client_secret)


# POST confirm service order payment (buyer)
@router.post("/service-orders/{order_id}/confirm", response_model=schemas.EscrowOut)
def confirm_order_payment(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if order.client_id != user.id:
        raise HTTPException(status_code=403, detail="Only the buyer can confirm this payment")
    escrow = gateway.confirm_escrow(db, _order_escrow(order))
    db.commit()
    db.refresh(escrow)
    return escrow


# POST release service order payment (buyer)
@router.post("/service-orders/{order_id}/release", response_model=schemas.EscrowOut)
def release_order_payment(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if order.client_id != user.id:
        raise HTTPException(status_code=403, detail="Only the buyer can release this payment")
    if order.status != OrderStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Order must be completed before releasing payment")
    escrow = _order_escrow(order)
    gateway.release_escrow(db, escrow)
    db.commit()
    db.refresh(escrow)
    return escrow


# POST refund service order payment and cancel the order (buyer or admin)
@router.post("/service-orders/{order_id}/refund", response_model=schemas.EscrowOut)
def refund_order_payment(
        order_id: int,
        data: schemas.ReasonIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if order.client_id != user.id and user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Only the buyer or an admin can refund")
    if order.status == OrderStatus.DISPUTED and user.role != Role.ADMIN:
        raise HTTPException(status_code=400, detail="A disputed order is settled by an admin")
    escrow = _order_escrow(order)
    advance(order, OrderStatus.CANCELLED, detail=f"An order that is {order.status.value} cannot be refunded")
    order.cancel_reason = data.reason
    gateway.refund_escrow(db, escrow, data.reason)
    notify(db, order.freelancer_id, "SERVICE_ORDER_CANCELLED", {"order_id": order.id}, title=order.service.title)
    db.commit()
    db.refresh(escrow)
    return escrow


# GET my transactions
@router.get("/transactions", response_model=schemas.TransactionPage)
def my_transactions(
        type: Optional[TransactionType] = None,
        page: int = 1,
        limit: int = 20,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    query = db.query(models.Transaction).filter(models.Transaction.user_id == user.id)
    if type:
        query = query.filter(models.Transaction.type == type)
    items, pagination = paginate(query.order_by(models.Transaction.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# POST payment provider webhook
@router.post("/webhook")
async def stripe_webhook(
        request: Request,
        stripe_signature: str = Header(None, alias="Stripe-Signature"),
        db: Session = Depends(get_db)):
    payload = await request.body()
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing signature")
    event = gateway.parse_webhook(payload, stripe_signature)
    try:
        applied = gateway.handle_webhook_event(db, event)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("webhook %s (%s) applied=%s", event["id"], event["type"], applied)
    return {"received": True, "duplicate": not applied}
