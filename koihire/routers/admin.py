import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_admin
from ..database import get_db, paginate
from ..lifecycle import advance
from ..models import (
    EscrowStatus, FeaturedLevel, OrderStatus, PayoutStatus, ProjectStatus, Role, TransactionType,
)
from ..notifications import notify
from ..payments import refund_escrow, release_escrow, settle_on_cancel
from ..pricing import round_currency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def log_admin_action(db: Session, request: Request, admin: models.User, action, entity_type, entity_id=None, details=None):
    db.add(models.ActivityLog(
        admin_id=admin.id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
        ip_address=request.client.host if request.client else None,
    ))
    logger.info("admin=%s %s %s:%s %s", admin.id, action, entity_type, entity_id, details or "")


def _get(db, model, object_id, label):
    obj = db.get(model, object_id)
    if not obj:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return obj


def _counts(db, column):
    return {key.value: count for key, count in db.query(column, func.count()).group_by(column).all()}


def _total(db, column, *criteria):
    return round_currency(db.query(func.coalesce(func.sum(column), 0.0)).filter(*criteria).scalar() or 0.0)


# GET dashboard stats
@router.get("/stats")
def dashboard_stats(admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    released = models.Escrow.status == EscrowStatus.RELEASED
    fees = _total(
        db, models.Transaction.amount,
        models.Transaction.type == TransactionType.FEE,
        models.Transaction.escrow_id.isnot(None),
    )
    upgrades = _total(
        db, models.Transaction.amount,
        models.Transaction.type == TransactionType.FEE,
        models.Transaction.escrow_id.is_(None),
        models.Transaction.status == "COMPLETED",
    )
    return {
        "users": {
            "total": db.query(models.User).count(),
            "by_role": _counts(db, models.User.role),
            "suspended": db.query(models.User).filter(models.User.is_active == False).count(),  # noqa: E712
        },
        "projects": {"total": db.query(models.Project).count(), "by_status": _counts(db, models.Project.status)},
        "service_orders": {
            "total": db.query(models.ServiceOrder).count(),
            "by_status": _counts(db, models.ServiceOrder.status),
        },
        "services": {
            "total": db.query(models.Service).count(),
            "active": db.query(models.Service).filter(models.Service.is_active == True).count(),  # noqa: E712
        },
        "escrow": {
            "held": _total(db, models.Escrow.amount, models.Escrow.status == EscrowStatus.FUNDED),
            "released": _total(db, models.Escrow.amount, released),
            "refunded": _total(db, models.Escrow.amount, models.Escrow.status == EscrowStatus.REFUNDED),
        },
        "revenue": {
            "escrow_fees": fees,
            "listing_upgrades": upgrades,
            "total": round_currency(fees + upgrades),
        },
        "payouts": {
            "pending_count": db.query(models.Payout).filter(
                models.Payout.status.in_([PayoutStatus.PENDING, PayoutStatus.PROCESSING])
            ).count(),
            "pending_amount": _total(
                db, models.Payout.amount, models.Payout.status.in_([PayoutStatus.PENDING, PayoutStatus.PROCESSING])
            ),
        },
    }


# GET users
@router.get("/users", response_model=schemas.UserPage)
def list_users(
        search: Optional[str] = None,
        role: Optional[Role] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.User)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.User.username.ilike(pattern),
            models.User.email.ilike(pattern),
            models.User.first_name.ilike(pattern),
            models.User.last_name.ilike(pattern),
        ))
    if role:
        query = query.filter(models.User.role == role)
    if is_active is not None:
        query = query.filter(models.User.is_active == is_active)
    items, pagination = paginate(query.order_by(models.User.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET one user with activity counts
@router.get("/users/{user_id}")
def user_detail(user_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    user = _get(db, models.User, user_id, "User")
    return {
        "user": schemas.UserOut.model_validate(user),
        "projects_posted": db.query(models.Project).filter(models.Project.client_id == user.id).count(),
        "projects_worked": db.query(models.Project).filter(models.Project.freelancer_id == user.id).count(),
        "services": db.query(models.Service).filter(models.Service.freelancer_id == user.id).count(),
        "orders_placed": db.query(models.ServiceOrder).filter(models.ServiceOrder.client_id == user.id).count(),
        "orders_received": db.query(models.ServiceOrder).filter(models.ServiceOrder.freelancer_id == user.id).count(),
        "payouts_pending": _total(
            db, models.Payout.amount,
            models.Payout.user_id == user.id,
            models.Payout.status.in_([PayoutStatus.PENDING, PayoutStatus.PROCESSING]),
        ),
    }


# PUT suspend / reactivate a user
@router.put("/users/{user_id}/status", response_model=schemas.UserOut)
def set_user_status(
        user_id: int,
        data: schemas.UserStatusIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    user = _get(db, models.User, user_id, "User")
    if user.id == admin.id:
        raise HTTPException(status_code=400, detail="You cannot change your own status")
    user.is_active = data.is_active
    state = "reactivated" if data.is_active else "suspended"
    notify(db, user.id, "ACCOUNT_STATUS", {"reason": data.reason}, status=state)
    log_admin_action(db, request, admin, "USER_STATUS", "user", user.id, {"is_active": data.is_active, "reason": data.reason})
    db.commit()
    db.refresh(user)
    return user


# PUT change a user's role
@router.put("/users/{user_id}/role", response_model=schemas.UserOut)
def set_user_role(
        user_id: int,
        data: schemas.UserRoleIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    user = _get(db, models.User, user_id, "User")
    if user.id == admin.id and data.role != Role.ADMIN:
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")
    previous = user.role
    user.role = data.role
    log_admin_action(db, request, admin, "USER_ROLE", "user", user.id, {"from": previous.value, "to": data.role.value})
    db.commit()
    db.refresh(user)
    return user


# PUT edit a user's profile and payout details
@router.put("/users/{user_id}/profile", response_model=schemas.UserOut)
def edit_user_profile(
        user_id: int,
        data: schemas.AdminProfileUpdate,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    user = _get(db, models.User, user_id, "User")
    changes = data.model_dump(exclude_unset=True)
    if changes.get("username") and changes["username"] != user.username:
        if db.query(models.User).filter(models.User.username == changes["username"]).first():
            raise HTTPException(status_code=409, detail="Username already taken")
    if changes.get("email") and changes["email"] != user.email:
        if db.query(models.User).filter(models.User.email == changes["email"]).first():
            raise HTTPException(status_code=409, detail="Email already registered")
    for key, value in changes.items():
        setattr(user, key, value)
    log_admin_action(db, request, admin, "USER_PROFILE", "user", user.id, {"fields": sorted(changes)})
    db.commit()
    db.refresh(user)
    return user


# GET projects
@router.get("/projects", response_model=schemas.ProjectPage)
def list_projects(
        status: Optional[ProjectStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.Project)
    if status:
        query = query.filter(models.Project.status == status)
    if search:
        query = query.filter(models.Project.title.ilike(f"%{search}%"))
    items, pagination = paginate(query.order_by(models.Project.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET one project with escrow and applications
@router.get("/projects/{project_id}")
def project_detail(project_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    project = _get(db, models.Project, project_id, "Project")
    return {
        "project": schemas.ProjectOut.model_validate(project),
        "escrow": schemas.EscrowOut.model_validate(project.escrow) if project.escrow else None,
        "applications": [schemas.ApplicationOut.model_validate(a) for a in project.applications],
    }


# PUT force a project status (dispute resolution)
@router.put("/projects/{project_id}/status", response_model=schemas.ProjectOut)
def force_project_status(
        project_id: int,
        data: schemas.ProjectStatusIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    project = _get(db, models.Project, project_id, "Project")
    previous = project.status
    escrow = project.escrow
    if data.status == ProjectStatus.COMPLETED and (escrow is None or escrow.status != EscrowStatus.FUNDED):
        raise HTTPException(status_code=400, detail="Escrow must be funded before the project can be completed")

    advance(project, data.status)
    if data.status == ProjectStatus.COMPLETED:
        project.completed_at = datetime.now()
        release_escrow(db, escrow)
    elif data.status == ProjectStatus.CANCELLED:
        project.cancel_reason = data.reason
        settle_on_cancel(db, escrow, data.reason)

    for party in filter(None, (project.client_id, project.freelancer_id)):
        if data.status == ProjectStatus.CANCELLED:
            notify(db, party, "PROJECT_CANCELLED", {"project_id": project.id}, title=project.title)
    log_admin_action(
        db, request, admin, "PROJECT_STATUS", "project", project.id,
        {"from": previous.value, "to": data.status.value, "reason": data.reason},
    )
    db.commit()
    db.refresh(project)
    return project


# GET escrows
@router.get("/escrows", response_model=schemas.EscrowPage)
def list_escrows(
        status: Optional[EscrowStatus] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.Escrow)
    if status:
        query = query.filter(models.Escrow.status == status)
    items, pagination = paginate(query.order_by(models.Escrow.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# POST release an escrow
@router.post("/escrows/{escrow_id}/release", response_model=schemas.EscrowOut)
def admin_release_escrow(
        escrow_id: int,
        data: schemas.AdminNoteIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    escrow = _get(db, models.Escrow, escrow_id, "Escrow")
    payout = release_escrow(db, escrow)
    log_admin_action(db, request, admin, "ESCROW_RELEASE", "escrow", escrow.id, {"payout_id": payout.id, "notes": data.notes})
    db.commit()
    db.refresh(escrow)
    return escrow


# POST refund an escrow
@router.post("/escrows/{escrow_id}/refund", response_model=schemas.EscrowOut)
def admin_refund_escrow(
        escrow_id: int,
        data: schemas.AdminNoteIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    escrow = _get(db, models.Escrow, escrow_id, "Escrow")
    refund_escrow(db, escrow, data.notes)
    log_admin_action(db, request, admin, "ESCROW_REFUND", "escrow", escrow.id, {"notes": data.notes})
    db.commit()
    db.refresh(escrow)
    return escrow


# GET transactions across all users
@router.get("/transactions", response_model=schemas.TransactionPage)
def list_transactions(
        type: Optional[TransactionType] = None,
        status: Optional[str] = None,
        user_id: Optional[int] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.Transaction)
    if type:
        query = query.filter(models.Transaction.type == type)
    if status:
        query = query.filter(models.Transaction.status == status)
    if user_id:
        query = query.filter(models.Transaction.user_id == user_id)
    if search:
        pattern = f"%{search}%"
        query = query.join(models.User, models.Transaction.user_id == models.User.id).filter(or_(
            models.User.username.ilike(pattern),
            models.User.email.ilike(pattern),
        ))
    items, pagination = paginate(query.order_by(models.Transaction.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET service orders
@router.get("/service-orders", response_model=schemas.OrderPage)
def list_service_orders(
        status: Optional[OrderStatus] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.ServiceOrder)
    if status:
        query = query.filter(models.ServiceOrder.status == status)
    items, pagination = paginate(query.order_by(models.ServiceOrder.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET one service order with escrow, payments, messages and review
@router.get("/service-orders/{order_id}")
def service_order_detail(order_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    order = _get(db, models.ServiceOrder, order_id, "Order")
    escrow = order.escrow
    messages = db.query(models.Message).join(models.Conversation).filter(
        models.Conversation.service_order_id == order.id
    ).order_by(models.Message.created_at.desc()).limit(20).all()
    return {
        "order": schemas.OrderOut.model_validate(order),
        "escrow": schemas.EscrowOut.model_validate(escrow) if escrow else None,
        "transactions": [schemas.TransactionOut.model_validate(t) for t in escrow.transactions] if escrow else [],
        "messages": [schemas.MessageOut.model_validate(m) for m in messages],
        "review": schemas.ServiceReviewOut.model_validate(order.review) if order.review else None,
    }


def _order_with_funded_escrow(db, order_id):
    order = _get(db, models.ServiceOrder, order_id, "Order")
    if order.escrow is None or order.escrow.status != EscrowStatus.FUNDED:
        raise HTTPException(status_code=400, detail="Order has no funded escrow")
    return order


# POST release a service order payment (completes the order)
@router.post("/service-orders/{order_id}/release", response_model=schemas.OrderOut)
def admin_release_order(
        order_id: int,
        data: schemas.AdminNoteIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    order = _order_with_funded_escrow(db, order_id)
    advance(order, OrderStatus.COMPLETED)
    order.completed_at = datetime.now()
    order.service.orders_completed = (order.service.orders_completed or 0) + 1
    payout = release_escrow(db, order.escrow)
    log_admin_action(db, request, admin, "ORDER_RELEASE", "service_order", order.id, {"payout_id": payout.id, "notes": data.notes})
    db.commit()
    db.refresh(order)
    return order


# POST refund a service order payment (cancels the order)
@router.post("/service-orders/{order_id}/refund", response_model=schemas.OrderOut)
def admin_refund_order(
        order_id: int,
        data: schemas.AdminNoteIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    order = _order_with_funded_escrow(db, order_id)
    advance(order, OrderStatus.CANCELLED)
    order.cancel_reason = data.notes
    refund_escrow(db, order.escrow, data.notes)
    log_admin_action(db, request, admin, "ORDER_REFUND", "service_order", order.id, {"notes": data.notes})
    db.commit()
    db.refresh(order)
    return order


# GET payouts with totals per status
@router.get("/payouts", response_model=schemas.PayoutPage)
def list_payouts(
        status: Optional[PayoutStatus] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.Payout)
    if status:
        query = query.filter(models.Payout.status == status)
    items, pagination = paginate(query.order_by(models.Payout.created_at.desc()), page, limit)
    totals = {
        s.value: {"count": count, "amount": round_currency(amount or 0.0)}
        for s, count, amount in db.query(
            models.Payout.status, func.count(models.Payout.id), func.sum(models.Payout.amount)
        ).group_by(models.Payout.status).all()
    }
    return {"items": items, "pagination": pagination, "totals": totals}


def _payout_notice(db, payout):
    notify(db, payout.user_id, "PAYOUT_UPDATED", {"payout_id": payout.id}, amount=payout.amount, status=payout.status.value)


# POST mark a payout as processing
@router.post("/payouts/{payout_id}/process", response_model=schemas.PayoutOut)
def process_payout(
        payout_id: int,
        data: schemas.AdminNoteIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    payout = _get(db, models.Payout, payout_id, "Payout")
    if payout.status != PayoutStatus.PENDING:
        raise HTTPException(status_code=400, detail="Only pending payouts can be processed")
    advance(payout, PayoutStatus.PROCESSING)
    payout.processed_at = datetime.now()
    if data.notes:
        payout.admin_notes = data.notes
    _payout_notice(db, payout)
    log_admin_action(db, request, admin, "PAYOUT_PROCESS", "payout", payout.id, {"notes": data.notes})
    db.commit()
    db.refresh(payout)
    return payout


# POST mark a payout as completed
@router.post("/payouts/{payout_id}/complete", response_model=schemas.PayoutOut)
def complete_payout(
        payout_id: int,
        data: schemas.PayoutCompleteIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    payout = _get(db, models.Payout, payout_id, "Payout")
    advance(payout, PayoutStatus.COMPLETED, detail="Only pending or processing payouts can be completed")
    now = datetime.now()
    payout.processed_at = payout.processed_at or now
    payout.completed_at = now
    payout.external_reference = data.external_reference
    if data.admin_notes:
        payout.admin_notes = data.admin_notes
    _payout_notice(db, payout)
    log_admin_action(
        db, request, admin, "PAYOUT_COMPLETE", "payout", payout.id,
        {"external_reference": data.external_reference, "amount": payout.amount},
    )
    db.commit()
    db.refresh(payout)
    return payout


# POST mark a payout as failed
@router.post("/payouts/{payout_id}/fail", response_model=schemas.PayoutOut)
def fail_payout(
        payout_id: int,
        data: schemas.PayoutFailIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    payout = _get(db, models.Payout, payout_id, "Payout")
    if payout.status == PayoutStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="A completed payout cannot be failed")
    advance(payout, PayoutStatus.FAILED)
    payout.failure_reason = data.reason
    _payout_notice(db, payout)
    log_admin_action(db, request, admin, "PAYOUT_FAIL", "payout", payout.id, {"reason": data.reason})
    db.commit()
    db.refresh(payout)
    return payout


# GET services
@router.get("/services", response_model=schemas.ServicePage)
def list_services(
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.Service)
    if search:
        query = query.filter(models.Service.title.ilike(f"%{search}%"))
    if is_active is not None:
        query = query.filter(models.Service.is_active == is_active)
    items, pagination = paginate(query.order_by(models.Service.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET one service with its recent reviews and order counts
@router.get("/services/{service_id}")
def service_detail(service_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    service = _get(db, models.Service, service_id, "Service")
    reviews = db.query(models.ServiceReview).filter(
        models.ServiceReview.service_id == service.id
    ).order_by(models.ServiceReview.created_at.desc()).limit(10).all()
    return {
        "service": schemas.ServiceOut.model_validate(service),
        "reviews": [schemas.ServiceReviewOut.model_validate(r) for r in reviews],
        "orders": {
            "total": db.query(models.ServiceOrder).filter(models.ServiceOrder.service_id == service.id).count(),
            "by_status": {
                key.value: count for key, count in db.query(models.ServiceOrder.status, func.count()).filter(
                    models.ServiceOrder.service_id == service.id
                ).group_by(models.ServiceOrder.status).all()
            },
        },
    }


# PUT activate / deactivate a service
@router.put("/services/{service_id}/status", response_model=schemas.ServiceOut)
def set_service_status(
        service_id: int,
        data: schemas.ActiveIn,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    service = _get(db, models.Service, service_id, "Service")
    service.is_active = data.is_active
    log_admin_action(db, request, admin, "SERVICE_STATUS", "service", service.id, {"is_active": data.is_active})
    db.commit()
    db.refresh(service)
    return service


# POST remove a featured upgrade
@router.post("/services/{service_id}/unfeature", response_model=schemas.ServiceOut)
def unfeature_service(
        service_id: int,
        request: Request,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    service = _get(db, models.Service, service_id, "Service")
    previous = service.featured_level
    service.featured_level = FeaturedLevel.NONE
    service.featured_until = None
    log_admin_action(db, request, admin, "SERVICE_UNFEATURE", "service", service.id, {"from": previous.value})
    db.commit()
    db.refresh(service)
    return service


# GET activity log
@router.get("/activity-logs", response_model=schemas.ActivityLogPage)
def activity_logs(
        action: Optional[str] = None,
        admin_id: Optional[int] = None,
        page: int = 1,
        limit: int = 50,
        admin: models.User = Depends(require_admin),
        db: Session = Depends(get_db)):
    query = db.query(models.ActivityLog)
    if action:
        query = query.filter(models.ActivityLog.action == action)
    if admin_id:
        query = query.filter(models.ActivityLog.admin_id == admin_id)
    items, pagination = paginate(query.order_by(models.ActivityLog.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}
