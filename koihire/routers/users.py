from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_freelancer, require_role, require_user
from ..database import get_db
from ..models import OrderStatus, PayoutStatus, ProjectStatus, Role

router = APIRouter(prefix="/users", tags=["Users"])

ACTIVE_PROJECT_STATUSES = (ProjectStatus.IN_PROGRESS, ProjectStatus.PENDING_REVIEW, ProjectStatus.DISPUTED)
OPEN_ORDER_STATUSES = (
    OrderStatus.ACCEPTED, OrderStatus.IN_PROGRESS, OrderStatus.DELIVERED, OrderStatus.REVISION_REQUESTED,
)


def _sum(db, column, *criteria):
    return round(db.query(func.coalesce(func.sum(column), 0.0)).filter(*criteria).scalar() or 0.0, 2)


# GET own profile
@router.get("/me", response_model=schemas.UserOut)
def get_profile(user: models.User = Depends(require_user)):
    return user


# PUT own profile
@router.put("/me", response_model=schemas.UserOut)
def update_profile(data: schemas.ProfileUpdate, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return user


# PUT payout method (freelancer)
@router.put("/me/payout-method", response_model=schemas.UserOut)
def update_payout_method(
        data: schemas.PayoutMethodUpdate,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    user.payout_method = data.payout_method
    user.payout_email = data.payout_email
    user.stripe_connect_account_id = data.stripe_connect_account_id
    db.commit()
    db.refresh(user)
    return user


# PUT availability (freelancer)
@router.put("/me/availability", response_model=schemas.UserOut)
def set_availability(
        data: schemas.AvailabilityIn,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    user.is_available = data.is_available
    db.commit()
    db.refresh(user)
    return user


# GET freelancer dashboard
@router.get("/me/freelancer-stats")
def freelancer_stats(user: models.User = Depends(require_freelancer), db: Session = Depends(get_db)):
    return {
        "total_earnings": round(user.total_earnings or 0.0, 2),
        "active_projects": db.query(models.Project).filter(
            models.Project.freelancer_id == user.id, models.Project.status.in_(ACTIVE_PROJECT_STATUSES)
        ).count(),
        "completed_projects": db.query(models.Project).filter(
            models.Project.freelancer_id == user.id, models.Project.status == ProjectStatus.COMPLETED
        ).count(),
        "active_orders": db.query(models.ServiceOrder).filter(
            models.ServiceOrder.freelancer_id == user.id, models.ServiceOrder.status.in_(OPEN_ORDER_STATUSES)
        ).count(),
        "completed_orders": db.query(models.ServiceOrder).filter(
            models.ServiceOrder.freelancer_id == user.id, models.ServiceOrder.status == OrderStatus.COMPLETED
        ).count(),
        "pending_applications": db.query(models.Application).filter(
            models.Application.freelancer_id == user.id,
            models.Application.status == models.ApplicationStatus.PENDING,
        ).count(),
        "pending_payouts": _sum(
            db, models.Payout.amount,
            models.Payout.user_id == user.id,
            models.Payout.status.in_([PayoutStatus.PENDING, PayoutStatus.PROCESSING]),
        ),
        "rating": user.rating,
        "review_count": user.review_count,
    }


# GET client dashboard
@router.get("/me/client-stats")
def client_stats(user: models.User = Depends(require_role(Role.CLIENT)), db: Session = Depends(get_db)):
    return {
        "total_spent": round(user.total_spent or 0.0, 2),
        "open_projects": db.query(models.Project).filter(
            models.Project.client_id == user.id, models.Project.status == ProjectStatus.OPEN
        ).count(),
        "active_projects": db.query(models.Project).filter(
            models.Project.client_id == user.id, models.Project.status.in_(ACTIVE_PROJECT_STATUSES)
        ).count(),
        "completed_projects": db.query(models.Project).filter(
            models.Project.client_id == user.id, models.Project.status == ProjectStatus.COMPLETED
        ).count(),
        "active_orders": db.query(models.ServiceOrder).filter(
            models.ServiceOrder.client_id == user.id, models.ServiceOrder.status.in_(OPEN_ORDER_STATUSES)
        ).count(),
        "held_in_escrow": _held_for_client(db, user.id),
    }


def _held_for_client(db, client_id):
    funded = models.Escrow.status == models.EscrowStatus.FUNDED
    project_ids = select(models.Project.id).where(models.Project.client_id == client_id)
    order_ids = select(models.ServiceOrder.id).where(models.ServiceOrder.client_id == client_id)
    return round(
        _sum(db, models.Escrow.amount, funded, models.Escrow.project_id.in_(project_ids))
        + _sum(db, models.Escrow.amount, funded, models.Escrow.service_order_id.in_(order_ids)),
        2,
    )


def _load_public(db, user_id):
    user = db.query(models.User).filter(models.User.id == user_id, models.User.is_active == True).first()  # noqa: E712
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


# GET public profile
@router.get("/{user_id}", response_model=schemas.UserPublic)
def public_profile(user_id: int, db: Session = Depends(get_db)):
    return _load_public(db, user_id)


# GET public stats
@router.get("/{user_id}/stats")
def public_stats(user_id: int, db: Session = Depends(get_db)):
    user = _load_public(db, user_id)
    completed_projects = db.query(models.Project).filter(
        (models.Project.freelancer_id == user.id) | (models.Project.client_id == user.id),
        models.Project.status == ProjectStatus.COMPLETED,
    ).count()
    completed_orders = db.query(models.ServiceOrder).filter(
        (models.ServiceOrder.freelancer_id == user.id) | (models.ServiceOrder.client_id == user.id),
        models.ServiceOrder.status == OrderStatus.COMPLETED,
    ).count()
    return {
        "user_id": user.id,
        "rating": user.rating,
        "review_count": user.review_count,
        "completed_projects": completed_projects,
        "completed_orders": completed_orders,
        "active_services": db.query(models.Service).filter(
            models.Service.freelancer_id == user.id, models.Service.is_active == True  # noqa: E712
        ).count(),
        "member_since": user.created_at,
    }
