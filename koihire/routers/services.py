import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from .. import models, schemas
from ..auth import get_current_user, require_freelancer, require_user
from ..database import get_db, paginate
from ..lifecycle import ACTIVE_ORDER_STATUSES
from ..models import FeaturedLevel
from ..payments import charge_listing_upgrade
from ..pricing import featured_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/services", tags=["Services"])


def get_service(db: Session, service_id: int) -> models.Service:
    service = db.query(models.Service).filter(models.Service.id == service_id).first()
    if not service:
        raise HTTPException(status_code=404, detail="Service not found")
    return service


def get_owned_service(db: Session, service_id: int, user: models.User) -> models.Service:
    service = get_service(db, service_id)
    if service.freelancer_id != user.id:
        raise HTTPException(status_code=403, detail="Only the service owner can do this")
    return service


def _active_services(db):
    return db.query(models.Service).options(
        selectinload(models.Service.packages),
    ).filter(models.Service.is_active == True)  # noqa: E712


def _sync_packages(db, service, packages):
    """Upsert packages by tier; a dropped tier is removed unless orders reference it."""
    current = {p.tier: p for p in service.packages}
    wanted = {p.tier for p in packages}
    for tier, package in current.items():
        if tier in wanted:
            continue
        used = db.query(models.ServiceOrder).filter(models.ServiceOrder.package_id == package.id).first()
        if used:
            raise HTTPException(status_code=400, detail=f"The {tier.value} package has orders and cannot be removed")
        service.packages.remove(package)
    for data in packages:
        package = current.get(data.tier)
        if package is None:
            service.packages.append(models.ServicePackage(**data.model_dump()))
        else:
            for field, value in data.model_dump().items():
                setattr(package, field, value)


# GET browse services
@router.get("", response_model=schemas.ServicePage)
def browse_services(
        category: Optional[str] = None,
        search: Optional[str] = None,
        min_price: Optional[float] = Query(None, ge=0),
        max_price: Optional[float] = Query(None, ge=0),
        page: int = 1,
        limit: int = 20,
        db: Session = Depends(get_db)):
    query = _active_services(db)
    if category:
        query = query.join(models.Category).filter(models.Category.slug == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            models.Service.title.ilike(pattern),
            models.Service.description.ilike(pattern),
            models.Service.short_description.ilike(pattern),
        ))
    price_filters = []
    if min_price is not None:
        price_filters.append(models.ServicePackage.price >= min_price)
    if max_price is not None:
        price_filters.append(models.ServicePackage.price <= max_price)
    if price_filters:
        query = query.filter(models.Service.packages.any(and_(*price_filters)))
    items, pagination = paginate(query.order_by(*featured_order(models.Service)), page, limit)
    return {"items": items, "pagination": pagination}


# GET featured services
@router.get("/featured", response_model=List[schemas.ServiceOut])
def featured_services(limit: int = Query(12, ge=1, le=50), db: Session = Depends(get_db)):
    now = datetime.now()
    return _active_services(db).filter(
        models.Service.featured_level != FeaturedLevel.NONE,
        or_(models.Service.featured_until.is_(None), models.Service.featured_until >= now),
    ).order_by(*featured_order(models.Service, now)).limit(limit).all()


# GET my services (freelancer)
@router.get("/mine", response_model=List[schemas.ServiceOut])
def my_services(user: models.User = Depends(require_freelancer), db: Session = Depends(get_db)):
    return db.query(models.Service).filter(
        models.Service.freelancer_id == user.id
    ).order_by(models.Service.created_at.desc()).all()


# GET active services of a freelancer
@router.get("/user/{user_id}", response_model=List[schemas.ServiceOut])
def user_services(user_id: int, db: Session = Depends(get_db)):
    return _active_services(db).filter(
        models.Service.freelancer_id == user_id
    ).order_by(models.Service.created_at.desc()).all()


# GET one service
@router.get("/{service_id}", response_model=schemas.ServiceOut)
def read_service(service_id: int, request: Request, db: Session = Depends(get_db)):
    service = get_service(db, service_id)
    if not service.is_active:
        viewer = get_current_user(request, db)
        if not viewer or viewer.id != service.freelancer_id:
            raise HTTPException(status_code=404, detail="Service not found")
    return service


# POST create service (freelancer)
@router.post("", response_model=schemas.ServiceOut, status_code=201)
def create_service(data: schemas.ServiceCreate, user: models.User = Depends(require_freelancer), db: Session = Depends(get_db)):
    if data.category_id and not db.get(models.Category, data.category_id):
        raise HTTPException(status_code=400, detail="Unknown category")
    fields = data.model_dump(exclude={"packages"})
    service = models.Service(**fields, freelancer_id=user.id)
    service.packages = [models.ServicePackage(**p.model_dump()) for p in data.packages]
    db.add(service)
    db.commit()
    db.refresh(service)
    logger.info("service %s created by user=%s", service.id, user.id)
    return service


# PUT update service (owner)
@router.put("/{service_id}", response_model=schemas.ServiceOut)
def update_service(
        service_id: int,
        data: schemas.ServiceUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    service = get_owned_service(db, service_id, user)
    changes = data.model_dump(exclude_unset=True, exclude={"packages"})
    if changes.get("category_id") and not db.get(models.Category, changes["category_id"]):
        raise HTTPException(status_code=400, detail="Unknown category")
    for field, value in changes.items():
        setattr(service, field, value)
    if data.packages is not None:
        _sync_packages(db, service, data.packages)
    db.commit()
    db.refresh(service)
    return service


# POST toggle active (owner)
@router.post("/{service_id}/toggle-active", response_model=schemas.ServiceOut)
def toggle_active(service_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    service = get_owned_service(db, service_id, user)
    service.is_active = not service.is_active
    db.commit()
    db.refresh(service)
    return service


# POST buy a featured upgrade (owner)
@router.post("/{service_id}/feature")
def feature_service(
        service_id: int,
        data: schemas.FeatureIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    service = get_owned_service(db, service_id, user)
    if not service.is_active:
        raise HTTPException(status_code=400, detail="Activate the service before featuring it")
    transaction, client_secret = charge_listing_upgrade(db, user, data.level, service=service)
    db.commit()
    db.refresh(service)
    db.refresh(transaction)
    return {
        "service": schemas.ServiceOut.model_validate(service),
        "transaction_id": transaction.id,
        "amount": transaction.amount,
        "status": transaction.status,
        "client_secret": client_secret,
    }


# DELETE service (owner, no open orders)
@router.delete("/{service_id}")
def delete_service(service_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    service = get_owned_service(db, service_id, user)
    orders = db.query(models.ServiceOrder).filter(models.ServiceOrder.service_id == service.id)
    if orders.filter(models.ServiceOrder.status.in_(ACTIVE_ORDER_STATUSES)).first():
        raise HTTPException(status_code=400, detail="Service has active orders")
    if orders.first():
        # past orders keep pointing at it
        service.is_active = False
        db.commit()
        return {"message": "Service archived"}
    db.delete(service)
    db.commit()
    return {"message": "Service deleted"}


# GET reviews of a service
@router.get("/{service_id}/reviews", response_model=List[schemas.ServiceReviewOut])
def service_reviews(service_id: int, db: Session = Depends(get_db)):
    get_service(db, service_id)
    return db.query(models.ServiceReview).filter(
        models.ServiceReview.service_id == service_id
    ).order_by(models.ServiceReview.created_at.desc()).all()
