import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from .. import models, schemas
from ..auth import get_current_user, require_freelancer, require_user
from ..database import get_db, paginate
from ..models import PortfolioCategory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/portfolios", tags=["Portfolios"])


def get_owned_portfolio(db: Session, portfolio_id: int, user: models.User) -> models.Portfolio:
    portfolio = db.get(models.Portfolio, portfolio_id)
    if not portfolio:
        raise HTTPException(status_code=404, detail="Portfolio item not found")
    if portfolio.user_id != user.id:
        raise HTTPException(status_code=403, detail="Only the owner can change this portfolio item")
    return portfolio


# GET browse public portfolio items
@router.get("", response_model=schemas.PortfolioPage)
def list_portfolios(
        user_id: Optional[int] = None,
        category: Optional[PortfolioCategory] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 12,
        db: Session = Depends(get_db)):
    query = db.query(models.Portfolio).options(joinedload(models.Portfolio.user)).filter(
        models.Portfolio.is_public == True  # noqa: E712
    )
    if user_id:
        query = query.filter(models.Portfolio.user_id == user_id)
    if category:
        query = query.filter(models.Portfolio.category == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(models.Portfolio.title.ilike(pattern), models.Portfolio.description.ilike(pattern)))
    items, pagination = paginate(query.order_by(models.Portfolio.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET own portfolio items, private ones included
@router.get("/mine", response_model=List[schemas.PortfolioOut])
def my_portfolios(user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    return db.query(models.Portfolio).filter(
        models.Portfolio.user_id == user.id
    ).order_by(models.Portfolio.completed_at.desc()).all()


# GET one portfolio item (counts a view)
@router.get("/{portfolio_id}", response_model=schemas.PortfolioOut)
def get_portfolio(portfolio_id: int, request: Request, db: Session = Depends(get_db)):
    portfolio = db.get(models.Portfolio, portfolio_id)
    if not portfolio:
        raise HTTPException(status_code=404, detail="Portfolio item not found")
    viewer = get_current_user(request, db)
    is_owner = viewer is not None and viewer.id == portfolio.user_id
    if not (portfolio.is_public or is_owner):
        raise HTTPException(status_code=404, detail="Portfolio item not found")
    if not is_owner:
        portfolio.views = (portfolio.views or 0) + 1
        db.commit()
        db.refresh(portfolio)
    return portfolio


# POST add a portfolio item (freelancer)
@router.post("", response_model=schemas.PortfolioOut, status_code=201)
def create_portfolio(
        data: schemas.PortfolioCreate,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    portfolio = models.Portfolio(**data.model_dump(), user_id=user.id)
    db.add(portfolio)
    db.commit()
    db.refresh(portfolio)
    logger.info("portfolio item %s created by user=%s", portfolio.id, user.id)
    return portfolio


# PUT update a portfolio item (owner)
@router.put("/{portfolio_id}", response_model=schemas.PortfolioOut)
def update_portfolio(
        portfolio_id: int,
        data: schemas.PortfolioUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    portfolio = get_owned_portfolio(db, portfolio_id, user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(portfolio, field, value)
    db.commit()
    db.refresh(portfolio)
    return portfolio


# DELETE a portfolio item (owner)
@router.delete("/{portfolio_id}")
def delete_portfolio(portfolio_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    portfolio = get_owned_portfolio(db, portfolio_id, user)
    db.delete(portfolio)
    db.commit()
    return {"message": "Portfolio item deleted"}
