from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_user
from ..database import get_db
from ..models import ProjectStatus
from ..notifications import notify
from .projects import get_project

router = APIRouter(prefix="/reviews", tags=["Reviews"])

REVIEWABLE_STATUSES = (ProjectStatus.COMPLETED, ProjectStatus.PENDING_REVIEW)
SUB_SCORES = ("communication", "quality", "timeliness", "professionalism")


def refresh_user_rating(db: Session, user_id: int):
    average, count = db.query(func.avg(models.Review.rating), func.count(models.Review.id)).filter(
        models.Review.reviewee_id == user_id
    ).one()
    user = db.get(models.User, user_id)
    user.rating = round(float(average or 0), 2)
    user.review_count = count


def get_user_rating_summary(db: Session, user_id: int):
    """
    Rating overview for a user:
    - average: mean overall rating (0 when unreviewed)
    - count: number of reviews received
    - distribution: count per star, keys "1".."5"
    - sub-score averages for communication, quality, timeliness, professionalism
    """
    columns = [func.avg(getattr(models.Review, name)) for name in SUB_SCORES]
    row = db.query(func.avg(models.Review.rating), func.count(models.Review.id), *columns).filter(
        models.Review.reviewee_id == user_id
    ).one()
    stars = dict(db.query(models.Review.rating, func.count(models.Review.id)).filter(
        models.Review.reviewee_id == user_id
    ).group_by(models.Review.rating).all())

    summary = {
        "average": round(float(row[0] or 0), 2),
        "count": int(row[1] or 0),
        "distribution": {str(star): stars.get(star, 0) for star in range(1, 6)},
    }
    for name, value in zip(SUB_SCORES, row[2:]):
        summary[name] = round(float(value or 0), 2)
    return summary


def _own_review(db, review_id, user):
    review = db.query(models.Review).filter(models.Review.id == review_id).first()
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    if review.reviewer_id != user.id:
        raise HTTPException(status_code=403, detail="You can only change your own review")
    return review


# POST review the other party of a project
@router.post("", response_model=schemas.ReviewOut, status_code=201)
def create_review(data: schemas.ReviewCreate, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_project(db, data.project_id)
    if project.status not in REVIEWABLE_STATUSES:
        raise HTTPException(status_code=400, detail="Project must be completed or under review")
    if not project.freelancer_id or not project.is_party(user.id):
        raise HTTPException(status_code=403, detail="Only the project client and freelancer can review each other")

    existing = db.query(models.Review).filter(
        models.Review.project_id == project.id, models.Review.reviewer_id == user.id
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="You have already reviewed this project")

    reviewee_id = project.freelancer_id if user.id == project.client_id else project.client_id
    scores = {name: getattr(data, name) or data.rating for name in SUB_SCORES}
    review = models.Review(
        project_id=project.id,
        reviewer_id=user.id,
        reviewee_id=reviewee_id,
        rating=data.rating,
        comment=data.comment,
        **scores,
    )
    db.add(review)
    db.flush()
    refresh_user_rating(db, reviewee_id)
    notify(db, reviewee_id, "NEW_REVIEW", {"project_id": project.id, "review_id": review.id},
           actor=user.full_name, rating=data.rating)
    db.commit()
    db.refresh(review)
    return review


# GET reviews received by a user
@router.get("/user/{user_id}", response_model=List[schemas.ReviewOut])
def user_reviews(user_id: int, db: Session = Depends(get_db)):
    return db.query(models.Review).filter(
        models.Review.reviewee_id == user_id
    ).order_by(models.Review.created_at.desc()).all()


# GET rating stats of a user
@router.get("/user/{user_id}/stats")
def user_rating_stats(user_id: int, db: Session = Depends(get_db)):
    if not db.get(models.User, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return get_user_rating_summary(db, user_id)


# GET reviews of a project (parties only)
@router.get("/project/{project_id}", response_model=List[schemas.ReviewOut])
def project_reviews(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_project(db, project_id)
    if not project.is_party(user.id):
        raise HTTPException(status_code=403, detail="Not a party to this project")
    return project.reviews


# PUT update my review
@router.put("/{review_id}", response_model=schemas.ReviewOut)
def update_review(
        review_id: int,
        data: schemas.ReviewUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    review = _own_review(db, review_id, user)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(review, field, value)
    db.flush()
    refresh_user_rating(db, review.reviewee_id)
    db.commit()
    db.refresh(review)
    return review


# DELETE my review
@router.delete("/{review_id}")
def delete_review(review_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    review = _own_review(db, review_id, user)
    reviewee_id = review.reviewee_id
    db.delete(review)
    db.flush()
    refresh_user_rating(db, reviewee_id)
    db.commit()
    return {"message": "Review deleted"}
