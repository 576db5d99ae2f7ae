from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_freelancer, require_user
from ..database import get_db
from ..lifecycle import advance
from ..models import ApplicationStatus, ProjectStatus
from ..notifications import notify
from .projects import get_owned_project, get_project

router = APIRouter(prefix="/applications", tags=["Applications"])


def get_application(db: Session, application_id: int) -> models.Application:
    application = db.query(models.Application).filter(models.Application.id == application_id).first()
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")
    return application


def _check_budget(project, proposed_budget):
    if proposed_budget is None:
        return
    if not project.min_budget <= proposed_budget <= project.max_budget:
        raise HTTPException(
            status_code=400,
            detail=f"Proposed budget must be between {project.min_budget:.2f} and {project.max_budget:.2f}",
        )


# POST apply to a project (freelancer)
@router.post("", response_model=schemas.ApplicationOut, status_code=201)
def submit_application(
        data: schemas.ApplicationCreate,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    project = get_project(db, data.project_id)
    if project.status != ProjectStatus.OPEN:
        raise HTTPException(status_code=400, detail="Project is not accepting applications")
    if project.client_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot apply to your own project")
    if not user.has_payout_method():
        raise HTTPException(status_code=400, detail="Set up a payout method before applying")

    # one application per project
    existing = db.query(models.Application).filter(
        models.Application.project_id == project.id,
        models.Application.freelancer_id == user.id,
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="You have already applied to this project")
    _check_budget(project, data.proposed_budget)

    application = models.Application(**data.model_dump(), freelancer_id=user.id)
    db.add(application)
    db.flush()
    notify(
        db, project.client_id, "NEW_APPLICATION",
        {"project_id": project.id, "application_id": application.id},
        actor=user.full_name, title=project.title,
    )
    db.commit()
    db.refresh(application)
    return application


# GET applications for a project (owner)
@router.get("/project/{project_id}", response_model=List[schemas.ApplicationOut])
def project_applications(
        project_id: int,
        status: Optional[ApplicationStatus] = None,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    get_owned_project(db, project_id, user)
    query = db.query(models.Application).filter(models.Application.project_id == project_id)
    if status:
        query = query.filter(models.Application.status == status)
    return query.order_by(models.Application.created_at.desc()).all()


# GET my applications (freelancer)
@router.get("/mine", response_model=List[schemas.ApplicationOut])
def my_applications(
        status: Optional[ApplicationStatus] = None,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    query = db.query(models.Application).filter(models.Application.freelancer_id == user.id)
    if status:
        query = query.filter(models.Application.status == status)
    return query.order_by(models.Application.created_at.desc()).all()


# GET whether I applied to a project
@router.get("/check/{project_id}")
def check_applied(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    application = db.query(models.Application).filter(
        models.Application.project_id == project_id,
        models.Application.freelancer_id == user.id,
    ).first()
    return {
        "has_applied": application is not None,
        "application_id": application.id if application else None,
        "status": application.status.value if application else None,
    }


# GET one application (project owner or applicant)
@router.get("/{application_id}", response_model=schemas.ApplicationOut)
def read_application(application_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    application = get_application(db, application_id)
    if user.id not in (application.freelancer_id, application.project.client_id):
        raise HTTPException(status_code=403, detail="Not allowed to view this application")
    return application


# PUT edit a pending application (applicant)
@router.put("/{application_id}", response_model=schemas.ApplicationOut)
def update_application(
        application_id: int,
        data: schemas.ApplicationUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    application = get_application(db, application_id)
    if application.freelancer_id != user.id:
        raise HTTPException(status_code=403, detail="Only the applicant can edit this application")
    if application.status != ApplicationStatus.PENDING:
        raise HTTPException(status_code=400, detail="Only pending applications can be edited")
    changes = data.model_dump(exclude_unset=True)
    if "proposed_budget" in changes:
        _check_budget(application.project, changes["proposed_budget"])
    for field, value in changes.items():
        setattr(application, field, value)
    db.commit()
    db.refresh(application)
    return application


# POST withdraw (applicant)
@router.post("/{application_id}/withdraw", response_model=schemas.ApplicationOut)
def withdraw_application(application_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    application = get_application(db, application_id)
    if application.freelancer_id != user.id:
        raise HTTPException(status_code=403, detail="Only the applicant can withdraw this application")
    advance(application, ApplicationStatus.WITHDRAWN)
    db.commit()
    db.refresh(application)
    return application
