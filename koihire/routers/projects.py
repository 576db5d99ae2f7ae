import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session, joinedload

from .. import models, schemas
from ..auth import require_client, require_user
from ..conversations import open_conversation
from ..database import get_db, paginate
from ..lifecycle import advance
from ..models import ApplicationStatus, EscrowStatus, ProjectStatus, Role
from ..notifications import notify
from ..payments import charge_listing_upgrade, release_escrow, settle_on_cancel
from ..pricing import calculate_pricing, featured_order

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["Projects"])


def get_project(db: Session, project_id: int) -> models.Project:
    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def get_owned_project(db: Session, project_id: int, user: models.User) -> models.Project:
    project = get_project(db, project_id)
    if project.client_id != user.id:
        raise HTTPException(status_code=403, detail="Only the project owner can do this")
    return project


def _list_query(db):
    return db.query(models.Project).options(
        joinedload(models.Project.client), joinedload(models.Project.freelancer), joinedload(models.Project.category),
    )


# GET browse projects
@router.get("", response_model=schemas.ProjectPage)
def browse_projects(
        status: Optional[ProjectStatus] = ProjectStatus.OPEN,
        category: Optional[str] = None,
        search: Optional[str] = None,
        min_budget: Optional[float] = Query(None, ge=0),
        max_budget: Optional[float] = Query(None, ge=0),
        page: int = 1,
        limit: int = 20,
        db: Session = Depends(get_db)):
    query = _list_query(db)
    if status:
        query = query.filter(models.Project.status == status)
    if category:
        query = query.join(models.Category).filter(models.Category.slug == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(models.Project.title.ilike(pattern), models.Project.description.ilike(pattern)))
    if min_budget is not None:
        query = query.filter(models.Project.max_budget >= min_budget)
    if max_budget is not None:
        query = query.filter(models.Project.min_budget <= max_budget)
    items, pagination = paginate(query.order_by(*featured_order(models.Project)), page, limit)
    return {"items": items, "pagination": pagination}


# GET my projects (client: owned, freelancer: assigned)
@router.get("/mine", response_model=schemas.ProjectPage)
def my_projects(
        status: Optional[ProjectStatus] = None,
        page: int = 1,
        limit: int = 20,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    query = _list_query(db)
    if user.role == Role.FREELANCER:
        query = query.filter(models.Project.freelancer_id == user.id)
    else:
        query = query.filter(models.Project.client_id == user.id)
    if status:
        query = query.filter(models.Project.status == status)
    items, pagination = paginate(query.order_by(models.Project.created_at.desc()), page, limit)
    return {"items": items, "pagination": pagination}


# GET one project
@router.get("/{project_id}", response_model=schemas.ProjectOut)
def read_project(project_id: int, db: Session = Depends(get_db)):
    return get_project(db, project_id)


# POST create project (client)
@router.post("", response_model=schemas.ProjectOut, status_code=201)
def create_project(data: schemas.ProjectCreate, user: models.User = Depends(require_client), db: Session = Depends(get_db)):
    if data.category_id and not db.get(models.Category, data.category_id):
        raise HTTPException(status_code=400, detail="Unknown category")
    project = models.Project(**data.model_dump(), client_id=user.id)
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info("project %s created by user=%s", project.id, user.id)
    return project


# PUT update project (owner, OPEN or PAUSED)
@router.put("/{project_id}", response_model=schemas.ProjectOut)
def update_project(
        project_id: int,
        data: schemas.ProjectUpdate,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status not in (ProjectStatus.OPEN, ProjectStatus.PAUSED):
        raise HTTPException(status_code=400, detail="Only open or paused projects can be edited")
    changes = data.model_dump(exclude_unset=True)
    min_budget = changes.get("min_budget", project.min_budget)
    max_budget = changes.get("max_budget", project.max_budget)
    if min_budget > max_budget:
        raise HTTPException(status_code=400, detail="min_budget cannot exceed max_budget")
    for field, value in changes.items():
        setattr(project, field, value)
    db.commit()
    db.refresh(project)
    return project


def _amend(db, project, user, field, reason):
    if project.status not in (ProjectStatus.OPEN, ProjectStatus.PAUSED):
        raise HTTPException(status_code=400, detail=f"The {field} of a {project.status.value} project cannot change")
    applicants = db.query(models.Application.freelancer_id).filter(
        models.Application.project_id == project.id,
        models.Application.status == ApplicationStatus.PENDING,
    ).all()
    for (freelancer_id,) in applicants:
        notify(db, freelancer_id, "PROJECT_UPDATED", {"project_id": project.id, "reason": reason},
               title=project.title, field=field)
    logger.info("project %s %s changed by user=%s", project.id, field, user.id)


# PUT change the timeline with a reason (owner, OPEN or PAUSED)
@router.put("/{project_id}/timeline", response_model=schemas.ProjectOut)
def update_timeline(
        project_id: int,
        data: schemas.TimelineUpdateIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    _amend(db, project, user, "timeline", data.reason)
    project.timeline = data.timeline
    project.timeline_update_reason = data.reason
    db.commit()
    db.refresh(project)
    return project


# PUT change the budget range with a reason (owner, OPEN or PAUSED)
@router.put("/{project_id}/budget", response_model=schemas.ProjectOut)
def update_budget(
        project_id: int,
        data: schemas.BudgetUpdateIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    _amend(db, project, user, "budget", data.reason)
    project.min_budget = data.min_budget
    project.max_budget = data.max_budget
    project.budget_update_reason = data.reason
    db.commit()
    db.refresh(project)
    return project


# DELETE project (owner)
@router.delete("/{project_id}")
def delete_project(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status in (ProjectStatus.IN_PROGRESS, ProjectStatus.PENDING_REVIEW, ProjectStatus.DISPUTED):
        raise HTTPException(status_code=400, detail=f"Cannot delete a project that is {project.status.value}")
    if project.escrow is not None:
        raise HTTPException(status_code=400, detail="Projects with payment history cannot be deleted")
    for conversation in db.query(models.Conversation).filter(models.Conversation.project_id == project.id).all():
        db.delete(conversation)
    db.delete(project)
    db.commit()
    return {"message": "Project deleted"}


# POST accept an application (owner)
@router.post("/{project_id}/applications/{application_id}/accept", response_model=schemas.ProjectOut)
def accept_application(
        project_id: int,
        application_id: int,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.OPEN:
        raise HTTPException(status_code=400, detail="Project is not accepting applications")
    application = db.query(models.Application).filter(
        models.Application.id == application_id, models.Application.project_id == project.id
    ).first()
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")

    advance(application, ApplicationStatus.ACCEPTED)
    advance(project, ProjectStatus.IN_PROGRESS)
    pricing = calculate_pricing(application.proposed_budget or project.max_budget)
    project.freelancer_id = application.freelancer_id
    project.agreed_amount = pricing.price
    project.buyer_fee = pricing.buyer_fee
    project.seller_commission = pricing.seller_commission
    project.total_charged = pricing.total_charged

    others = db.query(models.Application).filter(
        models.Application.project_id == project.id,
        models.Application.id != application.id,
        models.Application.status == ApplicationStatus.PENDING,
    ).all()
    for other in others:
        advance(other, ApplicationStatus.REJECTED)
        notify(db, other.freelancer_id, "APPLICATION_REJECTED", {"project_id": project.id}, title=project.title)

    open_conversation(db, [project.client_id, application.freelancer_id], project_id=project.id)
    notify(
        db, application.freelancer_id, "APPLICATION_ACCEPTED",
        {"project_id": project.id, "application_id": application.id}, title=project.title,
    )
    db.commit()
    db.refresh(project)
    logger.info("project %s assigned to freelancer=%s for %.2f", project.id, project.freelancer_id, project.agreed_amount)
    return project


# POST pause project (owner)
@router.post("/{project_id}/pause", response_model=schemas.ProjectOut)
def pause_project(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    advance(project, ProjectStatus.PAUSED)
    db.commit()
    db.refresh(project)
    return project


# POST resume project (owner)
@router.post("/{project_id}/resume", response_model=schemas.ProjectOut)
def resume_project(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.PAUSED:
        raise HTTPException(status_code=400, detail="Only a paused project can be resumed")
    advance(project, ProjectStatus.OPEN)
    db.commit()
    db.refresh(project)
    return project


# POST cancel project (owner, OPEN or PAUSED)
@router.post("/{project_id}/cancel", response_model=schemas.ProjectOut)
def cancel_project(
        project_id: int,
        data: schemas.ReasonIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status not in (ProjectStatus.OPEN, ProjectStatus.PAUSED):
        raise HTTPException(status_code=400, detail="Only open or paused projects can be cancelled")
    advance(project, ProjectStatus.CANCELLED)
    project.cancel_reason = data.reason
    settle_on_cancel(db, project.escrow, data.reason)
    for application in project.applications:
        if application.status == ApplicationStatus.PENDING:
            advance(application, ApplicationStatus.REJECTED)
            notify(db, application.freelancer_id, "PROJECT_CANCELLED", {"project_id": project.id}, title=project.title)
    db.commit()
    db.refresh(project)
    return project


# POST submit work for review (assigned freelancer)
@router.post("/{project_id}/submit", response_model=schemas.ProjectOut)
def submit_for_review(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_project(db, project_id)
    if project.freelancer_id != user.id:
        raise HTTPException(status_code=403, detail="Only the assigned freelancer can submit work")
    advance(project, ProjectStatus.PENDING_REVIEW)
    project.change_request = None
    notify(db, project.client_id, "SUBMISSION_RECEIVED", {"project_id": project.id}, actor=user.full_name, title=project.title)
    db.commit()
    db.refresh(project)
    return project


# POST approve submitted work and release escrow (owner)
@router.post("/{project_id}/approve", response_model=schemas.ProjectOut)
def approve_work(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.PENDING_REVIEW:
        raise HTTPException(status_code=400, detail="Project is not awaiting review")
    if project.escrow is None or project.escrow.status != EscrowStatus.FUNDED:
        raise HTTPException(status_code=400, detail="Escrow must be funded before work can be approved")

    advance(project, ProjectStatus.COMPLETED)
    project.completed_at = datetime.now()
    release_escrow(db, project.escrow)
    notify(db, project.freelancer_id, "WORK_APPROVED", {"project_id": project.id}, title=project.title)
    db.commit()
    db.refresh(project)
    return project


# POST request changes (owner)
@router.post("/{project_id}/request-changes", response_model=schemas.ProjectOut)
def request_changes(
        project_id: int,
        data: schemas.ChangeRequestIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.PENDING_REVIEW:
        raise HTTPException(status_code=400, detail="Project is not awaiting review")
    advance(project, ProjectStatus.IN_PROGRESS)
    project.change_request = data.message
    notify(db, project.freelancer_id, "CHANGES_REQUESTED", {"project_id": project.id}, title=project.title, note=data.message)
    db.commit()
    db.refresh(project)
    return project


# POST open a dispute (either party)
@router.post("/{project_id}/dispute", response_model=schemas.ProjectOut)
def dispute_project(
        project_id: int,
        data: schemas.DisputeIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_project(db, project_id)
    if not project.freelancer_id or not project.is_party(user.id):
        raise HTTPException(status_code=403, detail="Only the client or the assigned freelancer can open a dispute")
    advance(project, ProjectStatus.DISPUTED)
    project.dispute_reason = data.reason
    other = project.freelancer_id if user.id == project.client_id else project.client_id
    notify(db, other, "PROJECT_DISPUTED", {"project_id": project.id}, title=project.title)
    db.commit()
    db.refresh(project)
    logger.info("project %s disputed by user=%s", project.id, user.id)
    return project


# POST buy a featured upgrade (owner)
@router.post("/{project_id}/feature")
def feature_project(
        project_id: int,
        data: schemas.FeatureIn,
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    project = get_owned_project(db, project_id, user)
    if project.status != ProjectStatus.OPEN:
        raise HTTPException(status_code=400, detail="Only open projects can be featured")
    transaction, client_secret = charge_listing_upgrade(db, user, data.level, project=project)
    db.commit()
    db.refresh(project)
    db.refresh(transaction)
    return {
        "project": schemas.ProjectOut.model_validate(project),
        "transaction_id": transaction.id,
        "amount": transaction.amount,
        "status": transaction.status,
        "client_secret": client_secret,
    }
