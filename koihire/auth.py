import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from passlib.context import CryptContext
from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .database import get_db
from .models import Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password):
    return pwd_context.hash(password)


def verify_password(plain, hashed):
    return pwd_context.verify(plain, hashed)


def login_user(request: Request, user: models.User):
    # keep the session small, the row is reloaded on every request
    request.session["user"] = {
        "id": user.id,
        "username": user.username,
        "role": user.role.value,
    }


def get_current_user(request: Request, db: Session):
    session_user = request.session.get("user")
    if not session_user:
        return None
    return db.query(models.User).filter(models.User.id == session_user["id"]).first()


def require_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    user = get_current_user(request, db)
    if not user:
        raise HTTPException(status_code=401, detail="Not logged in")
    if not user.is_active:
        request.session.clear()
        raise HTTPException(status_code=403, detail="Account is suspended")
    return user


def require_role(*roles):
    def checker(user: models.User = Depends(require_user)) -> models.User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Not allowed for your role")
        return user
    return checker


require_admin = require_role(Role.ADMIN)
require_client = require_role(Role.CLIENT, Role.ADMIN)
require_freelancer = require_role(Role.FREELANCER)


# POST register and log in
@router.post("/register", response_model=schemas.UserOut, status_code=201)
def register_user(data: schemas.UserCreate, request: Request, db: Session = Depends(get_db)):
    if data.role == Role.ADMIN:
        raise HTTPException(status_code=400, detail="Cannot register as admin")

    existing_user = db.query(models.User).filter(
        or_(models.User.email == data.email, models.User.username == data.username)
    ).first()
    if existing_user:
        field = "Email" if existing_user.email == data.email else "Username"
        raise HTTPException(status_code=409, detail=f"{field} is already registered")

    new_user = models.User(
        username=data.username,
        email=data.email,
        hashed_password=hash_password(data.password),
        role=data.role,
        first_name=data.first_name,
        last_name=data.last_name,
        last_active_at=datetime.now(),
    )
    db.add(new_user)
    db.commit()
    db.refresh(new_user)

    login_user(request, new_user)
    logger.info("registered user id=%s role=%s", new_user.id, new_user.role.value)
    return new_user


# POST login
@router.post("/login", response_model=schemas.UserOut)
def login(data: schemas.LoginIn, request: Request, db: Session = Depends(get_db)):
    user = db.query(models.User).filter(
        or_(models.User.username == data.username, models.User.email == data.username)
    ).first()
    if not user or not verify_password(data.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid username or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is suspended")

    user.last_active_at = datetime.now()
    db.commit()
    db.refresh(user)
    login_user(request, user)
    return user


# POST logout
@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"message": "Logged out"}


# GET current user
@router.get("/me", response_model=schemas.UserOut)
def get_me(user: models.User = Depends(require_user)):
    return user


# POST delete own account
@router.post("/delete_account")
def delete_account(request: Request, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    busy = db.query(models.Project).filter(
        or_(models.Project.client_id == user.id, models.Project.freelancer_id == user.id),
        models.Project.status.in_([
            models.ProjectStatus.IN_PROGRESS, models.ProjectStatus.PENDING_REVIEW, models.ProjectStatus.DISPUTED,
        ]),
    ).first()
    if busy:
        raise HTTPException(status_code=400, detail="Finish or cancel active projects before deleting your account")

    # accounts with history are deactivated, not removed, so the ledger keeps its owner
    has_history = (
        user.client_projects or user.freelancer_projects
        or db.query(models.ServiceOrder).filter(
            or_(models.ServiceOrder.client_id == user.id, models.ServiceOrder.freelancer_id == user.id)
        ).first()
        or db.query(models.Transaction).filter(models.Transaction.user_id == user.id).first()
        or db.query(models.Application).filter(models.Application.freelancer_id == user.id).first()
        or db.query(models.ConversationParticipant).filter(models.ConversationParticipant.user_id == user.id).first()
        or db.query(models.Upload).filter(models.Upload.owner_id == user.id).first()
        or user.services
    )
    if has_history:
        user.is_active = False
    else:
        db.query(models.Notification).filter(models.Notification.user_id == user.id).delete()
        db.delete(user)
    db.commit()

    request.session.clear()
    logger.info("account closed user=%s", user.id)
    return {"message": "Account deleted"}
