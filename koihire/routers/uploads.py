import logging
import os
import re
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from .. import models
from ..auth import require_user
from ..config import ALLOWED_UPLOAD_EXTENSIONS, MAX_UPLOAD_MB, UPLOAD_DIR
from ..database import get_db
from ..models import Role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["Uploads"])

CHUNK_SIZE = 1024 * 1024
MAX_FILES = 5
STORED_NAME = re.compile(r"^[0-9a-f]{32}_[\w.\-]+$")


def safe_filename(filename):
    name = os.path.basename(filename or "file")
    name = re.sub(r"[^\w.\-]", "_", name)
    return name[-100:] or "file"


def check_extension(file: UploadFile):
    """Return the cleaned file name, or raise 400 for a type outside the allow-list."""
    original = safe_filename(file.filename)
    extension = os.path.splitext(original)[1].lower()
    if extension not in ALLOWED_UPLOAD_EXTENSIONS:
        raise HTTPException(status_code=400, detail=f"File type {extension or '(none)'} is not allowed")
    return original


async def save_upload(file: UploadFile, directory=None):
    """Write ``file`` under the upload dir with a uuid prefix; returns (stored_name, size)."""
    directory = directory or UPLOAD_DIR
    original = check_extension(file)

    os.makedirs(directory, exist_ok=True)
    stored_name = f"{uuid.uuid4().hex}_{original}"
    file_path = os.path.join(directory, stored_name)
    limit = MAX_UPLOAD_MB * 1024 * 1024
    size = 0
    with open(file_path, "wb") as f:
        while True:
            chunk = await file.read(CHUNK_SIZE)
            if not chunk:
                break
            size += len(chunk)
            if size > limit:
                f.close()
                os.remove(file_path)
                raise HTTPException(status_code=413, detail=f"File exceeds {MAX_UPLOAD_MB} MB")
            f.write(chunk)
    return stored_name, size


def remove_stored(stored_names):
    for stored_name in stored_names:
        path = os.path.join(UPLOAD_DIR, stored_name)
        if os.path.isfile(path):
            os.remove(path)


def _check_scope(db, user, project_id, service_order_id, conversation_id):
    if project_id:
        project = db.get(models.Project, project_id)
        if not project:
            raise HTTPException(status_code=404, detail="Project not found")
        if not project.is_party(user.id):
            raise HTTPException(status_code=403, detail="Not a party to this project")
    if service_order_id:
        order = db.get(models.ServiceOrder, service_order_id)
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if not order.is_party(user.id):
            raise HTTPException(status_code=403, detail="Not a participant of this order")
    if conversation_id:
        conversation = db.get(models.Conversation, conversation_id)
        if not conversation or not conversation.participant(user.id):
            raise HTTPException(status_code=404, detail="Conversation not found")


def can_download(upload: models.Upload, user: models.User) -> bool:
    if user.role == Role.ADMIN or upload.owner_id == user.id:
        return True
    if upload.project and upload.project.is_party(user.id):
        return True
    if upload.service_order and upload.service_order.is_party(user.id):
        return True
    return bool(upload.conversation and upload.conversation.participant(user.id))


# POST upload files (deliverables, attachments)
@router.post("", status_code=201)
async def upload_files(
        files: List[UploadFile] = File(...),
        project_id: Optional[int] = Form(None),
        service_order_id: Optional[int] = Form(None),
        conversation_id: Optional[int] = Form(None),
        user: models.User = Depends(require_user),
        db: Session = Depends(get_db)):
    if len(files) > MAX_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_FILES} files per upload")
    _check_scope(db, user, project_id, service_order_id, conversation_id)
    for file in files:
        check_extension(file)

    saved = []
    try:
        for file in files:
            stored_name, size = await save_upload(file)
            saved.append(models.Upload(
                stored_name=stored_name,
                filename=file.filename or stored_name.split("_", 1)[1],
                content_type=file.content_type,
                size=size,
                owner_id=user.id,
                project_id=project_id,
                service_order_id=service_order_id,
                conversation_id=conversation_id,
            ))
        db.add_all(saved)
        db.commit()
    except Exception:
        db.rollback()
        remove_stored(upload.stored_name for upload in saved)
        raise

    logger.info("user=%s uploaded %d file(s)", user.id, len(saved))
    return {"files": [
        {
            "filename": upload.filename,
            "stored_name": upload.stored_name,
            "url": f"/uploads/{upload.stored_name}",
            "size": upload.size,
            "content_type": upload.content_type,
        }
        for upload in saved
    ]}


# GET download a stored file (owner, parties of its project / order / conversation, admins)
@router.get("/{stored_name}")
def download_file(stored_name: str, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    if not STORED_NAME.match(stored_name):
        raise HTTPException(status_code=404, detail="File not found")
    upload = db.query(models.Upload).filter(models.Upload.stored_name == stored_name).first()
    file_path = os.path.join(UPLOAD_DIR, stored_name)
    if not upload or not os.path.isfile(file_path):
        raise HTTPException(status_code=404, detail="File not found")
    if not can_download(upload, user):
        raise HTTPException(status_code=403, detail="You do not have access to this file")
    return FileResponse(file_path, filename=stored_name.split("_", 1)[1])
