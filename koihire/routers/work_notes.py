import enum
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_freelancer
from ..database import get_db

router = APIRouter(prefix="/work-notes", tags=["Work notes"])


class WorkItem(str, enum.Enum):
    project = "project"
    service = "service"


def _note_filter(user, item_type, item_id):
    column = models.WorkNote.project_id if item_type == WorkItem.project else models.WorkNote.service_order_id
    return models.WorkNote.user_id == user.id, column == item_id


def _find_note(db, user, item_type, item_id):
    return db.query(models.WorkNote).filter(*_note_filter(user, item_type, item_id)).first()


def _check_assigned(db, user, item_type, item_id):
    """404 unless ``user`` is the freelancer on the project or service order."""
    model = models.Project if item_type == WorkItem.project else models.ServiceOrder
    item = db.get(model, item_id)
    if not item or item.freelancer_id != user.id:
        raise HTTPException(status_code=404, detail=f"{item_type.value.title()} not found or you are not assigned to it")


# GET own note on a project or service order (freelancer)
@router.get("/{item_type}/{item_id}", response_model=Optional[schemas.WorkNoteOut])
def get_note(
        item_type: WorkItem,
        item_id: int,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    return _find_note(db, user, item_type, item_id)


# POST save a note, replacing any earlier one (freelancer)
@router.post("/{item_type}/{item_id}", response_model=schemas.WorkNoteOut)
def save_note(
        item_type: WorkItem,
        item_id: int,
        data: schemas.WorkNoteIn,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    _check_assigned(db, user, item_type, item_id)
    note = _find_note(db, user, item_type, item_id)
    if note is None:
        note = models.WorkNote(user_id=user.id)
        if item_type == WorkItem.project:
            note.project_id = item_id
        else:
            note.service_order_id = item_id
        db.add(note)
    note.note = data.note
    db.commit()
    db.refresh(note)
    return note


# DELETE own note (freelancer)
@router.delete("/{item_type}/{item_id}")
def delete_note(
        item_type: WorkItem,
        item_id: int,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    note = _find_note(db, user, item_type, item_id)
    if not note:
        raise HTTPException(status_code=404, detail="Note not found")
    db.delete(note)
    db.commit()
    return {"message": "Note deleted"}
