from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_user
from ..database import get_db
from ..models import Role
from .projects import get_project
from .service_orders import get_order

router = APIRouter(prefix="/escrow", tags=["Escrow"])


# GET escrow of a project (parties)
@router.get("/project/{project_id}", response_model=schemas.EscrowOut)
def read_project_escrow(project_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    project = get_project(db, project_id)
    if not project.is_party(user.id) and user.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Not a party to this project")
    if project.escrow is None:
        raise HTTPException(status_code=404, detail="No escrow for this project")
    return project.escrow


# GET escrow of a service order (parties)
@router.get("/service-order/{order_id}", response_model=schemas.EscrowOut)
def read_order_escrow(order_id: int, user: models.User = Depends(require_user), db: Session = Depends(get_db)):
    order = get_order(db, order_id, user)
    if order.escrow is None:
        raise HTTPException(status_code=404, detail="No escrow for this order")
    return order.escrow
