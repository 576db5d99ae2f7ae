from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import require_freelancer
from ..database import get_db
from ..models import PayoutStatus
from ..pricing import round_currency

router = APIRouter(prefix="/payouts", tags=["Payouts"])


# GET my payouts with totals (freelancer)
@router.get("/mine", response_model=schemas.PayoutSummary)
def my_payouts(
        status: Optional[PayoutStatus] = None,
        user: models.User = Depends(require_freelancer),
        db: Session = Depends(get_db)):
    payouts = db.query(models.Payout).filter(
        models.Payout.user_id == user.id
    ).order_by(models.Payout.created_at.desc()).all()
    pending = sum(p.amount for p in payouts if p.status in (PayoutStatus.PENDING, PayoutStatus.PROCESSING))
    completed = sum(p.amount for p in payouts if p.status == PayoutStatus.COMPLETED)
    if status:
        payouts = [p for p in payouts if p.status == status]
    return {
        "items": payouts,
        "pending_total": round_currency(pending),
        "completed_total": round_currency(completed),
    }
