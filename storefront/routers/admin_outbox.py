from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from storefront.db import SessionLocal, get_db
from storefront.middleware.rbac import require_admin
from storefront.models.side_effect import SideEffect
from storefront.notify.mailer import get_mailer
from storefront.services import outbox

router = APIRouter(prefix="/api/admin/outbox", tags=["admin-outbox"], dependencies=[Depends(require_admin)])


@router.get("")
def list_effects(status: str = Query("pending"), db: Session = Depends(get_db)):
    q = db.query(SideEffect).order_by(SideEffect.id)
    if status != "all":
        q = q.filter(SideEffect.status == status)
    return {"success": True, "effects": [e.to_dict() for e in q.all()]}


@router.post("/retry")
def retry_effects(background: BackgroundTasks, db: Session = Depends(get_db), mailer=Depends(get_mailer)):
    ids = outbox.pending_ids(db)
    if ids:
        background.add_task(outbox.dispatch, SessionLocal, ids, mailer)
    return {"success": True, "queued": len(ids)}
