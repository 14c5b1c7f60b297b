from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storefront.db import get_db
from storefront.errors import NotFound, ValidationFailed
from storefront.middleware.rbac import require_admin
from storefront.models.setting import Setting
from storefront.services.pricing import FREE_SHIPPING_THRESHOLD_KEY, SHIPPING_RATE_KEY, TAX_RATE_KEY

router = APIRouter(prefix="/api/admin/settings", tags=["admin-settings"], dependencies=[Depends(require_admin)])

# настройки, которые используются в расчёте сумм: только неотрицательные числа
NUMERIC_KEYS = {TAX_RATE_KEY, SHIPPING_RATE_KEY, FREE_SHIPPING_THRESHOLD_KEY}


class SettingUpdate(BaseModel):
    value: str
    description: Optional[str] = None
    group: Optional[str] = None


@router.get("")
def list_settings(db: Session = Depends(get_db)):
    rows = db.query(Setting).order_by(Setting.group, Setting.key).all()
    return {"success": True, "settings": [s.to_dict() for s in rows]}


@router.get("/{key}")
def get_setting(key: str, db: Session = Depends(get_db)):
    row = db.query(Setting).filter(Setting.key == key).first()
    if not row:
        raise NotFound(f"Setting {key} not found")
    return {"success": True, "setting": row.to_dict()}


@router.put("/{key}")
def put_setting(key: str, body: SettingUpdate, db: Session = Depends(get_db)):
    value = body.value.strip()
    if key in NUMERIC_KEYS:
        try:
            if float(value) < 0:
                raise ValueError(value)
        except ValueError:
            raise ValidationFailed(f"Setting {key} must be a non-negative number")

    row = db.query(Setting).filter(Setting.key == key).first()
    if row is None:
        row = Setting(key=key, value=value, group="store" if key in NUMERIC_KEYS else None)
        db.add(row)
    else:
        row.value = value
        row.updated_at = datetime.utcnow()
    if body.description is not None:
        row.description = body.description
    if body.group is not None:
        row.group = body.group
    db.commit()
    return {"success": True, "setting": row.to_dict()}
