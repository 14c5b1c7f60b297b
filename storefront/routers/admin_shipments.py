from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storefront.db import SessionLocal, get_db
from storefront.gateways.shiprocket import get_courier
from storefront.middleware.rbac import require_admin
from storefront.notify.mailer import get_mailer
from storefront.services import outbox
from storefront.services.admin_sessions import AdminSession
from storefront.services.shipping import dispatch_shipment

router = APIRouter(prefix="/api/admin/shipments", tags=["admin-shipments"], dependencies=[Depends(require_admin)])


class ShipmentCreate(BaseModel):
    orderId: int
    notify: bool = False


class AwbAssign(BaseModel):
    shipmentId: int
    courierId: int


@router.post("")
def create_shipment(
    body: ShipmentCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: AdminSession = Depends(require_admin),
    courier=Depends(get_courier),
    mailer=Depends(get_mailer),
):
    result = dispatch_shipment(db, courier, body.orderId, notify=body.notify, actor=f"admin:{admin.username}")
    if result.effect_ids:
        background.add_task(outbox.dispatch, SessionLocal, result.effect_ids, mailer)
    return {
        "success": True,
        "message": "Shipment created successfully",
        "data": result.to_dict(),
        "order": result.order.to_dict(),
    }


@router.get("/track/{awb}")
def track_shipment(awb: str, courier=Depends(get_courier)):
    return {"success": True, "data": courier.track(awb)}


@router.post("/assign-awb")
def assign_awb(body: AwbAssign, courier=Depends(get_courier)):
    return {"success": True, "data": courier.assign_awb(body.shipmentId, body.courierId)}


@router.get("/serviceability")
def serviceability(
    pincode: str = Query(..., min_length=6, max_length=6),
    weight: float = Query(0.5, gt=0),
    orderValue: Optional[str] = Query("0"),
    courier=Depends(get_courier),
):
    return {"success": True, "data": courier.serviceability(pincode, weight, orderValue)}
