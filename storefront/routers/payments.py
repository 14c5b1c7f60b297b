import logging
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.db import SessionLocal, get_db
from storefront.errors import NotFound, ShopError
from storefront.gateways.razorpay import get_payment_gateway
from storefront.notify.mailer import get_mailer
from storefront.services import outbox, payments
from storefront.utils.enums import PaymentStatus

logger = logging.getLogger(__name__)

router = APIRouter()


class VerifyPayment(BaseModel):
    orderId: str = ""
    paymentId: str = ""
    signature: str = ""


def _redirect(path: str, **params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(f"{path}?{query}" if query else path, status_code=302)


@router.post("/api/orders/verify-payment")
def verify_payment(
    body: VerifyPayment,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    mailer=Depends(get_mailer),
):
    result = payments.verify_payment(db, gateway, body.orderId, body.paymentId, body.signature)
    if result.effect_ids:
        background.add_task(outbox.dispatch, SessionLocal, result.effect_ids, mailer)
    return {
        "success": True,
        "orderNumber": result.order.order_number,
        "message": "Payment verified successfully",
    }


@router.get("/api/payment/callback")
def payment_callback(
    background: BackgroundTasks,
    transactionId: str = "",
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    mailer=Depends(get_mailer),
):
    if not transactionId:
        return _redirect("/order-failed", reason="missing-transaction-id")

    try:
        result = payments.reconcile_callback(db, gateway, transactionId)
    except NotFound:
        return _redirect("/order-failed", reason="order-not-found")
    except (ShopError, SQLAlchemyError) as e:
        db.rollback()
        logger.error("Payment callback for %s failed: %s", transactionId, e)
        return _redirect("/order-failed", reason="server-error")

    if result.effect_ids:
        background.add_task(outbox.dispatch, SessionLocal, result.effect_ids, mailer)

    order_id = result.order.id
    if result.payment_status == PaymentStatus.COMPLETED.value:
        return _redirect("/order-success", orderId=order_id)
    if result.payment_status == PaymentStatus.PENDING.value:
        return _redirect("/order-failed", orderId=order_id, reason="payment-pending")
    return _redirect("/order-failed", orderId=order_id)
