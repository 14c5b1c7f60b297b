import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from storefront import config
from storefront.db import SessionLocal, get_db
from storefront.errors import ValidationFailed
from storefront.gateways.razorpay import get_payment_gateway, to_paise
from storefront.notify.mailer import get_mailer
from storefront.routers.cart import optional_session_id
from storefront.services import outbox
from storefront.services.checkout import CheckoutForm, place_order

logger = logging.getLogger(__name__)

router = APIRouter()


class CheckoutBody(BaseModel):
    email: str = ""
    phone: str = ""
    shippingAddress: str = ""
    shippingCity: str = ""
    shippingState: str = ""
    shippingZip: str = ""
    shippingCountry: Optional[str] = None
    paymentMethod: str = ""
    notes: Optional[str] = None

    def to_form(self) -> CheckoutForm:
        return CheckoutForm(
            email=self.email,
            phone=self.phone,
            shipping_address=self.shippingAddress,
            shipping_city=self.shippingCity,
            shipping_state=self.shippingState,
            shipping_zip=self.shippingZip,
            shipping_country=self.shippingCountry,
            payment_method=self.paymentMethod,
            notes=self.notes,
        )


@router.post("/api/checkout")
def checkout(
    body: CheckoutBody,
    background: BackgroundTasks,
    sid: Optional[str] = Depends(optional_session_id),
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    mailer=Depends(get_mailer),
):
    if not sid:
        raise ValidationFailed("Session ID is required")

    result = place_order(db, sid, body.to_form(), gateway)
    order = result.order

    if result.gateway_order_id:
        return {
            "success": True,
            "order": order.to_dict(),
            "orderNumber": order.order_number,
            "redirectUrl": result.redirect_url,
            "paymentId": result.gateway_order_id,
            "keyId": config.RAZORPAY_KEY_ID,
            "amount": to_paise(order.total_amount),
            "currency": config.CURRENCY,
        }

    # очистка корзины и письмо после ответа
    if result.effect_ids:
        background.add_task(outbox.dispatch, SessionLocal, result.effect_ids, mailer)
    return {"success": True, "order": order.to_dict(), "orderNumber": order.order_number}
