import logging
import smtplib
from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from storefront import config

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


def format_amount(value) -> str:
    return f"₹{Decimal(str(value)):,.2f}"


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class Mailer:
    def __init__(
        self,
        host: str = config.EMAIL_HOST,
        port: int = config.EMAIL_PORT,
        user: str = config.EMAIL_USER,
        password: str = config.EMAIL_PASS,
        sender: str = config.EMAIL_FROM,
        sender_name: str = config.EMAIL_FROM_NAME,
        store_name: str = config.STORE_NAME,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.sender_name = sender_name
        self.store_name = store_name
        self.templates = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )
        self.templates.filters["money"] = format_amount

    def send(self, to: str, subject: str, html: str) -> SendResult:
        """Отправить письмо через SMTP. Исключения не пробрасывает."""
        if not to:
            return SendResult(success=False, error="Email is missing")

        msg = EmailMessage()
        msg["From"] = formataddr((self.sender_name, self.sender))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid()
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=config.HTTP_TIMEOUT) as smtp:
                smtp.starttls()
                if self.user:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email to %s failed: %s", to, e)
            return SendResult(success=False, error=str(e))

        logger.info("Email %r sent to %s", subject, to)
        return SendResult(success=True, message_id=msg["Message-ID"])

    def render(self, template: str, **context) -> str:
        return self.templates.get_template(template).render(store_name=self.store_name, **context)

    # ---------- уведомления по заказу ----------
    def send_order_confirmation(self, order, items: List) -> SendResult:
        html = self.render("order_confirmation.html", order=order, items=items)
        return self.send(
            order.email,
            f"Order Confirmation #{order.order_number} - {self.store_name}",
            html,
        )

    def send_shipping_notification(self, order, tracking_id: str) -> SendResult:
        html = self.render("shipping_notification.html", order=order, tracking_id=tracking_id)
        return self.send(
            order.email,
            f"Your Order Has Been Shipped #{order.order_number} - {self.store_name}",
            html,
        )


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer()
    return _mailer
