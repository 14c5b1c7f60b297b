import hmac
import logging
from typing import Optional

from fastapi import Depends, Request

from storefront import config
from storefront.errors import Unauthorized
from storefront.services.admin_sessions import AdminSession, SessionStore, get_session_store
from storefront.utils.enums import UserRole

logger = logging.getLogger(__name__)

SESSION_HEADER = "admin-session-id"
SESSION_COOKIE = "admin_session"


def session_token(request: Request) -> Optional[str]:
    """Токен админ-сессии: заголовок, Bearer или cookie."""
    token = request.headers.get(SESSION_HEADER)
    if token:
        return token
    auth = request.headers.get("authorization") or ""
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


def require_admin(request: Request, store: SessionStore = Depends(get_session_store)) -> AdminSession:
    # 🔹 сервисный ключ (скрипты, интеграции)
    key = request.headers.get("x-admin-key")
    if key and config.ADMIN_KEY and hmac.compare_digest(key, config.ADMIN_KEY):
        return AdminSession(user_id=0, username="api-key", role=UserRole.ADMIN.value)

    session = store.get(session_token(request))
    if not session:
        raise Unauthorized("Admin access required")
    if (session.role or "").strip().lower() != UserRole.ADMIN.value:
        logger.warning("User %s (role=%s) tried an admin route %s", session.username, session.role, request.url.path)
        raise Unauthorized("Admin access required")
    return session
