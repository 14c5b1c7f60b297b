import logging
import time

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storefront.db import get_db
from storefront.middleware.rbac import SESSION_COOKIE, require_admin, session_token
from storefront.models.user import User
from storefront.services.admin_sessions import AdminSession, SessionStore, get_session_store
from storefront.utils.security import verify_password

logger = logging.getLogger(__name__)

router = APIRouter()

# 🔹 Rate limit config
MAX_ATTEMPTS = 5          # максимум попыток
BLOCK_TIME = 60           # блокировка на 60 секунд
login_attempts = {}       # { "ip": {"count": int, "last": timestamp} }


def check_rate_limit(ip: str) -> bool:
    """Проверка лимита по IP"""
    now = time.time()
    data = login_attempts.get(ip)
    if not data:
        return True
    # ещё идёт блокировка
    return not (data["count"] >= MAX_ATTEMPTS and now - data["last"] < BLOCK_TIME)


def add_attempt(ip: str):
    now = time.time()
    attempts = login_attempts.get(ip)
    if not attempts or now - attempts["last"] > BLOCK_TIME:
        login_attempts[ip] = {"count": 1, "last": now}
    else:
        attempts["count"] += 1
        attempts["last"] = now


def reset_attempts(ip: str):
    login_attempts.pop(ip, None)


@router.post("/api/admin/login")
def login(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    client_ip = request.client.host if request.client else "unknown"

    if not check_rate_limit(client_ip):
        return JSONResponse(
            {"success": False, "message": "Too many login attempts. Try again in a minute."},
            status_code=429,
        )

    user = db.query(User).filter(User.username == username).first()
    if not user or not verify_password(password, user.password_hash):
        add_attempt(client_ip)
        logger.warning("Failed admin login for %r from %s", username, client_ip)
        return JSONResponse({"success": False, "message": "Invalid username or password"}, status_code=401)
    if not user.is_admin:
        add_attempt(client_ip)
        return JSONResponse({"success": False, "message": "Admin access required"}, status_code=403)

    reset_attempts(client_ip)
    token = store.create(AdminSession(user_id=user.id, username=user.username, role=user.role))
    logger.info("Admin %s logged in", user.username)

    resp = JSONResponse({
        "success": True,
        "sessionId": token,
        "user": {"id": user.id, "username": user.username, "role": user.role},
    })
    resp.set_cookie(SESSION_COOKIE, token, httponly=True, samesite="lax")
    return resp


@router.post("/api/admin/logout")
def logout(request: Request, store: SessionStore = Depends(get_session_store)):
    token = session_token(request)
    if token:
        store.invalidate(token)
    resp = JSONResponse({"success": True})
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@router.get("/api/admin/session")
def whoami(admin: AdminSession = Depends(require_admin)):
    return {
        "success": True,
        "user": {"id": admin.user_id, "username": admin.username, "role": admin.role},
    }
