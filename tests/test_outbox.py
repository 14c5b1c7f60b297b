import json

from storefront.db import SessionLocal
from storefront.models.cart import CartItem
from storefront.models.side_effect import SideEffect
from storefront.services import outbox
from storefront.utils.enums import SideEffectKind

ADMIN = {"x-admin-key": "test-admin-key"}


def test_failed_email_does_not_fail_checkout(client, db, make_product, mailer, checkout_body):
    p = make_product(price="100")
    client.post("/api/cart", json={"productId": p.id}, headers={"session-id": "ob"})
    mailer.fail = True

    resp = client.post("/api/checkout", json=checkout_body("cod"), headers={"session-id": "ob"})
    assert resp.status_code == 200
    assert resp.json()["order"]["status"] == "processing"

    effects = {e.kind: e for e in db.query(SideEffect).all()}
    assert effects["clear_cart"].status == "done"
    email = effects["order_confirmation_email"]
    assert (email.status, email.attempts, email.last_error) == ("pending", 1, "SMTP unavailable")
    assert db.query(CartItem).count() == 0

    listed = client.get("/api/admin/outbox", headers=ADMIN).json()["effects"]
    assert [e["kind"] for e in listed] == ["order_confirmation_email"]

    mailer.fail = False
    assert client.post("/api/admin/outbox/retry", headers=ADMIN).json() == {"success": True, "queued": 1}
    db.expire_all()
    assert db.get(SideEffect, email.id).status == "done"
    assert len(mailer.sent) == 1


def test_gives_up_after_max_attempts(db, mailer):
    effect = outbox.enqueue(db, SideEffectKind.ORDER_CONFIRMATION_EMAIL, {"order_id": 12345})
    db.commit()

    for _ in range(outbox.MAX_ATTEMPTS + 2):
        outbox.dispatch(SessionLocal, [effect.id], mailer)

    db.expire_all()
    effect = db.get(SideEffect, effect.id)
    assert effect.status == "failed"
    assert effect.attempts == outbox.MAX_ATTEMPTS
    assert "12345" in effect.last_error


def test_clear_cart_effect_twice(db, make_product, mailer):
    p = make_product()
    db.add(CartItem(session_id="twice", product_id=p.id, quantity=1))
    first = outbox.enqueue(db, SideEffectKind.CLEAR_CART, {"session_id": "twice"})
    second = outbox.enqueue(db, SideEffectKind.CLEAR_CART, {"session_id": "twice"})
    db.commit()

    assert outbox.dispatch(SessionLocal, [first.id, second.id], mailer) == 2
    assert db.query(CartItem).count() == 0


def test_unknown_kind_is_recorded(db, mailer):
    effect = SideEffect(kind="fax_customer", payload=json.dumps({}))
    db.add(effect)
    db.commit()

    assert outbox.dispatch(SessionLocal, [effect.id], mailer) == 0
    db.expire_all()
    assert "Unknown side effect kind" in db.get(SideEffect, effect.id).last_error


def test_effect_runs_once_when_dispatched_concurrently(db, mailer, make_product, checkout_body, client):
    p = make_product(price="100")
    client.post("/api/cart", json={"productId": p.id}, headers={"session-id": "race"})
    mailer.fail = True
    client.post("/api/checkout", json=checkout_body("cod"), headers={"session-id": "race"})
    mailer.fail = False
    email = db.query(SideEffect).filter(SideEffect.kind == "order_confirmation_email").one()

    nested = []
    original_send = mailer.send

    def send_while_another_worker_runs(to, subject, html):
        # второй воркер берёт тот же id, пока первый ещё шлёт письмо
        nested.append(outbox.dispatch(SessionLocal, [email.id], mailer))
        return original_send(to, subject, html)

    mailer.send = send_while_another_worker_runs
    assert outbox.dispatch(SessionLocal, [email.id], mailer) == 1

    assert nested == [0]
    assert len(mailer.sent) == 1
    db.expire_all()
    effect = db.get(SideEffect, email.id)
    assert (effect.status, effect.attempts) == ("done", 2)


def test_stale_pending_copy_is_not_run_twice(db, mailer):
    effect = outbox.enqueue(db, SideEffectKind.CLEAR_CART, {"session_id": "stale"})
    db.commit()
    assert effect.status == "pending"

    # другой воркер успел выполнить запись
    assert outbox.dispatch(SessionLocal, [effect.id], mailer) == 1

    # в памяти у нас всё ещё pending
    assert outbox.run_one(db, effect, mailer) is False
    db.expire_all()
    assert db.get(SideEffect, effect.id).attempts == 1
