from unittest.mock import patch
from uuid import UUID

from switchboard.config import settings
from switchboard.models import Client, Conversation, Message
from switchboard.services.bot_engine import render_template
from switchboard.services.broadcast_service import Topic
from switchboard.services.clock import utcnow

ADDRESS = "5215511111111"


def _seed(session_factory, status="waiting", operator_ref=None, state="initial"):
    db = session_factory()
    try:
        client = Client(address=ADDRESS, client_type="existing", conversation_state=state)
        db.add(client)
        db.flush()
        now = utcnow()
        conversation = Conversation(
            client_id=client.id,
            status=status,
            operator_ref=operator_ref,
            started_at=now,
            last_message_at=now,
        )
        db.add(conversation)
        db.flush()
        for text in ["hola", "3"]:
            db.add(Message(conversation_id=conversation.id, sender_kind="client", content=text, timestamp=utcnow()))
        db.commit()
        return str(conversation.id)
    finally:
        db.close()


def _conversation(session_factory, conversation_id):
    db = session_factory()
    try:
        return db.get(Conversation, UUID(conversation_id))
    finally:
        db.close()


class TestTake:
    def test_take_waiting_conversation(self, api, runtime, session_factory):
        conversation_id = _seed(session_factory)

        response = api.post(f"/conversations/{conversation_id}/take", json={"operator_ref": "op-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "active"
        assert data["operator_ref"] == "op-1"
        assert runtime.reaper.pending(_conversation(session_factory, conversation_id).id)

    def test_take_again_by_same_operator_is_idempotent(self, api, session_factory):
        conversation_id = _seed(session_factory)
        api.post(f"/conversations/{conversation_id}/take", json={"operator_ref": "op-1"})

        response = api.post(f"/conversations/{conversation_id}/take", json={"operator_ref": "op-1"})

        assert response.status_code == 200

    def test_take_active_conversation_conflicts(self, api, session_factory):
        conversation_id = _seed(session_factory, status="active")

        response = api.post(f"/conversations/{conversation_id}/take", json={"operator_ref": "op-1"})

        assert response.status_code == 409

    def test_take_unknown_conversation(self, api):
        response = api.post("/conversations/00000000-0000-0000-0000-000000000000/take", json={"operator_ref": "op-1"})
        assert response.status_code == 404


class TestSend:
    def test_assigned_operator_sends(self, api, session_factory, driver):
        conversation_id = _seed(session_factory, status="active", operator_ref="op-1")

        response = api.post(
            f"/conversations/{conversation_id}/messages",
            json={"operator_ref": "op-1", "content": "Hola, soy Laura"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["sender_kind"] == "operator"
        assert data["sender_ref"] == "op-1"
        assert data["is_read"] is True
        assert driver.sent == [(ADDRESS, "Hola, soy Laura")]

    def test_other_operator_is_rejected(self, api, session_factory, driver):
        conversation_id = _seed(session_factory, status="active", operator_ref="op-1")

        response = api.post(f"/conversations/{conversation_id}/messages", json={"operator_ref": "op-2", "content": "hola"})

        assert response.status_code == 403
        assert driver.sent == []

    def test_send_while_disconnected(self, api, session_factory, driver):
        conversation_id = _seed(session_factory, status="active", operator_ref="op-1")
        api.post("/transport/disconnect")

        response = api.post(f"/conversations/{conversation_id}/messages", json={"operator_ref": "op-1", "content": "hola"})

        assert response.status_code == 503
        assert driver.sent == []
        messages = api.get(f"/conversations/{conversation_id}/messages").json()
        assert [m["sender_kind"] for m in messages] == ["client", "client"]

    def test_empty_content_rejected(self, api, session_factory):
        conversation_id = _seed(session_factory, status="active", operator_ref="op-1")
        response = api.post(f"/conversations/{conversation_id}/messages", json={"operator_ref": "op-1", "content": ""})
        assert response.status_code == 422


class TestReleaseAndClose:
    def test_release_returns_to_bot(self, api, session_factory):
        conversation_id = _seed(session_factory, status="active", operator_ref="op-1", state="client_menu")

        response = api.post(f"/conversations/{conversation_id}/release", json={"operator_ref": "op-1"})

        assert response.status_code == 200
        assert response.json()["operator_ref"] is None
        db = session_factory()
        assert db.query(Client).one().conversation_state == "initial"
        db.close()

    def test_close(self, api, runtime, session_factory, driver, broadcaster):
        conversation_id = _seed(session_factory)
        api.post(f"/conversations/{conversation_id}/take", json={"operator_ref": "op-1"})

        response = api.post(f"/conversations/{conversation_id}/close", json={"operator_ref": "op-1"})

        assert response.status_code == 200
        conversation = _conversation(session_factory, conversation_id)
        assert conversation.status == "closed"
        assert conversation.closed_by_ref == "op-1"
        assert conversation.close_reason == "operator"
        assert conversation.ended_at is not None
        assert not runtime.reaper.pending(conversation.id)
        assert driver.sent[-1] == (ADDRESS, render_template("operator_closed"))
        closed = broadcaster.of(Topic.CONVERSATION_CLOSED)
        assert closed[-1]["reason"] == "operator"

    def test_close_twice_conflicts(self, api, session_factory):
        conversation_id = _seed(session_factory)
        api.post(f"/conversations/{conversation_id}/close", json={"operator_ref": "op-1"})

        response = api.post(f"/conversations/{conversation_id}/close", json={"operator_ref": "op-1"})

        assert response.status_code == 409


class TestReadReceipts:
    def test_mark_read(self, api, session_factory):
        conversation_id = _seed(session_factory)

        first = api.post(f"/conversations/{conversation_id}/read")
        second = api.post(f"/conversations/{conversation_id}/read")

        assert first.json()["updated"] == 2
        assert second.json()["updated"] == 0


class TestTransportEndpoints:
    def test_status_and_disconnect(self, api):
        assert api.get("/transport/status").json()["connected"] is True

        response = api.post("/transport/disconnect")

        assert response.json()["connected"] is False
        assert response.json()["state"] == "disconnected"

    def test_reconnect(self, api):
        api.post("/transport/disconnect")
        assert api.post("/transport/connect").json()["connected"] is True


class TestServiceEndpoints:
    def test_health(self, api):
        assert api.get("/health").json() == {"status": "ok"}

    def test_db_check(self, api, session_factory):
        _seed(session_factory)
        data = api.get("/db-check").json()
        assert data["clients"] == 1
        assert data["messages"] == 2

    def test_admin_requires_token(self, api):
        with patch.object(settings, "admin_token", "secret"):
            assert api.get("/admin/health").status_code == 401
            response = api.get("/admin/health", headers={"X-Admin-Token": "secret"})
        assert response.status_code == 200
        assert set(response.json()["conversations"]) == {"active", "waiting", "closed"}

    def test_admin_rejects_wrong_token(self, api):
        with patch.object(settings, "admin_token", "secret"):
            response = api.post("/admin/heal", headers={"X-Admin-Token": "guess"})
        assert response.status_code == 401

    def test_admin_maintenance_heals_and_reports_purge(self, api, session_factory):
        conversation_id = _seed(session_factory, status="waiting", operator_ref="op-stale")

        with patch.object(settings, "admin_token", "secret"):
            response = api.post("/admin/maintenance", headers={"X-Admin-Token": "secret"})

        assert response.status_code == 200
        data = response.json()
        assert data["healed_count"] == 1
        assert data["purged_events"] == 0
        assert _conversation(session_factory, conversation_id).operator_ref is None
