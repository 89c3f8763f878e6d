"""
Standup Service - HTTP API Tests
=================================
Run:  pytest test_main.py -v --cov=app --cov-report=term-missing
"""
import json
import time
from datetime import timedelta
from urllib.parse import urlencode

import pytest
from fastapi.testclient import TestClient

from main import app
from app.core.clock import utcnow
from app.core.dependencies import get_magic_token_service
from app.services.signature import compute_signature

client = TestClient(app)
SECRET = "test-signing-secret"
API_KEY_HEADERS = {"X-API-Key": "test-api-key"}


def _signed_headers(body: bytes, content_type="application/json", secret=SECRET, ts=None):
    ts = str(ts or int(time.time()))
    return {
        "Content-Type": content_type,
        "X-Slack-Request-Timestamp": ts,
        "X-Slack-Signature": compute_signature(secret, ts, body),
    }


def _post_event(payload: dict, **kwargs):
    body = json.dumps(payload).encode()
    return client.post("/slack/events", content=body, headers=_signed_headers(body, **kwargs))


def _post_form(path: str, form: dict):
    body = urlencode(form).encode()
    return client.post(path, content=body,
                       headers=_signed_headers(body, "application/x-www-form-urlencoded"))


@pytest.fixture
def live_instance(make_instance):
    """A collecting instance created just now, so real-clock validation passes."""
    return make_instance(utcnow() - timedelta(minutes=5))


@pytest.fixture
def token(live_instance):
    return get_magic_token_service().issue(live_instance.id, "m-1", "U001", "org-1").token


# ═══════════════════════════════════════════════════════════════════════════
# HEALTH & METRICS
# ═══════════════════════════════════════════════════════════════════════════
class TestHealth:
    def test_health_ok(self):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json() == {"status": "ok", "service": "standup-service"}

    def test_readiness_ok(self):
        r = client.get("/health/ready")
        assert r.status_code == 200
        assert r.json()["database"] == "connected"

    def test_metrics_endpoint(self):
        client.get("/health")
        r = client.get("/metrics")
        assert r.status_code == 200
        assert "standup_requests_total" in r.text

    def test_request_id_propagated(self):
        r = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert r.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self):
        assert client.get("/health").headers.get("X-Request-ID")

    def test_token_never_becomes_metric_label(self):
        client.get("/api/v1/standups/respond/secret-token-value")
        text = client.get("/metrics").text
        assert 'endpoint="/api/v1/standups/respond/{token}"' in text
        assert "secret-token-value" not in text

    def test_slack_retries_counted(self):
        body = json.dumps({"type": "url_verification", "challenge": "c"}).encode()
        headers = _signed_headers(body)
        headers.update({"X-Slack-Retry-Num": "1", "X-Slack-Retry-Reason": "http_timeout"})
        client.post("/slack/events", content=body, headers=headers)
        assert 'standup_webhook_retries_total{reason="http_timeout"}' in client.get("/metrics").text

    def test_dedup_stats(self):
        r = client.get("/api/v1/webhooks/dedup/stats")
        assert r.status_code == 200
        assert r.json()["backend"] == "sql"


# ═══════════════════════════════════════════════════════════════════════════
# SLACK WEBHOOKS
# ═══════════════════════════════════════════════════════════════════════════
class TestSlackWebhooks:
    def test_bad_signature_rejected(self):
        body = b'{"type":"url_verification","challenge":"abc"}'
        r = client.post("/slack/events", content=body,
                        headers=_signed_headers(body, secret="wrong"))
        assert r.status_code == 401
        assert r.json()["error"] == "invalid_signature"

    def test_replayed_timestamp_rejected(self):
        r = _post_event({"type": "url_verification", "challenge": "abc"},
                        ts=int(time.time()) - 600)
        assert r.status_code == 401

    def test_url_verification_challenge(self):
        r = _post_event({"type": "url_verification", "challenge": "abc123"})
        assert r.status_code == 200
        assert r.json() == {"challenge": "abc123"}

    def test_event_acknowledged(self, config):
        envelope = {"type": "event_callback", "team_id": "T1", "event_id": "Ev1",
                    "event": {"type": "message", "user": "U1", "channel": "C1"}}
        first = _post_event(envelope)
        retry = _post_event(envelope)
        assert first.status_code == retry.status_code == 200
        assert first.text == "OK"

    def test_malformed_json_is_400(self):
        body = b"{nope"
        r = client.post("/slack/events", content=body, headers=_signed_headers(body))
        assert r.status_code == 400

    def test_malformed_envelope_is_400(self):
        r = _post_event({"type": "event_callback", "team_id": "T1"})
        assert r.status_code == 400

    def test_connect_command_round_trip(self, config):
        r = _post_form("/slack/commands", {
            "command": "/standup", "text": "connect org-1", "team_id": "T-HTTP",
            "user_id": "U1", "channel_id": "C1", "trigger_id": "trig-http-1",
        })
        assert r.status_code == 200
        assert r.json()["response_type"] == "ephemeral"
        assert "org-1" in r.json()["text"]

        status = _post_form("/slack/commands", {
            "command": "/standup", "text": "status", "team_id": "T-HTTP",
            "user_id": "U1", "trigger_id": "trig-http-2",
        })
        assert "Connected to organization `org-1`" in status.json()["text"]

    def test_interactive_acknowledged(self, config):
        payload = {"type": "block_actions", "team": {"id": "T1"}, "user": {"id": "U1"},
                   "trigger_id": "trig-i", "actions": [{"action_id": "x"}]}
        r = _post_form("/slack/interactive", {"payload": json.dumps(payload)})
        assert r.status_code == 200
        assert r.text == ""


# ═══════════════════════════════════════════════════════════════════════════
# MAGIC LINK SUBMISSION
# ═══════════════════════════════════════════════════════════════════════════
class TestMagicLink:
    def test_get_standup_info(self, token, live_instance):
        r = client.get(f"/api/v1/standups/respond/{token}")
        assert r.status_code == 200
        body = r.json()
        assert body["instance"]["id"] == live_instance.id
        assert body["member"]["name"] == "Alice"
        assert len(body["questions"]) == 3

    def test_get_with_invalid_token(self):
        r = client.get("/api/v1/standups/respond/garbage")
        assert r.status_code == 401
        assert r.json()["error"] == "invalid_token"

    def test_submit_then_resubmit(self, token, live_instance):
        answers = [{"question_index": i, "text": f"a{i}"} for i in range(3)]
        r = client.post("/api/v1/standups/respond", json={"token": token, "answers": answers})
        assert r.status_code == 200
        assert r.json() == {"success": True, "answers_submitted": 3}

        again = client.post("/api/v1/standups/respond", json={"token": token, "answers": answers})
        assert again.status_code == 409
        assert again.json()["error"] == "already_submitted"

    def test_bad_question_index(self, token):
        r = client.post("/api/v1/standups/respond", json={
            "token": token, "answers": [{"question_index": 7, "text": "x"}],
        })
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_question_index"

    def test_submit_with_invalid_token(self):
        r = client.post("/api/v1/standups/respond", json={
            "token": "forged", "answers": [{"question_index": 0, "text": "x"}],
        })
        assert r.status_code == 401
        assert r.json()["error"] == "invalid_token"

    def test_empty_answers_is_422(self, token):
        r = client.post("/api/v1/standups/respond", json={"token": token, "answers": []})
        assert r.status_code == 422

    def test_get_answers(self, token, live_instance):
        client.post("/api/v1/standups/respond", json={
            "token": token, "answers": [{"question_index": 0, "text": "shipped it"}],
        })
        r = client.get(f"/api/v1/standups/{live_instance.id}/answers",
                       params={"org_id": "org-1"}, headers=API_KEY_HEADERS)
        assert r.status_code == 200
        body = r.json()
        assert body["responded"] == 1
        assert body["total_members"] == 2

    def test_get_answers_wrong_org(self, live_instance):
        r = client.get(f"/api/v1/standups/{live_instance.id}/answers",
                       params={"org_id": "org-2"}, headers=API_KEY_HEADERS)
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"

    def test_get_answers_requires_api_key(self, live_instance):
        r = client.get(f"/api/v1/standups/{live_instance.id}/answers", params={"org_id": "org-1"})
        assert r.status_code == 401
        assert r.json()["error"] == "missing_api_key"

    def test_get_answers_rejects_unknown_key(self, live_instance):
        r = client.get(f"/api/v1/standups/{live_instance.id}/answers",
                       params={"org_id": "org-1"}, headers={"X-API-Key": "guess"})
        assert r.status_code == 403
        assert r.json()["error"] == "invalid_api_key"
