"""HTTP surface tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from callscribe.app import create_app
from callscribe.config import AppConfig, ReaperConfig, WebhookConfig
from callscribe.core.call_service import build_call_service

VALIDATION_EVENT = "Microsoft.EventGrid.SubscriptionValidationEvent"
UNKNOWN_ID = "11111111-1111-1111-1111-111111111111"


def _client(make_transport, **config_overrides):
    config = AppConfig(reaper=ReaperConfig(enabled=False), **config_overrides)
    service = build_call_service(config, transport=make_transport())
    return TestClient(create_app(config, service=service))


@pytest.fixture
def client(make_transport):
    with _client(make_transport) as test_client:
        yield test_client


def _start_call(client, participants=None):
    response = client.post("/api/calls", json={
        "initiator": {"userId": "alice", "displayName": "Alice Smith", "identity": "8:acs:alice-identity"},
        "participants": participants if participants is not None else [
            {"userId": "bob", "displayName": "Bob Jones", "identity": "8:acs:bob-identity"},
        ],
    })
    assert response.status_code == 200
    return response.json()


class TestEventsWebhook:
    def test_subscription_validation_is_echoed(self, client, make_body):
        response = client.post(
            "/api/call-events",
            content=make_body((VALIDATION_EVENT, {"validationCode": "code-123"})),
        )

        assert response.status_code == 200
        assert response.json() == {"validationResponse": "code-123"}

    def test_validation_header_variant(self, client, make_body):
        response = client.post(
            "/api/call-events",
            content=make_body(("Custom.Event", {"validationCode": "code-456"})),
            headers={"aeg-event-type": "SubscriptionValidation"},
        )

        assert response.json() == {"validationResponse": "code-456"}

    @pytest.mark.parametrize("body", [b"not json", b"[]", b"[{\"data\": {}}]"])
    def test_malformed_payload(self, client, body):
        response = client.post("/api/call-events", content=body)

        assert response.status_code == 400
        assert "error" in response.json()

    def test_events_are_acknowledged_with_counts(self, client, make_body):
        call = _start_call(client)
        body = make_body(
            ("Microsoft.Communication.CallConnected", {"operationContext": call["callSessionId"], "callConnectionId": "cc-1"}),
            ("Microsoft.Communication.CallEnded", {"callConnectionId": "someone-else"}),
        )

        response = client.post("/api/call-events", content=body)

        assert response.status_code == 202
        assert response.json() == {"received": 2, "correlated": 1}

    def test_handshake_with_origin(self, client):
        response = client.options("/api/call-events", headers={"WebHook-Request-Origin": "eventgrid.azure.net"})

        assert response.status_code == 200
        assert response.headers["WebHook-Allowed-Origin"] == "eventgrid.azure.net"

    def test_handshake_without_origin(self, client):
        assert client.options("/api/call-events").status_code == 204


class TestWebhookAuthentication:
    def test_missing_or_wrong_key_is_rejected(self, make_transport, make_body):
        body = make_body((VALIDATION_EVENT, {"validationCode": "code-123"}))
        with _client(make_transport, webhook=WebhookConfig(key="s3cret")) as client:
            missing = client.post("/api/call-events", content=body)
            wrong = client.post("/api/call-events", content=body, headers={"x-webhook-key": "nope"})
            right = client.post("/api/call-events", content=body, headers={"X-Webhook-Key": "s3cret"})

        assert missing.status_code == 401
        assert missing.json() == {"error": "Unauthorized."}
        assert wrong.status_code == 401
        assert right.status_code == 200

    def test_custom_path_and_header(self, make_transport, make_body):
        webhook = WebhookConfig(key="s3cret", header_name="x-acs-key", path="/hooks/acs")
        with _client(make_transport, webhook=webhook) as client:
            response = client.post(
                "/hooks/acs",
                content=make_body((VALIDATION_EVENT, {"validationCode": "c"})),
                headers={"x-acs-key": "s3cret"},
            )

        assert response.status_code == 200


class TestCallsRoutes:
    def test_start_call(self, client):
        call = _start_call(client)

        assert call["status"] == "Active"
        assert call["initiatorId"] == "alice"
        assert [p["userId"] for p in call["participants"]] == ["alice", "bob"]
        assert call["identity"] == "8:acs:alice-identity"
        assert call["token"] is None

    def test_start_call_requires_user_id(self, client):
        response = client.post("/api/calls", json={"initiator": {"userId": "  "}})

        assert response.status_code == 422

    def test_add_participants(self, client):
        call = _start_call(client)
        url = f"/api/calls/{call['callSessionId']}/participants"

        added = client.post(url, json={"participants": [{"userId": "carol"}, {"userId": "bob"}]})
        duplicate = client.post(url, json={"participants": [{"userId": "carol"}]})

        assert added.status_code == 200
        assert [p["userId"] for p in added.json()["added"]] == ["carol"]
        assert added.json()["added"][0]["displayName"] == "carol"
        assert added.json()["added"][0]["inviteDispatched"] is False
        assert added.json()["skipped"] == [{"userId": "bob", "reason": "already in call"}]
        assert duplicate.status_code == 400
        assert duplicate.json() == {
            "error": "No new participants to add.",
            "skipped": [{"userId": "carol", "reason": "already in call"}],
        }

    def test_join_call(self, client):
        call = _start_call(client)
        url = f"/api/calls/{call['callSessionId']}/join"

        joined = client.post(url, json={"userId": "carol", "displayName": "Carol"})
        again = client.post(url, json={"userId": "carol"})

        assert joined.status_code == 200
        assert joined.json()["callSessionId"] == call["callSessionId"]
        assert [p["userId"] for p in joined.json()["participants"]] == ["alice", "bob", "carol"]
        assert "token" in joined.json()
        assert again.status_code == 200
        assert [p["userId"] for p in again.json()["participants"]] == ["alice", "bob", "carol"]

    def test_join_errors(self, client):
        assert client.post("/api/calls/not-a-uuid/join", json={"userId": "carol"}).status_code == 400
        missing = client.post(f"/api/calls/{UNKNOWN_ID}/join", json={"userId": "carol"})
        assert missing.status_code == 404

    def test_add_participants_errors(self, client):
        call = _start_call(client)

        assert client.post("/api/calls/not-a-uuid/participants", json={"participants": [{"userId": "x"}]}).status_code == 400
        assert client.post(f"/api/calls/{UNKNOWN_ID}/participants", json={"participants": [{"userId": "x"}]}).status_code == 404
        assert client.post(f"/api/calls/{call['callSessionId']}/participants", json={"participants": []}).status_code == 400

    def test_transcript_and_summary(self, client, make_body):
        call = _start_call(client)
        session_id = call["callSessionId"]
        fragment = {"operationContext": session_id, "text": "Hello", "offset": 1.0, "speakerId": "8:acs:bob-identity"}
        client.post("/api/call-events", content=make_body(
            ("Microsoft.Communication.TranscriptionData", fragment),
            ("Microsoft.Communication.TranscriptionData", fragment),
        ))

        transcript = client.get(f"/api/calls/{session_id}/transcript").json()
        summary = client.get(f"/api/calls/{session_id}/summary").json()

        assert [s["text"] for s in transcript["segments"]] == ["Hello"]
        assert transcript["segments"][0]["speakerUserId"] == "bob"
        assert summary["summaryStatus"] == "ready"
        assert summary["summarySource"] == "fallback"
        assert summary["keyPoints"] == ["Bob Jones: Hello"]
        assert "Alice Smith, Bob Jones" in summary["summary"]

    def test_reads_for_unknown_or_invalid_sessions(self, client):
        assert client.get(f"/api/calls/{UNKNOWN_ID}/transcript").status_code == 404
        assert client.get(f"/api/calls/{UNKNOWN_ID}/summary").status_code == 404
        response = client.get("/api/calls/nope/summary")
        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid call session id."}


class TestHealthAndMiddleware:
    def test_health(self, client):
        response = client.get("/api/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "ok"
        assert body["service"] == "callscribe"
        assert body["summary_provider"] is False

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/api/health", headers={"x-correlation-id": "req-42"})

        assert response.headers["x-correlation-id"] == "req-42"
