"""Test agent listing and dispatch endpoints."""

from conftest import LIVEKIT_API_KEY, LIVEKIT_API_SECRET, CountingIssuer, RecordingDispatchClient

from zappytalk_api.dispatch import SessionDispatchCoordinator, get_dispatch_coordinator
from zappytalk_api.livekit_tokens import decode_room_token
from zappytalk_api.main import app


def _use_coordinator(dispatch_client, issuer, api_key=LIVEKIT_API_KEY, api_secret=LIVEKIT_API_SECRET):
    coordinator = SessionDispatchCoordinator(api_key, api_secret, dispatch_client, issuer)
    app.dependency_overrides[get_dispatch_coordinator] = lambda: coordinator


class TestDispatchAgent:
    def test_success(self, client, auth_headers, dispatch_client, issuer):
        response = client.get(
            "/dispatch-agent",
            params={
                "room": "room-7",
                "identity": "user_TEST_ONLY_000000",
                "userName": "Test User",
                "agentName": "voice-agent-prod",
                "userContext": '{"timezone": "Europe/Paris", "locale": "fr-FR"}',
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["room"] == "room-7"
        assert data["identity"] == "user_TEST_ONLY_000000"

        claims = decode_room_token(data["token"], LIVEKIT_API_SECRET)
        assert claims["video"] == {"roomJoin": True, "room": "room-7"}
        assert claims["name"] == "Test User"

        assert issuer.calls == 1
        assert dispatch_client.calls[0]["agent_name"] == "voice-agent-prod"
        assert dispatch_client.calls[0]["metadata"]["userContext"] == {
            "timezone": "Europe/Paris",
            "locale": "fr-FR",
        }

    def test_defaults(self, client, auth_headers, dispatch_client):
        response = client.get("/dispatch-agent", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["room"] == "quickstart-room"
        assert response.json()["identity"] == "quickstart-user"
        assert dispatch_client.calls[0]["agent_name"] == "voice-agent-dev"

    def test_malformed_context(self, client, auth_headers, dispatch_client, issuer):
        response = client.get("/dispatch-agent", params={"userContext": "{not json"}, headers=auth_headers)

        assert response.status_code == 400
        assert issuer.calls == 0
        assert dispatch_client.calls == []

    def test_missing_credentials(self, client, auth_headers):
        dispatch_client, issuer = RecordingDispatchClient(), CountingIssuer()
        _use_coordinator(dispatch_client, issuer, api_secret=None)

        response = client.get("/dispatch-agent", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate token"}
        assert dispatch_client.calls == []

    def test_dispatch_failure_hides_token(self, client, auth_headers):
        dispatch_client = RecordingDispatchClient(error=ConnectionError("livekit.internal:7880 refused"))
        issuer = CountingIssuer()
        _use_coordinator(dispatch_client, issuer)

        response = client.get("/dispatch-agent", params={"room": "r1"}, headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate token"}
        assert issuer.calls == 1
        assert "token" not in response.json()
        assert "livekit.internal" not in response.text


class TestGetToken:
    def test_issues_without_dispatch(self, client, auth_headers, dispatch_client, issuer):
        response = client.get("/get-token", params={"room": "r1", "identity": "u1"}, headers=auth_headers)

        assert response.status_code == 200
        claims = decode_room_token(response.json()["token"], LIVEKIT_API_SECRET)
        assert claims["sub"] == "u1"
        assert issuer.calls == 1
        assert dispatch_client.calls == []

    def test_missing_credentials(self, client, auth_headers):
        _use_coordinator(RecordingDispatchClient(), CountingIssuer(), api_key=None)

        response = client.get("/get-token", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to generate token"}


class TestAgentListing:
    def test_get_agents(self, client, auth_headers, fake_db):
        fake_db.tables["agents"].extend([{"name": "voice-agent-prod"}, {"name": "voice-agent-dev"}])

        response = client.get("/get-agents", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == [{"name": "voice-agent-dev"}, {"name": "voice-agent-prod"}]

    def test_get_agents_store_failure(self, client, auth_headers, fake_db, monkeypatch):
        def _broken(name):
            raise RuntimeError("kv unavailable")

        monkeypatch.setattr(fake_db, "table", _broken)

        response = client.get("/get-agents", headers=auth_headers)

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch agents"}

    def test_default_agent(self, client):
        response = client.get("/default-agent")

        assert response.status_code == 200
        assert response.json() == {"agent": "voice-agent-test"}
