"""HTTP surface tests; the app owns its in-memory platform for each test."""

from fastapi import status
from fastapi.testclient import TestClient
import pytest

from clubspace.api.main import create_app


@pytest.fixture
def api(settings):
    with TestClient(create_app(settings)) as http:
        yield http


def create_profile(api, email, full_name, **extra):
    response = api.post("/profiles", json={"email": email, "full_name": full_name, **extra})
    assert response.status_code == status.HTTP_201_CREATED, response.text
    return response.json()


def sign_in(api, profile):
    response = api.post("/session", json={"user_id": profile["id"]})
    assert response.status_code == status.HTTP_200_OK, response.text
    return response.json()


class TestSession:
    def test_starts_signed_out(self, api):
        response = api.get("/session")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"authenticated": False, "user_id": None}

    def test_sign_in_and_out(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")

        assert sign_in(api, alice) == {"authenticated": True, "user_id": alice["id"]}

        response = api.delete("/session")
        assert response.json()["authenticated"] is False

    def test_duplicate_profile_is_conflict(self, api):
        create_profile(api, "alice@uni.edu", "Alice Archer")

        response = api.post(
            "/profiles", json={"email": "alice@uni.edu", "full_name": "Other Alice"}
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["code"] == "DUPLICATE"


class TestConversations:
    def test_inbox_requires_session(self, api):
        response = api.get("/inbox/active")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"]["code"] == "NO_SESSION"

    def test_unknown_tab_is_rejected(self, api):
        response = api.get("/inbox/archived")

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_start_send_and_list(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        bob = create_profile(api, "bob@uni.edu", "Bob Baker")
        sign_in(api, alice)

        started = api.post("/conversations", json={"user_id": bob["id"]})
        assert started.status_code == status.HTTP_201_CREATED, started.text
        detail = started.json()
        conversation_id = detail["conversation"]["id"]
        assert detail["other_user"]["id"] == bob["id"]
        assert detail["messages"] == []

        sent = api.post(f"/conversations/{conversation_id}/messages", json={"content": " hi "})
        assert sent.status_code == status.HTTP_201_CREATED, sent.text
        assert sent.json()["content"] == "hi"

        inbox = api.get("/inbox/active").json()
        assert [view["conversation"]["id"] for view in inbox] == [conversation_id]
        assert inbox[0]["conversation"]["last_message"] == "hi"

        opened = api.get(f"/conversations/{conversation_id}").json()
        assert [m["content"] for m in opened["messages"]] == ["hi"]

    def test_self_chat_is_rejected(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        sign_in(api, alice)

        response = api.post("/conversations", json={"user_id": alice["id"]})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"]["code"] == "SELF_CHAT"

    def test_empty_message_is_rejected(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        bob = create_profile(api, "bob@uni.edu", "Bob Baker")
        sign_in(api, alice)
        conversation_id = api.post("/conversations", json={"user_id": bob["id"]}).json()[
            "conversation"
        ]["id"]

        response = api.post(f"/conversations/{conversation_id}/messages", json={"content": ""})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"]["code"] == "EMPTY_MESSAGE"

    def test_delete_hides_conversation(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        bob = create_profile(api, "bob@uni.edu", "Bob Baker")
        sign_in(api, alice)
        conversation_id = api.post("/conversations", json={"user_id": bob["id"]}).json()[
            "conversation"
        ]["id"]

        response = api.delete(f"/conversations/{conversation_id}")

        assert response.status_code == status.HTTP_200_OK, response.text
        assert alice["id"] in response.json()["deleted_for"]
        assert api.get("/inbox/active").json() == []


class TestNotificationsAndDiagnostics:
    def test_badges_and_notifications(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        sign_in(api, alice)

        assert api.get("/notifications/badge").json() == {"messages": 0, "notifications": 0}
        assert api.get("/notifications").json() == []
        assert api.post("/notifications/read-all").json() == {"marked": []}

    def test_unknown_notification(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        sign_in(api, alice)

        response = api.post("/notifications/missing/read")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_diagnostics_report(self, api):
        alice = create_profile(api, "alice@uni.edu", "Alice Archer")
        sign_in(api, alice)

        report = api.get("/diagnostics").json()

        assert report["user_id"] == alice["id"]
        assert report["database_reachable"] is True
        assert report["subscription_count"] == 3
        assert report["read_probe"] == "skipped"
        assert report["logs"][-1].endswith("Complete")

    def test_metrics_endpoint(self, api):
        api.get("/session")

        response = api.get("/metrics")

        assert response.status_code == status.HTTP_200_OK
        assert "clubspace_http_requests_total" in response.text
