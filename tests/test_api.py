"""
API tests for the command and read endpoints.

The machine dependency is overridden per test so every test starts from a
freshly bootstrapped machine.
"""

import pytest
from fastapi.testclient import TestClient

from collab_machine.api import app, get_machine
from collab_machine.machine.engine import BOOTSTRAP_TIMESTAMP


@pytest.fixture
def client(machine):
    app.dependency_overrides[get_machine] = lambda: machine
    yield TestClient(app)
    app.dependency_overrides.clear()


def post(client, command, args=None, caller=None):
    body = {"command": command, "args": args or {}}
    if caller:
        body["caller"] = caller
    return client.post("/commands", json=body)


class TestInfoEndpoints:
    """Tests for health, version and state."""

    def test_healthz(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert "version" in response.json()

    def test_state(self, client, machine):
        data = client.get("/state").json()
        assert data["machine_id"] == "test-machine"
        assert data["schema_version"] == 1
        assert "create-issue" in data["commands"]
        assert data["digest"] == machine.digest()


class TestCommandEndpoint:
    """Tests for POST /commands."""

    def test_successful_command(self, client, author):
        response = post(client, "register", {"name": "alice", "public_key": author.public_key})
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["command"] == "register"
        assert data["value"]["name"] == "alice"

    def test_missing_timestamp_is_stamped_on_arrival(self, client, machine, author, issue_args):
        assert post(client, "create-issue", issue_args(author)).status_code == 200
        assert machine.lookup("issue-1").created_at > BOOTSTRAP_TIMESTAMP

    def test_explicit_timestamp_is_kept(self, client, machine, author):
        response = client.post(
            "/commands",
            json={
                "command": "register",
                "args": {"name": "alice", "public_key": author.public_key},
                "timestamp": "2024-01-01T12:00:00Z",
            },
        )
        assert response.status_code == 200
        assert machine.identity("alice").registered_at.year == 2024

    @pytest.mark.parametrize(
        "command,args,status,code",
        [
            ("frobnicate", {}, 404, "UNKNOWN_COMMAND"),
            ("register", {"name": "alice"}, 422, "INVALID_ARGUMENTS"),
            ("close-issue", {"id": "nope"}, 404, "NOT_FOUND"),
            ("edit-patch", {"id": 1, "fields": {"state": "accepted"}}, 404, "NOT_FOUND"),
            ("update", {"version": 2, "migrations": []}, 403, "UNAUTHORIZED"),
        ],
    )
    def test_failures_map_to_status(self, client, command, args, status, code):
        response = post(client, command, args, caller="someone")
        assert response.status_code == status
        detail = response.json()["detail"]
        assert detail["error"] == "command_failed"
        assert detail["code"] == code

    def test_invalid_signature_is_422(self, client, author, stranger, issue_args):
        args = issue_args(author)
        args["author"] = stranger.public_key
        response = post(client, "create-issue", args)
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"

    def test_conflict_is_409(self, client, author, issue_args):
        assert post(client, "create-issue", issue_args(author)).status_code == 200
        response = post(client, "create-issue", issue_args(author))
        assert response.status_code == 409

    def test_unknown_envelope_field_is_rejected(self, client):
        response = client.post("/commands", json={"command": "register", "sudo": True})
        assert response.status_code == 422

    def test_merge_failure_is_502(self, client, machine, fake_git, maintainer, author, patch_args):
        fake_git.fail_at = "push"
        post(client, "create-patch", patch_args, caller=author.public_key)
        response = post(
            client, "edit-patch", {"id": 1, "fields": {"state": "accepted"}}, caller=maintainer.public_key
        )
        assert response.status_code == 502
        assert machine.lookup(1).state.value == "pending"


class TestReadEndpoints:
    """Tests for artifact and identity reads."""

    @pytest.fixture
    def populated(self, client, author, maintainer, issue_args, patch_args):
        post(client, "create-issue", issue_args(author))
        post(client, "create-patch", patch_args, caller=author.public_key)
        post(client, "create-patch", patch_args, caller=author.public_key)
        post(client, "edit-patch", {"id": 2, "fields": {"state": "rejected"}}, caller=maintainer.public_key)
        post(client, "register", {"name": "alice", "public_key": author.public_key})
        return client

    def test_list_issues(self, populated):
        data = populated.get("/issues").json()
        assert data["count"] == 1
        assert data["issues"][0]["id"] == "issue-1"

    def test_get_issue(self, populated, author):
        data = populated.get("/issues/issue-1").json()
        assert data["issue"]["author"] == author.public_key

    def test_get_missing_issue(self, populated):
        response = populated.get("/issues/nope")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    def test_list_patches_with_state_filter(self, populated):
        assert populated.get("/patches").json()["count"] == 2
        data = populated.get("/patches", params={"state": "rejected"}).json()
        assert [p["id"] for p in data["patches"]] == [2]

    def test_get_patch(self, populated):
        data = populated.get("/patches/1").json()
        assert data["patch"]["state"] == "pending"
        assert data["patch"]["commit"] == "abc1234"

    def test_get_missing_patch(self, populated):
        assert populated.get("/patches/99").status_code == 404

    def test_identities(self, populated):
        data = populated.get("/identities").json()
        assert data["count"] == 1
        assert populated.get("/identities/alice").json()["identity"]["name"] == "alice"
        assert populated.get("/identities/bob").status_code == 404
