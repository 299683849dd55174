"""Tests for the runtime-upgrade gate."""

import pytest

from collab_machine.config import Settings
from collab_machine.machine import create_machine
from collab_machine.machine.upgrade import UPGRADE_COMMAND, Upgrade, bootstrap_upgrade


def upgrade(machine, caller, version, *migrations):
    return machine.process(UPGRADE_COMMAND, {"version": version, "migrations": list(migrations)}, caller=caller)


def install(command, handler=None):
    return {"op": "install_handler", "command": command, "handler": handler or command}


@pytest.fixture
def operator(maintainer):
    return maintainer.public_key


@pytest.fixture
def with_issue(machine, author, issue_args):
    assert machine.process("create-issue", issue_args(author)).ok
    return machine


class TestUpgradeModel:
    """Tests for the upgrade argument schema."""

    def test_bootstrap_upgrade_is_valid(self):
        parsed = Upgrade.model_validate(bootstrap_upgrade())
        assert parsed.version == 1
        assert all(m.op == "install_handler" for m in parsed.migrations)

    def test_unknown_op_is_rejected(self, machine, operator):
        result = upgrade(machine, operator, 2, {"op": "exec", "code": "print(1)"})
        assert result.code == "UPGRADE_FAILURE"

    def test_empty_migrations_are_rejected(self, machine, operator):
        assert upgrade(machine, operator, 2).code == "UPGRADE_FAILURE"

    def test_non_object_args_are_rejected(self, machine, operator):
        result = machine.process(UPGRADE_COMMAND, "install everything", caller=operator)
        assert result.code == "UPGRADE_FAILURE"


class TestAuthorization:
    """Only operators may pass the gate."""

    def test_non_operator_is_unauthorized(self, machine, stranger):
        result = upgrade(machine, stranger.public_key, 2, install("delete-issue"))
        assert result.code == "UNAUTHORIZED"
        assert machine.schema_version == 1

    def test_anonymous_is_unauthorized(self, machine):
        assert upgrade(machine, None, 2, install("delete-issue")).code == "UNAUTHORIZED"

    def test_disabled_gate_rejects_maintainer(self, maintainer):
        settings = Settings(
            _env_file=None, maintainer=maintainer.public_key, allow_runtime_upgrades=False
        )
        m = create_machine(settings)
        assert m.schema_version == 1
        result = upgrade(m, maintainer.public_key, 2, install("delete-issue"))
        assert result.code == "UNAUTHORIZED"

    def test_explicit_operator_list(self, maintainer, stranger):
        settings = Settings(
            _env_file=None,
            maintainer=maintainer.public_key,
            upgrade_operators=f" {stranger.public_key} , ops-bot ",
        )
        m = create_machine(settings)
        assert upgrade(m, stranger.public_key, 2, install("delete-issue")).ok
        assert upgrade(m, maintainer.public_key, 3, install("x", "delete-issue")).code == "UNAUTHORIZED"


class TestVersioning:
    """Upgrades apply strictly in sequence."""

    def test_version_must_follow_current(self, machine, operator):
        for version in (1, 3):
            result = upgrade(machine, operator, version, install("delete-issue"))
            assert result.code == "UPGRADE_FAILURE"
        assert machine.schema_version == 1

    def test_successful_upgrade_bumps_version(self, machine, operator):
        result = upgrade(machine, operator, 2, install("delete-issue"))
        assert result.ok
        assert result.value["version"] == 2
        assert "delete-issue" in result.value["commands"]
        assert machine.schema_version == 2


class TestCommandTable:
    """Installing and removing handlers."""

    def test_install_enables_command(self, with_issue, operator, stranger):
        upgrade(with_issue, operator, 2, install("delete-issue"))
        assert with_issue.process("delete-issue", {"id": "issue-1"}, caller=stranger.public_key).ok
        assert with_issue.list() == []

    def test_install_under_new_name(self, with_issue, operator):
        upgrade(with_issue, operator, 2, install("comment", "add-comment"))
        assert with_issue.process("comment", {"artifact_id": "issue-1", "body": "hi"}, caller="bob").ok

    def test_remove_disables_command(self, with_issue, operator, author):
        assert upgrade(with_issue, operator, 2, {"op": "remove_handler", "command": "close-issue"}).ok
        result = with_issue.process("close-issue", {"id": "issue-1"}, caller=author.public_key)
        assert result.code == "UNKNOWN_COMMAND"

    def test_remove_missing_command_fails(self, machine, operator):
        result = upgrade(machine, operator, 2, {"op": "remove_handler", "command": "nope"})
        assert result.code == "UPGRADE_FAILURE"

    def test_unknown_handler_fails(self, machine, operator):
        result = upgrade(machine, operator, 2, install("shell", "os.system"))
        assert result.code == "UPGRADE_FAILURE"

    def test_cannot_install_update(self, machine, operator):
        result = upgrade(machine, operator, 2, install(UPGRADE_COMMAND, "register"))
        assert result.code == "UPGRADE_FAILURE"
        assert UPGRADE_COMMAND not in machine.command_names

    def test_upgrade_is_all_or_nothing(self, machine, operator):
        before = machine.digest()
        result = upgrade(
            machine,
            operator,
            2,
            install("delete-issue"),
            {"op": "remove_handler", "command": "register"},
            install("broken", "does-not-exist"),
        )
        assert result.code == "UPGRADE_FAILURE"
        assert "delete-issue" not in machine.command_names
        assert "register" in machine.command_names
        assert machine.digest() == before


class TestRecordMigrations:
    """Field migrations over stored records."""

    def test_add_field_to_issues(self, with_issue, operator, patch_args):
        with_issue.process("create-patch", patch_args, caller="alice")
        result = upgrade(
            with_issue, operator, 2, {"op": "add_field", "kind": "issue", "field": "labels", "default": []}
        )
        assert result.ok
        assert with_issue.lookup("issue-1").model_dump()["labels"] == []
        assert "labels" not in with_issue.lookup(1).model_dump()

    def test_added_defaults_are_not_shared(self, with_issue, author, issue_args, operator):
        assert with_issue.process("create-issue", issue_args(author, issue_id="issue-2")).ok
        default = {"labels": ["bug"]}

        assert upgrade(with_issue, operator, 2, {"op": "add_field", "field": "meta", "default": default}).ok

        first, second = with_issue.lookup("issue-1").meta, with_issue.lookup("issue-2").meta
        assert first == second == default
        assert first is not second
        first["labels"].append("mutated")
        assert second == {"labels": ["bug"]}

    def test_add_existing_field_fails(self, with_issue, operator):
        result = upgrade(with_issue, operator, 2, {"op": "add_field", "field": "title", "default": "x"})
        assert result.code == "UPGRADE_FAILURE"
        assert with_issue.lookup("issue-1").title == "Crash on start"

    def test_rename_then_drop_migrated_field(self, with_issue, operator):
        assert upgrade(with_issue, operator, 2, {"op": "add_field", "field": "labels", "default": ["bug"]}).ok
        assert upgrade(with_issue, operator, 3, {"op": "rename_field", "field": "labels", "to": "tags"}).ok
        dumped = with_issue.lookup("issue-1").model_dump()
        assert dumped["tags"] == ["bug"]
        assert "labels" not in dumped

        assert upgrade(with_issue, operator, 4, {"op": "drop_field", "field": "tags"}).ok
        assert "tags" not in with_issue.lookup("issue-1").model_dump()

    def test_declared_fields_cannot_be_dropped(self, with_issue, operator):
        result = upgrade(with_issue, operator, 2, {"op": "drop_field", "field": "signature"})
        assert result.code == "UPGRADE_FAILURE"

    def test_declared_fields_cannot_be_renamed(self, with_issue, operator):
        result = upgrade(with_issue, operator, 2, {"op": "rename_field", "field": "body", "to": "text"})
        assert result.code == "UPGRADE_FAILURE"

    def test_migrations_apply_in_order(self, with_issue, operator):
        result = upgrade(
            with_issue,
            operator,
            2,
            {"op": "add_field", "field": "priority", "default": 3},
            {"op": "rename_field", "field": "priority", "to": "severity"},
        )
        assert result.ok
        assert with_issue.lookup("issue-1").model_dump()["severity"] == 3

    def test_migrated_records_stay_deterministic(self, settings, author, issue_args, operator):
        log = [
            {"command": "create-issue", "args": issue_args(author), "timestamp": "2024-01-01T00:00:00Z"},
            {"command": UPGRADE_COMMAND, "caller": operator, "timestamp": "2024-01-01T00:01:00Z",
             "args": {"version": 2, "migrations": [{"op": "add_field", "field": "labels", "default": []}]}},
        ]
        first, second = create_machine(settings), create_machine(settings)
        first.replay(log)
        second.replay(log)
        assert first.digest() == second.digest()
