"""Tests for mroast lock-status/unlock, usage, workflows and --version."""

import json

from mediumroast import __version__
from mediumroast.connectors.base import WorkflowAsset, WorkflowBundle


def test_version(runner):
    from mediumroast.cli import app

    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_lock_status_unlocked(invoke):
    result = invoke(["--json", "lock-status", "Studies"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["payload"] is False
    assert "not locked" in data["message"]["status_msg"]


def test_unlock_removes_orphaned_lock(invoke, backend_dir):
    lock = backend_dir / "Studies" / "mediumroast.lock"
    lock.write_text(json.dumps({"owner_id": "crashed", "expires_at": "2999-01-01T00:00:00+00:00"}))

    status = invoke(["--json", "lock-status", "Studies"])
    assert json.loads(status.stdout)["payload"] is True

    result = invoke(["unlock", "Studies"])
    assert result.exit_code == 0
    assert "Removed the lock" in result.stdout
    assert not lock.exists()


def test_locked_container_rejects_writes(invoke, backend_dir):
    lock = backend_dir / "Studies" / "mediumroast.lock"
    lock.write_text(json.dumps({"owner_id": "other", "expires_at": "2999-01-01T00:00:00+00:00"}))
    result = invoke(["--json", "update", "Studies", "Study 1", "status", "inactive"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["message"]["status_code"] == 423


def test_usage_passthrough(invoke):
    result = invoke(["--json", "usage", "users"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["payload"] == [{"login": "octocat"}]


def test_usage_unknown_metric(invoke):
    result = invoke(["--json", "usage", "stars"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["message"]["status_code"] == 400


def test_workflows_install_and_delete(invoke, backend_dir, tmp_path):
    bundle = WorkflowBundle(
        version="1", workflows=[WorkflowAsset(name="basic.yml", version="1", content="on: push\n")]
    )
    bundle_path = tmp_path / "bundle.json"
    bundle_path.write_text(bundle.model_dump_json())
    env = {"MEDIUMROAST_ACTIONS_BUNDLE_PATH": str(bundle_path)}

    result = invoke(["--json", "workflows", "install"], env=env)
    assert result.exit_code == 0
    report = json.loads(result.stdout)["payload"]
    assert [f["name"] for f in report["files"]] == ["basic.yml"]
    assert (backend_dir / ".github" / "workflows" / "basic.yml").exists()

    result = invoke(["workflows", "delete"], env=env)
    assert result.exit_code == 0
    assert not (backend_dir / ".github" / "workflows" / "basic.yml").exists()


def test_workflows_install_without_bundle(invoke):
    result = invoke(["--json", "workflows", "install"], env={"MEDIUMROAST_ACTIONS_BUNDLE_PATH": ""})
    assert result.exit_code == 1
    data = json.loads(result.stdout)
    assert data["payload"]["steps"][0]["name"] == "download_bundle"


def test_usage_branch_status_changes_after_write(invoke):
    before = json.loads(invoke(["--json", "usage", "branch_status"]).stdout)["payload"]
    assert invoke(["update", "Studies", "Study 2", "status", "active"]).exit_code == 0
    after = json.loads(invoke(["--json", "usage", "branch_status"]).stdout)["payload"]
    assert after["sha"] != before["sha"]
