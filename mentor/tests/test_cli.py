from __future__ import annotations

import json
from datetime import timedelta

from typer.testing import CliRunner

from mentor.cli import app
from mentor.db import session_scope
from mentor.models import OnboardingStep, Task, User
from mentor.utils import utcnow

runner = CliRunner()


def test_init_db_seeds_catalog(tmp_path):
    db_file = tmp_path / "cli.db"
    result = runner.invoke(app, ["--db-path", str(db_file), "--json", "init-db"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["status"] == "ok"
    assert db_file.exists()
    with session_scope() as session:
        assert session.get(OnboardingStep, "ob1") is not None


def test_run_due_tasks_job(tmp_path):
    db_file = tmp_path / "cli.db"
    assert runner.invoke(app, ["--db-path", str(db_file), "init-db"]).exit_code == 0
    with session_scope() as session:
        session.add(User(id="mentor-1", fcm_tokens_json='["tok"]'))
        session.add(Task(id="t1", owner_role="mentor", owner_id="mentor-1", title="Revisar criativos",
                         due_at=utcnow() - timedelta(minutes=1)))
        session.commit()

    result = runner.invoke(app, ["--db-path", str(db_file), "--json", "run-job", "due-tasks"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["ok"] is True
    assert payload["notified_ids"] == ["t1"]


def test_unknown_job_name(tmp_path):
    result = runner.invoke(app, ["--db-path", str(tmp_path / "cli.db"), "run-job", "backup"])
    assert result.exit_code != 0
