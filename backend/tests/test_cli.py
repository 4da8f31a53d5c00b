"""Tests for the gateway and database command-line entry points."""

from __future__ import annotations

import json

import pytest

from door_scheduler import db_setup
from door_scheduler.doors import get_door_repository
from door_scheduler.gateway import cli as gateway_cli
from door_scheduler.schedule_executor import SchedulerSettings


class RecordingClient:
    def __init__(self, gateway) -> None:
        self._gateway = gateway
        self.closed = False

    def execute_action(self, device_id: int, action: str):
        return self._gateway.execute_action(device_id, action)

    def authenticate(self) -> bool:
        return self._gateway.authenticate()

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def cli_client(gateway, monkeypatch) -> RecordingClient:
    client = RecordingClient(gateway)
    monkeypatch.setattr(gateway_cli, "_create_client", lambda: client)
    return client


def test_unlock_prints_response_record(cli_client, gateway, capsys):
    gateway_cli.main(["unlock", "101"])

    record = json.loads(capsys.readouterr().out)
    assert record["deviceId"] == 101
    assert record["action"] == "unlock"
    assert record["success"] is True
    assert record["statusCode"] == 200
    assert gateway.calls == [(101, "unlock")]
    assert cli_client.closed is True


def test_failed_action_exits(cli_client, gateway, capsys):
    gateway.success = False

    with pytest.raises(SystemExit, match="Gateway lock failed"):
        gateway_cli.main(["lock", "202"])

    assert json.loads(capsys.readouterr().out)["success"] is False


def test_login_reports_authentication(cli_client, gateway, capsys):
    gateway_cli.main(["login"])
    assert "Authenticated to gateway." in capsys.readouterr().out

    gateway.authenticated = False
    with pytest.raises(SystemExit, match="authentication failed"):
        gateway_cli.main(["login"])


def test_run_action_leaves_injected_client_open(gateway):
    client = RecordingClient(gateway)
    lines: list[str] = []

    response = gateway_cli.run_action(301, "lock", client=client, print_fn=lines.append)

    assert response.success is True
    assert client.closed is False
    assert json.loads(lines[0])["deviceId"] == 301


def test_db_setup_init_and_seed(capsys):
    db_setup.main(["--db-url", "sqlite://", "init"])
    assert "Database tables ensured." in capsys.readouterr().out

    db_setup.main(["--db-url", "sqlite://", "seed"])

    doors = get_door_repository().list()
    assert sorted(door.device_id for door in doors) == [101, 102, 201, 202, 301]
    assert "added=5" in capsys.readouterr().out


def test_db_setup_seed_from_file(tmp_path, capsys):
    doors_file = tmp_path / "doors.json"
    doors_file.write_text(json.dumps([{"deviceId": 42, "name": "Vestry"}]), encoding="utf-8")

    db_setup.main(["--db-url", "sqlite://", "seed", "--doors-file", str(doors_file)])

    assert [door.name for door in get_door_repository().list()] == ["Vestry"]


def test_db_setup_sync_requires_source(monkeypatch):
    monkeypatch.setattr(db_setup, "get_door_source", lambda: None)

    with pytest.raises(SystemExit, match="DOOR_TOPOLOGY_DB_URL"):
        db_setup.main(["--db-url", "sqlite://", "sync-doors"])


def test_db_setup_generate_without_patterns(monkeypatch, capsys):
    monkeypatch.setattr(db_setup, "get_scheduler_settings", lambda: SchedulerSettings())

    db_setup.main(["--db-url", "sqlite://", "generate"])

    assert "Generated 0 schedule instances." in capsys.readouterr().out
