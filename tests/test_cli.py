import json

import pytest
import yaml
from typer.testing import CliRunner

import run

runner = CliRunner()

PAYLOAD = {
    "reportType": "CBC",
    "extractedValues": {"wbc": {"value": "12.5", "isAbnormal": "true"}},
    "abnormalities": ["WBC above range"],
    "patientSummary": "White cells a bit high.",
    "doctorSummary": "WBC 12.5.",
    "timestamp": "01/10/2024",
}


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    cfg = {
        "paths": {
            "logs_root": str(tmp_path / "logs"),
            "inbox": str(tmp_path / "inbox"),
            "archive": str(tmp_path / "archive"),
            "error": str(tmp_path / "error"),
            "database": str(tmp_path / "db" / "vault.sqlite3"),
        },
        "store": {"backend": "sqlite"},
        "grants": {"default_ttl_hours": 24},
    }
    cfg_path = tmp_path / "settings.yaml"
    cfg_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    monkeypatch.setenv("VAULT_CONFIG", str(cfg_path))
    monkeypatch.setenv("LOG_LEVEL", "ERROR")
    resp = tmp_path / "cbc.json"
    resp.write_text(json.dumps(PAYLOAD), encoding="utf-8")
    return tmp_path, resp


def invoke(*args):
    return runner.invoke(run.app, [str(a) for a in args])


def test_ingest_grant_timeline_revoke(cli_env):
    _, resp = cli_env
    res = invoke("ingest", "alice", resp)
    assert res.exit_code == 0, res.stderr
    report = json.loads(res.stdout)
    assert report["captured_at"] == "2024-01-10"
    assert report["values"]["wbc"]["value"] == 12.5

    res = invoke("grant", "alice", report["id"], "--ttl-hours", 2)
    assert res.exit_code == 0, res.stderr
    grant = json.loads(res.stdout)
    assert grant["scope"] == [report["id"]]

    res = invoke("timeline", grant["token"])
    assert [r["id"] for r in json.loads(res.stdout)] == [report["id"]]

    assert invoke("revoke", "alice", grant["id"]).exit_code == 0
    res = invoke("timeline", grant["token"])
    assert res.exit_code == 1
    assert res.stderr.strip().splitlines()[-1] == "access_denied: Invalid or expired access token."

    res = invoke("grants", "alice", "--all")
    assert [g["status"] for g in json.loads(res.stdout)] == ["revoked"]
    assert json.loads(invoke("grants", "alice").stdout) == []


def test_grant_foreign_report_fails(cli_env):
    _, resp = cli_env
    report = json.loads(invoke("ingest", "bob", resp).stdout)
    res = invoke("grant", "alice", report["id"])
    assert res.exit_code == 1
    assert res.stderr.strip().splitlines()[-1].startswith("forbidden:")


def test_unknown_token_same_message(cli_env):
    res = invoke("timeline", "nope")
    assert res.exit_code == 1
    assert res.stderr.strip().splitlines()[-1] == "access_denied: Invalid or expired access token."


def test_trends_command(cli_env):
    _, resp = cli_env
    invoke("ingest", "alice", resp)
    assert json.loads(invoke("trends", "alice").stdout) == ["wbc"]
    assert json.loads(invoke("trends", "alice", "wbc").stdout) == [{"date": "2024-01-10", "value": 12.5}]
