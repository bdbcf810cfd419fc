"""Tests for the pingcount command line and app wiring."""
from __future__ import annotations

import json
import sys
import time

import pytest

from pingcount import cli
from pingcount.app import build_app
from pingcount.config import Settings
from pingcount.crypto.identity import DerivationMode
from pingcount.crypto.signature import PingSigner
from pingcount.errors import ConfigurationError
from pingcount.store.backends import MemoryBackend

SECRET_HEX = "42" * 32


def _run(monkeypatch, *argv: str) -> None:
    monkeypatch.setattr(sys, "argv", ["pingcount", *argv])
    cli.main()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("PINGCOUNT_SECRET", "SERVER_SECRET", "PINGCOUNT_DATA_DIR", "PINGCOUNT_DERIVATION"):
        monkeypatch.delenv(var, raising=False)


def test_secret(monkeypatch, capsys):
    _run(monkeypatch, "secret")
    out = capsys.readouterr().out.strip()
    assert len(bytes.fromhex(out)) == 32


def test_keygen_to_file(monkeypatch, capsys, tmp_path):
    key_file = tmp_path / "client.key"
    _run(monkeypatch, "keygen", "--out", str(key_file))
    signer = PingSigner.from_private_bytes(bytes.fromhex(key_file.read_text().strip()))
    assert signer.public_key.hex() in capsys.readouterr().out


def test_stats_on_empty_data_dir(monkeypatch, capsys, tmp_path):
    _run(monkeypatch, "stats", "--data-dir", str(tmp_path), "--window", "7")
    body = json.loads(capsys.readouterr().out)
    assert body["allTime"] == 0
    assert body["recentDays"] == []


def test_rollup_and_series_from_data_dir(monkeypatch, capsys, tmp_path):
    settings = Settings(
        secret=bytes.fromhex(SECRET_HEX), data_dir=str(tmp_path), filter_capacity=1_000,
    )
    app = build_app(settings, persist_immediately=True)
    signer = PingSigner.generate()
    app.pipeline.ingest(signer.sign_ping(int(time.time())))

    _run(monkeypatch, "rollup", "--data-dir", str(tmp_path))
    assert "Rebuilt 2" in capsys.readouterr().out
    assert list(tmp_path.glob("week/*.bin"))

    _run(monkeypatch, "series", "--data-dir", str(tmp_path))
    points = json.loads(capsys.readouterr().out)
    assert len(points) == 1
    assert points[0]["dau"] == 1


def test_serve_without_secret_exits(monkeypatch, tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        _run(monkeypatch, "serve", "--data-dir", str(tmp_path))
    assert exc_info.value.code == 2


def test_no_command_prints_help(monkeypatch, capsys):
    with pytest.raises(SystemExit) as exc_info:
        _run(monkeypatch)
    assert exc_info.value.code == 0
    assert "serve" in capsys.readouterr().out


class TestBuildApp:
    def test_requires_secret(self):
        with pytest.raises(ConfigurationError):
            build_app(Settings(), backend=MemoryBackend())

    def test_unkeyed(self):
        app = build_app(Settings(derivation=DerivationMode.UNKEYED), backend=MemoryBackend())
        assert app.pipeline.guard.window_ms == 240_000

    def test_reloads_existing_snapshots(self, tmp_path):
        settings = Settings(secret=bytes.fromhex(SECRET_HEX), data_dir=str(tmp_path))
        first = build_app(settings, persist_immediately=True)
        first.pipeline.ingest(PingSigner.generate().sign_ping(int(time.time())))
        second = build_app(settings)
        assert second.store.global_estimator_snapshot().count() == 1


def test_rollup_write_failure_exits_nonzero(monkeypatch, tmp_path, caplog):
    from pingcount.store.backends import DirectoryBackend

    settings = Settings(secret=bytes.fromhex(SECRET_HEX), data_dir=str(tmp_path))
    app = build_app(settings, persist_immediately=True)
    app.pipeline.ingest(PingSigner.generate().sign_ping(int(time.time())))

    def refuse(self, key, data):
        raise OSError("read-only file system")

    monkeypatch.setattr(DirectoryBackend, "store", refuse)
    with pytest.raises(SystemExit) as exc_info:
        _run(monkeypatch, "rollup", "--data-dir", str(tmp_path))
    assert exc_info.value.code == 1
    assert "Could not write snapshots" in caplog.text
