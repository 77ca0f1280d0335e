from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

import pytest

import sheet_transfer.cli.__main__ as cli
from conftest import FakeDestination, FakeImageSource, FakeSourceReader
from sheet_transfer.config.loader import DatabaseConfig
from sheet_transfer.models.job import (
    DestinationRef,
    ErrorType,
    JobStatus,
    SourceRef,
    TransferError,
    TransferJob,
    TransferProgress,
)
from sheet_transfer.store.memory import InMemoryJobStore

ORDERS = [["Name", "Qty"], ["Widget", "12"], ["Gadget", "7"]]


@pytest.fixture()
def fakes(monkeypatch, write_config):
    """Replace the remote adapters the CLI builds with in-process fakes."""
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    dest = FakeDestination()
    monkeypatch.setattr(cli, "_build_source", lambda cfg: FakeSourceReader({"Orders": ORDERS}))
    monkeypatch.setattr(cli, "_build_images", lambda: FakeImageSource())
    monkeypatch.setattr(cli, "SmartsheetClient", lambda *a, **k: dest)
    return dest


def test_cli_transfer_success(fakes, capsys):
    code = cli.main([])
    out = capsys.readouterr().out
    assert code == cli.EXIT_SUCCESS_ALL
    assert "SUMMARY job=" in out
    assert "status=completed rows=2/2" in out
    assert len(fakes.rows) == 2


def test_cli_missing_config(temp_workdir: Path, capsys):
    code = cli.main(["--config", "config/missing.yml"])
    out = capsys.readouterr().out
    assert code == cli.EXIT_FATAL
    assert "ERROR config: config file not found" in out


def test_cli_row_failures_exit_partial(fakes, capsys):
    fakes.fail_insert_calls = {1}
    code = cli.main([])
    out = capsys.readouterr().out
    assert code == cli.EXIT_PARTIAL_FAILURE
    assert "errors=2" in out


def test_cli_schema_mismatch_is_fatal(fakes, capsys):
    fakes.columns = fakes.columns[:1]
    code = cli.main([])
    out = capsys.readouterr().out
    assert code == cli.EXIT_FATAL
    assert "status=failed" in out
    assert fakes.insert_calls == 0


def test_cli_dry_run(fakes, capsys):
    code = cli.main(["--dry-run"])
    out = capsys.readouterr().out
    assert code == cli.EXIT_SUCCESS_ALL
    assert "dry run: rows=2 images=0" in out
    assert fakes.insert_calls == 0


def test_cli_inspect_source(fakes, capsys):
    code = cli.main(["--inspect-source"])
    out = capsys.readouterr().out
    assert code == cli.EXIT_SUCCESS_ALL
    assert "TAB: Orders header_row=1 cols=['Name', 'Qty']" in out
    assert "SUMMARY" not in out
    assert fakes.insert_calls == 0


def test_cli_event_log(fakes, temp_workdir: Path, capsys):
    code = cli.main(["--event-log"])
    assert code == cli.EXIT_SUCCESS_ALL
    files = list((temp_workdir / "logs").glob("transfer-*.log"))
    assert len(files) == 1
    kinds = [json.loads(line)["kind"] for line in files[0].read_text(encoding="utf-8").splitlines()]
    assert kinds[0] == "job_created"
    assert kinds[-1] == "transfer_completed"
    assert "event log written to" in capsys.readouterr().out


def test_cli_debug_mode(fakes, capsys):
    code = cli.main(["--debug"])
    out = capsys.readouterr().out
    assert code == cli.EXIT_SUCCESS_ALL
    assert "DEBUG debug mode enabled" in out


def test_resolve_dsn_precedence(monkeypatch):
    for name in ("DATABASE_URL", "PGDSN", "PGHOST", "PGPORT", "PGUSER", "PGPASSWORD", "PGDATABASE"):
        monkeypatch.delenv(name, raising=False)
    assert cli._resolve_dsn(DatabaseConfig()) is None
    assert cli._resolve_dsn(DatabaseConfig(dsn="postgresql://cfg")) == "postgresql://cfg"
    assert cli._resolve_dsn(DatabaseConfig(host="db", user="app", database="jobs")) == (
        "host=db port=5432 user=app dbname=jobs"
    )
    monkeypatch.setenv("PGPASSWORD", "secret")
    assert cli._resolve_dsn(DatabaseConfig(host="db")).endswith(" password=secret")
    monkeypatch.setenv("DATABASE_URL", "postgresql://env")
    assert cli._resolve_dsn(DatabaseConfig(dsn="postgresql://cfg")) == "postgresql://env"


def test_open_store_falls_back_to_memory(monkeypatch, write_config):
    from sheet_transfer.config.loader import load_config

    monkeypatch.delenv("DISABLE_DB_CONNECT", raising=False)
    monkeypatch.setenv("DATABASE_URL", "postgresql://nowhere")

    def refuse(dsn):
        raise cli.JobStoreError("connection refused")

    monkeypatch.setattr(cli.PostgresJobStore, "connect", staticmethod(refuse))
    store = cli._open_store(load_config(write_config), cli.setup_logging())
    assert isinstance(store, InMemoryJobStore)


def test_exit_code_mapping():
    job = TransferJob.new(SourceRef("s", ("A",)), DestinationRef(1), [])
    assert cli._exit_code(replace(job, status=JobStatus.COMPLETED)) == cli.EXIT_SUCCESS_ALL
    assert cli._exit_code(replace(job, status=JobStatus.FAILED)) == cli.EXIT_FATAL
    assert cli._exit_code(replace(job, status=JobStatus.CANCELLED)) == cli.EXIT_PARTIAL_FAILURE
    with_errors = TransferProgress(errors=(TransferError(ErrorType.IMAGE_UPLOAD_FAILED, "x"),))
    assert cli._exit_code(replace(job, status=JobStatus.COMPLETED, progress=with_errors)) == cli.EXIT_PARTIAL_FAILURE
