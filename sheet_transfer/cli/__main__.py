from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from ..config.loader import ConfigError, DatabaseConfig, TransferConfig, load_config
from ..destination.column_mapper import ColumnMappingError
from ..destination.smartsheet import SmartsheetClient
from ..logging.events import CompositeEventSink, JobLogSink, JsonLinesEventSink, LoggingEventSink
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.job import DestinationRef, JobStatus, SourceRef, TransferJob
from ..models.processing_result import BatchStatsAccumulator
from ..services.capabilities import CapabilityError, StaticTokenProvider
from ..services.progress import BatchProgressBar
from ..services.summary import render_summary_line
from ..services.transfer import TransferService
from ..source.drive import DriveImageSource
from ..source.excel_reader import WorkbookReader
from ..source.google_sheets import GoogleSheetsReader
from ..store.memory import InMemoryJobStore
from ..store.postgres import JobStoreError, PostgresJobStore

"""CLI entrypoint.

    python -m sheet_transfer.cli [--config PATH] [--dry-run] [--debug] [--inspect-source]

- Load ``.env`` (tokens, database settings) and the YAML job file
- Create and execute one transfer job
- Print a SUMMARY line; exit code reflects the job outcome
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/transfer.yml")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env using python-dotenv. Failure only warns."""
    try:
        if path.exists():
            load_dotenv(dotenv_path=path, override=override)
    except OSError as e:  # pragma: no cover
        print(f"WARNING: failed to load .env via python-dotenv: {e}")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Spreadsheet -> Smartsheet transfer")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Job config (YAML)")
    p.add_argument("--dry-run", action="store_true", help="Estimate rows/images without writing")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-source", action="store_true", help="Print detected headers & first rows then exit")
    p.add_argument("--event-log", action="store_true", help="Also write events as JSON Lines under ./logs")
    return p.parse_args(argv)


def _resolve_dsn(db_cfg: DatabaseConfig) -> str | None:
    """DSN priority: DATABASE_URL / PGDSN, then PG* variables, then the config file."""
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    if not (os.getenv("PGHOST") or db_cfg.host):
        return None
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _open_store(cfg: TransferConfig, logger: logging.Logger) -> Any:
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> in-memory job store")
        return InMemoryJobStore()
    dsn = _resolve_dsn(cfg.database)
    if dsn is None:
        return InMemoryJobStore()
    try:
        store = PostgresJobStore.connect(dsn)
        store.ensure_schema()
        return store
    except JobStoreError as e:
        logger.info(f"DB connection failed -> in-memory job store: {e}")
        return InMemoryJobStore()


def _build_source(cfg: TransferConfig) -> Any:
    if cfg.source.type == "xlsx":
        return WorkbookReader()
    return GoogleSheetsReader(StaticTokenProvider(os.getenv("GOOGLE_ACCESS_TOKEN")))


def _build_images() -> DriveImageSource:
    token = os.getenv("GOOGLE_ACCESS_TOKEN")
    return DriveImageSource(StaticTokenProvider(token) if token else None)


def _inspect_source(service: TransferService, cfg: TransferConfig) -> int:
    for tab in cfg.source.tabs:
        preview = service.preview_source(
            SourceRef(cfg.source.spreadsheet_id, (tab,)), header_row_index=cfg.header_row_index
        )
        print(f"TAB: {tab} header_row={preview.header_row_index + 1} cols={preview.headers}")
        for row in preview.sample_rows[:3]:
            print(f"    {row}")
        print(
            f"    rows={preview.total_rows} images={preview.total_images} "
            f"inaccessible_images~{preview.inaccessible_images} estimated_min={preview.estimated_time}"
        )
    return EXIT_SUCCESS_ALL


def _exit_code(job: TransferJob) -> int:
    if job.status is JobStatus.FAILED:
        return EXIT_FATAL
    if job.status is JobStatus.CANCELLED or job.progress.errors:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみ sys.argv を読む (テストから main([]) を呼べるように)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug()
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    if args.dry_run:
        cfg = replace(cfg, dry_run=True)

    store = _open_store(cfg, logger)
    try:
        return _run(args, cfg, store, logger)
    finally:
        if isinstance(store, PostgresJobStore):
            store.close()


def _run(args: argparse.Namespace, cfg: TransferConfig, store: Any, logger: logging.Logger) -> int:
    stats = BatchStatsAccumulator()
    progress_bar = BatchProgressBar()
    json_sink = JsonLinesEventSink() if args.event_log else None
    sinks: list[Any] = [LoggingEventSink(), JobLogSink(store), progress_bar]
    if json_sink is not None:
        sinks.append(json_sink)

    try:
        service = TransferService(
            store,
            _build_source(cfg),
            _build_images(),
            SmartsheetClient(StaticTokenProvider(os.getenv("SMARTSHEET_ACCESS_TOKEN"))),
            settings=cfg.settings,
            events=CompositeEventSink(sinks),
            on_batch_metrics=stats.record,
        )
        if args.inspect_source:
            return _inspect_source(service, cfg)

        target = (
            f"sheet {cfg.destination.sheet_id}" if cfg.destination.sheet_id is not None
            else f"new sheet '{cfg.destination.new_sheet_name}'"
        )
        logger.info(f"Transferring {cfg.source.spreadsheet_id} {list(cfg.source.tabs)} -> {target}")
        job_id = service.create_job(
            SourceRef(cfg.source.spreadsheet_id, cfg.source.tabs),
            DestinationRef(cfg.destination.sheet_id, cfg.destination.new_sheet_name),
            cfg.column_mappings,
            dry_run=cfg.dry_run,
            header_row_index=cfg.header_row_index,
            selected_columns=cfg.selected_columns,
        )
        with progress_bar:
            job = service.execute_job(job_id)
    except (CapabilityError, ColumnMappingError, ValueError) as e:
        logger.error(f"transfer: {e}")
        return EXIT_FATAL
    finally:
        if json_sink is not None:
            path = json_sink.flush()
            logger.info(f"event log written to {path}")

    if cfg.destination.new_sheet_name and job.destination.sheet_id is not None:
        logger.info(f"created sheet '{cfg.destination.new_sheet_name}' id={job.destination.sheet_id}")

    if job.dry_run:
        summary = service.get_dry_run_summary(job_id)
        if summary is not None:
            logger.info(
                f"dry run: rows={summary.total_rows} images={summary.total_images} "
                f"inaccessible_images~{summary.inaccessible_images} estimated_min={summary.estimated_time}"
            )
            for warning in summary.warnings[:10]:
                logger.warning(warning)

    summary_line = render_summary_line(job, stats)
    # log_summary adds the "SUMMARY " prefix
    log_summary(summary_line[len("SUMMARY "):])
    return _exit_code(job)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
