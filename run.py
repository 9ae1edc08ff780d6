import asyncio
import json
import os
import sqlite3
import threading
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

import typer
import yaml

from vault.commons.errors import VaultError, ViewerAccessDenied
from vault.commons.logger import setup_logging
from vault.commons.normalizer import ExtractionNormalizer
from vault.commons.types import Settings
from vault.helpers.extractor import JsonFileExtractor
from vault.parsers.codec import grant_to_dict
from vault.services.grant_registry import GrantRegistry, InMemoryGrantStore, SqliteGrantStore
from vault.services.ingest_service import IngestService
from vault.services.report_store import InMemoryReportStore, SqliteReportStore
from vault.services.scoped_reader import ScopedReader
from vault.services.trends import available_metrics, metric_series

app = typer.Typer(add_completion=False, help="Health Vault: reports and time-bound access grants")

DEFAULT_CONFIG = Path(__file__).resolve().parent / "vault" / "configs" / "settings.yaml"


def load_cfg(path: Optional[str] = None) -> Settings:
    config_path = Path(path or os.getenv("VAULT_CONFIG") or DEFAULT_CONFIG)
    with open(config_path, "r", encoding="utf-8") as f:
        return Settings.from_dict(yaml.safe_load(f))


class Services:
    """Everything a command needs, wired from one Settings object."""

    def __init__(self, cfg: Settings):
        self.cfg = cfg
        if cfg.store.backend == "sqlite":
            Path(cfg.paths.database).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(cfg.paths.database, check_same_thread=False)
            lock = threading.Lock()
            self.reports = SqliteReportStore(conn, lock)
            grants = SqliteGrantStore(conn, lock)
        else:
            self.reports = InMemoryReportStore()
            grants = InMemoryGrantStore()
        self.normalizer = ExtractionNormalizer()
        self.registry = GrantRegistry(
            self.reports,
            grants,
            default_ttl=cfg.grants.default_ttl,
            max_token_attempts=cfg.grants.max_token_attempts,
        )
        self.reader = ScopedReader(self.registry, self.reports)
        self.ingest = IngestService(
            JsonFileExtractor(),
            self.normalizer,
            self.reports,
            paths=cfg.paths,
            timeout_sec=cfg.extraction.timeout_sec,
            allowed_mime_prefixes=cfg.extraction.allowed_mime_prefixes,
        )


def _boot() -> Services:
    cfg = load_cfg()
    setup_logging(
        cfg.paths.logs_root,
        os.getenv("LOG_LEVEL", cfg.app.log_level),
        retention_days=cfg.app.log_retention_days,
        console=cfg.app.log_console,
    )
    return Services(cfg)


def _emit(data) -> None:
    typer.echo(json.dumps(data, ensure_ascii=False, indent=2))


def _fail(ex: VaultError) -> None:
    typer.echo(f"{ex.code}: {ex.message}", err=True)
    raise typer.Exit(code=1)


@app.command()
def ingest(
    owner: str,
    file: str = typer.Argument(..., help="saved extraction response (JSON)"),
    mime: str = typer.Option("application/pdf", help="MIME type of the original document"),
    file_name: Optional[str] = typer.Option(None, help="original document name"),
):
    """Ingest one document through the extractor."""
    svc = _boot()
    try:
        report = svc.ingest.ingest(owner, file, mime, file_name=file_name)
    except VaultError as ex:
        _fail(ex)
    _emit(svc.normalizer.to_payload(report))


@app.command()
def ingest_inbox(owner: str, watch: bool = typer.Option(False, help="keep watching the inbox")):
    """Ingest every saved extraction response in the inbox folder."""
    svc = _boot()
    glob_pat = svc.cfg.extraction.filename_glob
    if watch:
        reports = asyncio.run(svc.ingest.watch_inbox(owner, glob_pat))
    else:
        reports = asyncio.run(svc.ingest.process_inbox(owner, glob_pat))
    _emit([r.id for r in reports])


@app.command()
def reports(owner: str):
    """Owner's timeline, newest first."""
    svc = _boot()
    _emit([svc.normalizer.to_payload(r) for r in svc.reports.list_by_owner(owner)])


@app.command()
def grant(
    owner: str,
    report_ids: List[str] = typer.Argument(..., help="reports the viewer may read"),
    ttl_hours: Optional[float] = typer.Option(None, help="defaults to grants.default_ttl_hours"),
):
    """Issue a time-bound access token for a set of reports."""
    svc = _boot()
    ttl = timedelta(hours=ttl_hours) if ttl_hours is not None else None
    try:
        issued = svc.registry.issue(owner, report_ids, ttl)
    except VaultError as ex:
        _fail(ex)
    _emit(grant_to_dict(issued))


@app.command()
def revoke(owner: str, grant_id: str):
    svc = _boot()
    try:
        revoked = svc.registry.revoke(owner, grant_id)
    except VaultError as ex:
        _fail(ex)
    _emit(grant_to_dict(revoked))


@app.command()
def grants(owner: str, show_all: bool = typer.Option(False, "--all", help="include revoked, with status")):
    svc = _boot()
    if show_all:
        _emit([grant_to_dict(g, status) for g, status in svc.registry.list_grants(owner)])
    else:
        _emit([grant_to_dict(g) for g in svc.registry.list_active(owner)])


@app.command()
def timeline(token: str):
    """What a token holder sees."""
    svc = _boot()
    try:
        shared = svc.reader.read_timeline(token)
    except ViewerAccessDenied:
        # same answer for unknown, revoked and expired tokens
        _fail(ViewerAccessDenied())
    _emit([svc.normalizer.to_payload(r) for r in shared])


@app.command()
def trends(owner: str, metric: Optional[str] = typer.Argument(None)):
    """List numeric metrics, or the series for one of them."""
    svc = _boot()
    owned = svc.reports.list_by_owner(owner)
    if metric is None:
        _emit(available_metrics(owned))
    else:
        _emit([{"date": p.date, "value": p.value} for p in metric_series(owned, metric)])


if __name__ == "__main__":
    app()
