"""
Report storage.

Two backends behind one interface: an in-process dict (tests, single-shot
tools) and SQLite (CLI, anything that must survive a restart). Components
receive the store they use; there is no module-level instance.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from vault.commons.errors import Conflict
from vault.commons.logger import logger
from vault.parsers.codec import report_from_dict, report_to_dict
from vault.parsers.models import UNKNOWN_DATE, Report

# stays under SQLITE_MAX_VARIABLE_NUMBER (999 on older builds), owner_id included
IN_CHUNK = 500


def timeline_key(report: Report):
    """Sort key for newest-first timelines; use with reverse=True.

    "Unknown" dates rank below every real date.
    """
    known = report.captured_at != UNKNOWN_DATE
    return (known, report.captured_at if known else "", report.ingested_at)


def sort_timeline(reports: Iterable[Report]) -> List[Report]:
    return sorted(reports, key=timeline_key, reverse=True)


class ReportStore(ABC):
    @abstractmethod
    def put(self, report: Report) -> None:
        """Insert a new report. Raises Conflict if the id is taken."""

    @abstractmethod
    def list_by_owner(self, owner_id: str) -> List[Report]:
        ...

    @abstractmethod
    def get_by_ids(self, owner_id: str, ids: Iterable[str]) -> List[Report]:
        """Only the ids that exist AND belong to owner_id; callers compare counts."""

    def get(self, owner_id: str, report_id: str) -> Optional[Report]:
        found = self.get_by_ids(owner_id, [report_id])
        return found[0] if found else None


class InMemoryReportStore(ReportStore):
    def __init__(self):
        self._by_id: Dict[str, Report] = {}
        self._by_owner: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def put(self, report: Report) -> None:
        with self._lock:
            if report.id in self._by_id:
                raise Conflict(f"Report {report.id} already exists.")
            self._by_id[report.id] = report
            self._by_owner.setdefault(report.owner_id, set()).add(report.id)
        logger.info(f"Report stored id={report.id} owner={report.owner_id}")

    def list_by_owner(self, owner_id: str) -> List[Report]:
        with self._lock:
            ids = list(self._by_owner.get(owner_id, ()))
            return sort_timeline(self._by_id[i] for i in ids)

    def get_by_ids(self, owner_id: str, ids: Iterable[str]) -> List[Report]:
        wanted = set(ids)
        with self._lock:
            found = [
                self._by_id[i]
                for i in wanted
                if i in self._by_id and self._by_id[i].owner_id == owner_id
            ]
        return sort_timeline(found)


# --------- SQLite ----------
class SqliteReportStore(ReportStore):
    """Reports as JSON blobs, with the columns we filter on pulled out."""

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.Lock] = None):
        self.conn = conn
        self._lock = lock or threading.Lock()
        with self._lock, self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reports (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    captured_at TEXT NOT NULL,
                    ingested_at TEXT NOT NULL,
                    report_json TEXT NOT NULL
                )
                """
            )
            self.conn.execute("CREATE INDEX IF NOT EXISTS ix_reports_owner ON reports (owner_id)")

    def put(self, report: Report) -> None:
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO reports (id, owner_id, captured_at, ingested_at, report_json)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        report.id,
                        report.owner_id,
                        report.captured_at,
                        report.ingested_at.isoformat(),
                        json.dumps(report_to_dict(report), sort_keys=True),
                    ),
                )
        except sqlite3.IntegrityError as ex:
            raise Conflict(f"Report {report.id} already exists.") from ex
        logger.info(f"Report stored id={report.id} owner={report.owner_id}")

    def list_by_owner(self, owner_id: str) -> List[Report]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT report_json FROM reports WHERE owner_id = ?", (owner_id,)
            ).fetchall()
        return sort_timeline(report_from_dict(json.loads(r[0])) for r in rows)

    def get_by_ids(self, owner_id: str, ids: Iterable[str]) -> List[Report]:
        wanted = sorted(set(ids))
        rows = []
        with self._lock:
            for start in range(0, len(wanted), IN_CHUNK):
                chunk = wanted[start:start + IN_CHUNK]
                marks = ",".join("?" for _ in chunk)
                rows.extend(self.conn.execute(
                    f"SELECT report_json FROM reports WHERE owner_id = ? AND id IN ({marks})",
                    (owner_id, *chunk),
                ).fetchall())
        return sort_timeline(report_from_dict(json.loads(r[0])) for r in rows)
