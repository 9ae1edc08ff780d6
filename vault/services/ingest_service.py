# vault/services/ingest_service.py
import asyncio
import json
import re
import shutil
from pathlib import Path
from typing import Any, List, Optional, Sequence

from vault.commons.clock import utc_now
from vault.commons.errors import UpstreamExtractionFailure, VaultError
from vault.commons.logger import logger
from vault.commons.normalizer import ExtractionNormalizer
from vault.commons.types import PathsCfg
from vault.helpers.extractor import Extractor
from vault.helpers.inbox_watcher import FileWatcher
from vault.parsers.models import DocumentRef, Report
from vault.services.report_store import ReportStore
from vault.validation.validators import parse_extraction_response, validate_ingest_request_or_raise

READ_ATTEMPTS = 3
READ_RETRY_DELAY = 0.1


def archive_filename(report_id: str, source: str, extension: str = "json") -> str:
    """
    e.g. 20250821-170605-123456_<report id>_lab_panel.json
    """
    ts = utc_now().strftime("%Y%m%d-%H%M%S-%f")
    base_name = Path(source).stem if source else "payload"
    safe_base = re.sub(r"[^a-zA-Z0-9_\-]", "_", base_name)
    return f"{ts}_{report_id}_{safe_base}.{extension}"


class IngestService:
    """document -> extractor -> normalizer -> report store."""

    def __init__(
        self,
        extractor: Extractor,
        normalizer: ExtractionNormalizer,
        reports: ReportStore,
        paths: Optional[PathsCfg] = None,
        timeout_sec: Optional[float] = None,
        allowed_mime_prefixes: Optional[Sequence[str]] = None,
    ):
        self.extractor = extractor
        self.normalizer = normalizer
        self.reports = reports
        self.paths = paths
        self.timeout_sec = timeout_sec
        self.allowed_mime_prefixes = allowed_mime_prefixes

    def ingest(
        self,
        owner_id: str,
        document_uri: str,
        mime_type: str,
        file_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Report:
        req = validate_ingest_request_or_raise(
            document_uri, mime_type, file_name, self.allowed_mime_prefixes
        )
        logger.info(f"Extraction requested owner={owner_id} mime={req.mime_type}")
        try:
            payload = self.extractor.extract(
                req.document_uri, req.mime_type, timeout if timeout is not None else self.timeout_sec
            )
        except UpstreamExtractionFailure:
            logger.error(f"Extraction failed owner={owner_id}")
            raise
        except Exception as ex:
            logger.error(f"Extraction failed owner={owner_id}: {type(ex).__name__}")
            raise UpstreamExtractionFailure(f"Extraction failed: {ex}") from ex

        source = DocumentRef(uri=req.document_uri, mime_type=req.mime_type, file_name=req.file_name)
        return self.ingest_payload(owner_id, payload, source)

    def ingest_payload(self, owner_id: str, payload: Any, source: Optional[DocumentRef] = None) -> Report:
        report = self.normalizer.normalize(owner_id, payload, source)
        self.reports.put(report)
        return report

    # -------- file mode: inbox of saved extraction responses --------
    def _require_paths(self) -> PathsCfg:
        if self.paths is None:
            raise VaultError("Inbox processing needs paths configured.", code="config_error")
        Path(self.paths.archive).mkdir(parents=True, exist_ok=True)
        Path(self.paths.error).mkdir(parents=True, exist_ok=True)
        return self.paths

    def _quarantine(self, src: Path, reason: str) -> None:
        errp = Path(self._require_paths().error) / src.name
        shutil.move(str(src), errp)
        logger.error(f"Inbox file rejected {src.name}: {reason}. Moved to {errp}")

    async def _read_inbox_file(self, src: Path) -> str:
        # the writer may still hold the file
        for attempt in range(1, READ_ATTEMPTS):
            try:
                return src.read_text(encoding="utf-8")
            except FileNotFoundError:
                raise
            except OSError as e:
                logger.warning(f"Could not read {src.name} (attempt {attempt}): {e}")
                await asyncio.sleep(READ_RETRY_DELAY)
        return src.read_text(encoding="utf-8")

    async def _process_text(self, owner_id: str, text: str, src: str) -> Optional[Report]:
        paths = self._require_paths()
        try:
            payload = parse_extraction_response(text)
            report = self.ingest_payload(
                owner_id,
                payload,
                DocumentRef(uri=src, mime_type="application/json", file_name=Path(src).name),
            )
        except VaultError as ex:
            self._quarantine(Path(src), ex.code)
            return None

        out_json = Path(paths.archive) / archive_filename(report.id, src)
        out_json.write_text(
            json.dumps(self.normalizer.to_payload(report), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        raw_dir = Path(paths.archive) / "raw"
        raw_dir.mkdir(parents=True, exist_ok=True)
        shutil.move(src, raw_dir / Path(src).name)
        logger.info(f"Inbox file ingested report={report.id} archived={out_json.name}")
        return report

    async def process_file(self, owner_id: str, src: str) -> Optional[Report]:
        """
        Ingest one inbox file. Unreadable or rejected files end up in error/,
        ingested ones in archive/raw. Returns None when nothing was stored.
        """
        path = Path(src)
        if not path.exists():
            # an earlier watcher event already took it
            return None
        try:
            text = await self._read_inbox_file(path)
        except FileNotFoundError:
            return None
        except UnicodeDecodeError:
            self._quarantine(path, "not_utf8")
            return None
        except OSError as e:
            self._quarantine(path, f"unreadable ({e.strerror or e})")
            return None
        return await self._process_text(owner_id, text, src)

    async def process_inbox(self, owner_id: str, glob_pat: str = "*.json") -> List[Report]:
        paths = self._require_paths()
        inbox = Path(paths.inbox)
        files = sorted(inbox.glob(glob_pat))
        if not files:
            return []
        logger.info(f"Backlog: {len(files)} file(s) in {inbox}")
        stored: List[Report] = []
        for f in files:
            # one bad file must not stop the backlog
            try:
                report = await self.process_file(owner_id, str(f))
            except Exception as ex:
                logger.exception(f"Unexpected failure with {f.name}: {ex}")
                continue
            if report is not None:
                stored.append(report)
        return stored

    async def watch_inbox(
        self, owner_id: str, glob_pat: str = "*.json", stop_event: Optional[asyncio.Event] = None
    ) -> List[Report]:
        loop = asyncio.get_running_loop()
        stored = await self.process_inbox(owner_id, glob_pat)

        async def _on_file(src: str):
            try:
                report = await self.process_file(owner_id, src)
            except Exception as ex:
                logger.exception(f"Unexpected failure with {Path(src).name}: {ex}")
                return
            if report is not None:
                stored.append(report)

        watcher = FileWatcher(self._require_paths().inbox, glob_pat, _on_file, loop)
        watcher.start()
        logger.info("Watching extraction inbox...")
        try:
            await (stop_event or asyncio.Event()).wait()
        finally:
            watcher.stop()
        return stored
