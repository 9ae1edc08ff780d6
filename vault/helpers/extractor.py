from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from vault.validation.validators import parse_extraction_response


class Extractor(ABC):
    """Client for the external document-understanding service.

    Implementations return the raw, unvalidated payload. Any exception they
    raise is wrapped by IngestService as UpstreamExtractionFailure.
    """

    @abstractmethod
    def extract(self, document_uri: str, mime_type: str, timeout: Optional[float] = None) -> Dict:
        ...


class JsonFileExtractor(Extractor):
    """Replays a saved extraction response: document_uri is the path to it."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir) if base_dir else None

    def extract(self, document_uri: str, mime_type: str, timeout: Optional[float] = None) -> Dict:
        path = Path(document_uri)
        if self.base_dir and not path.is_absolute():
            path = self.base_dir / path
        return parse_extraction_response(path.read_text(encoding="utf-8"))
