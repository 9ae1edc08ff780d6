# vault/validation/validators.py
import json
import re
from typing import Any, Dict, Optional, Sequence

from pydantic import BaseModel, ValidationError, ValidationInfo, field_validator

from vault.commons.errors import InvalidDocument, UpstreamExtractionFailure

ALLOWED_MIME_PREFIXES = ("application/pdf", "image/")

_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class IngestRequest(BaseModel):
    document_uri: str
    mime_type: str
    file_name: Optional[str] = None

    @field_validator("document_uri")
    @classmethod
    def _uri_not_empty(cls, v: str):
        if not v or not v.strip():
            raise ValueError("document_uri is required")
        return v.strip()

    @field_validator("mime_type")
    @classmethod
    def _supported_mime(cls, v: str, info: ValidationInfo):
        prefixes: Sequence[str] = (info.context or {}).get("allowed_mime_prefixes") or ALLOWED_MIME_PREFIXES
        mime = (v or "").strip().lower()
        if not any(mime == p or (p.endswith("/") and mime.startswith(p)) for p in prefixes):
            raise ValueError(f"Unsupported MIME type: {v}")
        return mime


def validate_ingest_request_or_raise(
    document_uri: str,
    mime_type: str,
    file_name: Optional[str] = None,
    allowed_mime_prefixes: Optional[Sequence[str]] = None,
) -> IngestRequest:
    try:
        return IngestRequest.model_validate(
            {"document_uri": document_uri, "mime_type": mime_type, "file_name": file_name},
            context={"allowed_mime_prefixes": allowed_mime_prefixes},
        )
    except ValidationError as ve:
        raise InvalidDocument(f"Invalid ingest request: {ve.errors()[0]['msg']}") from ve


def parse_extraction_response(text: Any) -> Dict:
    """Decode the extractor's JSON reply, tolerating a ```json fence around it."""
    if not isinstance(text, str):
        raise UpstreamExtractionFailure("Extraction response is not text")
    body = text.strip()
    m = _FENCE.match(body)
    if m:
        body = m.group(1)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as ex:
        raise UpstreamExtractionFailure(f"Extraction response is not valid JSON: {ex.msg}") from ex
    if not isinstance(data, dict):
        raise UpstreamExtractionFailure("Extraction response must be a JSON object")
    return data
