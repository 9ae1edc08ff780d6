import uuid
from typing import Any, Dict, Mapping, Optional

from vault.commons.clock import Clock, utc_now
from vault.commons.logger import logger
from vault.parsers.base import (
    coerce_date,
    coerce_flag,
    coerce_optional_text,
    coerce_text,
    coerce_text_list,
    coerce_value,
)
from vault.parsers.codec import report_to_dict
from vault.parsers.models import UNKNOWN_DATE, DocumentRef, Measurement, Report


class ExtractionNormalizer:
    """Turns a raw extraction payload into a canonical Report.

    normalize() is total: malformed fields degrade to their empty/sentinel
    form, they never raise.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    def normalize(
        self, owner_id: str, payload: Any, source: Optional[DocumentRef] = None
    ) -> Report:
        data: Mapping = payload if isinstance(payload, Mapping) else {}
        captured_at = coerce_date(data.get("timestamp"))
        if captured_at == UNKNOWN_DATE:
            logger.warning(f"Unparseable report date for owner={owner_id}; storing {UNKNOWN_DATE}")

        return Report(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            captured_at=captured_at,
            ingested_at=self.clock(),
            report_type=coerce_optional_text(data.get("reportType")),
            source_facility=coerce_optional_text(data.get("hospital")),
            values=self._measurements(data.get("extractedValues")),
            findings=coerce_text_list(data.get("abnormalities")),
            medications=coerce_text_list(data.get("medications")),
            diagnoses=coerce_text_list(data.get("diagnosis")),
            summary_for_patient=coerce_text(data.get("patientSummary")),
            summary_for_clinician=coerce_text(data.get("doctorSummary")),
            source=source,
        )

    def _measurements(self, raw: Any) -> Dict[str, Measurement]:
        if not isinstance(raw, Mapping):
            return {}
        out: Dict[str, Measurement] = {}
        for name, entry in raw.items():
            if isinstance(entry, Mapping):
                out[str(name)] = Measurement(
                    value=coerce_value(entry.get("value")),
                    unit=coerce_optional_text(entry.get("unit")),
                    reference_range=coerce_optional_text(entry.get("ref")),
                    is_abnormal=coerce_flag(entry.get("isAbnormal")),
                )
            else:
                # flat form: {"HbA1c": "6.1"}
                out[str(name)] = Measurement(value=coerce_value(entry))
        return out

    def to_payload(self, report: Report) -> Dict:
        """JSON-ready view of a report, with the display defaults applied."""
        out = report_to_dict(report)
        out["report_type"] = report.report_type or "General Report"
        out["source_facility"] = report.source_facility or "Unknown"
        return out
