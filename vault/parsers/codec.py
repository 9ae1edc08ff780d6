from datetime import datetime
from typing import Dict, Optional

from .models import AccessGrant, DocumentRef, GrantStatus, Measurement, Numeric, Report, Text


def report_to_dict(report: Report) -> Dict:
    return {
        "id": report.id,
        "owner_id": report.owner_id,
        "report_type": report.report_type,
        "source_facility": report.source_facility,
        "captured_at": report.captured_at,
        "ingested_at": report.ingested_at.isoformat(),
        "values": {
            name: {
                "value": m.value.value,
                "kind": "numeric" if isinstance(m.value, Numeric) else "text",
                "unit": m.unit,
                "reference_range": m.reference_range,
                "is_abnormal": m.is_abnormal,
            }
            for name, m in report.values.items()
        },
        "findings": list(report.findings),
        "medications": list(report.medications),
        "diagnoses": list(report.diagnoses),
        "summary_for_patient": report.summary_for_patient,
        "summary_for_clinician": report.summary_for_clinician,
        "source": (
            {
                "uri": report.source.uri,
                "mime_type": report.source.mime_type,
                "file_name": report.source.file_name,
            }
            if report.source
            else None
        ),
    }


def report_from_dict(d: Dict) -> Report:
    """Inverse of report_to_dict, for rows we wrote ourselves."""
    values = {
        name: Measurement(
            value=Numeric(float(v["value"])) if v["kind"] == "numeric" else Text(str(v["value"])),
            unit=v.get("unit"),
            reference_range=v.get("reference_range"),
            is_abnormal=bool(v.get("is_abnormal")),
        )
        for name, v in d["values"].items()
    }
    src = d.get("source")
    return Report(
        id=d["id"],
        owner_id=d["owner_id"],
        captured_at=d["captured_at"],
        ingested_at=datetime.fromisoformat(d["ingested_at"]),
        report_type=d.get("report_type"),
        source_facility=d.get("source_facility"),
        values=values,
        findings=list(d["findings"]),
        medications=list(d["medications"]),
        diagnoses=list(d["diagnoses"]),
        summary_for_patient=d["summary_for_patient"],
        summary_for_clinician=d["summary_for_clinician"],
        source=DocumentRef(**src) if src else None,
    )


def grant_to_dict(grant: AccessGrant, status: Optional[GrantStatus] = None) -> Dict:
    out = {
        "id": grant.id,
        "token": grant.token,
        "owner_id": grant.owner_id,
        "scope": sorted(grant.scope),
        "issued_at": grant.issued_at.isoformat(),
        "expires_at": grant.expires_at.isoformat(),
        "active": grant.active,
    }
    if status is not None:
        out["status"] = status.value
    return out
