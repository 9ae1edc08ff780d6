# ===============================
# File: vault/parsers/models.py
# ===============================
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Union

UNKNOWN_DATE = "Unknown"


@dataclass(frozen=True)
class Numeric:
    value: float


@dataclass(frozen=True)
class Text:
    value: str


MeasuredValue = Union[Numeric, Text]


@dataclass(frozen=True)
class Measurement:
    value: MeasuredValue
    unit: Optional[str] = None
    reference_range: Optional[str] = None
    is_abnormal: bool = False


@dataclass(frozen=True)
class DocumentRef:
    uri: str
    mime_type: str
    file_name: Optional[str] = None


@dataclass(frozen=True)
class Report:
    id: str
    owner_id: str
    captured_at: str  # YYYY-MM-DD or "Unknown"
    ingested_at: datetime
    report_type: Optional[str] = None
    source_facility: Optional[str] = None
    values: Dict[str, Measurement] = field(default_factory=dict)
    findings: List[str] = field(default_factory=list)
    medications: List[str] = field(default_factory=list)
    diagnoses: List[str] = field(default_factory=list)
    summary_for_patient: str = ""
    summary_for_clinician: str = ""
    source: Optional[DocumentRef] = None


class GrantStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass(frozen=True)
class AccessGrant:
    id: str
    token: str
    owner_id: str
    scope: FrozenSet[str]
    issued_at: datetime
    expires_at: datetime
    active: bool = True

    def is_valid(self, now: datetime) -> bool:
        return self.active and now < self.expires_at

    def status(self, now: datetime) -> GrantStatus:
        if not self.active:
            return GrantStatus.REVOKED
        if now >= self.expires_at:
            return GrantStatus.EXPIRED
        return GrantStatus.ACTIVE

    def revoked(self) -> "AccessGrant":
        return replace(self, active=False)


@dataclass(frozen=True)
class TrendPoint:
    date: str
    value: float
