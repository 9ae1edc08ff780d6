from datetime import timedelta
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field


class AppCfg(BaseModel):
    name: str = "health-vault"
    log_level: str = "INFO"
    log_retention_days: int = Field(14, ge=1)
    log_console: bool = True


class PathsCfg(BaseModel):
    logs_root: str = "logs"
    inbox: str = "data/inbox"
    archive: str = "data/archive"
    error: str = "data/error"
    database: str = "data/vault.sqlite3"


class StoreCfg(BaseModel):
    backend: Literal["memory", "sqlite"] = "sqlite"


class GrantsCfg(BaseModel):
    default_ttl_hours: float = Field(24, gt=0)
    max_token_attempts: int = Field(5, ge=1)

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(hours=self.default_ttl_hours)


class ExtractionCfg(BaseModel):
    timeout_sec: float = Field(30, gt=0)
    filename_glob: str = "*.json"
    allowed_mime_prefixes: List[str] = ["application/pdf", "image/"]


class Settings(BaseModel):
    app: AppCfg = Field(default_factory=AppCfg)
    paths: PathsCfg = Field(default_factory=PathsCfg)
    store: StoreCfg = Field(default_factory=StoreCfg)
    grants: GrantsCfg = Field(default_factory=GrantsCfg)
    extraction: ExtractionCfg = Field(default_factory=ExtractionCfg)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Settings":
        return cls.model_validate(raw or {})
