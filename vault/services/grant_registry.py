"""
Grant registry: issue, resolve and revoke capability tokens.

This is the only place the "who may see what" rule is checked: every id in
a grant's scope must belong to the issuing owner at issuance time. After
that, a grant only ever changes by flipping `active` to False.
"""

import json
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from vault.commons.clock import Clock, utc_now
from vault.commons.errors import Conflict, Forbidden, InvalidScope, InvalidToken, NotFound, TokenCollision
from vault.commons.logger import logger
from vault.parsers.models import AccessGrant, GrantStatus
from vault.services.report_store import ReportStore

DEFAULT_TTL = timedelta(hours=24)


def new_token() -> str:
    # uuid4: 122 random bits from os.urandom
    return str(uuid.uuid4())


class GrantStore(ABC):
    @abstractmethod
    def add(self, grant: AccessGrant) -> None:
        """Insert atomically. TokenCollision if the token is taken, Conflict if the id is."""

    @abstractmethod
    def get(self, grant_id: str) -> Optional[AccessGrant]:
        ...

    @abstractmethod
    def by_token(self, token: str) -> Optional[AccessGrant]:
        ...

    @abstractmethod
    def by_owner(self, owner_id: str) -> List[AccessGrant]:
        ...

    @abstractmethod
    def deactivate(self, grant_id: str) -> Optional[AccessGrant]:
        ...


class InMemoryGrantStore(GrantStore):
    def __init__(self):
        self._by_id: Dict[str, AccessGrant] = {}
        self._id_by_token: Dict[str, str] = {}
        self._by_owner: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def add(self, grant: AccessGrant) -> None:
        with self._lock:
            if grant.token in self._id_by_token:
                raise TokenCollision()
            if grant.id in self._by_id:
                raise Conflict(f"Grant {grant.id} already exists.")
            self._by_id[grant.id] = grant
            self._id_by_token[grant.token] = grant.id
            self._by_owner.setdefault(grant.owner_id, set()).add(grant.id)

    def get(self, grant_id: str) -> Optional[AccessGrant]:
        with self._lock:
            return self._by_id.get(grant_id)

    def by_token(self, token: str) -> Optional[AccessGrant]:
        with self._lock:
            gid = self._id_by_token.get(token)
            return self._by_id.get(gid) if gid else None

    def by_owner(self, owner_id: str) -> List[AccessGrant]:
        with self._lock:
            return [self._by_id[g] for g in self._by_owner.get(owner_id, ())]

    def deactivate(self, grant_id: str) -> Optional[AccessGrant]:
        with self._lock:
            grant = self._by_id.get(grant_id)
            if grant is None:
                return None
            self._by_id[grant_id] = grant.revoked()
            return self._by_id[grant_id]


# --------- SQLite ----------
def _row_to_grant(row) -> AccessGrant:
    return AccessGrant(
        id=row[0],
        token=row[1],
        owner_id=row[2],
        scope=frozenset(json.loads(row[3])),
        issued_at=datetime.fromisoformat(row[4]),
        expires_at=datetime.fromisoformat(row[5]),
        active=bool(row[6]),
    )


_GRANT_COLS = "id, token, owner_id, scope_json, issued_at, expires_at, active"


class SqliteGrantStore(GrantStore):
    """UNIQUE(token) makes the collision check part of the INSERT itself."""

    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.Lock] = None):
        self.conn = conn
        self._lock = lock or threading.Lock()
        with self._lock, self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS grants (
                    id TEXT PRIMARY KEY,
                    token TEXT NOT NULL UNIQUE,
                    owner_id TEXT NOT NULL,
                    scope_json TEXT NOT NULL,
                    issued_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            self.conn.execute("CREATE INDEX IF NOT EXISTS ix_grants_owner ON grants (owner_id)")

    def add(self, grant: AccessGrant) -> None:
        try:
            with self._lock, self.conn:
                self.conn.execute(
                    f"INSERT INTO grants ({_GRANT_COLS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        grant.id,
                        grant.token,
                        grant.owner_id,
                        json.dumps(sorted(grant.scope)),
                        grant.issued_at.isoformat(),
                        grant.expires_at.isoformat(),
                        int(grant.active),
                    ),
                )
        except sqlite3.IntegrityError as ex:
            if "grants.token" in str(ex):
                raise TokenCollision() from ex
            raise Conflict(f"Grant {grant.id} already exists.") from ex

    def _one(self, where: str, arg: str) -> Optional[AccessGrant]:
        with self._lock:
            row = self.conn.execute(
                f"SELECT {_GRANT_COLS} FROM grants WHERE {where} = ?", (arg,)
            ).fetchone()
        return _row_to_grant(row) if row else None

    def get(self, grant_id: str) -> Optional[AccessGrant]:
        return self._one("id", grant_id)

    def by_token(self, token: str) -> Optional[AccessGrant]:
        return self._one("token", token)

    def by_owner(self, owner_id: str) -> List[AccessGrant]:
        with self._lock:
            rows = self.conn.execute(
                f"SELECT {_GRANT_COLS} FROM grants WHERE owner_id = ?", (owner_id,)
            ).fetchall()
        return [_row_to_grant(r) for r in rows]

    def deactivate(self, grant_id: str) -> Optional[AccessGrant]:
        with self._lock, self.conn:
            self.conn.execute("UPDATE grants SET active = 0 WHERE id = ?", (grant_id,))
        return self.get(grant_id)


class GrantRegistry:
    def __init__(
        self,
        reports: ReportStore,
        grants: GrantStore,
        clock: Clock = utc_now,
        default_ttl: timedelta = DEFAULT_TTL,
        token_factory: Callable[[], str] = new_token,
        max_token_attempts: int = 5,
    ):
        self.reports = reports
        self.grants = grants
        self.clock = clock
        self.default_ttl = default_ttl
        self.token_factory = token_factory
        self.max_token_attempts = max_token_attempts

    def issue(
        self, owner_id: str, report_ids: Iterable[str], ttl: Optional[timedelta] = None
    ) -> AccessGrant:
        """Grant read access to exactly `report_ids` until now + ttl.

        Raises InvalidScope for an empty/malformed request and Forbidden if
        any id is missing or owned by someone else; nothing is stored then.
        """
        if report_ids is None or isinstance(report_ids, str):
            raise InvalidScope()
        ids = list(report_ids)
        if not ids:
            raise InvalidScope()
        if any(not isinstance(i, str) or not i.strip() for i in ids):
            raise InvalidScope("Report ids must be non-empty strings.")
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise InvalidScope("ttl must be positive.")

        scope = frozenset(ids)
        owned = self.reports.get_by_ids(owner_id, scope)
        if len(owned) != len(scope):
            logger.warning(
                f"Grant rejected owner={owner_id}: {len(scope) - len(owned)} of {len(scope)} reports not owned"
            )
            raise Forbidden()

        now = self.clock()
        grant_id = uuid.uuid4().hex
        for attempt in range(1, self.max_token_attempts + 1):
            token = self.token_factory()
            if token == grant_id:
                continue
            grant = AccessGrant(
                id=grant_id,
                token=token,
                owner_id=owner_id,
                scope=scope,
                issued_at=now,
                expires_at=now + ttl,
            )
            try:
                self.grants.add(grant)
            except TokenCollision:
                logger.warning(f"Token collision {attempt}/{self.max_token_attempts} grant={grant_id}")
                continue
            logger.info(
                f"Grant issued id={grant_id} owner={owner_id} reports={len(scope)} expires={grant.expires_at.isoformat()}"
            )
            return grant
        raise TokenCollision("Could not generate a unique token.")

    def revoke(self, owner_id: str, grant_id: str) -> AccessGrant:
        grant = self.grants.get(grant_id)
        if grant is None or grant.owner_id != owner_id:
            raise NotFound()
        if not grant.active:
            return grant
        revoked = self.grants.deactivate(grant_id)
        logger.info(f"Grant revoked id={grant_id} owner={owner_id}")
        return revoked

    def resolve(self, token: str) -> AccessGrant:
        if not isinstance(token, str) or not token:
            raise InvalidToken()
        grant = self.grants.by_token(token)
        if grant is None:
            raise InvalidToken()
        return grant

    def list_active(self, owner_id: str) -> List[AccessGrant]:
        """Active grants, newest first. Expired-but-active ones stay listed so they can be revoked."""
        active = [g for g in self.grants.by_owner(owner_id) if g.active]
        return sorted(active, key=lambda g: g.issued_at, reverse=True)

    def list_grants(self, owner_id: str) -> List[Tuple[AccessGrant, GrantStatus]]:
        now = self.clock()
        grants = sorted(self.grants.by_owner(owner_id), key=lambda g: g.issued_at, reverse=True)
        return [(g, g.status(now)) for g in grants]
