from typing import List

from vault.commons.clock import Clock, utc_now
from vault.commons.errors import GrantExpiredOrRevoked
from vault.commons.logger import logger
from vault.parsers.models import Report
from vault.services.grant_registry import GrantRegistry
from vault.services.report_store import ReportStore


class ScopedReader:
    """Read path for token holders. Never mutates anything."""

    def __init__(self, registry: GrantRegistry, reports: ReportStore, clock: Clock = utc_now):
        self.registry = registry
        self.reports = reports
        self.clock = clock

    def read_timeline(self, token: str) -> List[Report]:
        grant = self.registry.resolve(token)
        now = self.clock()
        if not grant.is_valid(now):
            # cause stays in our logs only; the viewer gets the shared message
            logger.debug(f"Timeline denied grant={grant.id} status={grant.status(now).value}")
            raise GrantExpiredOrRevoked()
        reports = self.reports.get_by_ids(grant.owner_id, grant.scope)
        logger.info(f"Timeline served grant={grant.id} reports={len(reports)}")
        return reports
