import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from mod_users.core.config import settings
from mod_users.core.errors import PersistenceError
from mod_users.core.logger import get_logger
from mod_users.core.tenant import MODULE_SCHEMA_SUFFIX, tenant_from_schema
from mod_users.models import TABLE_NAME_USERS
from mod_users.services.query_translator import translate

logger = get_logger(__name__)


@dataclass
class ExpirationResult:
    tenant: str
    attempted: int
    succeeded: int


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2026-10-18T09:30:00.125Z"""
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def expiration_query(now: str) -> str:
    return f"active == true AND expirationDate < {now}"


class ExpirationJob:
    """
    Deactivate users whose expirationDate has passed, for every tenant.

    catalog: lists namespaces (list_namespaces(suffix))
    client_factory: tenant id -> tenant scoped client (get/update)
    max_concurrent_updates: updates in flight per tenant at any time
    """

    def __init__(
        self,
        catalog,
        client_factory: Callable[[str], object],
        clock: Callable[[], datetime] = utc_now,
        max_concurrent_updates: int = settings.EXPIRATION_MAX_CONCURRENT_UPDATES,
    ):
        self.catalog = catalog
        self.client_factory = client_factory
        self.clock = clock
        self.max_concurrent_updates = max_concurrent_updates

    async def run(self) -> List[ExpirationResult]:
        """
        One sweep over all tenants. Never raises; failures are logged per
        tenant. The returned results are informational only.
        """
        logger.info("Starting user expiration sweep")
        try:
            namespaces = await self.catalog.list_namespaces(MODULE_SCHEMA_SUFFIX)
        except Exception as e:
            logger.error("Tenant namespace query failed: %s", e, exc_info=True)
            return []

        tenants = [
            tenant_from_schema(nspname)
            for nspname in namespaces
            if nspname.endswith(MODULE_SCHEMA_SUFFIX)
        ]
        for tenant in tenants:
            logger.info("Expiring users for tenant %s", tenant)

        outcomes = await asyncio.gather(
            *(self.expire_for_tenant(tenant) for tenant in tenants),
            return_exceptions=True,
        )

        results = []
        for tenant, outcome in zip(tenants, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Attempt to expire records for tenant %s failed: %s", tenant, outcome
                )
                continue
            logger.info(
                "Expired %s of %s users for tenant %s",
                outcome.succeeded, outcome.attempted, tenant,
            )
            results.append(outcome)
        return results

    async def expire_for_tenant(self, tenant: str, now: Optional[datetime] = None) -> ExpirationResult:
        """
        Deactivate the active, expired users of one tenant.

        Raises if the lookup fails. Failed updates only lower the
        succeeded count.
        """
        query = expiration_query(format_timestamp(now or self.clock()))
        ctx = translate(query, limit=None)
        client = self.client_factory(tenant)

        try:
            users = await client.get(ctx)
        except PersistenceError as e:
            logger.warning("Error executing query '%s' for tenant %s: %s", query, tenant, e)
            raise

        if not users:
            logger.info("No results found for query %s", query)
            return ExpirationResult(tenant=tenant, attempted=0, succeeded=0)

        limiter = asyncio.Semaphore(self.max_concurrent_updates)
        outcomes = await asyncio.gather(
            *(self._deactivate(client, user, limiter) for user in users),
            return_exceptions=True,
        )
        succeeded = sum(1 for outcome in outcomes if not isinstance(outcome, BaseException))
        return ExpirationResult(tenant=tenant, attempted=len(users), succeeded=succeeded)

    async def _deactivate(self, client, user: dict, limiter: asyncio.Semaphore) -> None:
        user = dict(user, active=False)
        user_id = user.get("id")
        async with limiter:
            logger.info("Updating user with id %s", user_id)
            try:
                await client.update(TABLE_NAME_USERS, user_id, user)
            except PersistenceError as e:
                logger.info("Error updating user %s: %s", user_id, e)
                raise
