"""
Installation Lifecycle

Manages the TenantRecord across install, reinstall and uninstall, and keeps
the shop's access token encrypted at rest.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from profit_pipeline.database.models import SyncStatus
from profit_pipeline.database.store import Document, TenantStore
from profit_pipeline.exceptions import TenantNotFoundError
from profit_pipeline.security import CredentialCipher

logger = structlog.get_logger(__name__)

STATUS_FIELDS = (
    "shop",
    "is_active",
    "sync_status",
    "sync_state",
    "synced_at",
    "sync_error",
    "sync_stats",
    "metrics_stale",
    "metrics_computed_at",
    "metrics_error",
)


def _redact(record: Document) -> Document:
    return {key: value for key, value in record.items() if key != "access_token"}


class TenantService:
    """
    TenantRecord operations used by the OAuth callback, webhooks and jobs.

    Example:
        service = TenantService(store, get_cipher())
        await service.register_installation(shop, token, scope="read_orders")
        if await service.needs_initial_sync(shop):
            await run_day1_sync(shop, store)
    """

    def __init__(self, store: TenantStore, cipher: CredentialCipher):
        self.store = store
        self.cipher = cipher

    async def register_installation(self, tenant: str, access_token: str, scope: Optional[str] = None) -> Document:
        """
        Create the tenant record, or reactivate it on reinstall.

        Returns the stored record without the encrypted token.
        """
        now = datetime.now(timezone.utc)
        encrypted = self.cipher.encrypt(access_token)
        existing = await self.store.get_tenant_record(tenant)

        if existing is None:
            record = await self.store.create_tenant_record(
                tenant,
                {
                    "access_token": encrypted,
                    "scope": scope,
                    "is_active": True,
                    "installed_at": now,
                    "last_installed_at": now,
                },
            )
            logger.info("Shop installed", tenant=tenant)
            return _redact(record)

        fields: Dict[str, Any] = {
            "access_token": encrypted,
            "scope": scope,
            "is_active": True,
            "last_installed_at": now,
            "uninstalled_at": None,
            "uninstall_reason": None,
        }
        if not existing["is_active"]:
            fields["reinstall_count"] = (existing.get("reinstall_count") or 0) + 1
            logger.info("Shop reinstalled", tenant=tenant, reinstall_count=fields["reinstall_count"])
        else:
            logger.info("Shop credentials refreshed", tenant=tenant)

        record = await self.store.update_tenant_record(tenant, fields)
        return _redact(record)

    async def get_access_token(self, tenant: str) -> Optional[str]:
        """Decrypted token of an active installation, or None"""
        record = await self.store.get_tenant_record(tenant)
        if record is None or not record["is_active"] or not record.get("access_token"):
            return None
        return self.cipher.decrypt(record["access_token"])

    async def needs_initial_sync(self, tenant: str) -> bool:
        """True for an active installation that has never synced successfully"""
        record = await self.store.get_tenant_record(tenant)
        if record is None or not record["is_active"]:
            return False
        return record.get("sync_status") != SyncStatus.SYNCED.value

    async def deactivate(self, tenant: str, reason: Optional[str] = None) -> Document:
        """
        Flag the installation inactive. Mirrored data stays until cleanup runs.

        Raises:
            TenantNotFoundError: No record exists for the shop
        """
        record = await self.store.update_tenant_record(
            tenant,
            {
                "is_active": False,
                "uninstalled_at": datetime.now(timezone.utc),
                "uninstall_reason": reason or "unknown",
            },
        )
        logger.info("Shop uninstalled", tenant=tenant, reason=record["uninstall_reason"])
        return _redact(record)

    async def sync_status(self, tenant: str) -> Dict[str, Any]:
        """Sync and metrics flags for status endpoints"""
        record = await self.store.get_tenant_record(tenant)
        if record is None:
            raise TenantNotFoundError(f"No tenant record for {tenant}")
        status = {key: record.get(key) for key in STATUS_FIELDS}
        status["needs_initial_sync"] = bool(record["is_active"]) and record.get("sync_status") != SyncStatus.SYNCED.value
        return status
