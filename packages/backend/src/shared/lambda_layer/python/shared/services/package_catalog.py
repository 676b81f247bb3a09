"""
Package Catalog

Read-only view of package definitions for clients choosing what to buy.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger

from shared.constants.entitlements import EXPIRING_SOON_DAYS
from shared.models.entitlement import Package, PackageStatus
from shared.services.package_store import PackageStore

logger = Logger()


def package_status(
    package: Package, now: datetime, expiring_within: timedelta = timedelta(days=EXPIRING_SOON_DAYS)
) -> PackageStatus:
    """Where now falls in the package's availability window; an open end never expires."""
    if package.start_date is not None and now < package.start_date:
        return PackageStatus.UPCOMING
    if package.end_date is None:
        return PackageStatus.ACTIVE
    if now > package.end_date:
        return PackageStatus.EXPIRED
    if package.end_date <= now + expiring_within:
        return PackageStatus.EXPIRING_SOON
    return PackageStatus.ACTIVE


def catalog_entry(package: Package, now: datetime) -> Dict[str, Any]:
    entry = package.model_dump(mode="json")
    entry["status"] = package_status(package, now).value
    entry["unlimited"] = package.package_limit is None
    return entry


def _newest_first(package: Package) -> datetime:
    return package.created_at or datetime.min.replace(tzinfo=timezone.utc)


class PackageCatalog:
    """Lists and looks up packages with their catalog status"""

    def __init__(self, package_store: Optional[PackageStore] = None):
        self.package_store = package_store or PackageStore()

    def list_packages(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        packages = sorted(self.package_store.list(), key=_newest_first, reverse=True)
        entries = [catalog_entry(package, now) for package in packages]

        stats = {status.value: 0 for status in PackageStatus}
        for entry in entries:
            stats[entry["status"]] += 1

        return {"packages": entries, "total": len(entries), "stats": stats}

    def list_available(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Packages that are switched on and inside their availability window."""
        now = now or datetime.now(timezone.utc)
        available = [
            entry
            for entry in self.list_packages(now)["packages"]
            if entry["is_active"]
            and entry["status"] in (PackageStatus.ACTIVE.value, PackageStatus.EXPIRING_SOON.value)
        ]
        logger.info(f"{len(available)} packages available")
        return {"packages": available, "total": len(available)}

    def get(self, package_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Raises:
            PackageNotFoundError: unknown package_id
        """
        now = now or datetime.now(timezone.utc)
        return catalog_entry(self.package_store.get(package_id), now)
