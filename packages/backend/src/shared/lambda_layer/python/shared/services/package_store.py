from typing import Any, Dict, List, Optional

from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from shared.models.entitlement import Package, PackageNotFoundError, StoreUnavailableError
from shared.services.aws import get_ddb_table, get_packages_table_name

logger = Logger()


class PackageStore:
    """Read access to package definitions keyed by package_id"""

    def __init__(self, table_name: Optional[str] = None, table: Any = None):
        self.table_name = table_name or get_packages_table_name()
        self._table = table

    @property
    def table(self):
        """Lazy load DynamoDB table."""
        if self._table is None:
            self._table = get_ddb_table(self.table_name)
        return self._table

    def get(self, package_id: str) -> Package:
        """
        Fetch a package.

        Raises:
            PackageNotFoundError: unknown package_id
            StoreUnavailableError: DynamoDB failure
        """
        try:
            response = self.table.get_item(Key={"package_id": package_id})
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error reading package {package_id}: {str(e)}")
            raise StoreUnavailableError(f"Failed to read package {package_id}") from e

        item = response.get("Item")
        if not item:
            raise PackageNotFoundError(package_id)
        return Package(**item)

    def find(self, package_id: Optional[str]) -> Optional[Package]:
        """Like get, but returns None for a missing or empty package_id."""
        if not package_id:
            return None
        try:
            return self.get(package_id)
        except PackageNotFoundError:
            return None

    def list(self) -> List[Package]:
        """Every package definition, following scan pagination."""
        packages: List[Package] = []
        scan_kwargs: Dict[str, Any] = {}
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                packages.extend(Package(**item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing packages: {str(e)}")
            raise StoreUnavailableError("Failed to list packages") from e

        logger.debug(f"Loaded {len(packages)} packages from {self.table_name}")
        return packages

    def put(self, package: Package) -> Package:
        try:
            self.table.put_item(Item=package.to_dynamodb_item())
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error saving package {package.package_id}: {str(e)}")
            raise StoreUnavailableError(f"Failed to save package {package.package_id}") from e
        return package
