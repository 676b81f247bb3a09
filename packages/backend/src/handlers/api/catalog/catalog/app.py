from aws_lambda_powertools import Logger
from aws_lambda_powertools.event_handler import APIGatewayRestResolver
from aws_lambda_powertools.event_handler.api_gateway import CORSConfig
from aws_lambda_powertools.event_handler.exceptions import InternalServerError, NotFoundError
from aws_lambda_powertools.utilities.typing import LambdaContext
from typing import Any, Dict

from shared.models.entitlement import EntitlementInternalError, PackageNotFoundError
from shared.services.aws import get_packages_table_name
from shared.services.package_catalog import PackageCatalog
from shared.services.package_store import PackageStore

# Initialize the logger
logger = Logger()

PACKAGES_TABLE_NAME = get_packages_table_name()

# Configure CORS
cors_config = CORSConfig(
    allow_origin="*",  # In production, specify your actual domain
)

app = APIGatewayRestResolver(cors=cors_config)


def get_catalog() -> PackageCatalog:
    return PackageCatalog(PackageStore(PACKAGES_TABLE_NAME))


@app.get("/packages")
def list_packages() -> Dict[str, Any]:
    """
    All packages, newest first, with counts per status
    """
    try:
        return get_catalog().list_packages()
    except EntitlementInternalError as exc:
        logger.error(f"Error listing packages: {str(exc)}")
        raise InternalServerError("Failed to get packages")


@app.get("/packages/active")
def list_available_packages() -> Dict[str, Any]:
    """
    Packages that can be bought right now
    """
    try:
        return get_catalog().list_available()
    except EntitlementInternalError as exc:
        logger.error(f"Error listing available packages: {str(exc)}")
        raise InternalServerError("Failed to get active packages")


@app.get("/packages/<package_id>")
def get_package(package_id: str) -> Dict[str, Any]:
    try:
        return {"package": get_catalog().get(package_id)}
    except PackageNotFoundError:
        raise NotFoundError("Package not found")
    except EntitlementInternalError as exc:
        logger.error(f"Error reading package {package_id}: {str(exc)}")
        raise InternalServerError("Failed to get package")


def handler(event: Dict[str, Any], context: LambdaContext) -> Dict[str, Any]:
    """
    Lambda function handler.
    """
    return app.resolve(event, context)
