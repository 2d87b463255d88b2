"""
Command-line interface for tenant database operations.

Commands:
    init-tenant <company_id>   Create the indexes of every company entity in the company database.
    list-entities [--scope]    List registered entities and where they are stored.
    stats                      Show the tenant connection cache of a running service.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

import httpx

from vehicle_platform_database.config import settings
from vehicle_platform_database.database.connection_manager import ConnectionManager
from vehicle_platform_database.database.entity_catalog import register_default_entities
from vehicle_platform_database.database.entity_registry import EntityRegistry, EntityScope
from vehicle_platform_database.database.exceptions import DataAccessError
from vehicle_platform_database.database.request_context import RequestDataContext
from vehicle_platform_database.database.tenant_connector import MotorTenantConnector
from vehicle_platform_database.managers.logging_manager import get_logger

logger = get_logger(prefix="[TenantCLI]")


class TenantCLI:
    """CLI tool for tenant database operations."""

    def __init__(
        self,
        registry: Optional[EntityRegistry] = None,
        connections: Optional[ConnectionManager] = None,
        base_url: Optional[str] = None,
    ):
        """
        Initialize tenant CLI.

        Args:
            registry: Entity registry; defaults to the platform catalog, frozen.
            connections: Tenant connection manager; defaults to a single-tenant Motor-backed one.
            base_url: Base URL of a running service, used by `stats`.
        """
        if registry is None:
            registry = register_default_entities(EntityRegistry())
            registry.freeze()
        self.registry = registry
        if connections is None:
            connections = ConnectionManager(MotorTenantConnector(settings), capacity=1)
        self.connections = connections
        self.base_url = (base_url or f"http://localhost:{settings.PORT}").rstrip("/")

    async def init_tenant(self, company_id: str) -> bool:
        """
        Initialize a company database: create every company collection index.

        Returns:
            True if successful, False otherwise
        """
        logger.info("Initializing company database for %s", company_id)
        try:
            async with RequestDataContext.scope(self.registry, self.connections, None, company_id) as context:
                tenant_entities = self.registry.entity_names(EntityScope.TENANT)
                if not tenant_entities:
                    logger.warning("No company entities registered, nothing to initialize")
                    return True
                handle = await context.resolve(tenant_entities[0])
                initialized = await self.registry.initialize_tenant_collections(handle.database)
            logger.info("Initialized %d company collections for %s", len(initialized), company_id)
            return True
        except DataAccessError as e:
            logger.error("Failed to initialize company %s: %s", company_id, e)
            return False
        finally:
            await self.connections.close_all()

    def list_entities(self, scope: Optional[str] = None) -> bool:
        """
        List registered entities, optionally only those of one scope.

        Returns:
            True if successful, False otherwise
        """
        names = self.registry.entity_names(EntityScope(scope) if scope else None)
        logger.info("Registered entities (%d):", len(names))
        for name in names:
            descriptor = self.registry.resolve(name)
            logger.info("  %-28s %-7s %s", name, descriptor.scope.value, descriptor.shape.collection_name)
        return True

    async def stats(self) -> bool:
        """
        Fetch the tenant connection cache snapshot from a running service.

        Returns:
            True if successful, False otherwise
        """
        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/health/connections")
        except httpx.HTTPError as e:
            logger.error("Failed to reach %s: %s", self.base_url, e)
            return False

        if response.status_code != 200:
            logger.error("Failed to fetch connection stats: %s", response.text)
            return False

        data = response.json()
        logger.info(
            "Cached tenants: %d/%d, active requests: %d, hit rate: %.1f%%",
            data["cached_tenant_count"],
            data["capacity"],
            data["total_active_requests"],
            data["hit_rate"] * 100,
        )
        for tenant in data.get("tenants", []):
            logger.info(
                "  %-24s active=%d last_accessed=%s",
                tenant["tenant_id"],
                tenant["active_requests"],
                tenant["last_accessed_at"],
            )
        return True


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Vehicle Platform tenant database CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--url",
        default=None,
        help=f"Base URL of the running service for stats (default: http://localhost:{settings.PORT})",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    init_parser = subparsers.add_parser("init-tenant", help="Initialize a company database")
    init_parser.add_argument("company_id", help="Company id; the database is <prefix><company_id>")

    list_parser = subparsers.add_parser("list-entities", help="List registered entities")
    list_parser.add_argument(
        "--scope",
        choices=[scope.value for scope in EntityScope],
        help="Only list entities of this scope",
    )

    subparsers.add_parser("stats", help="Show tenant connection cache statistics")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    cli = TenantCLI(base_url=args.url)

    if args.command == "init-tenant":
        success = asyncio.run(cli.init_tenant(args.company_id))
    elif args.command == "list-entities":
        success = cli.list_entities(args.scope)
    elif args.command == "stats":
        success = asyncio.run(cli.stats())
    else:
        parser.print_help()
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
