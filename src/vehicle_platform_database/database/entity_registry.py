"""
# Entity Registry

The registry is the **single source of truth** for where an entity's data lives. Every
entity the platform stores is registered once at startup as either:

- **shared**: global data in the main database (platform admins, makes, plans, ...), or
- **tenant**: company data in that company's isolated database (vehicles, quotes, ...).

Everything downstream (which connection a request binds, whether a tenant is required)
is driven by this classification, so registration is explicit and checked centrally
rather than trusted at each call site.

## Usage

```python
from vehicle_platform_database.database.entity_registry import EntityRegistry, EntityScope

registry = EntityRegistry()
registry.register("Vehicle", EntityScope.TENANT)
registry.register("MasterAdmin", EntityScope.SHARED)
registry.freeze()  # end of startup phase

registry.classify("Vehicle")  # EntityScope.TENANT
registry.resolve("Vehicle").shape.collection_name  # "vehicles"
```

## Lifecycle

Registration happens only during startup. After `freeze()` further registrations raise
`RegistryFrozenError`; reads need no locking because the catalog never changes again.
"""

from collections import OrderedDict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from vehicle_platform_database.database.exceptions import (
    DuplicateEntityError,
    EntityRegistryError,
    RegistryFrozenError,
    UnknownEntityError,
)
from vehicle_platform_database.managers.logging_manager import get_logger

logger = get_logger(prefix="[EntityRegistry]")


class EntityScope(str, Enum):
    """Storage scope of an entity."""

    SHARED = "shared"
    TENANT = "tenant"


class IndexSpec(BaseModel):
    """A MongoDB index definition in pymongo key format."""

    model_config = ConfigDict(frozen=True)

    keys: Tuple[Tuple[str, int], ...]
    unique: bool = False
    name: Optional[str] = None

    def create_options(self) -> Dict[str, Any]:
        options: Dict[str, Any] = {"unique": self.unique}
        if self.name:
            options["name"] = self.name
        return options


class EntityShape(BaseModel):
    """Shape descriptor of an entity: its collection and indexes."""

    model_config = ConfigDict(frozen=True)

    collection_name: str = Field(..., min_length=1)
    indexes: Tuple[IndexSpec, ...] = ()


class EntityDescriptor(BaseModel):
    """Immutable registry record for one entity."""

    model_config = ConfigDict(frozen=True)

    name: str
    scope: EntityScope
    shape: EntityShape

    @property
    def is_tenant_scoped(self) -> bool:
        return self.scope is EntityScope.TENANT


def default_collection_name(entity_name: str) -> str:
    """
    Derive the collection name the way the platform's ODM pluralizes model names.

    `Vehicle` -> `vehicles`, `Body` -> `bodies`, `Subscriptions` -> `subscriptions`,
    `AdvertiseData` -> `advertisedata`.
    """
    lowered = entity_name.lower()
    if lowered.endswith("s") or lowered.endswith("data"):
        return lowered
    if lowered.endswith("y") and len(lowered) > 1 and lowered[-2] not in "aeiou":
        return lowered[:-1] + "ies"
    if lowered.endswith(("x", "ch", "sh")):
        return lowered + "es"
    return lowered + "s"


class EntityRegistry:
    """
    Startup-time catalog mapping entity names to `EntityDescriptor`s.

    Attributes:
        _entities: Registered descriptors keyed by entity name, in registration order.
        _frozen: Set by `freeze()`; no registrations are accepted afterwards.
    """

    def __init__(self):
        self._entities: "OrderedDict[str, EntityDescriptor]" = OrderedDict()
        self._frozen = False

    def register(
        self,
        name: str,
        scope: EntityScope,
        shape: Optional[EntityShape] = None,
    ) -> EntityDescriptor:
        """
        Register an entity with its storage scope and shape.

        Re-registering an identical definition is a no-op. Any other re-registration is
        a configuration error.

        Args:
            name: Unique entity name, e.g. `"Vehicle"`.
            scope: `EntityScope.SHARED` or `EntityScope.TENANT` (plain strings accepted).
            shape: Collection/index descriptor. Defaults to the pluralized collection name
                with no indexes.

        Returns:
            EntityDescriptor: The registered (or already present) descriptor.

        Raises:
            ValueError: If the name is empty or the scope is not a known scope.
            DuplicateEntityError: If the name is registered with a different definition.
            RegistryFrozenError: If called after `freeze()`.
        """
        if not name or not isinstance(name, str) or not name.strip():
            raise ValueError("Entity name must be a non-empty string")
        scope = EntityScope(scope)
        if shape is None:
            shape = EntityShape(collection_name=default_collection_name(name))

        descriptor = EntityDescriptor(name=name, scope=scope, shape=shape)
        existing = self._entities.get(name)
        if existing is not None:
            if existing == descriptor:
                return existing
            if existing.scope is not scope:
                message = (
                    f"Entity {name} already registered as {existing.scope.value}, "
                    f"cannot re-register as {scope.value}"
                )
            else:
                message = f"Entity {name} already registered with a different shape"
            logger.critical(message)
            raise DuplicateEntityError(name, message)

        if self._frozen:
            raise RegistryFrozenError(f"Cannot register {name}: entity registry is frozen")

        self._entities[name] = descriptor
        logger.debug("Registered %s entity %s -> %s", scope.value, name, shape.collection_name)
        return descriptor

    def resolve(self, name: str) -> EntityDescriptor:
        """
        Look up an entity's descriptor.

        Raises:
            UnknownEntityError: If the entity was never registered.
        """
        descriptor = self._entities.get(name)
        if descriptor is None:
            raise UnknownEntityError(name)
        return descriptor

    def classify(self, name: str) -> EntityScope:
        """Return the storage scope of a registered entity."""
        return self.resolve(name).scope

    def is_registered(self, name: str) -> bool:
        return name in self._entities

    def entity_names(self, scope: Optional[EntityScope] = None) -> List[str]:
        if scope is None:
            return list(self._entities)
        scope = EntityScope(scope)
        return [name for name, descriptor in self._entities.items() if descriptor.scope is scope]

    def find_by_collection(self, collection_name: str) -> Optional[EntityDescriptor]:
        for descriptor in self._entities.values():
            if descriptor.shape.collection_name == collection_name:
                return descriptor
        return None

    def freeze(self) -> None:
        """End the startup phase."""
        if not self._frozen:
            self._frozen = True
            logger.info(
                "Entity registry frozen with %d entities (%d shared, %d tenant)",
                len(self._entities),
                len(self.entity_names(EntityScope.SHARED)),
                len(self.entity_names(EntityScope.TENANT)),
            )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, name: object) -> bool:
        return name in self._entities

    async def initialize_tenant_collections(self, database: Any) -> List[str]:
        """
        Create the indexes of every tenant-scoped entity on a tenant database.

        Used when a new company database is provisioned. `create_index` is idempotent,
        so running this against an existing tenant database is safe.

        Args:
            database: The tenant's `AsyncIOMotorDatabase`.

        Returns:
            List[str]: Names of the entities that were initialized.

        Raises:
            EntityRegistryError: If index creation fails for an entity.
        """
        initialized: List[str] = []
        tenant_entities = [d for d in self._entities.values() if d.is_tenant_scoped]
        logger.info("Initializing %d tenant collections on %s", len(tenant_entities), getattr(database, "name", database))

        for descriptor in tenant_entities:
            collection = database[descriptor.shape.collection_name]
            try:
                for index in descriptor.shape.indexes:
                    await collection.create_index(list(index.keys), **index.create_options())
            except Exception as e:
                logger.error("Failed to initialize %s: %s", descriptor.name, e)
                raise EntityRegistryError(f"Failed to initialize entity {descriptor.name}: {e}") from e
            initialized.append(descriptor.name)
            logger.debug("%s initialized", descriptor.name)

        logger.info("All tenant collections initialized successfully")
        return initialized


# Global instance, populated and frozen during application startup
entity_registry = EntityRegistry()
