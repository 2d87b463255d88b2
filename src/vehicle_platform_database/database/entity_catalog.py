"""
Default entity catalog of the vehicle platform.

Main-database entities are shared by every company (platform users, vehicle metadata,
plans); company entities live in each company's isolated database. `register_default_entities`
is called once at startup, before the registry is frozen.
"""

from typing import Dict, Tuple

from vehicle_platform_database.database.entity_registry import (
    EntityRegistry,
    EntityScope,
    EntityShape,
    IndexSpec,
    default_collection_name,
)

MAIN_DB_ENTITIES: Tuple[str, ...] = (
    "Body",
    "Company",
    "CustomModuleConfig",
    "GlobalLog",
    "Make",
    "MasterAdmin",
    "MasterDropdown",
    "Model",
    "Plan",
    "Permission",
    "TrademeMetadata",
    "User",
    "Variant",
    "VariantYear",
    "VehicleMetadata",
)

COMPANY_DB_ENTITIES: Tuple[str, ...] = (
    "AdvertiseData",
    "AdvertiseVehicle",
    "Conversation",
    "CostConfiguration",
    "Currency",
    "Dealership",
    "DropdownMaster",
    "EsignAPIKey",
    "EsignAuditLog",
    "EsignBulkJob",
    "EsignDocument",
    "EsignProviderConfig",
    "EsignSigningGroup",
    "EsignTemplate",
    "GroupPermission",
    "InspectionConfig",
    "Integration",
    "Invoice",
    "MasterVehicle",
    "Notification",
    "NotificationConfiguration",
    "ServiceBay",
    "Subscriptions",
    "Supplier",
    "Tender",
    "TenderConversation",
    "TenderDealership",
    "TenderDealershipUser",
    "TenderHistory",
    "TenderNotification",
    "TenderVehicle",
    "TradeinConfig",
    "Vehicle",
    "VehicleActivityLog",
    "Workflow",
    "WorkflowExecution",
    "WorkshopQuote",
    "WorkshopReport",
)


def _index(*keys: Tuple[str, int], unique: bool = False) -> IndexSpec:
    return IndexSpec(keys=tuple(keys), unique=unique)


# Indexes created when a company database is provisioned
COMPANY_DB_INDEXES: Dict[str, Tuple[IndexSpec, ...]] = {
    "AdvertiseData": (
        _index(("company_id", 1), ("status", 1)),
        _index(("vehicle_stock_id", 1), ("company_id", 1)),
        _index(("created_at", -1)),
    ),
    "EsignAPIKey": (
        _index(("company_id", 1), ("is_active", 1)),
        _index(("key_prefix", 1)),
    ),
    "EsignAuditLog": (
        _index(("company_id", 1), ("timestamp", -1)),
        _index(("company_id", 1), ("event_type", 1), ("timestamp", -1)),
    ),
    "EsignDocument": (
        _index(("company_id", 1), ("status", 1)),
        _index(("company_id", 1), ("createdAt", -1)),
        _index(("recipients.token", 1)),
    ),
    "EsignTemplate": (
        _index(("company_id", 1), ("status", 1)),
        _index(("company_id", 1), ("name", 1)),
    ),
    "Vehicle": (
        _index(("company_id", 1), ("vehicle_stock_id", 1), ("vehicle_type", 1), unique=True),
        _index(("company_id", 1), ("status", 1)),
    ),
    "VehicleActivityLog": (_index(("company_id", 1), ("vehicle_stock_id", 1), ("timestamp", -1)),),
    "WorkshopQuote": (_index(("company_id", 1), ("vehicle_stock_id", 1), ("field_id", 1)),),
}


def register_default_entities(registry: EntityRegistry) -> EntityRegistry:
    """Register every main and company entity of the platform."""
    for name in MAIN_DB_ENTITIES:
        registry.register(name, EntityScope.SHARED)
    for name in COMPANY_DB_ENTITIES:
        shape = EntityShape(
            collection_name=default_collection_name(name),
            indexes=COMPANY_DB_INDEXES.get(name, ()),
        )
        registry.register(name, EntityScope.TENANT, shape)
    return registry
