"""
Models for the data-access core's observability and request pipeline surfaces.

- `ConnectionStats` / `TenantConnectionDetail`: the read-only snapshot returned by
  `ConnectionManager.stats()` and served by the health route.
- `AuthenticatedPrincipal`: the already-authenticated caller the auth layer places on
  `request.state.principal`; the tenant pipeline derives the tenant from it.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

MASTER_ADMIN_ROLE = "master_admin"
SUPPLIER_ROLE = "supplier"


class TenantConnectionDetail(BaseModel):
    """Per-tenant view of one cached connection entry."""

    tenant_id: str
    active_requests: int = Field(..., ge=0)
    last_accessed_at: datetime
    created_at: datetime
    is_idle: bool


class ConnectionStats(BaseModel):
    """
    Snapshot of the tenant connection cache.

    Attributes:
        cached_tenant_count (int): Number of cached tenant connections.
        total_active_requests (int): Sum of reference counts over all entries.
        hit_rate (float): Cache hits / acquire calls, 0.0 when nothing was acquired yet.
    """

    cached_tenant_count: int = Field(..., ge=0)
    total_active_requests: int = Field(..., ge=0)
    hit_rate: float = Field(..., ge=0.0, le=1.0)
    total_requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    connections_created: int = 0
    evictions: int = 0
    pending_creations: int = 0
    capacity: int = 0
    tenants: List[TenantConnectionDetail] = Field(default_factory=list)


class AuthenticatedPrincipal(BaseModel):
    """
    Caller identity as delivered by the authentication layer.

    Attributes:
        user_id (str): Authenticated user id.
        role (str): Platform role, e.g. `"master_admin"`, `"company_admin"`, `"supplier"`.
        company_id (Optional[str]): Company the caller belongs to.
        company_db_name (Optional[str]): Company database name recorded on the user.
        is_dealership_user (bool): True for tender dealership users.
    """

    user_id: str
    role: str = "company_user"
    company_id: Optional[str] = None
    company_db_name: Optional[str] = None
    is_dealership_user: bool = False
