"""Database base classes, engine factory and tenant store routing."""

from inventory_kernel.db.base import Base, TrackedBase, UUIDString
from inventory_kernel.db.tenancy import TenantContext, TenantStoreRegistry

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "TenantContext",
    "TenantStoreRegistry",
]
