"""Access control: directory principals, group catalog and definitions."""

from adgroupsync.platform.access_control.catalog import CatalogStats, GroupCatalog
from adgroupsync.platform.access_control.entity import AdEntity
from adgroupsync.platform.access_control.schemas import (
    GroupDefinitions,
    Principal,
    PrincipalKind,
)

__all__ = [
    "AdEntity",
    "CatalogStats",
    "GroupCatalog",
    "GroupDefinitions",
    "Principal",
    "PrincipalKind",
]
