from __future__ import annotations

from typing import Dict, Iterable, Tuple

from .normalize.schema import ServiceCategory

# Lower-cased ARM resource types. Entries ending in "/" are prefixes.
RESOURCE_TYPE_CATEGORIES: Tuple[Tuple[str, ServiceCategory], ...] = (
    ("microsoft.compute/virtualmachines", ServiceCategory.COMPUTE),
    ("microsoft.compute/virtualmachinescalesets", ServiceCategory.COMPUTE),
    ("microsoft.compute/virtualmachinescalesets/", ServiceCategory.COMPUTE),
    ("microsoft.classiccompute/virtualmachines", ServiceCategory.COMPUTE),
    ("microsoft.sql/servers/databases", ServiceCategory.SQL_DB),
    ("microsoft.sql/servers/elasticpools", ServiceCategory.SQL_DB),
    ("microsoft.sql/managedinstances", ServiceCategory.SQL_DB),
    ("microsoft.sql/managedinstances/", ServiceCategory.SQL_DB),
    ("microsoft.web/sites", ServiceCategory.WEB_APPS),
    ("microsoft.web/sites/", ServiceCategory.WEB_APPS),
    ("microsoft.web/serverfarms", ServiceCategory.WEB_APPS),
    ("microsoft.storage/storageaccounts", ServiceCategory.STORAGE),
    ("microsoft.storage/storageaccounts/", ServiceCategory.STORAGE),
    ("microsoft.classicstorage/storageaccounts", ServiceCategory.STORAGE),
)

# Service names as they appear in Service Health impact entries.
CATEGORY_ALIASES: Dict[ServiceCategory, Tuple[str, ...]] = {
    ServiceCategory.COMPUTE: ("Virtual Machines", "Compute", "Virtual Machine Scale Sets"),
    ServiceCategory.SQL_DB: ("SQL Database", "Azure SQL", "SQL Managed Instance"),
    ServiceCategory.WEB_APPS: ("App Service", "Web Apps", "Functions"),
    ServiceCategory.STORAGE: ("Storage", "Blob", "Azure Files"),
    ServiceCategory.OTHER: (),
}


def category_of(resource_type: str) -> ServiceCategory:
    """
    Map an ARM resource type to a ServiceCategory.
    Case-insensitive; exact match or prefix match against the table. Never fails.
    """
    text = str(resource_type or "").strip().lower()
    if not text:
        return ServiceCategory.OTHER
    for known, category in RESOURCE_TYPE_CATEGORIES:
        if known.endswith("/"):
            if text.startswith(known):
                return category
        elif text == known:
            return category
    return ServiceCategory.OTHER


def types_for(categories: Iterable[ServiceCategory]) -> Tuple[str, ...]:
    """Exact (non-prefix) resource types for the given categories, in table order."""
    wanted = set(categories)
    return tuple(t for t, c in RESOURCE_TYPE_CATEGORIES if c in wanted and not t.endswith("/"))


def is_region_relevant(label: str, region_code: str, display_name: str) -> bool:
    """
    True when `label` equals the region code or contains the display name.

    Both checks are case-insensitive and deliberately loose:
    - over-match: "East US" is contained in "East US 2", so an incident for
      eastus2 is also attributed to eastus.
    - under-match: labels using neither the code nor the canonical display name
      (e.g. "US East") are not recognised.
    """
    text = str(label or "").strip().lower()
    if not text:
        return False
    code = str(region_code or "").strip().lower()
    if code and text == code:
        return True
    name = str(display_name or "").strip().lower()
    return bool(name) and name in text


def is_category_relevant(label: str, category: ServiceCategory) -> bool:
    """
    True when `label` contains any alias of `category` (case-insensitive substring).
    Same looseness as is_region_relevant: "Storage" also matches "Storage Sync Service".
    """
    text = str(label or "").lower()
    if not text:
        return False
    return any(alias.lower() in text for alias in CATEGORY_ALIASES.get(category, ()))
