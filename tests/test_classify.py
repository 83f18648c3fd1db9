from __future__ import annotations

from azure_sla.classify import (
    RESOURCE_TYPE_CATEGORIES,
    category_of,
    is_category_relevant,
    is_region_relevant,
    types_for,
)
from azure_sla.normalize.schema import MATRIX_CATEGORIES, ServiceCategory


def test_category_of_known_and_unknown_types() -> None:
    assert category_of("microsoft.sql/servers/databases") is ServiceCategory.SQL_DB
    assert category_of("microsoft.unknown/thing") is ServiceCategory.OTHER
    assert category_of("") is ServiceCategory.OTHER


def test_category_of_is_case_insensitive_and_handles_prefixes() -> None:
    assert category_of("Microsoft.Compute/virtualMachines") is ServiceCategory.COMPUTE
    assert category_of("Microsoft.Web/sites/slots") is ServiceCategory.WEB_APPS
    assert category_of("microsoft.storage/storageaccounts/blobservices") is ServiceCategory.STORAGE
    # exact entries do not act as prefixes
    assert category_of("microsoft.compute/virtualmachines/extensions") is ServiceCategory.OTHER


def test_types_for_returns_exact_entries_only() -> None:
    types = types_for(MATRIX_CATEGORIES)
    assert "microsoft.sql/servers/databases" in types
    assert all(not t.endswith("/") for t in types)
    assert types_for([ServiceCategory.OTHER]) == ()
    assert len(types) == len([t for t, _ in RESOURCE_TYPE_CATEGORIES if not t.endswith("/")])


def test_region_matches_code_or_display_name() -> None:
    assert is_region_relevant("eastus", "eastus", "East US")
    assert is_region_relevant("EASTUS", "eastus", "East US")
    assert is_region_relevant("East US", "eastus", "East US")
    assert is_region_relevant("Region: East US (primary)", "eastus", "East US")
    assert not is_region_relevant("West Europe", "eastus", "East US")
    assert not is_region_relevant("", "eastus", "East US")


def test_region_match_over_matches_longer_names() -> None:
    # "East US" is a substring of "East US 2"; the eastus2 incident counts for eastus too.
    assert is_region_relevant("East US 2", "eastus", "East US")
    # not the other way round
    assert not is_region_relevant("East US", "eastus2", "East US 2")


def test_region_match_under_matches_other_spellings() -> None:
    assert not is_region_relevant("US East", "eastus", "East US")
    assert not is_region_relevant("east-us", "eastus", "East US")


def test_category_relevance_uses_aliases() -> None:
    assert is_category_relevant("Virtual Machines", ServiceCategory.COMPUTE)
    assert is_category_relevant("virtual machine scale sets", ServiceCategory.COMPUTE)
    assert is_category_relevant("SQL Database", ServiceCategory.SQL_DB)
    assert is_category_relevant("App Service \\ Web Apps", ServiceCategory.WEB_APPS)
    assert not is_category_relevant("Networking", ServiceCategory.COMPUTE)
    assert not is_category_relevant("Storage", ServiceCategory.OTHER)


def test_category_relevance_over_matches_substrings() -> None:
    assert is_category_relevant("Storage Sync Service", ServiceCategory.STORAGE)
    assert is_category_relevant("Azure Functions Premium", ServiceCategory.WEB_APPS)
