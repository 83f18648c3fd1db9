from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Union

from ..normalize.schema import TargetRegion

# Display names used by Service Health impact entries, keyed by region code.
REGION_DISPLAY_NAMES: Dict[str, str] = {
    "australiacentral": "Australia Central",
    "australiaeast": "Australia East",
    "australiasoutheast": "Australia Southeast",
    "brazilsouth": "Brazil South",
    "canadacentral": "Canada Central",
    "canadaeast": "Canada East",
    "centralindia": "Central India",
    "centralus": "Central US",
    "eastasia": "East Asia",
    "eastus": "East US",
    "eastus2": "East US 2",
    "francecentral": "France Central",
    "germanywestcentral": "Germany West Central",
    "japaneast": "Japan East",
    "japanwest": "Japan West",
    "koreacentral": "Korea Central",
    "northcentralus": "North Central US",
    "northeurope": "North Europe",
    "norwayeast": "Norway East",
    "southafricanorth": "South Africa North",
    "southcentralus": "South Central US",
    "southeastasia": "Southeast Asia",
    "southindia": "South India",
    "swedencentral": "Sweden Central",
    "switzerlandnorth": "Switzerland North",
    "uaenorth": "UAE North",
    "uksouth": "UK South",
    "ukwest": "UK West",
    "westcentralus": "West Central US",
    "westeurope": "West Europe",
    "westus": "West US",
    "westus2": "West US 2",
    "westus3": "West US 3",
}

RegionSpec = Union[str, Mapping[str, str]]


def display_name_for(code: str) -> str:
    """Known display name for a region code, or the code itself when unknown."""
    key = (code or "").strip().lower()
    return REGION_DISPLAY_NAMES.get(key, code.strip())


def parse_region(spec: RegionSpec) -> TargetRegion:
    """
    Accept "eastus", "eastus=East US" or {"code": ..., "display_name": ...}.
    """
    if isinstance(spec, Mapping):
        code = str(spec.get("code") or "").strip()
        name = str(spec.get("display_name") or spec.get("displayName") or "").strip()
    else:
        code, _, name = str(spec).partition("=")
        code = code.strip()
        name = name.strip()
    if not code:
        raise ValueError(f"Region entry has no code: {spec!r}")
    code = code.lower()
    return TargetRegion(code=code, display_name=name or display_name_for(code))


def resolve_regions(specs: Optional[Iterable[RegionSpec]]) -> List[TargetRegion]:
    """Parse region entries, dropping duplicate codes while keeping the first occurrence's order."""
    out: List[TargetRegion] = []
    seen = set()
    for spec in specs or []:
        region = parse_region(spec)
        if region.code in seen:
            continue
        seen.add(region.code)
        out.append(region)
    return out
