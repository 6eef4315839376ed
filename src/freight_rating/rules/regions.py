# src/freight_rating/rules/regions.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Set

from ..models import Region

logger = logging.getLogger(__name__)

__all__ = ["canonicalize_postal", "region_type_for", "RegionAncestry", "RegionHierarchy"]


def canonicalize_postal(postal: Optional[str]) -> str:
    """Reduce a postal/ZIP code to its routing region.

    Canadian codes collapse to the FSA (``"M5V 3L9"`` -> ``"M5V"``), US ZIPs
    to ZIP3 (``"90210-1234"`` -> ``"902"``). Anything else comes back cleaned
    but otherwise untouched. Applying it twice gives the same answer.
    """
    cleaned = "".join((postal or "").split()).upper()
    if len(cleaned) >= 3 and cleaned[0].isalpha() and cleaned[1].isdigit() and cleaned[2].isalpha():
        return cleaned[:3]
    if len(cleaned) >= 5 and cleaned[:5].isdigit():
        return cleaned[:3]
    return cleaned


def region_type_for(canonical: str) -> Optional[str]:
    if len(canonical) == 3 and canonical[0].isalpha() and canonical[1].isdigit() and canonical[2].isalpha():
        return "fsa"
    if len(canonical) == 3 and canonical.isdigit():
        return "zip3"
    return None


@dataclass
class RegionAncestry:
    region_id: str
    state_province_id: Optional[str] = None
    country_id: Optional[str] = None


class RegionHierarchy:
    """Walks ``parent_region_id`` links up to the enclosing province and country."""

    def __init__(self, store):
        self.store = store

    def ancestry(self, region_id: str) -> RegionAncestry:
        result = RegionAncestry(region_id=region_id)
        seen: Set[str] = set()
        current: Optional[str] = region_id
        while current:
            if current in seen:
                logger.warning("Region hierarchy cycle detected at %s (start %s)", current, region_id)
                break
            seen.add(current)
            region = self.store.get(Region, current)
            if region is None:
                break
            if region.type == "state_province" and result.state_province_id is None:
                result.state_province_id = region.id
            elif region.type == "country":
                result.country_id = region.id
                break
            current = region.parent_region_id
        return result

    def state_province_of(self, region_id: str) -> Optional[str]:
        return self.ancestry(region_id).state_province_id

    def country_of(self, region_id: str) -> Optional[str]:
        return self.ancestry(region_id).country_id
