from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

CACHE_KEY_SEPARATOR = "|"

# Campi descrittivi che finiscono nel blob auxiliary
AUXILIARY_FIELDS = ("price", "style", "aroma", "taste", "food_pairings")


def _key_part(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def build_cache_key(name: str, vintage: Optional[str] = None, producer: Optional[str] = None) -> str:
    """name|vintage|producer, ogni parte senza spazi ai bordi e in minuscolo."""
    return CACHE_KEY_SEPARATOR.join((_key_part(name), _key_part(vintage), _key_part(producer)))


@dataclass
class WineRecord:
    name: str
    vintage: Optional[str] = None
    producer: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    varietals: Optional[str] = None
    auxiliary: Dict[str, str] = field(default_factory=dict)
    cache_key: Optional[str] = None

    @property
    def is_wine(self) -> bool:
        return bool(self.name and self.name.strip())

    def with_cache_key(self) -> "WineRecord":
        if self.cache_key is None:
            self.cache_key = build_cache_key(self.name, self.vintage, self.producer)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "vintage": self.vintage,
            "producer": self.producer,
            "region": self.region,
            "country": self.country,
            "varietals": self.varietals,
            "auxiliary": dict(self.auxiliary),
            "cache_key": self.cache_key,
        }
