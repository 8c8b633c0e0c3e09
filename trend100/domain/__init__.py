from .schemas import (
    Bar,
    CacheMetadata,
    EligibleHealthPoint,
    HealthPoint,
    HealthScore,
    TickerSnapshot,
    TotalHealthPoint,
    UnknownHealthPoint,
    Universe,
    UniverseItem,
    UniverseSnapshot,
)

__all__ = [
    "Bar",
    "CacheMetadata",
    "EligibleHealthPoint",
    "HealthPoint",
    "HealthScore",
    "TickerSnapshot",
    "TotalHealthPoint",
    "UnknownHealthPoint",
    "Universe",
    "UniverseItem",
    "UniverseSnapshot",
]
