# domain/project.py
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


def utc_now() -> datetime:
    """Current UTC time, truncated to the millisecond precision dates are stored with."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class ShutterType(Enum):
    HIGH = "high"  # Volet haut (extraction)
    LOW = "low"    # Volet bas (amenée d'air)


@dataclass
class Shutter:
    id: str
    zone_id: str
    name: str
    type: ShutterType = ShutterType.HIGH
    reference_flow: float = 0.0  # m³/h
    measured_flow: float = 0.0   # m³/h
    remarks: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass
class FunctionalZone:
    id: str
    building_id: str
    name: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    shutters: List[Shutter] = field(default_factory=list)


@dataclass
class Building:
    id: str
    project_id: str
    name: str
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    functional_zones: List[FunctionalZone] = field(default_factory=list)


@dataclass
class Project:
    id: str
    name: str
    city: Optional[str] = None
    address: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    buildings: List[Building] = field(default_factory=list)

    def iter_shutters(self):
        """Yield (building, zone, shutter) for every shutter of the project."""
        for building in self.buildings:
            for zone in building.functional_zones:
                for shutter in zone.shutters:
                    yield building, zone, shutter


@dataclass
class SearchResult:
    shutter: Shutter
    zone: FunctionalZone
    building: Building
    project: Project
