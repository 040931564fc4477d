# infrastructure/persistence.py
"""
JSON (de)serialization of the persisted collections.

The stored format uses camelCase keys and ISO-8601 UTC dates with a 'Z'
suffix. Loading is lenient: missing or malformed dates are coerced (to now
for required ones, to None for optional ones) and malformed entries are
skipped rather than failing the whole collection.
"""

import json
import dataclasses
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from domain.calculator import CalcStatus
from domain.history import QuickCalcHistoryItem
from domain.note import Note
from domain.project import Building, FunctionalZone, Project, Shutter, ShutterType, utc_now

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class EnhancedJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, datetime):
            return format_datetime(o)
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        if isinstance(o, Enum):
            return o.value
        return super().default(o)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string or epoch milliseconds. Returns None when impossible."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return _EPOCH + timedelta(milliseconds=value)
        except (OverflowError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def coerce_datetime(value: Any) -> datetime:
    """Required date: falls back to now."""
    return parse_datetime(value) or utc_now()


def _text(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _optional_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def _list(value: Any) -> List:
    return value if isinstance(value, list) else []


class PersistenceService:
    """Conversion between domain objects and their stored dict form."""

    # ------------------------------------------------------------------ #
    #  Documents
    # ------------------------------------------------------------------ #

    @staticmethod
    def dumps(data: Any) -> str:
        """Serialize to a compact JSON string, non-ASCII kept as is."""
        return json.dumps(data, cls=EnhancedJSONEncoder, ensure_ascii=False, separators=(",", ":"))

    # ------------------------------------------------------------------ #
    #  Projects
    # ------------------------------------------------------------------ #

    @staticmethod
    def shutter_to_dict(shutter: Shutter) -> Dict[str, Any]:
        return {
            "id": shutter.id,
            "zoneId": shutter.zone_id,
            "name": shutter.name,
            "type": shutter.type.value,
            "referenceFlow": shutter.reference_flow,
            "measuredFlow": shutter.measured_flow,
            "remarks": shutter.remarks,
            "createdAt": shutter.created_at,
            "updatedAt": shutter.updated_at,
        }

    @staticmethod
    def zone_to_dict(zone: FunctionalZone) -> Dict[str, Any]:
        return {
            "id": zone.id,
            "buildingId": zone.building_id,
            "name": zone.name,
            "description": zone.description,
            "createdAt": zone.created_at,
            "shutters": [PersistenceService.shutter_to_dict(s) for s in zone.shutters],
        }

    @staticmethod
    def building_to_dict(building: Building) -> Dict[str, Any]:
        return {
            "id": building.id,
            "projectId": building.project_id,
            "name": building.name,
            "description": building.description,
            "createdAt": building.created_at,
            "functionalZones": [PersistenceService.zone_to_dict(z) for z in building.functional_zones],
        }

    @staticmethod
    def project_to_dict(project: Project) -> Dict[str, Any]:
        return {
            "id": project.id,
            "name": project.name,
            "city": project.city,
            "address": project.address,
            "startDate": project.start_date,
            "endDate": project.end_date,
            "createdAt": project.created_at,
            "updatedAt": project.updated_at,
            "buildings": [PersistenceService.building_to_dict(b) for b in project.buildings],
        }

    @staticmethod
    def shutter_from_dict(data: Dict[str, Any], zone_id: str) -> Shutter:
        try:
            shutter_type = ShutterType(data.get("type"))
        except ValueError:
            shutter_type = ShutterType.HIGH
        return Shutter(
            id=str(data["id"]),
            zone_id=zone_id,
            name=_text(data.get("name")),
            type=shutter_type,
            reference_flow=_number(data.get("referenceFlow")),
            measured_flow=_number(data.get("measuredFlow")),
            remarks=_optional_text(data.get("remarks")),
            created_at=coerce_datetime(data.get("createdAt")),
            updated_at=coerce_datetime(data.get("updatedAt")),
        )

    @staticmethod
    def zone_from_dict(data: Dict[str, Any], building_id: str) -> FunctionalZone:
        zone_id = str(data["id"])
        return FunctionalZone(
            id=zone_id,
            building_id=building_id,
            name=_text(data.get("name")),
            description=_optional_text(data.get("description")),
            created_at=coerce_datetime(data.get("createdAt")),
            shutters=[PersistenceService.shutter_from_dict(s, zone_id)
                      for s in _list(data.get("shutters")) if _has_id(s)],
        )

    @staticmethod
    def building_from_dict(data: Dict[str, Any], project_id: str) -> Building:
        building_id = str(data["id"])
        return Building(
            id=building_id,
            project_id=project_id,
            name=_text(data.get("name")),
            description=_optional_text(data.get("description")),
            created_at=coerce_datetime(data.get("createdAt")),
            functional_zones=[PersistenceService.zone_from_dict(z, building_id)
                              for z in _list(data.get("functionalZones")) if _has_id(z)],
        )

    @staticmethod
    def project_from_dict(data: Dict[str, Any]) -> Project:
        """Reconstruct a Project tree. Back-references are taken from the parents."""
        project_id = str(data["id"])
        return Project(
            id=project_id,
            name=_text(data.get("name")),
            city=_optional_text(data.get("city")),
            address=_optional_text(data.get("address")),
            start_date=parse_datetime(data.get("startDate")),
            end_date=parse_datetime(data.get("endDate")),
            created_at=coerce_datetime(data.get("createdAt")),
            updated_at=coerce_datetime(data.get("updatedAt")),
            buildings=[PersistenceService.building_from_dict(b, project_id)
                       for b in _list(data.get("buildings")) if _has_id(b)],
        )

    # ------------------------------------------------------------------ #
    #  Notes
    # ------------------------------------------------------------------ #

    @staticmethod
    def note_to_dict(note: Note) -> Dict[str, Any]:
        return {
            "id": note.id,
            "title": note.title,
            "description": note.description,
            "location": note.location,
            "tags": note.tags,
            "content": note.content,
            "images": list(note.images),
            "createdAt": note.created_at,
            "updatedAt": note.updated_at,
        }

    @staticmethod
    def note_from_dict(data: Dict[str, Any]) -> Note:
        return Note(
            id=str(data["id"]),
            title=_text(data.get("title")),
            content=_text(data.get("content")),
            description=_optional_text(data.get("description")),
            location=_optional_text(data.get("location")),
            tags=_optional_text(data.get("tags")),
            images=[img for img in _list(data.get("images")) if isinstance(img, str)],
            created_at=coerce_datetime(data.get("createdAt")),
            updated_at=coerce_datetime(data.get("updatedAt")),
        )

    # ------------------------------------------------------------------ #
    #  Quick calc history
    # ------------------------------------------------------------------ #

    @staticmethod
    def history_item_to_dict(item: QuickCalcHistoryItem) -> Dict[str, Any]:
        return {
            "id": item.id,
            "referenceFlow": item.reference_flow,
            "measuredFlow": item.measured_flow,
            "deviation": item.deviation,
            "status": item.status.value,
            "color": item.color,
            "timestamp": item.timestamp,
        }

    @staticmethod
    def history_item_from_dict(data: Dict[str, Any]) -> QuickCalcHistoryItem:
        try:
            status = CalcStatus(data.get("status"))
        except ValueError:
            status = CalcStatus.NON_COMPLIANT
        return QuickCalcHistoryItem(
            id=str(data["id"]),
            reference_flow=_number(data.get("referenceFlow")),
            measured_flow=_number(data.get("measuredFlow")),
            deviation=_number(data.get("deviation")),
            status=status,
            color=_text(data.get("color")),
            timestamp=coerce_datetime(data.get("timestamp")),
        )


def _has_id(data: Any) -> bool:
    return isinstance(data, dict) and data.get("id") not in (None, "")
