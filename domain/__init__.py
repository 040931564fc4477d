"""Domain models package.

Exports core domain classes for easier imports:
- `Project`, `Building`, `FunctionalZone`, `Shutter`, `ShutterType`, `Note`, `Favorites`, `FavoriteKind`,
  `QuickCalcHistoryItem`, `FlowCalculator`, `CalcStatus`, `EntityArena`
"""

from .arena import EntityArena
from .calculator import CalcStatus, FlowCalculator
from .favorites import FavoriteKind, Favorites
from .history import QuickCalcHistoryItem
from .note import Note
from .project import Building, FunctionalZone, Project, Shutter, ShutterType

__all__ = ["Project", "Building", "FunctionalZone", "Shutter", "ShutterType", "Note", "Favorites",
           "FavoriteKind", "QuickCalcHistoryItem", "FlowCalculator", "CalcStatus", "EntityArena"]
