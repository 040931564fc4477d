# domain/favorites.py
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List


class FavoriteKind(Enum):
    PROJECTS = "FAV_PROJECTS"
    BUILDINGS = "FAV_BUILDINGS"
    ZONES = "FAV_ZONES"
    SHUTTERS = "FAV_SHUTTERS"
    NOTES = "FAV_NOTES"


@dataclass(frozen=True)
class Favorites:
    """Five independent id lists, used only to flag items in the UI."""
    ids: Dict[FavoriteKind, List[str]] = field(
        default_factory=lambda: {kind: [] for kind in FavoriteKind})

    def get(self, kind: FavoriteKind) -> List[str]:
        return list(self.ids.get(kind, []))

    def with_ids(self, kind: FavoriteKind, ids: Iterable[str]) -> 'Favorites':
        new_ids = dict(self.ids)
        new_ids[kind] = list(dict.fromkeys(ids))
        return replace(self, ids=new_ids)

    def without(self, kind: FavoriteKind, removed: Iterable[str]) -> 'Favorites':
        removed = set(removed)
        return self.with_ids(kind, [i for i in self.get(kind) if i not in removed])
