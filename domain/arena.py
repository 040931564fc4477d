# domain/arena.py
"""
Flat, copy-on-write view of the project tree.

Entities are kept in one map per kind, keyed by id, with their children
lists emptied; ordering lives in separate parent -> child id tuples. Every
mutator returns a new arena and leaves the current one untouched, so a
shutter update is a single map replace instead of a rebuild of the whole
project -> building -> zone -> shutter chain. The nested tree is rebuilt
on demand for persistence and for callers.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .project import Building, FunctionalZone, Project, Shutter


@dataclass
class RemovedIds:
    """Ids removed by a delete, descendants included."""
    projects: Set[str] = field(default_factory=set)
    buildings: Set[str] = field(default_factory=set)
    zones: Set[str] = field(default_factory=set)
    shutters: Set[str] = field(default_factory=set)

    def __bool__(self):
        return bool(self.projects or self.buildings or self.zones or self.shutters)


@dataclass(frozen=True)
class EntityArena:
    projects: Dict[str, Project] = field(default_factory=dict)
    buildings: Dict[str, Building] = field(default_factory=dict)
    zones: Dict[str, FunctionalZone] = field(default_factory=dict)
    shutters: Dict[str, Shutter] = field(default_factory=dict)
    project_order: Tuple[str, ...] = ()
    building_ids: Dict[str, Tuple[str, ...]] = field(default_factory=dict)  # project id -> ids
    zone_ids: Dict[str, Tuple[str, ...]] = field(default_factory=dict)      # building id -> ids
    shutter_ids: Dict[str, Tuple[str, ...]] = field(default_factory=dict)   # zone id -> ids

    # ------------------------------------------------------------------ #
    #  Conversion
    # ------------------------------------------------------------------ #

    @classmethod
    def from_projects(cls, trees: Iterable[Project]) -> 'EntityArena':
        """Flatten a list of project trees. Duplicate ids keep the first occurrence."""
        # Built in place once, the arena is only shared after construction
        projects, buildings, zones, shutters = {}, {}, {}, {}
        building_ids, zone_ids, shutter_ids = {}, {}, {}
        order = []
        for project in trees:
            if project.id in projects:
                continue
            projects[project.id] = replace(project, buildings=[])
            order.append(project.id)
            b_ids = []
            for building in project.buildings:
                if building.id in buildings:
                    continue
                buildings[building.id] = replace(building, project_id=project.id, functional_zones=[])
                b_ids.append(building.id)
                z_ids = []
                for zone in building.functional_zones:
                    if zone.id in zones:
                        continue
                    zones[zone.id] = replace(zone, building_id=building.id, shutters=[])
                    z_ids.append(zone.id)
                    s_ids = []
                    for shutter in zone.shutters:
                        if shutter.id in shutters:
                            continue
                        shutters[shutter.id] = replace(shutter, zone_id=zone.id)
                        s_ids.append(shutter.id)
                    shutter_ids[zone.id] = tuple(s_ids)
                zone_ids[building.id] = tuple(z_ids)
            building_ids[project.id] = tuple(b_ids)

        return cls(projects=projects, buildings=buildings, zones=zones, shutters=shutters,
                   project_order=tuple(order), building_ids=building_ids,
                   zone_ids=zone_ids, shutter_ids=shutter_ids)

    def to_projects(self) -> List[Project]:
        return [self.project_tree(pid) for pid in self.project_order]

    def project_tree(self, project_id: str) -> Optional[Project]:
        project = self.projects.get(project_id)
        if project is None:
            return None
        buildings = [self.building_tree(bid) for bid in self.building_ids.get(project_id, ())]
        return replace(project, buildings=buildings)

    def building_tree(self, building_id: str) -> Optional[Building]:
        building = self.buildings.get(building_id)
        if building is None:
            return None
        zones = [self.zone_tree(zid) for zid in self.zone_ids.get(building_id, ())]
        return replace(building, functional_zones=zones)

    def zone_tree(self, zone_id: str) -> Optional[FunctionalZone]:
        zone = self.zones.get(zone_id)
        if zone is None:
            return None
        shutters = [self.shutters[sid] for sid in self.shutter_ids.get(zone_id, ())]
        return replace(zone, shutters=shutters)

    # ------------------------------------------------------------------ #
    #  Lookups
    # ------------------------------------------------------------------ #

    def project_id_of_building(self, building_id: str) -> Optional[str]:
        building = self.buildings.get(building_id)
        return building.project_id if building else None

    def project_id_of_zone(self, zone_id: str) -> Optional[str]:
        zone = self.zones.get(zone_id)
        return self.project_id_of_building(zone.building_id) if zone else None

    def project_id_of_shutter(self, shutter_id: str) -> Optional[str]:
        shutter = self.shutters.get(shutter_id)
        return self.project_id_of_zone(shutter.zone_id) if shutter else None

    def total_shutters(self) -> int:
        return len(self.shutters)

    # ------------------------------------------------------------------ #
    #  Copy-on-write mutators
    # ------------------------------------------------------------------ #

    def put_project(self, project: Project) -> 'EntityArena':
        order = self.project_order
        if project.id not in self.projects:
            order = order + (project.id,)
        return replace(self,
                       projects={**self.projects, project.id: replace(project, buildings=[])},
                       project_order=order)

    def put_building(self, building: Building) -> 'EntityArena':
        """Insert or replace a building. Its project must exist."""
        if building.project_id not in self.projects:
            raise KeyError(f"Unknown project {building.project_id}")
        building_ids = self.building_ids
        if building.id not in self.buildings:
            siblings = building_ids.get(building.project_id, ())
            building_ids = {**building_ids, building.project_id: siblings + (building.id,)}
        return replace(self,
                       buildings={**self.buildings, building.id: replace(building, functional_zones=[])},
                       building_ids=building_ids)

    def put_zone(self, zone: FunctionalZone) -> 'EntityArena':
        """Insert or replace a zone. Its building must exist."""
        if zone.building_id not in self.buildings:
            raise KeyError(f"Unknown building {zone.building_id}")
        zone_ids = self.zone_ids
        if zone.id not in self.zones:
            siblings = zone_ids.get(zone.building_id, ())
            zone_ids = {**zone_ids, zone.building_id: siblings + (zone.id,)}
        return replace(self,
                       zones={**self.zones, zone.id: replace(zone, shutters=[])},
                       zone_ids=zone_ids)

    def put_shutter(self, shutter: Shutter) -> 'EntityArena':
        """Insert or replace a shutter. Its zone must exist."""
        if shutter.zone_id not in self.zones:
            raise KeyError(f"Unknown zone {shutter.zone_id}")
        shutter_ids = self.shutter_ids
        if shutter.id not in self.shutters:
            siblings = shutter_ids.get(shutter.zone_id, ())
            shutter_ids = {**shutter_ids, shutter.zone_id: siblings + (shutter.id,)}
        return replace(self,
                       shutters={**self.shutters, shutter.id: shutter},
                       shutter_ids=shutter_ids)

    def add_tree(self, project: Project) -> 'EntityArena':
        """Insert a whole project tree whose ids are all new."""
        part = EntityArena.from_projects([project])
        return EntityArena(
            projects={**self.projects, **part.projects},
            buildings={**self.buildings, **part.buildings},
            zones={**self.zones, **part.zones},
            shutters={**self.shutters, **part.shutters},
            project_order=self.project_order + tuple(p for p in part.project_order if p not in self.projects),
            building_ids={**self.building_ids, **part.building_ids},
            zone_ids={**self.zone_ids, **part.zone_ids},
            shutter_ids={**self.shutter_ids, **part.shutter_ids},
        )

    def touch_projects(self, project_ids: Iterable[str], now: datetime) -> 'EntityArena':
        """Bump updated_at of the given projects."""
        projects = dict(self.projects)
        for pid in project_ids:
            if pid in projects:
                projects[pid] = replace(projects[pid], updated_at=now)
        return replace(self, projects=projects)

    def remove(self, project_ids: Iterable[str] = (), building_ids: Iterable[str] = (),
               zone_ids: Iterable[str] = (), shutter_ids: Iterable[str] = ()) -> Tuple['EntityArena', RemovedIds]:
        """
        Remove entities and all their descendants in one step.

        Unknown ids are ignored. Returns the new arena and what was removed.
        """
        removed = RemovedIds()
        removed.projects = {i for i in project_ids if i in self.projects}

        removed.buildings = {i for i in building_ids if i in self.buildings}
        for pid in removed.projects:
            removed.buildings.update(self.building_ids.get(pid, ()))

        removed.zones = {i for i in zone_ids if i in self.zones}
        for bid in removed.buildings:
            removed.zones.update(self.zone_ids.get(bid, ()))

        removed.shutters = {i for i in shutter_ids if i in self.shutters}
        for zid in removed.zones:
            removed.shutters.update(self.shutter_ids.get(zid, ()))

        if not removed:
            return self, removed

        def prune(children: Dict[str, Tuple[str, ...]], gone_parents: Set[str], gone: Set[str]):
            return {
                parent: tuple(c for c in ids if c not in gone)
                for parent, ids in children.items()
                if parent not in gone_parents
            }

        arena = EntityArena(
            projects={k: v for k, v in self.projects.items() if k not in removed.projects},
            buildings={k: v for k, v in self.buildings.items() if k not in removed.buildings},
            zones={k: v for k, v in self.zones.items() if k not in removed.zones},
            shutters={k: v for k, v in self.shutters.items() if k not in removed.shutters},
            project_order=tuple(p for p in self.project_order if p not in removed.projects),
            building_ids=prune(self.building_ids, removed.projects, removed.buildings),
            zone_ids=prune(self.zone_ids, removed.buildings, removed.zones),
            shutter_ids=prune(self.shutter_ids, removed.zones, removed.shutters),
        )
        return arena, removed
