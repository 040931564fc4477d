# core/repository.py
"""
Domain repository: in-memory projects tree, notes, favorites and quick calc
history, persisted through the durable collection stores.

Every mutation is queued on the WriteCoordinator. The new snapshot is
computed inside the queued task, from the latest committed state, then
written; the in-memory state is swapped only once the write succeeded.
"""

import json
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from domain.arena import EntityArena, RemovedIds
from domain.calculator import FlowCalculator
from domain.favorites import FavoriteKind, Favorites
from domain.history import QuickCalcHistoryItem
from domain.note import Note
from domain.project import (Building, FunctionalZone, Project, SearchResult, Shutter,
                            ShutterType, utc_now)
from infrastructure.chunking import encoded_length
from infrastructure.collection_store import DurableCollectionStore
from infrastructure.configuration import StorageSettings
from infrastructure.errors import StorageError
from infrastructure.image_storage import ImageStore, is_external
from infrastructure.key_value_store import KeyValueStore
from infrastructure.logging_service import get_module_logger
from infrastructure.persistence import PersistenceService
from infrastructure.write_coordinator import WriteCoordinator

logger = get_module_logger("Repository", "repository.log")

_PROJECT_FIELDS = {"name", "city", "address", "start_date", "end_date"}
_BUILDING_FIELDS = {"name", "description"}
_ZONE_FIELDS = {"name", "description"}
_SHUTTER_FIELDS = {"name", "type", "reference_flow", "measured_flow", "remarks"}
_NOTE_FIELDS = {"title", "content", "description", "location", "tags", "images"}


@dataclass
class StorageInfo:
    projects_count: int
    total_shutters: int
    notes_count: int
    storage_size: str  # ex: "12.34 KB"


def generate_id() -> str:
    return str(uuid.uuid4())


def _checked_updates(updates: Dict[str, Any], allowed: Set[str], entity: str) -> Dict[str, Any]:
    unknown = set(updates) - allowed
    if unknown:
        raise TypeError(f"Unknown {entity} field(s): {', '.join(sorted(unknown))}")
    return updates


class DomainRepository:
    """Single owner of the persisted state. Create one per data set."""

    def __init__(self, store: KeyValueStore, image_store: ImageStore,
                 settings: Optional[StorageSettings] = None):
        self.settings = settings or StorageSettings()
        self.store = store
        self.image_store = image_store
        self.coordinator = WriteCoordinator()

        chunking = dict(chunk_threshold_bytes=self.settings.chunk_threshold_bytes,
                        chunk_size_bytes=self.settings.chunk_size_bytes)
        self.projects_store = DurableCollectionStore(
            store, self.settings.key("PROJECTS"),
            PersistenceService.project_to_dict, PersistenceService.project_from_dict, **chunking)
        self.notes_store = DurableCollectionStore(
            store, self.settings.key("NOTES"),
            PersistenceService.note_to_dict, PersistenceService.note_from_dict,
            sanitizer=self._sanitize_note, **chunking)
        self.history_store = DurableCollectionStore(
            store, self.settings.key("CALC_HISTORY"),
            PersistenceService.history_item_to_dict, PersistenceService.history_item_from_dict,
            **chunking)

        self._arena = EntityArena()
        self._notes: List[Note] = []
        self._favorites = Favorites()
        self._history: List[QuickCalcHistoryItem] = []
        self.initialized = False

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self) -> 'DomainRepository':
        """Load every collection (never fails) then clean orphan images."""
        logger.info("Loading data...")
        self._arena = EntityArena.from_projects(await self.projects_store.load())
        self._notes = await self.notes_store.load()
        self._history = (await self.history_store.load())[:self.settings.history_limit]
        self._favorites = await self._load_favorites()
        self.initialized = True
        logger.info(f"Loaded {len(self._arena.projects)} projects, {len(self._notes)} notes, "
                    f"{len(self._history)} history items")

        await self.cleanup_orphan_images()
        return self

    async def close(self):
        """Wait for queued writes then release the substrate."""
        await self.coordinator.drain()
        await self.store.close()

    async def _load_favorites(self) -> Favorites:
        favorites = Favorites()
        for kind in FavoriteKind:
            key = self.settings.key(kind.value)
            try:
                raw = await self.store.get(key)
                ids = json.loads(raw) if raw else []
            except Exception as e:
                logger.warning(f"Error loading favorites {key}: {e}")
                ids = []
            if not isinstance(ids, list):
                ids = []
            favorites = favorites.with_ids(kind, [str(i) for i in ids if isinstance(i, (str, int))])
        return favorites

    # ------------------------------------------------------------------ #
    #  Read access
    # ------------------------------------------------------------------ #

    def get_projects(self) -> List[Project]:
        return self._arena.to_projects()

    def get_project(self, project_id: str) -> Optional[Project]:
        return self._arena.project_tree(project_id)

    def get_building(self, building_id: str) -> Optional[Building]:
        return self._arena.building_tree(building_id)

    def get_zone(self, zone_id: str) -> Optional[FunctionalZone]:
        return self._arena.zone_tree(zone_id)

    def get_shutter(self, shutter_id: str) -> Optional[Shutter]:
        return self._arena.shutters.get(shutter_id)

    @property
    def notes(self) -> List[Note]:
        return list(self._notes)

    def get_note(self, note_id: str) -> Optional[Note]:
        return next((n for n in self._notes if n.id == note_id), None)

    # ------------------------------------------------------------------ #
    #  Projects tree plumbing
    # ------------------------------------------------------------------ #

    async def _change_projects(self, name: str,
                               change: Callable[[EntityArena], Optional[Tuple[EntityArena, Set[str], Any]]]):
        """
        Queue a change of the projects tree.

        change(arena) returns None when its target is missing, otherwise
        (new_arena, project ids to touch, result). Raises StorageWriteError
        when the write fails.
        """
        async def task():
            outcome = change(self._arena)
            if outcome is None:
                return None
            arena, touched, result = outcome
            arena = arena.touch_projects(touched, utc_now())
            await self.projects_store.save(arena.to_projects())
            self._arena = arena
            return result

        return await self.coordinator.enqueue(task, name)

    # ------------------------------------------------------------------ #
    #  Projects
    # ------------------------------------------------------------------ #

    async def create_project(self, name: str, city: Optional[str] = None, address: Optional[str] = None,
                             start_date=None, end_date=None) -> Project:
        project = Project(id=generate_id(), name=name, city=city, address=address,
                          start_date=start_date, end_date=end_date)

        def change(arena: EntityArena):
            return arena.put_project(project), set(), project.id

        project_id = await self._change_projects("create_project", change)
        logger.info(f"Project created: {project_id}")
        return self.get_project(project_id)

    async def update_project(self, project_id: str, **updates) -> Optional[Project]:
        updates = _checked_updates(updates, _PROJECT_FIELDS, "project")

        def change(arena: EntityArena):
            project = arena.projects.get(project_id)
            if project is None:
                return None
            return arena.put_project(replace(project, **updates)), {project_id}, project_id

        if await self._change_projects("update_project", change) is None:
            logger.warning(f"Project not found: {project_id}")
            return None
        return self.get_project(project_id)

    async def delete_project(self, project_id: str) -> bool:
        return await self._delete("delete_project", project_ids=[project_id])

    async def delete_projects(self, project_ids: Iterable[str]) -> bool:
        return await self._delete_batch("delete_projects", project_ids=list(project_ids))

    # ------------------------------------------------------------------ #
    #  Buildings
    # ------------------------------------------------------------------ #

    async def create_building(self, project_id: str, name: str,
                              description: Optional[str] = None) -> Optional[Building]:
        building = Building(id=generate_id(), project_id=project_id, name=name, description=description)

        def change(arena: EntityArena):
            if project_id not in arena.projects:
                return None
            return arena.put_building(building), {project_id}, building.id

        if await self._change_projects("create_building", change) is None:
            logger.warning(f"Project not found: {project_id}")
            return None
        return self.get_building(building.id)

    async def update_building(self, building_id: str, **updates) -> Optional[Building]:
        updates = _checked_updates(updates, _BUILDING_FIELDS, "building")

        def change(arena: EntityArena):
            building = arena.buildings.get(building_id)
            if building is None:
                return None
            return arena.put_building(replace(building, **updates)), {building.project_id}, building_id

        if await self._change_projects("update_building", change) is None:
            logger.warning(f"Building not found: {building_id}")
            return None
        return self.get_building(building_id)

    async def delete_building(self, building_id: str) -> bool:
        return await self._delete("delete_building", building_ids=[building_id])

    async def delete_buildings(self, building_ids: Iterable[str]) -> bool:
        return await self._delete_batch("delete_buildings", building_ids=list(building_ids))

    # ------------------------------------------------------------------ #
    #  Functional zones
    # ------------------------------------------------------------------ #

    async def create_zone(self, building_id: str, name: str,
                          description: Optional[str] = None) -> Optional[FunctionalZone]:
        zone = FunctionalZone(id=generate_id(), building_id=building_id, name=name, description=description)

        def change(arena: EntityArena):
            project_id = arena.project_id_of_building(building_id)
            if project_id is None:
                return None
            return arena.put_zone(zone), {project_id}, zone.id

        if await self._change_projects("create_zone", change) is None:
            logger.warning(f"Building not found: {building_id}")
            return None
        return self.get_zone(zone.id)

    async def update_zone(self, zone_id: str, **updates) -> Optional[FunctionalZone]:
        updates = _checked_updates(updates, _ZONE_FIELDS, "zone")

        def change(arena: EntityArena):
            zone = arena.zones.get(zone_id)
            if zone is None:
                return None
            return arena.put_zone(replace(zone, **updates)), {arena.project_id_of_zone(zone_id)}, zone_id

        if await self._change_projects("update_zone", change) is None:
            logger.warning(f"Zone not found: {zone_id}")
            return None
        return self.get_zone(zone_id)

    async def delete_zone(self, zone_id: str) -> bool:
        return await self._delete("delete_zone", zone_ids=[zone_id])

    async def delete_zones(self, zone_ids: Iterable[str]) -> bool:
        return await self._delete_batch("delete_zones", zone_ids=list(zone_ids))

    # ------------------------------------------------------------------ #
    #  Shutters
    # ------------------------------------------------------------------ #

    async def create_shutter(self, zone_id: str, name: str, type: ShutterType = ShutterType.HIGH,
                             reference_flow: float = 0.0, measured_flow: float = 0.0,
                             remarks: Optional[str] = None) -> Optional[Shutter]:
        shutter = Shutter(id=generate_id(), zone_id=zone_id, name=name, type=type,
                          reference_flow=reference_flow, measured_flow=measured_flow, remarks=remarks)

        def change(arena: EntityArena):
            project_id = arena.project_id_of_zone(zone_id)
            if project_id is None:
                return None
            return arena.put_shutter(shutter), {project_id}, shutter.id

        if await self._change_projects("create_shutter", change) is None:
            logger.warning(f"Zone not found: {zone_id}")
            return None
        return self.get_shutter(shutter.id)

    async def update_shutter(self, shutter_id: str, **updates) -> Optional[Shutter]:
        updates = _checked_updates(updates, _SHUTTER_FIELDS, "shutter")

        def change(arena: EntityArena):
            shutter = arena.shutters.get(shutter_id)
            if shutter is None:
                return None
            updated = replace(shutter, **updates, updated_at=utc_now())
            return arena.put_shutter(updated), {arena.project_id_of_shutter(shutter_id)}, shutter_id

        if await self._change_projects("update_shutter", change) is None:
            logger.warning(f"Shutter not found: {shutter_id}")
            return None
        return self.get_shutter(shutter_id)

    async def delete_shutter(self, shutter_id: str) -> bool:
        return await self._delete("delete_shutter", shutter_ids=[shutter_id])

    async def delete_shutters(self, shutter_ids: Iterable[str]) -> bool:
        return await self._delete_batch("delete_shutters", shutter_ids=list(shutter_ids))

    # ------------------------------------------------------------------ #
    #  Deletion of tree entities
    # ------------------------------------------------------------------ #

    async def _delete(self, name: str, project_ids=(), building_ids=(), zone_ids=(), shutter_ids=()) -> bool:
        """
        Remove entities and their descendants in one write.

        Returns False when none of the ids exists. Favorites of every removed
        entity are dropped afterwards.
        """
        removed_ids: List[RemovedIds] = []

        def change(arena: EntityArena):
            new_arena, removed = arena.remove(project_ids, building_ids, zone_ids, shutter_ids)
            if not removed:
                return None
            # Les projets parents survivants sont touchés
            touched = set()
            for bid in removed.buildings:
                touched.add(arena.project_id_of_building(bid))
            for zid in removed.zones:
                touched.add(arena.project_id_of_zone(zid))
            for sid in removed.shutters:
                touched.add(arena.project_id_of_shutter(sid))
            removed_ids.append(removed)
            return new_arena, touched - removed.projects - {None}, True

        if await self._change_projects(name, change) is None:
            logger.warning(f"{name}: nothing to delete")
            return False

        removed = removed_ids[0]
        logger.info(f"{name}: removed {len(removed.projects)} projects, {len(removed.buildings)} buildings, "
                    f"{len(removed.zones)} zones, {len(removed.shutters)} shutters")
        await self._drop_favorites({
            FavoriteKind.PROJECTS: removed.projects,
            FavoriteKind.BUILDINGS: removed.buildings,
            FavoriteKind.ZONES: removed.zones,
            FavoriteKind.SHUTTERS: removed.shutters,
        })
        return True

    async def _delete_batch(self, name: str, **ids) -> bool:
        try:
            return await self._delete(name, **ids)
        except StorageError as e:
            logger.error(f"{name} failed: {e}")
            return False

    # ------------------------------------------------------------------ #
    #  Search
    # ------------------------------------------------------------------ #

    def search_shutters(self, query: str) -> List[SearchResult]:
        """Shutters whose fields contain every whitespace-separated token of query."""
        tokens = [t for t in query.lower().split() if t]
        if not tokens:
            return []

        arena = self._arena
        results = []
        for project_id in arena.project_order:
            project = arena.projects[project_id]
            for building_id in arena.building_ids.get(project_id, ()):
                building = arena.buildings[building_id]
                for zone_id in arena.zone_ids.get(building_id, ()):
                    zone = arena.zones[zone_id]
                    for shutter_id in arena.shutter_ids.get(zone_id, ()):
                        shutter = arena.shutters[shutter_id]
                        haystack = " ".join(filter(None, [
                            shutter.name, zone.name, building.name,
                            project.name, project.city, shutter.remarks,
                        ])).lower()
                        if all(token in haystack for token in tokens):
                            results.append(SearchResult(
                                shutter=shutter,
                                zone=arena.zone_tree(zone_id),
                                building=arena.building_tree(building_id),
                                project=arena.project_tree(project_id),
                            ))
        return results

    # ------------------------------------------------------------------ #
    #  Notes
    # ------------------------------------------------------------------ #

    async def _sanitize_note(self, note: Note) -> Note:
        if not note.images:
            return note
        images = await self.image_store.persist_images(note.images, keep_inline_on_failure=True)
        return replace(note, images=images or [])

    async def _change_notes(self, name: str, change: Callable[[List[Note]], Optional[Tuple[List[Note], Any]]]):
        """Queue a change of the notes list; blobs no longer referenced are removed after the write."""
        async def task():
            outcome = change(self._notes)
            if outcome is None:
                return None
            notes, result = outcome
            previous_images = {img for n in self._notes for img in n.images if is_external(img)}

            saved = await self.notes_store.save(notes)
            self._notes = saved

            still_referenced = {img for n in saved for img in n.images}
            freed = previous_images - still_referenced
            if freed:
                await self.image_store.remove_images(sorted(freed))
            return result

        return await self.coordinator.enqueue(task, name)

    async def create_note(self, title: str, content: str = "", description: Optional[str] = None,
                          location: Optional[str] = None, tags: Optional[str] = None,
                          images: Optional[List[str]] = None) -> Note:
        note = Note(id=generate_id(), title=title, content=content, description=description,
                    location=location, tags=tags, images=list(images or []))

        def change(notes: List[Note]):
            return notes + [note], note.id

        note_id = await self._change_notes("create_note", change)
        logger.info(f"Note created: {note_id}")
        return self.get_note(note_id)

    async def update_note(self, note_id: str, **updates) -> Optional[Note]:
        updates = _checked_updates(updates, _NOTE_FIELDS, "note")
        if "images" in updates:
            updates["images"] = list(updates["images"] or [])

        def change(notes: List[Note]):
            index = next((i for i, n in enumerate(notes) if n.id == note_id), None)
            if index is None:
                return None
            updated = replace(notes[index], **updates, updated_at=utc_now())
            return notes[:index] + [updated] + notes[index + 1:], note_id

        if await self._change_notes("update_note", change) is None:
            logger.warning(f"Note not found: {note_id}")
            return None
        return self.get_note(note_id)

    async def delete_note(self, note_id: str) -> bool:
        return await self._delete_notes("delete_note", [note_id])

    async def delete_notes(self, note_ids: Iterable[str]) -> bool:
        try:
            return await self._delete_notes("delete_notes", list(note_ids))
        except StorageError as e:
            logger.error(f"delete_notes failed: {e}")
            return False

    async def _delete_notes(self, name: str, note_ids: List[str]) -> bool:
        targets = set(note_ids)

        def change(notes: List[Note]):
            remaining = [n for n in notes if n.id not in targets]
            if len(remaining) == len(notes):
                return None
            return remaining, True

        if await self._change_notes(name, change) is None:
            logger.warning(f"{name}: no matching note")
            return False

        await self._drop_favorites({FavoriteKind.NOTES: targets})
        return True

    async def load_images_for_display(self, images: Optional[List[str]]) -> List[str]:
        return await self.image_store.load_images_for_display(images)

    async def cleanup_orphan_images(self) -> int:
        """Delete blobs no note references. Runs in the write queue."""
        async def task():
            referenced = [img for note in self._notes for img in note.images]
            return await self.image_store.cleanup_orphan_images(referenced)

        return await self.coordinator.enqueue(task, "cleanup_orphan_images")

    async def image_storage_report(self) -> Dict[str, int]:
        return await self.image_store.storage_report(img for note in self._notes for img in note.images)

    # ------------------------------------------------------------------ #
    #  Favorites
    # ------------------------------------------------------------------ #

    def get_favorites(self, kind: FavoriteKind) -> List[str]:
        return self._favorites.get(kind)

    def is_favorite(self, kind: FavoriteKind, item_id: str) -> bool:
        return item_id in self._favorites.get(kind)

    async def _write_favorites(self, name: str, compute: Callable[[Favorites], Favorites],
                               kinds: Iterable[FavoriteKind]) -> bool:
        kinds = list(kinds)

        async def task():
            favorites = compute(self._favorites)
            try:
                for kind in kinds:
                    await self.store.set(self.settings.key(kind.value), json.dumps(favorites.get(kind)))
            except Exception as e:
                logger.error(f"{name} failed: {e}")
                return False
            self._favorites = favorites
            return True

        return await self.coordinator.enqueue(task, name)

    async def set_favorites(self, kind: FavoriteKind, ids: Iterable[str]) -> bool:
        ids = list(ids)
        return await self._write_favorites("set_favorites", lambda f: f.with_ids(kind, ids), [kind])

    async def toggle_favorite(self, kind: FavoriteKind, item_id: str) -> bool:
        def compute(favorites: Favorites) -> Favorites:
            if item_id in favorites.get(kind):
                return favorites.without(kind, [item_id])
            return favorites.with_ids(kind, favorites.get(kind) + [item_id])

        return await self._write_favorites("toggle_favorite", compute, [kind])

    async def _drop_favorites(self, removed: Dict[FavoriteKind, Set[str]]):
        # Ne réécrire que les listes réellement concernées
        kinds = [kind for kind, ids in removed.items()
                 if ids and set(ids) & set(self._favorites.get(kind))]
        if not kinds:
            return

        def compute(favorites: Favorites) -> Favorites:
            for kind in kinds:
                favorites = favorites.without(kind, removed[kind])
            return favorites

        await self._write_favorites("drop_favorites", compute, kinds)

    # ------------------------------------------------------------------ #
    #  Quick calc history
    # ------------------------------------------------------------------ #

    def get_quick_calc_history(self) -> List[QuickCalcHistoryItem]:
        return list(self._history)

    async def _change_history(self, name: str,
                              compute: Callable[[List[QuickCalcHistoryItem]], List[QuickCalcHistoryItem]]) -> bool:
        async def task():
            history = compute(self._history)[:self.settings.history_limit]
            try:
                await self.history_store.save(history)
            except StorageError as e:
                logger.error(f"{name} failed: {e}")
                return False
            self._history = history
            return True

        return await self.coordinator.enqueue(task, name)

    async def add_quick_calc_history(self, reference_flow: float,
                                     measured_flow: float) -> Optional[QuickCalcHistoryItem]:
        """Evaluate a measurement and store it first in the history.

        Raises ValueError for an invalid measurement. Returns None when the
        history could not be written.
        """
        evaluation = FlowCalculator.evaluate(reference_flow, measured_flow)
        item = QuickCalcHistoryItem(
            id=generate_id(),
            reference_flow=evaluation.reference_flow,
            measured_flow=evaluation.measured_flow,
            deviation=evaluation.deviation,
            status=evaluation.status,
            color=evaluation.color,
        )
        if not await self._change_history("add_quick_calc_history", lambda h: [item] + h):
            return None
        return item

    async def remove_quick_calc_history_item(self, item_id: str) -> bool:
        if not any(i.id == item_id for i in self._history):
            logger.warning(f"History item not found: {item_id}")
            return False
        return await self._change_history("remove_quick_calc_history_item",
                                          lambda h: [i for i in h if i.id != item_id])

    async def clear_quick_calc_history(self) -> bool:
        return await self._change_history("clear_quick_calc_history", lambda h: [])

    # ------------------------------------------------------------------ #
    #  Import
    # ------------------------------------------------------------------ #

    @staticmethod
    def _rekey_project(project: Project) -> Project:
        """Copy of a project tree with fresh ids, timestamps and back-references."""
        now = utc_now()
        project_id = generate_id()
        buildings = []
        for building in project.buildings:
            building_id = generate_id()
            zones = []
            for zone in building.functional_zones:
                zone_id = generate_id()
                shutters = [replace(s, id=generate_id(), zone_id=zone_id, created_at=now, updated_at=now)
                            for s in zone.shutters]
                zones.append(replace(zone, id=zone_id, building_id=building_id, created_at=now,
                                     shutters=shutters))
            buildings.append(replace(building, id=building_id, project_id=project_id, created_at=now,
                                     functional_zones=zones))
        return replace(project, id=project_id, created_at=now, updated_at=now, buildings=buildings)

    async def import_project(self, project: Project, related_notes: Optional[List[Note]] = None) -> bool:
        """Add a copy of an exported project (and its notes) under new ids."""
        imported = self._rekey_project(project)
        now = utc_now()
        notes = [replace(n, id=generate_id(), images=list(n.images), created_at=now, updated_at=now)
                 for n in related_notes or []]

        try:
            await self._change_projects("import_project",
                                        lambda arena: (arena.add_tree(imported), set(), imported.id))
            if notes:
                await self._change_notes("import_notes", lambda current: (current + notes, True))
        except StorageError as e:
            logger.error(f"Import of project {project.name!r} failed: {e}")
            return False

        logger.info(f"Project imported: {imported.id} ({len(notes)} notes)")
        return True

    # ------------------------------------------------------------------ #
    #  Maintenance
    # ------------------------------------------------------------------ #

    async def clear_all_data(self) -> bool:
        """Remove every stored key and image blob, then reset the state."""
        async def task():
            try:
                keys = []
                for collection in (self.projects_store, self.notes_store, self.history_store):
                    keys.extend(await collection.keys())
                keys.extend(self.settings.key(kind.value) for kind in FavoriteKind)
                await self.store.multi_remove(keys)
            except Exception as e:
                logger.error(f"Error clearing data: {e}")
                return False

            removed = await self.image_store.cleanup_orphan_images([])
            self._arena = EntityArena()
            self._notes = []
            self._favorites = Favorites()
            self._history = []
            logger.info(f"All data cleared ({len(keys)} keys, {removed} image files)")
            return True

        return await self.coordinator.enqueue(task, "clear_all_data")

    def get_storage_info(self) -> StorageInfo:
        document = PersistenceService.dumps(
            [PersistenceService.project_to_dict(p) for p in self._arena.to_projects()])
        return StorageInfo(
            projects_count=len(self._arena.projects),
            total_shutters=self._arena.total_shutters(),
            notes_count=len(self._notes),
            storage_size=f"{encoded_length(document) / 1024:.2f} KB",
        )
