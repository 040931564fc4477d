# tests/test_persistence.py
"""
Tests pour la (dé)sérialisation JSON des collections.
"""

import json
import unittest
from datetime import datetime, timezone

from domain.calculator import CalcStatus
from domain.history import QuickCalcHistoryItem
from domain.project import Building, FunctionalZone, Project, Shutter, ShutterType
from infrastructure.persistence import (PersistenceService, coerce_datetime, format_datetime,
                                        parse_datetime)

STAMP = datetime(2025, 6, 1, 8, 30, 0, 250000, tzinfo=timezone.utc)


def make_project():
    shutter = Shutter(id="s1", zone_id="z1", name="VH-01", type=ShutterType.LOW,
                      reference_flow=1200.0, measured_flow=1150.5, remarks="Grille encrassée",
                      created_at=STAMP, updated_at=STAMP)
    zone = FunctionalZone(id="z1", building_id="b1", name="Hall", created_at=STAMP, shutters=[shutter])
    building = Building(id="b1", project_id="p1", name="Bâtiment A", created_at=STAMP, functional_zones=[zone])
    return Project(id="p1", name="Hôpital Sud", city="Lyon", start_date=STAMP,
                   created_at=STAMP, updated_at=STAMP, buildings=[building])


class TestDates(unittest.TestCase):

    def test_format_is_utc_milliseconds_with_z(self):
        self.assertEqual(format_datetime(STAMP), "2025-06-01T08:30:00.250Z")

    def test_naive_dates_are_treated_as_utc(self):
        self.assertEqual(format_datetime(datetime(2025, 6, 1, 8, 30)), "2025-06-01T08:30:00.000Z")

    def test_parse(self):
        self.assertEqual(parse_datetime("2025-06-01T08:30:00.250Z"), STAMP)
        self.assertEqual(parse_datetime(1748766600250), STAMP)
        self.assertIsNone(parse_datetime("hier"))
        self.assertIsNone(parse_datetime(None))
        self.assertIsNone(parse_datetime(True))
        self.assertIsNone(parse_datetime(""))

    def test_coerce_defaults_to_now(self):
        before = datetime.now(timezone.utc).replace(microsecond=0)
        self.assertGreaterEqual(coerce_datetime("garbage"), before)
        self.assertEqual(coerce_datetime("2025-06-01T08:30:00.250Z"), STAMP)


class TestProjectSerialization(unittest.TestCase):

    def test_round_trip(self):
        project = make_project()
        document = PersistenceService.dumps(PersistenceService.project_to_dict(project))

        restored = PersistenceService.project_from_dict(json.loads(document))
        self.assertEqual(restored, project)

    def test_stored_format(self):
        data = json.loads(PersistenceService.dumps(PersistenceService.project_to_dict(make_project())))

        self.assertEqual(data["startDate"], "2025-06-01T08:30:00.250Z")
        self.assertIsNone(data["endDate"])
        shutter = data["buildings"][0]["functionalZones"][0]["shutters"][0]
        self.assertEqual(shutter["type"], "low")
        self.assertEqual(shutter["zoneId"], "z1")
        self.assertEqual(shutter["referenceFlow"], 1200.0)

    def test_non_ascii_kept(self):
        document = PersistenceService.dumps(PersistenceService.project_to_dict(make_project()))
        self.assertIn("Hôpital", document)

    def test_back_references_come_from_parents(self):
        data = json.loads(PersistenceService.dumps(PersistenceService.project_to_dict(make_project())))
        data["buildings"][0]["projectId"] = "wrong"
        data["buildings"][0]["functionalZones"][0]["shutters"][0]["zoneId"] = "wrong"

        restored = PersistenceService.project_from_dict(data)
        self.assertEqual(restored.buildings[0].project_id, "p1")
        self.assertEqual(restored.buildings[0].functional_zones[0].shutters[0].zone_id, "z1")

    def test_lenient_loading(self):
        restored = PersistenceService.project_from_dict({
            "id": 7,
            "name": "Ancien format",
            "endDate": "pas une date",
            "buildings": [
                {"id": "b1", "functionalZones": [
                    {"id": "z1", "shutters": [
                        {"id": "s1", "type": "diagonal", "referenceFlow": "900", "measuredFlow": None},
                        {"name": "sans id"},
                    ]},
                ]},
                "garbage",
            ],
        })

        self.assertEqual(restored.id, "7")
        self.assertIsNone(restored.end_date)
        self.assertEqual(len(restored.buildings), 1)
        shutters = restored.buildings[0].functional_zones[0].shutters
        self.assertEqual(len(shutters), 1)
        self.assertEqual(shutters[0].type, ShutterType.HIGH)
        self.assertEqual(shutters[0].reference_flow, 900.0)
        self.assertEqual(shutters[0].measured_flow, 0.0)


class TestHistorySerialization(unittest.TestCase):

    def test_round_trip_and_unknown_status(self):
        item = QuickCalcHistoryItem(id="h1", reference_flow=100.0, measured_flow=115.0, deviation=15.0,
                                    status=CalcStatus.ACCEPTABLE, color="#F59E0B", timestamp=STAMP)
        data = json.loads(PersistenceService.dumps(PersistenceService.history_item_to_dict(item)))
        self.assertEqual(PersistenceService.history_item_from_dict(data), item)

        data["status"] = "unknown"
        self.assertEqual(PersistenceService.history_item_from_dict(data).status, CalcStatus.NON_COMPLIANT)


if __name__ == '__main__':
    unittest.main()
