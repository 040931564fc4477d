# tests/test_app_initializer.py
"""
Tests pour l'assemblage du repository à partir des réglages.
"""

import asyncio
import os
import shutil
import tempfile
import unittest

from core.app_initializer import create_repository, create_store
from infrastructure.configuration import Platform, StorageSettings
from infrastructure.key_value_store import SqliteKeyValueStore


class TestCreateRepository(unittest.TestCase):

    def setUp(self):
        """Préparation des tests."""
        self.temp_dir = tempfile.mkdtemp()
        self.settings = StorageSettings(data_dir=self.temp_dir, key_prefix="TEST")

    def tearDown(self):
        """Nettoyage après tests."""
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_store_is_sqlite_on_every_platform(self):
        self.assertIsInstance(create_store(self.settings), SqliteKeyValueStore)
        web = StorageSettings(platform=Platform.WEB, data_dir=self.temp_dir)
        self.assertIsInstance(create_store(web), SqliteKeyValueStore)

    def test_web_repository_survives_reopen(self):
        web = StorageSettings(platform=Platform.WEB, data_dir=self.temp_dir, key_prefix="TEST")

        async def scenario():
            repo = await create_repository(web)
            await repo.create_project("Site")
            await repo.close()

            reopened = await create_repository(web)
            names = [p.name for p in reopened.get_projects()]
            await reopened.close()
            return names

        self.assertEqual(asyncio.run(scenario()), ["Site"])

    def test_mobile_repository_persists_in_sqlite(self):
        async def scenario():
            repo = await create_repository(self.settings)
            project = await repo.create_project("Site")
            await repo.close()

            reopened = await create_repository(self.settings)
            keys = await reopened.store.get_all_keys()
            return project, reopened.get_project(project.id), keys

        project, reloaded, keys = asyncio.run(scenario())

        self.assertEqual(reloaded, project)
        self.assertEqual(keys, ["TEST_PROJECTS"])
        self.assertTrue(os.path.exists(self.settings.db_path))

    def test_value_ceiling_comes_from_settings(self):
        settings = StorageSettings(data_dir=self.temp_dir, max_value_bytes=1234)
        self.assertEqual(create_store(settings).max_value_bytes, 1234)


if __name__ == '__main__':
    unittest.main()
