import sys
import os
from typing import Optional

from core.repository import DomainRepository
from infrastructure.blob_storage import BlobFileSystem
from infrastructure.configuration import ConfigurationService, Platform, StorageSettings
from infrastructure.image_storage import ImageStore
from infrastructure.key_value_store import KeyValueStore, SqliteKeyValueStore
from infrastructure.logging_service import enable_logging


def initialize_app(log_dir: Optional[str] = None):
    """Initialise les composants communs de l'application (logging, paths, etc.)"""
    # Ajoute le répertoire courant au path pour les imports
    app_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    if app_root not in sys.path:
        sys.path.insert(0, app_root)

    # Active les logs
    enable_logging(log_dir)


def create_store(settings: StorageSettings) -> KeyValueStore:
    """SQLite on every platform; the platform only decides where images live."""
    return SqliteKeyValueStore(settings.db_path, max_value_bytes=settings.max_value_bytes)


async def create_repository(settings: Optional[StorageSettings] = None) -> DomainRepository:
    """Build and load a repository from the settings (or the saved configuration)."""
    if settings is None:
        settings = ConfigurationService.get_instance().get_settings()

    file_system = BlobFileSystem(settings.data_dir) if settings.platform == Platform.MOBILE else None
    image_store = ImageStore(file_system, settings.platform, settings.images_dir_name)
    repository = DomainRepository(create_store(settings), image_store, settings)
    return await repository.initialize()
