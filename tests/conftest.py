# tests/conftest.py
from infrastructure.logging_service import disable_all_logging

# Pas de dossier logs/ pendant les tests
disable_all_logging()
