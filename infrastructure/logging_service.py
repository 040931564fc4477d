"""
Journalisation par module pour la couche de stockage.

Chaque module (collection_store, image_storage, write_coordinator...) écrit
ses traces dans son propre fichier sous le dossier de logs. Seuls les
avertissements et les erreurs remontent vers le logger racine "VoletStore",
qui les affiche sur la console.

    logger = get_module_logger("CollectionStore", "collection_store.log")
    logger.detail("chunk 3 written")    # fichier du module, niveau DETAIL
    logger.warning("Chunk 3 missing")   # fichier du module + console

Les tests coupent tout avec disable_all_logging(), ou VOLETSTORE_DISABLE_LOGS=1.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

ROOT_LOGGER_NAME = "VoletStore"

# Plus bavard que DEBUG: une ligne par chunk ou par image
DETAIL = 5
logging.addLevelName(DETAIL, "DETAIL")

_FILE_FORMAT = logging.Formatter("%(asctime)s [%(levelname)s]: %(message)s", datefmt="%H:%M:%S")
_CONSOLE_FORMAT = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%H:%M:%S")

_state = {
    "log_dir": os.environ.get("VOLETSTORE_LOG_DIR", "logs"),
    "disabled": os.environ.get("VOLETSTORE_DISABLE_LOGS", "") == "1",
}

_module_loggers: Dict[str, "ModuleFileLogger"] = {}


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _state["disabled"]:
        root.setLevel(logging.CRITICAL + 1)
        return root
    root.setLevel(DETAIL)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(_CONSOLE_FORMAT)
        console.setLevel(logging.WARNING)
        root.addHandler(console)
    return root


class ModuleFileLogger:
    """Fichier dédié par module, avec remontée des warnings vers le logger racine."""

    def __init__(self, module_name: str, detail_filename: str):
        self.module_name = module_name
        # Pas de sous-dossiers, le fichier va toujours dans le dossier de logs
        self.detail_filename = Path(detail_filename).name
        self.file_logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}.file")
        self.file_logger.propagate = False
        self.main_logger = _root_logger()
        self._configure()

    def _configure(self):
        """(Re)branche le FileHandler selon l'état global courant."""
        self.close()
        if _state["disabled"]:
            self.file_logger.setLevel(logging.CRITICAL + 1)
            self.file_logger.addHandler(logging.NullHandler())
            return

        log_dir = Path(_state["log_dir"])
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(log_dir / self.detail_filename), mode="a", encoding="utf-8")
        handler.setFormatter(_FILE_FORMAT)
        handler.setLevel(DETAIL)
        self.file_logger.setLevel(DETAIL)
        self.file_logger.addHandler(handler)

    @property
    def log_path(self) -> Optional[Path]:
        for handler in self.file_logger.handlers:
            if isinstance(handler, logging.FileHandler):
                return Path(handler.baseFilename)
        return None

    def detail(self, message: str):
        self.file_logger.log(DETAIL, message)

    def debug(self, message: str):
        self.file_logger.debug(message)

    def info(self, message: str):
        self.file_logger.info(message)

    def _escalate(self, level: int, message: str, exc_info: bool):
        self.file_logger.log(level, message, exc_info=exc_info)
        self.main_logger.log(level, f"[{self.module_name}] {message}", exc_info=exc_info)

    def warning(self, message: str):
        self._escalate(logging.WARNING, message, False)

    def error(self, message: str, exc_info: bool = False):
        self._escalate(logging.ERROR, message, exc_info)

    def close(self):
        for handler in list(self.file_logger.handlers):
            handler.close()
            self.file_logger.removeHandler(handler)


def get_module_logger(module_name: str, detail_filename: str) -> ModuleFileLogger:
    """Un seul logger par couple module/fichier."""
    key = f"{module_name}:{detail_filename}"
    logger = _module_loggers.get(key)
    if logger is None:
        logger = _module_loggers[key] = ModuleFileLogger(module_name, detail_filename)
    return logger


def close_all_module_loggers():
    for logger in _module_loggers.values():
        logger.close()
    _module_loggers.clear()


def _reconfigure_all():
    _root_logger()
    for logger in _module_loggers.values():
        logger._configure()


def disable_all_logging():
    """
    Coupe console et fichiers, y compris pour les loggers déjà créés.

    Utilisé par les tests et par les applications hôtes qui gèrent leurs propres logs.
    """
    _state["disabled"] = True
    _reconfigure_all()


def enable_logging(log_dir: Optional[str] = None):
    """Réactive les logs, éventuellement vers un autre dossier."""
    _state["disabled"] = False
    if log_dir:
        _state["log_dir"] = log_dir
    _reconfigure_all()


def is_logging_disabled() -> bool:
    return _state["disabled"]
