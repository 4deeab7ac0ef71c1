"""Startup checks for the media library and the fragment dataset."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


def _directory_exists(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError as error:
        LOGGER.warning("Could not inspect %s: %s", path, error)
        return False


class Bootstrapper:
    """Inspect the configured directories and report what is reachable.

    Nothing here is fatal: a missing media directory only means the resolver
    will report every paper as not found.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> Dict[str, Any]:
        LOGGER.debug("Starting bootstrap sequence")
        media = self._check_media_dirs()
        dataset_present = self._check_dataset_root()
        LOGGER.info(
            "Bootstrap completed: %s/%s media base(s) present, dataset root %s",
            sum(1 for entry in media if entry["exists"]),
            len(media),
            "present" if dataset_present else "missing",
        )
        return {"media_base_dirs": media, "dataset_root_exists": dataset_present}

    def _check_media_dirs(self) -> List[Dict[str, Any]]:
        report: List[Dict[str, Any]] = []
        for base in self._config.media_base_dirs:
            exists = _directory_exists(base)
            if exists:
                present = [
                    folder
                    for spec in self._config.categories
                    for folder in spec.folder_names
                    if _directory_exists(base / folder)
                ]
                LOGGER.debug("Media base %s provides folders: %s", base, ", ".join(present) or "<none>")
            else:
                LOGGER.debug("Media base %s does not exist", base)
            report.append({"path": str(base), "exists": exists})

        if not any(entry["exists"] for entry in report):
            LOGGER.warning(
                "None of the configured media directories exist: %s",
                ", ".join(entry["path"] for entry in report),
            )
        return report

    def _check_dataset_root(self) -> bool:
        root = self._config.dataset_root
        if _directory_exists(root):
            return True
        LOGGER.warning("Dataset root '%s' does not exist; no listening papers will be listed.", root)
        return False


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Load configuration and run the startup checks."""

    config = load_config(config_path=config_path)
    Bootstrapper(config).initialize()
    return config


__all__ = ["Bootstrapper", "initialize_app"]
