"""Configuration loading utilities for the exam media service."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple


LOGGER = logging.getLogger(__name__)

CONFIG_ENV_VAR = "EXAM_MEDIA_CONFIG"


class ConfigError(RuntimeError):
    """Raised when the configuration cannot describe a usable search layout."""


@dataclass(frozen=True)
class CategorySpec:
    """One exam category and the folder conventions its audio lives under."""

    tag: str
    folder: str
    public_prefix: str
    aliases: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()

    @property
    def folder_names(self) -> Tuple[str, ...]:
        """Native folder followed by the historical aliases."""

        return (self.folder, *self.aliases)

    def matches(self, label: str) -> bool:
        lowered = label.strip().lower()
        if not lowered:
            return False
        if lowered == self.tag.lower():
            return True
        return any(keyword.lower() in lowered for keyword in self.keywords if keyword)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "CategorySpec":
        tag = str(mapping["tag"]).strip()
        folder = str(mapping["folder"]).strip()
        if not tag or not folder:
            raise ConfigError("Category entries require non-empty 'tag' and 'folder'")
        prefix = str(mapping.get("public_prefix") or f"/{folder}").strip()
        if not prefix.startswith("/"):
            prefix = f"/{prefix}"
        return cls(
            tag=tag,
            folder=folder,
            public_prefix=prefix.rstrip("/") or f"/{folder}",
            aliases=tuple(str(alias) for alias in mapping.get("aliases", ()) if alias),
            keywords=tuple(str(keyword) for keyword in mapping.get("keywords", ()) if keyword),
        )


def _resolve_against(base_path: Path, value: str | os.PathLike[str]) -> Path:
    candidate = Path(value).expanduser()
    if not candidate.is_absolute():
        candidate = base_path / candidate
    return candidate.resolve()


def _unique_paths(paths: Iterable[Path]) -> Tuple[Path, ...]:
    seen = set()
    ordered = []
    for path in paths:
        if path in seen:
            continue
        seen.add(path)
        ordered.append(path)
    return tuple(ordered)


@dataclass(frozen=True)
class AppConfig:
    """Runtime description of where exam media and datasets live."""

    media_base_dirs: Tuple[Path, ...]
    dataset_root: Path
    categories: Tuple[CategorySpec, ...]
    default_category: str
    audio_extension: str = ".mp3"
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def category(self, tag: str) -> CategorySpec:
        for spec in self.categories:
            if spec.tag == tag:
                return spec
        raise ConfigError(f"Unknown category '{tag}'")

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], *, base_path: Path) -> "AppConfig":
        base_path = base_path.resolve()
        media_dirname = str(mapping.get("media_dirname") or "").strip()

        bases = []
        for entry in mapping.get("media_base_dirs", ["."]):
            directory = _resolve_against(base_path, entry)
            bases.append(directory / media_dirname if media_dirname else directory)
        if mapping.get("search_cwd", True):
            cwd = Path.cwd().resolve()
            bases.append(cwd / media_dirname if media_dirname else cwd)

        categories = tuple(
            CategorySpec.from_mapping(entry) for entry in mapping.get("categories", [])
        )
        if not categories:
            raise ConfigError("At least one category must be configured")

        default_category = str(mapping.get("default_category") or categories[-1].tag)
        if default_category not in {spec.tag for spec in categories}:
            raise ConfigError(
                f"Default category '{default_category}' is not among the configured categories"
            )

        extension = str(mapping.get("audio_extension") or ".mp3")
        if not extension.startswith("."):
            extension = f".{extension}"

        log_file = mapping.get("log_file")
        return cls(
            media_base_dirs=_unique_paths(bases),
            dataset_root=_resolve_against(base_path, mapping.get("dataset_root", "listening-data")),
            categories=categories,
            default_category=default_category,
            audio_extension=extension,
            log_level=str(mapping.get("log_level") or "INFO").upper(),
            log_file=_resolve_against(base_path, log_file) if log_file else None,
        )


def default_config_path() -> Path:
    base_path = Path(__file__).resolve().parent.parent
    return base_path / "config" / "default.json"


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the configuration from ``config/default.json`` by default.

    ``EXAM_MEDIA_CONFIG`` overrides the default location. Relative directories
    inside the file are resolved against the directory holding the ``config``
    folder.
    """

    if config_path is None:
        override = os.environ.get(CONFIG_ENV_VAR, "").strip()
        config_path = Path(override) if override else default_config_path()
    config_path = config_path.resolve()

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    base_path = config_path.parent.parent
    LOGGER.debug("Loaded configuration from %s (base path %s)", config_path, base_path)
    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = ["AppConfig", "CategorySpec", "ConfigError", "CONFIG_ENV_VAR", "load_config"]
