"""Merge listening papers that are stored as several JSON fragments.

The dataset root holds one directory per year. Inside, each JSON file carries
a ``paper`` header and a ``questions`` list. Large papers are split into
batches (``paper9_1.json``, ``paper9_2.json``) that share a logical id once
the batch suffix is stripped.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..config import AppConfig
from .events import emit_file_event
from .naming import FRAGMENT_EXTENSION, derive_logical_id, matches_logical_id


LOGGER = logging.getLogger(__name__)

HEADER_KEY = "paper"
ITEMS_KEY = "questions"
OPTIONS_KEY = "options"
POSITION_KEY = "question_number"
SECTION_KEY = "section_type"
DEFAULT_SECTION_TYPE = "short"


@dataclass(frozen=True)
class Fragment:
    """One parsed fragment file."""

    path: Path
    year: int
    header: Dict[str, Any]
    items: Tuple[Dict[str, Any], ...]

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def logical_id(self) -> str:
        return derive_logical_id(self.path.name)

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass
class FragmentGroup:
    """Discovery summary of all fragments sharing a logical id."""

    logical_id: str
    year: int
    header: Dict[str, Any]
    item_count: int = 0
    files: List[str] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.files)

    def add(self, fragment: Fragment) -> None:
        self.item_count += fragment.item_count
        self.files.append(fragment.filename)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.header,
            "id": self.logical_id,
            "year": self.year,
            "item_count": self.item_count,
            "file_count": self.file_count,
            "files": list(self.files),
        }


@dataclass(frozen=True)
class AggregatedPaper:
    """A logical paper assembled from its fragments, items numbered 1..N."""

    logical_id: str
    year: int
    header: Dict[str, Any]
    items: Tuple[Dict[str, Any], ...]
    files: Tuple[str, ...]

    @property
    def item_count(self) -> int:
        return len(self.items)

    @property
    def file_count(self) -> int:
        return len(self.files)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "header": {
                **self.header,
                "year": self.year,
                "item_count": self.item_count,
                "file_count": self.file_count,
                "contributing_files": list(self.files),
            },
            "items": [dict(item) for item in self.items],
            "item_count": self.item_count,
        }


def _is_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError as error:
        LOGGER.warning("Skipping %s after stat error: %s", path, error)
        return False


def _is_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError as error:
        LOGGER.warning("Skipping %s after stat error: %s", path, error)
        emit_file_event(
            "Fragment skipped",
            payload={"path": path, "error": f"{error.__class__.__name__}: {error}"},
            level=logging.WARNING,
        )
        return False


def normalize_options(value: Any, *, source: str = "") -> Any:
    """Return *value* as structured options.

    Serialized JSON is decoded; a plain comma-joined string is split. Anything
    else that cannot be interpreted becomes an empty list.
    """

    if not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as error:
        if "," in text:
            return [part.strip() for part in text.split(",") if part.strip()]
        LOGGER.warning("Could not parse options in %s: %s", source or "<item>", error)
        return []
    if isinstance(parsed, (list, dict)):
        return parsed
    LOGGER.warning("Ignoring non-structured options in %s: %r", source or "<item>", parsed)
    return []


class FragmentAggregator:
    """Discover and merge fragment files below a dataset root."""

    def __init__(self, root_dir: Path) -> None:
        self._root = Path(root_dir)

    @classmethod
    def from_config(cls, config: AppConfig) -> "FragmentAggregator":
        return cls(config.dataset_root)

    @property
    def root(self) -> Path:
        return self._root

    def year_buckets(self) -> List[Tuple[int, Path]]:
        """Return ``(year, directory)`` pairs, newest first."""

        if not _is_dir(self._root):
            LOGGER.warning("Dataset root %s does not exist", self._root)
            return []
        buckets: List[Tuple[int, Path]] = []
        try:
            children = sorted(self._root.iterdir(), key=lambda item: item.name)
        except OSError as error:
            LOGGER.warning("Could not list dataset root %s: %s", self._root, error)
            return []
        for child in children:
            if not _is_dir(child):
                continue
            try:
                year = int(child.name)
            except ValueError:
                LOGGER.debug("Skipping non-year directory %s", child)
                continue
            buckets.append((year, child))
        buckets.sort(key=lambda bucket: bucket[0], reverse=True)
        return buckets

    def fragment_files(self, bucket: Path) -> List[Path]:
        try:
            entries = list(bucket.iterdir())
        except OSError as error:
            LOGGER.warning("Could not list year directory %s: %s", bucket, error)
            return []
        files = [
            entry
            for entry in entries
            if entry.name.lower().endswith(FRAGMENT_EXTENSION) and _is_file(entry)
        ]
        return sorted(files, key=lambda item: item.name)

    def load_fragment(self, path: Path, year: int) -> Optional[Fragment]:
        """Parse *path*; unreadable or malformed files yield ``None``."""

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as error:
            LOGGER.warning("Skipping unreadable fragment %s: %s", path, error)
            emit_file_event(
                "Fragment skipped",
                payload={"path": path, "error": f"{error.__class__.__name__}: {error}"},
                level=logging.WARNING,
            )
            return None

        if not isinstance(data, dict) or not isinstance(data.get(HEADER_KEY), dict):
            LOGGER.warning("Skipping fragment %s without a '%s' header", path, HEADER_KEY)
            return None

        raw_items = data.get(ITEMS_KEY)
        if raw_items is None:
            raw_items = []
        if not isinstance(raw_items, list):
            LOGGER.warning("Skipping fragment %s: '%s' is not a list", path, ITEMS_KEY)
            return None

        items = tuple(item for item in raw_items if isinstance(item, dict))
        if len(items) != len(raw_items):
            LOGGER.warning(
                "Dropped %s malformed item(s) from %s", len(raw_items) - len(items), path
            )
        return Fragment(path=path, year=year, header=dict(data[HEADER_KEY]), items=items)

    def list_logical_papers(self) -> List[FragmentGroup]:
        """Group every fragment by logical id, newest year bucket first."""

        groups: Dict[str, FragmentGroup] = {}
        for year, bucket in self.year_buckets():
            for path in self.fragment_files(bucket):
                fragment = self.load_fragment(path, year)
                if fragment is None:
                    continue
                logical_id = fragment.logical_id
                group = groups.get(logical_id)
                if group is None:
                    group = FragmentGroup(
                        logical_id=logical_id,
                        year=year,
                        header=dict(fragment.header),
                    )
                    groups[logical_id] = group
                elif group.year != year:
                    LOGGER.warning(
                        "Ignoring %s: paper '%s' was already found in year %s",
                        path,
                        logical_id,
                        group.year,
                    )
                    continue
                group.add(fragment)
        LOGGER.debug("Discovered %s logical paper(s) under %s", len(groups), self._root)
        return list(groups.values())

    def get_paper(self, logical_id: str) -> Optional[AggregatedPaper]:
        """Assemble *logical_id* from its fragments, or ``None`` when absent."""

        for year, bucket in self.year_buckets():
            matching = [
                path for path in self.fragment_files(bucket) if matches_logical_id(path.name, logical_id)
            ]
            if not matching:
                continue

            fragments = [
                fragment
                for fragment in (self.load_fragment(path, year) for path in matching)
                if fragment is not None
            ]
            if not fragments:
                LOGGER.warning(
                    "All %s fragment(s) of '%s' in %s failed to load", len(matching), logical_id, bucket
                )
                # Older buckets are still tried so this agrees with list_logical_papers.
                continue

            items: List[Dict[str, Any]] = []
            for fragment in fragments:
                for raw_item in fragment.items:
                    item = copy.deepcopy(raw_item)
                    if OPTIONS_KEY in item:
                        item[OPTIONS_KEY] = normalize_options(
                            item[OPTIONS_KEY], source=fragment.filename
                        )
                    items.append(item)
                LOGGER.debug("Loaded %s item(s) from %s", fragment.item_count, fragment.path)

            for index, item in enumerate(items, start=1):
                item[POSITION_KEY] = index
                if not item.get(SECTION_KEY):
                    item[SECTION_KEY] = DEFAULT_SECTION_TYPE

            LOGGER.info(
                "Assembled paper '%s' with %s item(s) from %s file(s)",
                logical_id,
                len(items),
                len(fragments),
            )
            return AggregatedPaper(
                logical_id=logical_id,
                year=year,
                header=dict(fragments[0].header),
                items=tuple(items),
                files=tuple(fragment.filename for fragment in fragments),
            )

        LOGGER.info("Paper '%s' not found under %s", logical_id, self._root)
        return None

    def summarize(self) -> Dict[str, Any]:
        groups = self.list_logical_papers()
        return {
            "paper_count": len(groups),
            "question_count": sum(group.item_count for group in groups),
            "papers": [group.to_dict() for group in groups],
        }


def list_logical_papers(root_dir: Path) -> List[FragmentGroup]:
    return FragmentAggregator(root_dir).list_logical_papers()


def get_paper(root_dir: Path, logical_id: str) -> Optional[AggregatedPaper]:
    return FragmentAggregator(root_dir).get_paper(logical_id)


__all__ = [
    "AggregatedPaper",
    "DEFAULT_SECTION_TYPE",
    "Fragment",
    "FragmentAggregator",
    "FragmentGroup",
    "get_paper",
    "list_logical_papers",
    "normalize_options",
]
