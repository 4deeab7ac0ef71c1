"""Locate exam listening audio across an inconsistent media library layout.

Audio files were collected over many years under several folder names and
naming conventions, and some were filed under the wrong exam category. The
resolver therefore generates every plausible filename for a paper, probes it
under every configured search root, scores each hit and keeps the best one.

Probing order doubles as the tie-break policy: when two hits score the same,
the one probed first is kept.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePath
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config import AppConfig, CategorySpec, ConfigError
from .events import emit_probe_event
from .naming import build_candidate_filenames, normalize_extension, tier_markers


LOGGER = logging.getLogger(__name__)

CATEGORY_MATCH_BONUS = 10
PRIMARY_ROOT_BONUS = 5
TIER_BONUSES: Tuple[int, ...] = (3, 2, 1)


class DescriptorError(ValueError):
    """Raised when a paper record cannot be turned into a descriptor."""


class MatchClass(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


def _coerce_int(record: Mapping[str, Any], *keys: str, default: Optional[int] = None) -> int:
    for key in keys:
        value = record.get(key)
        if value is None or value == "":
            continue
        try:
            return int(value)
        except (TypeError, ValueError) as error:
            raise DescriptorError(f"Field '{key}' must be an integer, got {value!r}") from error
    if default is None:
        raise DescriptorError(f"Missing required field '{keys[0]}'")
    return default


@dataclass(frozen=True)
class ContentDescriptor:
    """Identifies the audio asset of one exam paper."""

    category: str
    year: int
    month: int
    sequence_index: int = 1
    title: str = ""

    def __post_init__(self) -> None:
        if not str(self.category).strip():
            raise DescriptorError("Descriptor category must not be empty")
        if not 1 <= int(self.month) <= 12:
            raise DescriptorError(f"Month must be between 1 and 12, got {self.month}")
        if int(self.sequence_index) < 1:
            raise DescriptorError(
                f"Sequence index must be at least 1, got {self.sequence_index}"
            )

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ContentDescriptor":
        """Build a descriptor from a paper record.

        Accepts both the database column names (``exam_type``,
        ``paper_number``) and the descriptor field names.
        """

        category = record.get("category") or record.get("exam_type")
        if category is None or not str(category).strip():
            raise DescriptorError("Missing required field 'category'")
        return cls(
            category=str(category).strip(),
            year=_coerce_int(record, "year"),
            month=_coerce_int(record, "month"),
            sequence_index=_coerce_int(record, "sequence_index", "paper_number", default=1),
            title=str(record.get("title") or ""),
        )

    def label(self) -> str:
        return f"{self.category} {self.year}-{self.month:02d} #{self.sequence_index}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "year": self.year,
            "month": self.month,
            "sequence_index": self.sequence_index,
            "title": self.title,
        }


@dataclass(frozen=True)
class SearchRoot:
    """A directory probed for audio, optionally owned by one category."""

    path: Path
    category: Optional[str]
    rank: int

    def to_dict(self) -> Dict[str, Any]:
        return {"path": str(self.path), "category": self.category, "rank": self.rank}


@dataclass(frozen=True)
class ProbeHit:
    """An existing candidate file together with its score."""

    filename: str
    path: Path
    root: SearchRoot
    score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "path": str(self.path),
            "search_root": str(self.root.path),
            "score": self.score,
        }


@dataclass(frozen=True)
class MatchResult:
    """Outcome of resolving one descriptor.

    A miss is a regular result: ``found`` is ``False``, ``filename`` holds the
    preferred candidate and the attempted filenames and roots are kept for
    diagnostics.
    """

    found: bool
    filename: str
    descriptor: ContentDescriptor
    absolute_path: Optional[Path] = None
    search_root: Optional[SearchRoot] = None
    score: Optional[int] = None
    match_class: Optional[MatchClass] = None
    public_path: Optional[str] = None
    attempted_filenames: Tuple[str, ...] = ()
    attempted_roots: Tuple[SearchRoot, ...] = ()
    probes: Tuple[ProbeHit, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"exists": self.found, "filename": self.filename}
        if self.found:
            data.update(
                {
                    "absolute_path": str(self.absolute_path),
                    "search_root": str(self.search_root.path) if self.search_root else None,
                    "score": self.score,
                    "match_class": self.match_class.value if self.match_class else None,
                    "public_path": self.public_path,
                    "probes": [hit.to_dict() for hit in self.probes],
                }
            )
        else:
            data.update(
                {
                    "attempted_filenames": list(self.attempted_filenames),
                    "attempted_roots": [str(root.path) for root in self.attempted_roots],
                }
            )
        return data


@dataclass(frozen=True)
class BatchResolution:
    """Results of :meth:`AudioResolver.resolve_all` plus aggregate counts."""

    results: Tuple[MatchResult, ...]

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def matched(self) -> int:
        return sum(1 for result in self.results if result.found)

    @property
    def unmatched(self) -> int:
        return self.total - self.matched

    @property
    def primary_matches(self) -> int:
        return sum(
            1
            for result in self.results
            if result.found and result.match_class is MatchClass.PRIMARY
        )

    @property
    def secondary_matches(self) -> int:
        return sum(
            1
            for result in self.results
            if result.found and result.match_class is MatchClass.SECONDARY
        )

    def stats(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "primary_matches": self.primary_matches,
            "secondary_matches": self.secondary_matches,
        }


@dataclass(frozen=True)
class FileLookup:
    """Result of looking up an already known audio filename."""

    filename: str
    exists: bool
    accessible: bool = False
    path: Optional[Path] = None
    folder: Optional[str] = None
    public_path: Optional[str] = None
    searched: Tuple[Path, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "exists": self.exists,
            "accessible": self.accessible,
            "filename": self.filename,
            "path": str(self.path) if self.path else "",
            "folder_type": self.folder or "",
            "public_path": self.public_path,
        }


def _is_file(path: Path) -> bool:
    try:
        return path.is_file()
    except OSError as error:
        LOGGER.debug("Treating %s as missing after probe error: %s", path, error)
        return False


def _is_dir(path: Path) -> bool:
    try:
        return path.is_dir()
    except OSError as error:
        LOGGER.warning("Treating %s as missing after stat error: %s", path, error)
        return False


def _is_readable(path: Path) -> bool:
    try:
        return os.access(path, os.R_OK)
    except OSError:
        return False


class AudioResolver:
    """Score-based lookup of exam audio files across configured search roots."""

    def __init__(
        self,
        categories: Sequence[CategorySpec],
        base_dirs: Sequence[Path],
        *,
        extension: str = ".mp3",
        default_category: Optional[str] = None,
    ) -> None:
        if not categories:
            raise ConfigError("AudioResolver requires at least one category")
        self._categories: Tuple[CategorySpec, ...] = tuple(categories)
        self._base_dirs: Tuple[Path, ...] = tuple(Path(base) for base in base_dirs)
        self._extension = normalize_extension(extension)
        tag = default_category or self._categories[-1].tag
        matches = [spec for spec in self._categories if spec.tag == tag]
        if not matches:
            raise ConfigError(f"Default category '{tag}' is not configured")
        self._default = matches[0]

    @classmethod
    def from_config(cls, config: AppConfig) -> "AudioResolver":
        return cls(
            config.categories,
            config.media_base_dirs,
            extension=config.audio_extension,
            default_category=config.default_category,
        )

    @property
    def categories(self) -> Tuple[CategorySpec, ...]:
        return self._categories

    @property
    def base_dirs(self) -> Tuple[Path, ...]:
        return self._base_dirs

    # ------------------------------------------------------------------
    # Candidate generation
    # ------------------------------------------------------------------
    def classify(self, descriptor: ContentDescriptor) -> Tuple[CategorySpec, Tuple[CategorySpec, ...]]:
        """Return the primary category and the secondary ones in search order."""

        primary = next(
            (spec for spec in self._categories if spec.matches(descriptor.category)),
            self._default,
        )
        secondaries = tuple(spec for spec in self._categories if spec is not primary)
        return primary, secondaries

    def _ordered_categories(self, primary: CategorySpec) -> Tuple[CategorySpec, ...]:
        return (primary, *(spec for spec in self._categories if spec is not primary))

    def candidate_filenames(self, descriptor: ContentDescriptor) -> List[str]:
        primary, _ = self.classify(descriptor)
        return build_candidate_filenames(
            (spec.tag for spec in self._ordered_categories(primary)),
            year=descriptor.year,
            month=descriptor.month,
            sequence=descriptor.sequence_index,
            extension=self._extension,
        )

    def _roots_for(self, categories: Iterable[CategorySpec]) -> List[SearchRoot]:
        roots: List[SearchRoot] = []
        seen = set()

        def _add(path: Path, category: Optional[str]) -> None:
            if path in seen:
                return
            seen.add(path)
            roots.append(SearchRoot(path=path, category=category, rank=len(roots)))

        for spec in categories:
            for base in self._base_dirs:
                for folder in spec.folder_names:
                    _add(base / folder, spec.tag)
        for base in self._base_dirs:
            _add(base, None)
        return roots

    def search_roots(self, descriptor: ContentDescriptor) -> List[SearchRoot]:
        primary, _ = self.classify(descriptor)
        return self._roots_for(self._ordered_categories(primary))

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------
    def score(
        self,
        filename: str,
        root: SearchRoot,
        descriptor: ContentDescriptor,
        primary: CategorySpec,
    ) -> int:
        value = 0
        if filename.startswith(f"{primary.tag}_"):
            value += CATEGORY_MATCH_BONUS
        if root.category == primary.tag:
            value += PRIMARY_ROOT_BONUS
        markers = tier_markers(descriptor.year, descriptor.month, descriptor.sequence_index)
        for marker, bonus in zip(markers, TIER_BONUSES):
            if marker in filename:
                value += bonus
                break
        return value

    def _public_path(
        self, root: SearchRoot, filename: str, ordered: Sequence[CategorySpec]
    ) -> str:
        root_text = str(root.path)
        for spec in ordered:
            if spec.folder in root_text:
                return f"{spec.public_prefix}/{filename}"
        return f"{ordered[0].public_prefix}/{filename}"

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def resolve(self, descriptor: ContentDescriptor) -> MatchResult:
        """Return the best-scoring existing audio file for *descriptor*."""

        primary, _ = self.classify(descriptor)
        ordered = self._ordered_categories(primary)
        filenames = self.candidate_filenames(descriptor)
        roots = self.search_roots(descriptor)

        hits: List[ProbeHit] = []
        best: Optional[ProbeHit] = None
        for filename in filenames:
            for root in roots:
                candidate = root.path / filename
                if not _is_file(candidate):
                    continue
                hit = ProbeHit(
                    filename=filename,
                    path=candidate,
                    root=root,
                    score=self.score(filename, root, descriptor, primary),
                )
                hits.append(hit)
                LOGGER.debug("Audio candidate %s under %s scored %s", filename, root.path, hit.score)
                if best is None or hit.score > best.score:
                    best = hit

        if best is None:
            emit_probe_event(
                "Audio not found",
                payload={
                    "paper": descriptor.label(),
                    "candidates": len(filenames),
                    "roots": len(roots),
                },
            )
            return MatchResult(
                found=False,
                filename=filenames[0],
                descriptor=descriptor,
                attempted_filenames=tuple(filenames),
                attempted_roots=tuple(roots),
            )

        match_class = (
            MatchClass.PRIMARY if best.filename.startswith(f"{primary.tag}_") else MatchClass.SECONDARY
        )
        result = MatchResult(
            found=True,
            filename=best.filename,
            descriptor=descriptor,
            absolute_path=best.path,
            search_root=best.root,
            score=best.score,
            match_class=match_class,
            public_path=self._public_path(best.root, best.filename, ordered),
            probes=tuple(hits),
        )
        emit_probe_event(
            "Audio resolved",
            payload={
                "paper": descriptor.label(),
                "filename": result.filename,
                "score": result.score,
                "match_class": match_class.value,
                "hits": len(hits),
            },
        )
        return result

    def resolve_all(self, descriptors: Iterable[ContentDescriptor]) -> BatchResolution:
        batch = BatchResolution(results=tuple(self.resolve(item) for item in descriptors))
        LOGGER.info(
            "Resolved audio for %s/%s paper(s) (primary=%s, secondary=%s)",
            batch.matched,
            batch.total,
            batch.primary_matches,
            batch.secondary_matches,
        )
        return batch

    # ------------------------------------------------------------------
    # Direct lookups
    # ------------------------------------------------------------------
    def find_category(self, label: Optional[str]) -> Optional[CategorySpec]:
        if not label:
            return None
        return next((spec for spec in self._categories if spec.matches(label)), None)

    def locate(self, filename: str, category: Optional[str] = None) -> FileLookup:
        """Look up a known *filename* under every search root.

        Folders of *category* are searched first. Names carrying directory
        components are rejected so the lookup never leaves the search roots.
        """

        name = (filename or "").strip()
        if not name or PurePath(name).name != name or name in {".", ".."}:
            return FileLookup(filename=name, exists=False)

        preferred = self.find_category(category) or self._default
        ordered = self._ordered_categories(preferred)
        roots = self._roots_for(ordered)
        for root in roots:
            candidate = root.path / name
            if not _is_file(candidate):
                continue
            spec = next((item for item in ordered if item.tag == root.category), None)
            public_path = self._public_path(root, name, ordered)
            return FileLookup(
                filename=name,
                exists=True,
                accessible=_is_readable(candidate),
                path=candidate,
                folder=spec.folder if spec else None,
                public_path=public_path,
                searched=tuple(item.path for item in roots[: root.rank + 1]),
            )
        return FileLookup(
            filename=name,
            exists=False,
            searched=tuple(root.path for root in roots),
        )

    def describe_base_dirs(self) -> List[Dict[str, Any]]:
        report: List[Dict[str, Any]] = []
        for base in self._base_dirs:
            exists = _is_dir(base)
            subfolders: List[str] = []
            if exists:
                try:
                    subfolders = sorted(child.name for child in base.iterdir() if _is_dir(child))
                except OSError as error:
                    LOGGER.warning("Could not list media directory %s: %s", base, error)
            report.append({"path": str(base), "exists": exists, "subfolders": subfolders})
        return report


__all__ = [
    "AudioResolver",
    "BatchResolution",
    "CATEGORY_MATCH_BONUS",
    "ContentDescriptor",
    "DescriptorError",
    "FileLookup",
    "MatchClass",
    "MatchResult",
    "PRIMARY_ROOT_BONUS",
    "ProbeHit",
    "SearchRoot",
]
