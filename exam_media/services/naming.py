"""Naming conventions shared by the audio resolver and the fragment aggregator."""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Iterable, List, Optional

__all__ = [
    "BATCH_SUFFIX_PATTERN",
    "BATCH_SUFFIX_VERSION",
    "FRAGMENT_EXTENSION",
    "build_candidate_filenames",
    "derive_logical_id",
    "matches_logical_id",
    "normalize_extension",
    "numeric_stems",
    "pad_month",
    "tagged_stems",
    "tier_markers",
]


FRAGMENT_EXTENSION = ".json"

# Version 1: a fragment stem ending in ``_<digits>`` is batch ``<digits>`` of
# the logical paper named by the rest of the stem. Only one suffix is removed,
# so ``paper_2021_2_2`` belongs to ``paper_2021_2`` while ``paper_2021_2``
# belongs to ``paper_2021``.
BATCH_SUFFIX_VERSION = 1
BATCH_SUFFIX_PATTERN = re.compile(r"_\d+$")


def pad_month(month: int) -> str:
    return f"{int(month):02d}"


def normalize_extension(extension: str) -> str:
    extension = extension.strip()
    if extension and not extension.startswith("."):
        extension = f".{extension}"
    return extension


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def tagged_stems(tag: str, year: int, month: int, sequence: int) -> List[str]:
    """Return the naming variants for one category tag, most specific first."""

    padded = pad_month(month)
    return [
        f"{tag}_{year}_{padded}_{sequence}",
        f"{tag}_{year}_{month}_{sequence}",
        f"{tag}_{year}_{padded}",
        f"{tag}_{year}_{month}",
        f"{tag}_{year}{padded}_{sequence}",
        f"{tag}_{year}{month}_{sequence}",
    ]


def numeric_stems(year: int, month: int, sequence: int) -> List[str]:
    """Return the untagged fallback variants."""

    padded = pad_month(month)
    return [
        f"{year}_{padded}_{sequence}",
        f"{year}_{month}_{sequence}",
        f"{year}{padded}_{sequence}",
        f"{year}{month}_{sequence}",
    ]


def build_candidate_filenames(
    tags: Iterable[str],
    *,
    year: int,
    month: int,
    sequence: int = 1,
    extension: str = ".mp3",
) -> List[str]:
    """Return every filename hypothesis in probing order.

    Tags are expanded in the order given (primary first), followed by the
    untagged numeric fallback. Variants that collapse onto the same string,
    which happens for two-digit months, keep their first position.
    """

    suffix = normalize_extension(extension)
    stems: List[str] = []
    for tag in tags:
        stems.extend(tagged_stems(tag, year, month, sequence))
    stems.extend(numeric_stems(year, month, sequence))
    return _unique(f"{stem}{suffix}" for stem in stems)


def tier_markers(year: int, month: int, sequence: int) -> List[str]:
    """Return the substrings that grant the +3, +2 and +1 specificity bonus."""

    padded = pad_month(month)
    return [
        f"{year}_{padded}_{sequence}",
        f"{year}_{month}_{sequence}",
        f"{year}_{padded}",
    ]


def derive_logical_id(filename: str, extension: Optional[str] = FRAGMENT_EXTENSION) -> str:
    """Return the logical paper id encoded in a fragment *filename*.

    >>> derive_logical_id("paper9_2.json")
    'paper9'
    >>> derive_logical_id("paper9.json")
    'paper9'
    """

    name = PurePath(filename).name
    if extension and name.lower().endswith(extension.lower()):
        name = name[: -len(extension)]
    return BATCH_SUFFIX_PATTERN.sub("", name)


def matches_logical_id(filename: str, logical_id: str) -> bool:
    """Return ``True`` when *filename* contributes to *logical_id*.

    A file matches when its derived id equals *logical_id* or when its bare
    stem does, which lets callers address a single batch file directly.
    """

    if derive_logical_id(filename) == logical_id:
        return True
    name = PurePath(filename).name
    if name.lower().endswith(FRAGMENT_EXTENSION):
        name = name[: -len(FRAGMENT_EXTENSION)]
    return name == logical_id
