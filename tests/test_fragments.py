from __future__ import annotations

import errno
import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from exam_media.services.fragments import (
    DEFAULT_SECTION_TYPE,
    FragmentAggregator,
    get_paper,
    list_logical_papers,
    normalize_options,
)


def _questions(prefix: str, count: int, *, start: int = 1) -> List[Dict[str, Any]]:
    return [
        {
            "question_number": start + index,
            "question_text": f"{prefix}-{index + 1}",
            "options": ["A", "B", "C", "D"],
            "section_type": "long",
        }
        for index in range(count)
    ]


def _write_fragment(
    root: Path,
    year: str,
    filename: str,
    questions: Optional[List[Dict[str, Any]]] = None,
    *,
    paper: Optional[Dict[str, Any]] = None,
) -> Path:
    directory = root / year
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / filename
    payload = {
        "paper": paper if paper is not None else {"title": filename, "exam_type": "cet4"},
        "questions": questions if questions is not None else [],
    }
    target.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return target


def test_batches_are_grouped_and_merged_in_filename_order(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2022", "paper9_2.json", _questions("second", 2, start=1))
    _write_fragment(
        dataset_root,
        "2022",
        "paper9_1.json",
        _questions("first", 3, start=11),
        paper={"title": "June 2022", "year": 1999},
    )

    groups = aggregator.list_logical_papers()

    assert len(groups) == 1
    group = groups[0]
    assert group.logical_id == "paper9"
    assert group.item_count == 5
    assert group.file_count == 2
    assert group.files == ["paper9_1.json", "paper9_2.json"]
    assert group.year == 2022
    summary = group.to_dict()
    assert summary["year"] == 2022
    assert summary["title"] == "June 2022"
    assert summary["id"] == "paper9"

    paper = aggregator.get_paper("paper9")

    assert paper is not None
    assert paper.item_count == 5
    assert paper.files == ("paper9_1.json", "paper9_2.json")
    assert [item["question_text"] for item in paper.items] == [
        "first-1",
        "first-2",
        "first-3",
        "second-1",
        "second-2",
    ]
    assert [item["question_number"] for item in paper.items] == [1, 2, 3, 4, 5]
    assert paper.header["title"] == "June 2022"
    assert paper.year == 2022


def test_detail_output_carries_header_metadata(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2021", "set_1.json", _questions("a", 1), paper={"title": "Set"})
    _write_fragment(dataset_root, "2021", "set_2.json", _questions("b", 1), paper={"title": "Other"})

    payload = aggregator.get_paper("set").to_dict()

    assert payload["header"] == {
        "title": "Set",
        "year": 2021,
        "item_count": 2,
        "file_count": 2,
        "contributing_files": ["set_1.json", "set_2.json"],
    }
    assert payload["item_count"] == len(payload["items"]) == 2


def test_every_discovered_paper_assembles_completely(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2023", "alpha_1.json", _questions("a", 4))
    _write_fragment(dataset_root, "2023", "alpha_2.json", _questions("a", 3))
    _write_fragment(dataset_root, "2023", "beta.json", _questions("b", 6))
    _write_fragment(dataset_root, "2021", "gamma_1.json", _questions("g", 2))
    _write_fragment(dataset_root, "2021", "gamma_3.json", _questions("g", 5))
    _write_fragment(dataset_root, "2021", "empty.json", [])

    groups = aggregator.list_logical_papers()

    assert [group.logical_id for group in groups] == ["alpha", "beta", "empty", "gamma"]
    for group in groups:
        paper = aggregator.get_paper(group.logical_id)
        assert paper is not None
        assert len(paper.items) == group.item_count
        assert [item["question_number"] for item in paper.items] == list(
            range(1, group.item_count + 1)
        )


def test_empty_paper_is_found_but_unknown_paper_is_not(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2021", "empty.json", [])

    empty = aggregator.get_paper("empty")
    assert empty is not None
    assert empty.item_count == 0

    assert aggregator.get_paper("missing") is None


def test_corrupted_fragment_is_skipped_without_affecting_others(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2022", "paper9_1.json", _questions("first", 3))
    _write_fragment(dataset_root, "2022", "paper9_2.json", _questions("second", 2))
    (dataset_root / "2022" / "paper9_3.json").write_text("{not json", encoding="utf-8")
    (dataset_root / "2022" / "broken.json").write_text("[1, 2", encoding="utf-8")
    (dataset_root / "2022" / "headless.json").write_text(
        json.dumps({"questions": _questions("x", 2)}), encoding="utf-8"
    )
    _write_fragment(dataset_root, "2020", "other.json", _questions("o", 4))

    groups = {group.logical_id: group for group in aggregator.list_logical_papers()}

    assert set(groups) == {"paper9", "other"}
    assert groups["paper9"].item_count == 5
    assert groups["paper9"].files == ["paper9_1.json", "paper9_2.json"]

    paper = aggregator.get_paper("paper9")
    assert paper is not None
    assert paper.item_count == 5
    assert paper.files == ("paper9_1.json", "paper9_2.json")
    assert aggregator.get_paper("broken") is None
    assert aggregator.get_paper("other").item_count == 4


def test_fragment_with_non_list_questions_is_skipped(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    directory = dataset_root / "2022"
    directory.mkdir()
    (directory / "odd.json").write_text(
        json.dumps({"paper": {"title": "Odd"}, "questions": {"1": "?"}}), encoding="utf-8"
    )

    assert aggregator.list_logical_papers() == []
    assert aggregator.get_paper("odd") is None


def test_newest_year_bucket_owns_a_logical_id(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2021", "paper_1.json", _questions("old", 7))
    _write_fragment(dataset_root, "2023", "paper_1.json", _questions("new", 2))

    groups = aggregator.list_logical_papers()

    assert len(groups) == 1
    assert groups[0].year == 2023
    assert groups[0].item_count == 2

    paper = aggregator.get_paper("paper")
    assert paper is not None
    assert paper.year == 2023
    assert [item["question_text"] for item in paper.items] == ["new-1", "new-2"]


def test_older_bucket_is_used_when_newer_fragments_fail_to_load(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2021", "paper_1.json", _questions("old", 3))
    newer = dataset_root / "2023"
    newer.mkdir()
    (newer / "paper_1.json").write_text("garbage", encoding="utf-8")

    groups = aggregator.list_logical_papers()
    paper = aggregator.get_paper("paper")

    assert [(group.logical_id, group.year, group.item_count) for group in groups] == [
        ("paper", 2021, 3)
    ]
    assert paper is not None
    assert paper.year == 2021
    assert paper.item_count == 3


def test_non_year_directories_and_other_files_are_ignored(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "drafts", "paper_1.json", _questions("d", 3))
    _write_fragment(dataset_root, "2022", "paper_1.json", _questions("p", 1))
    (dataset_root / "2022" / "notes.txt").write_text("ignore me", encoding="utf-8")
    (dataset_root / "README.json").write_text("{}", encoding="utf-8")

    groups = aggregator.list_logical_papers()

    assert [(group.logical_id, group.item_count) for group in groups] == [("paper", 1)]
    assert [year for year, _ in aggregator.year_buckets()] == [2022]


def test_fragments_are_merged_in_lexical_not_numeric_order(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2022", "paper9_2.json", _questions("two", 1))
    _write_fragment(dataset_root, "2022", "paper9_10.json", _questions("ten", 1))
    _write_fragment(dataset_root, "2022", "paper9_1.json", _questions("one", 1))

    paper = aggregator.get_paper("paper9")

    assert paper.files == ("paper9_1.json", "paper9_10.json", "paper9_2.json")
    assert [item["question_text"] for item in paper.items] == ["one-1", "ten-1", "two-1"]


def test_exact_stem_request_also_collects_its_own_batches(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2021", "paper_2021_2.json", _questions("whole", 2))
    _write_fragment(dataset_root, "2021", "paper_2021_2_1.json", _questions("batch", 1))

    paper = aggregator.get_paper("paper_2021_2")

    assert paper is not None
    assert paper.files == ("paper_2021_2.json", "paper_2021_2_1.json")
    assert {group.logical_id for group in aggregator.list_logical_papers()} == {
        "paper_2021",
        "paper_2021_2",
    }


def test_items_get_default_section_and_normalized_options(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(
        dataset_root,
        "2022",
        "mixed.json",
        [
            {"question_text": "json", "options": '["A", "B"]'},
            {"question_text": "csv", "options": "A, B ,C", "section_type": "news"},
            {"question_text": "bad", "options": "{broken"},
            {"question_text": "plain", "options": ["X"], "section_type": ""},
        ],
    )

    paper = aggregator.get_paper("mixed")

    assert [item["options"] for item in paper.items] == [["A", "B"], ["A", "B", "C"], [], ["X"]]
    assert [item["section_type"] for item in paper.items] == [
        DEFAULT_SECTION_TYPE,
        "news",
        DEFAULT_SECTION_TYPE,
        DEFAULT_SECTION_TYPE,
    ]


def test_get_paper_does_not_modify_source_files(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    target = _write_fragment(dataset_root, "2022", "paper_1.json", _questions("a", 2, start=40))
    before = target.read_text(encoding="utf-8")

    aggregator.get_paper("paper")
    aggregator.get_paper("paper")

    assert target.read_text(encoding="utf-8") == before


def test_normalize_options_variants() -> None:
    assert normalize_options(["A"]) == ["A"]
    assert normalize_options(None) is None
    assert normalize_options('{"A": "yes"}') == {"A": "yes"}
    assert normalize_options("   ") == []
    assert normalize_options('"single"') == []
    assert normalize_options("only one") == []


def test_missing_root_yields_nothing(tmp_path: Path) -> None:
    root = tmp_path / "absent"

    assert list_logical_papers(root) == []
    assert get_paper(root, "paper") is None


def test_summarize_counts_papers_and_questions(
    aggregator: FragmentAggregator, dataset_root: Path
) -> None:
    _write_fragment(dataset_root, "2022", "a_1.json", _questions("a", 2))
    _write_fragment(dataset_root, "2022", "a_2.json", _questions("a", 2))
    _write_fragment(dataset_root, "2021", "b.json", _questions("b", 3))

    summary = aggregator.summarize()

    assert summary["paper_count"] == 2
    assert summary["question_count"] == 7
    assert [paper["id"] for paper in summary["papers"]] == ["a", "b"]


def test_entry_that_cannot_be_inspected_is_skipped(
    aggregator: FragmentAggregator, dataset_root: Path, monkeypatch
) -> None:
    _write_fragment(dataset_root, "2022", "paper9_1.json", _questions("a", 2))
    _write_fragment(dataset_root, "2022", "paper9_2.json", _questions("b", 1))
    locked = _write_fragment(dataset_root, "2022", "locked_1.json", _questions("l", 4))
    original_is_file = Path.is_file

    def fake_is_file(self: Path, *args, **kwargs) -> bool:
        if self == locked:
            raise PermissionError(errno.EACCES, "Permission denied", str(self))
        return original_is_file(self, *args, **kwargs)

    monkeypatch.setattr(Path, "is_file", fake_is_file)

    groups = aggregator.list_logical_papers()
    paper = aggregator.get_paper("paper9")

    assert [group.logical_id for group in groups] == ["paper9"]
    assert paper is not None
    assert paper.item_count == 3
    assert aggregator.get_paper("locked") is None


def test_year_directory_that_cannot_be_inspected_is_skipped(
    aggregator: FragmentAggregator, dataset_root: Path, monkeypatch
) -> None:
    _write_fragment(dataset_root, "2023", "newer.json", _questions("n", 1))
    _write_fragment(dataset_root, "2021", "older.json", _questions("o", 2))
    locked = dataset_root / "2023"
    original_is_dir = Path.is_dir

    def fake_is_dir(self: Path, *args, **kwargs) -> bool:
        if self == locked:
            raise PermissionError(errno.EACCES, "Permission denied", str(self))
        return original_is_dir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "is_dir", fake_is_dir)

    assert [year for year, _ in aggregator.year_buckets()] == [2021]
    assert [group.logical_id for group in aggregator.list_logical_papers()] == ["older"]
    assert aggregator.get_paper("older").item_count == 2
