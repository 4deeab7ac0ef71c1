from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from exam_media.config import AppConfig
from exam_media.services.audio_resolver import AudioResolver
from exam_media.services.fragments import FragmentAggregator


MEDIA_DIRNAME = "真题与听力"


def build_mapping(**overrides: Any) -> Dict[str, Any]:
    mapping: Dict[str, Any] = {
        "media_dirname": MEDIA_DIRNAME,
        "media_base_dirs": [".", "shared"],
        "search_cwd": False,
        "audio_extension": ".mp3",
        "default_category": "cet6",
        "categories": [
            {
                "tag": "cet4",
                "folder": "四级听力",
                "aliases": ["四级听力真题"],
                "public_prefix": "/四级听力",
                "keywords": ["cet4", "cet-4"],
            },
            {
                "tag": "cet6",
                "folder": "六级听力",
                "aliases": ["六级听力真题"],
                "public_prefix": "/六级听力",
                "keywords": ["cet6", "cet-6"],
            },
        ],
        "dataset_root": "listening-data",
        "log_level": "DEBUG",
    }
    mapping.update(overrides)
    return mapping


@pytest.fixture()
def app_config(tmp_path: Path) -> AppConfig:
    return AppConfig.from_mapping(build_mapping(), base_path=tmp_path)


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    path = config_dir / "default.json"
    path.write_text(json.dumps(build_mapping(), ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture()
def media_root(app_config: AppConfig) -> Path:
    root = app_config.media_base_dirs[0]
    root.mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture()
def dataset_root(app_config: AppConfig) -> Path:
    root = app_config.dataset_root
    root.mkdir(parents=True, exist_ok=True)
    return root


@pytest.fixture()
def resolver(app_config: AppConfig) -> AudioResolver:
    return AudioResolver.from_config(app_config)


@pytest.fixture()
def aggregator(app_config: AppConfig) -> FragmentAggregator:
    return FragmentAggregator.from_config(app_config)
