"""Fixtures shared by CLI tests."""

from __future__ import annotations

import pytest
import yaml

from quarry.cli.common import console


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    """Run every command from tmp_path with no global config or QUARRY_* env."""
    monkeypatch.chdir(tmp_path)
    # wide enough that table cells never wrap
    monkeypatch.setattr(console, "width", 200)
    monkeypatch.setattr("quarry.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("QUARRY_DB", "QUARRY_EMBEDDING_MODEL", "QUARRY_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def corpus_file(tmp_path):
    path = tmp_path / "docs.yaml"
    path.write_text(
        yaml.dump({
            "name": "docs",
            "extractor_bindings": [
                {
                    "extractor_name": "minilm",
                    "index_name": "docs-emb",
                    "filters": [{"op": "eq", "field": "lang", "value": "en"}],
                }
            ],
        }),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def extractors_file(tmp_path):
    path = tmp_path / "extractors.yaml"
    path.write_text(
        yaml.dump([
            {
                "name": "minilm",
                "description": "MiniLM",
                "extractor_type": {"type": "embedding", "dim": 3, "distance": "cosine"},
            }
        ]),
        encoding="utf-8",
    )
    return path
