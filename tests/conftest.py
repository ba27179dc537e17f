"""Shared fixtures: settings on a temporary plugin directory and a fake network."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from infer_inception_v3.config import Settings
from infer_inception_v3.ml.model_manager import DnnModelManager

LABELS = ["cat", "dog", "bird"]


class FakeNet:
    """Stands in for a loaded network and records the blobs it receives."""

    def __init__(self, probabilities: list[float]) -> None:
        self.probabilities = np.asarray([probabilities], dtype=np.float32)
        self.blobs: list[np.ndarray] = []

    def forward(self, blob: np.ndarray) -> np.ndarray:
        self.blobs.append(blob)
        return self.probabilities


def make_settings(plugin_dir: Path, **overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "plugin_dir": str(plugin_dir),
        "hub_repo_id": "test/model-hub",
        "framework": "tensorflow",
        "backend": "default",
        "target": "cpu",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "max_concurrent": 2,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def install_model_files(manager: DnnModelManager, task_name: str = "infer_inception_v3") -> Path:
    """Create the files a run expects in the plugin directory, so nothing is downloaded."""
    model_dir = manager.model_dir(task_name)
    model_dir.mkdir(parents=True, exist_ok=True)
    (model_dir / "tensorflow_inception_graph.pb").write_bytes(b"frozen graph")
    (model_dir / "imagenet_names.txt").write_text("\n".join(LABELS) + "\n", encoding="utf-8")
    return model_dir


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture()
def manager(settings: Settings) -> DnnModelManager:
    return DnnModelManager(settings)


@pytest.fixture()
def fake_net() -> FakeNet:
    return FakeNet([0.1, 0.7, 0.2])
