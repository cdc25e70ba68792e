"""Pytest configuration and shared fixtures for PatchScope.

Provides sample backend payloads, configuration objects and synchronous
stand-ins for the executor and timer so that asynchronous request and
image-loading paths can be driven deterministically.
"""
import sys
import tempfile
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import Mock

import pytest
from PIL import Image

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from patchscope.config.settings import Config
from patchscope.core.analysis import parse_analysis


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

# Disable some verbose loggers during testing
logging.getLogger('PIL').setLevel(logging.WARNING)
logging.getLogger('urllib3').setLevel(logging.WARNING)


class ImmediateExecutor:
    """Executor that runs work on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True, cancel_futures=False):
        pass


class DeferredExecutor:
    """Executor that queues work until ``run_all`` is called."""

    def __init__(self):
        self.queue: List = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.queue.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        while self.queue:
            future, fn, args, kwargs = self.queue.pop(0)
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(fn(*args, **kwargs))
            except BaseException as e:
                future.set_exception(e)

    def shutdown(self, wait=True, cancel_futures=False):
        self.queue.clear()


class ManualTimer:
    """threading.Timer replacement fired explicitly by the test."""

    instances: List["ManualTimer"] = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.daemon = False
        ManualTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


def make_response(status_code: int = 200, json_data: Any = None, content: bytes = b"",
                  headers: Dict[str, str] = None) -> Mock:
    """Build a mock ``requests.Response``."""
    response = Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.headers = headers or {}
    response.content = content
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


def correspondence_payload(query_idx: int, grid_size: int, candidates) -> Dict[str, Any]:
    """Raw ``top_correspondences`` entry for ``[(candidate_idx, score), ...]``."""
    return {
        "query_patch_idx": query_idx,
        "query_patch_coord": [query_idx // grid_size, query_idx % grid_size],
        "top_candidate_indices": [c for c, _ in candidates],
        "top_candidate_coords": [[c // grid_size, c % grid_size] for c, _ in candidates],
        "similarity_scores": [s for _, s in candidates],
    }


def analysis_payload(query_patches: int = 49, candidate_patches: int = 49, grid_size: int = 7) -> Dict[str, Any]:
    return {
        "query_image_size": [224, 224],
        "candidate_image_size": [320, 240],
        "embedding_model": "clip",
        "similarity_analysis": {
            "overall_similarity": 0.71,
            "max_similarity": 0.95,
            "min_similarity": 0.12,
            "std_similarity": 0.08321,
            "query_patches_count": query_patches,
            "candidate_patches_count": candidate_patches,
            "high_attention_patches": 12,
            "model_name": "ViT-B-32",
        },
        "attention_matrix_shape": [query_patches, candidate_patches],
        "top_correspondences": [
            correspondence_payload(10, grid_size, [(3, 0.92), (4, 0.81), (17, 0.55)]),
            correspondence_payload(22, grid_size, [(3, 0.95), (9, 0.60)]),
            correspondence_payload(30, grid_size, [(40, 0.77), (41, 0.70), (42, 0.65), (43, 0.64),
                                                   (44, 0.63), (45, 0.62), (46, 0.61)]),
        ],
        "visualizations": {
            "attention_heatmap": "data:image/png;base64,AAAA",
            "top_correspondences": None,
        },
    }


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def real_config():
    """Provide a default configuration object."""
    return Config()


@pytest.fixture
def sample_image():
    """Provide a small RGB test image."""
    return Image.new("RGB", (70, 70), (40, 40, 40))


@pytest.fixture
def sample_image_file(temp_dir, sample_image):
    path = temp_dir / "query.png"
    sample_image.save(path)
    return path


@pytest.fixture
def sample_payload():
    return analysis_payload()


@pytest.fixture
def sample_analysis(sample_payload):
    return parse_analysis(sample_payload)


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture
def manual_timers():
    ManualTimer.instances = []
    yield ManualTimer
    ManualTimer.instances = []
