"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add project root to sys.path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dispatch_core.config import DispatcherConfig
from dispatch_core.serving import (
    BackendConfig,
    BackendRegistry,
    Capability,
    Dispatcher,
    ModerationParameters,
)

from helpers import FakeInvoker


@pytest.fixture
def registry() -> BackendRegistry:
    return BackendRegistry([
        BackendConfig(name="Image_A", capability=Capability.IMAGE_GENERATION, model="image-a"),
        BackendConfig(name="Image_B", capability=Capability.IMAGE_GENERATION, model="image-b"),
        BackendConfig(
            name="Mod_A",
            capability=Capability.CONTENT_MODERATION,
            model="mod-a",
            parameters=ModerationParameters(edge_case_detection=True),
        ),
        BackendConfig(name="Mod_B", capability=Capability.CONTENT_MODERATION, model="mod-b"),
        BackendConfig(name="Voice_A", capability=Capability.VOICE_RECOGNITION, model="voice-a"),
    ])


@pytest.fixture
def invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def make_dispatcher(registry, invoker):
    """Build a dispatcher with fast polling; keyword args override config fields."""

    def _make(**overrides) -> Dispatcher:
        settings = {
            "worker_count": 1,
            "poll_interval_seconds": 0.01,
            "cache_max_size": 100,
            "generation_timeout_seconds": 1.0,
            "moderation_timeout_seconds": 1.0,
            "voice_recognition_timeout_seconds": 1.0,
            "results_path": None,
        }
        store = overrides.pop("store", None)
        settings.update(overrides)
        return Dispatcher(
            registry=registry,
            invoker=invoker,
            config=DispatcherConfig(**settings),
            store=store,
        )

    return _make


@pytest.fixture
def dispatcher(make_dispatcher) -> Dispatcher:
    return make_dispatcher()
