"""Tests for the backend registry."""

import pytest

from dispatch_core.serving import (
    BackendConfig,
    BackendRegistry,
    Capability,
    DuplicateBackendError,
    FaceCloneParameters,
    ImageGenParameters,
    NotFoundError,
    ValidationError,
    default_backends,
)


class TestRegistration:
    """Register, look up and remove backends."""

    def test_register_and_get(self):
        registry = BackendRegistry()
        config = BackendConfig(name="A", capability=Capability.IMAGE_GENERATION)

        registry.register(config)

        assert registry.get("A") is config
        assert "A" in registry
        assert len(registry) == 1

    def test_default_parameters_match_capability(self):
        config = BackendConfig(name="F", capability=Capability.FACE_CLONING)
        assert isinstance(config.parameters, FaceCloneParameters)

    def test_duplicate_name_rejected(self):
        registry = BackendRegistry()
        registry.register(BackendConfig(name="A", capability=Capability.IMAGE_GENERATION))

        with pytest.raises(DuplicateBackendError):
            registry.register(BackendConfig(name="A", capability=Capability.VOICE_SYNTHESIS))

    def test_mismatched_parameters_rejected(self):
        registry = BackendRegistry()
        config = BackendConfig(
            name="A",
            capability=Capability.FACE_CLONING,
            parameters=ImageGenParameters(),
        )

        with pytest.raises(ValidationError):
            registry.register(config)
        assert "A" not in registry

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            BackendRegistry().register(
                BackendConfig(name="  ", capability=Capability.IMAGE_GENERATION)
            )

    def test_get_unknown_raises(self):
        with pytest.raises(NotFoundError):
            BackendRegistry().get("missing")

    def test_unregister(self):
        registry = BackendRegistry([
            BackendConfig(name="A", capability=Capability.IMAGE_GENERATION),
        ])

        registry.unregister("A")

        assert len(registry) == 0
        with pytest.raises(NotFoundError):
            registry.unregister("A")


class TestListing:
    """Enumeration order and filtering."""

    def test_list_preserves_registration_order(self):
        registry = BackendRegistry()
        for name in ("C", "A", "B"):
            registry.register(BackendConfig(name=name, capability=Capability.IMAGE_GENERATION))

        assert [c.name for c in registry.list()] == ["C", "A", "B"]
        assert registry.position("A") == 1

    def test_list_filters_capability_and_disabled(self):
        registry = BackendRegistry([
            BackendConfig(name="A", capability=Capability.IMAGE_GENERATION),
            BackendConfig(name="B", capability=Capability.IMAGE_GENERATION, enabled=False),
            BackendConfig(name="M", capability=Capability.CONTENT_MODERATION),
        ])

        assert [c.name for c in registry.list(Capability.IMAGE_GENERATION)] == ["A"]
        assert [c.name for c in registry.all()] == ["A", "B", "M"]
        assert registry.get_stats()["enabled"] == 2


class TestUpdate:
    """Partial updates merge into the existing configuration."""

    def test_merge_parameters(self):
        registry = BackendRegistry([
            BackendConfig(
                name="F",
                capability=Capability.FACE_CLONING,
                parameters=FaceCloneParameters(accuracy=0.9, processing_mode="quality"),
            ),
        ])

        updated = registry.update("F", parameters={"accuracy": 0.97})

        assert updated.parameters.accuracy == 0.97
        assert updated.parameters.processing_mode == "quality"
        assert registry.get("F") is updated

    def test_disable(self):
        registry = BackendRegistry([
            BackendConfig(name="A", capability=Capability.IMAGE_GENERATION),
        ])

        registry.update("A", enabled=False)

        assert registry.list(Capability.IMAGE_GENERATION) == []

    def test_identity_fields_are_read_only(self):
        registry = BackendRegistry([
            BackendConfig(name="A", capability=Capability.IMAGE_GENERATION),
        ])

        with pytest.raises(ValidationError):
            registry.update("A", capability=Capability.FACE_CLONING)

    def test_unknown_parameter_rejected(self):
        registry = BackendRegistry([
            BackendConfig(name="A", capability=Capability.IMAGE_GENERATION),
        ])

        with pytest.raises(ValidationError):
            registry.update("A", parameters={"accuracy": 0.5})

    def test_invalid_parameter_value_leaves_config_untouched(self):
        registry = BackendRegistry([
            BackendConfig(name="F", capability=Capability.FACE_CLONING),
        ])

        with pytest.raises(ValidationError):
            registry.update("F", parameters={"accuracy": 1.5})
        assert registry.get("F").parameters.accuracy == 0.9


class TestDefaults:
    def test_every_capability_has_a_backend(self):
        registry = BackendRegistry()
        registry.register_defaults()

        for capability in Capability:
            assert registry.list(capability), capability

    def test_register_defaults_is_idempotent(self):
        registry = BackendRegistry()
        registry.register_defaults()
        registry.register_defaults()

        assert len(registry) == len(default_backends())
