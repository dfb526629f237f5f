"""
Tests for the recognition model catalog.
"""

import pytest

from app.models.base import MB, ModelSpec, ModelType, ObjectCategory
from app.models.registry import DEFAULT_PRIORITY, ModelRegistry, registry


class TestModelRegistry:

    def test_every_model_type_is_registered(self):
        assert {s.model_type for s in registry.list_models()} == set(ModelType)

    def test_get_accepts_string_value(self):
        assert registry.get("tesseract").endpoint == "/api/v1/ai/ocr/tesseract"

    def test_get_unknown_raises_key_error(self):
        empty = ModelRegistry(specs=[])
        with pytest.raises(KeyError):
            empty.get(ModelType.YOLO_V8)

    def test_format_check_is_case_insensitive(self):
        assert registry.is_format_supported(ModelType.YOLO_V8, ".PDF")
        assert not registry.is_format_supported(ModelType.YOLO_V8, "dwg")

    def test_filter_by_category(self):
        fire = registry.list_models(category="fire_safety")
        assert ModelType.FIRE_SAFETY_AI in {s.model_type for s in fire}
        assert ModelType.TESSERACT not in {s.model_type for s in fire}

    def test_default_priority_for_unknown_subject_type(self):
        assert registry.priority_for("seguranca_incendio") == 1
        assert registry.priority_for("unknown") == DEFAULT_PRIORITY
        assert registry.priority_for(None) == DEFAULT_PRIORITY

    def test_default_recommendation(self):
        assert registry.recommended_for(None)[0] == ModelType.YOLO_V8_CUSTOM


class TestModelSpec:

    def test_default_config_omits_unset_options(self):
        spec = ModelSpec(
            model_type=ModelType.CAD_PARSER,
            name="CAD",
            endpoint="/cad",
            timeout_seconds=60,
            max_file_size=10 * MB,
            supported_formats=["dwg"],
            categories=[ObjectCategory.TEXT],
            confidence_threshold=0.9,
        )

        assert spec.default_config() == {"confidence_threshold": 0.9, "categories": ["text"]}
