"""Recognition model types and catalog entry definition."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ModelType(str, Enum):
    # Object detection
    YOLO_V8 = "yolo_v8"
    YOLO_V8_CUSTOM = "yolo_v8_custom"
    DETECTRON2 = "detectron2"
    DETECTRON2_CAD = "detectron2_cad"

    # OCR and text
    TESSERACT = "tesseract"
    PADDLE_OCR = "paddle_ocr"
    EASY_OCR = "easy_ocr"
    TEXT_RECOGNITION = "text_recognition"

    # Specialized
    CAD_PARSER = "cad_parser"
    FLOOR_PLAN_AI = "floor_plan_ai"
    FIRE_SAFETY_AI = "fire_safety_ai"
    ELECTRICAL_AI = "electrical_ai"

    # Analysis
    COMPLIANCE_AI = "compliance_ai"
    DIMENSION_AI = "dimension_ai"
    LAYER_ANALYZER = "layer_analyzer"


class ObjectCategory(str, Enum):
    ARCHITECTURAL = "architectural"
    STRUCTURAL = "structural"
    FIRE_SAFETY = "fire_safety"
    EMERGENCY = "emergency"
    ELECTRICAL = "electrical"
    PLUMBING = "plumbing"
    HVAC = "hvac"
    FURNITURE = "furniture"
    EQUIPMENT = "equipment"
    ACCESSIBILITY = "accessibility"
    DIMENSIONS = "dimensions"
    TEXT = "text"
    SYMBOLS = "symbols"
    GENERIC = "generic"
    UNKNOWN = "unknown"


ALL_CATEGORIES = list(ObjectCategory)

MB = 1024 * 1024


@dataclass
class ModelSpec:
    """Metadata describing a recognition model served by the worker."""
    model_type: ModelType
    name: str
    endpoint: str
    timeout_seconds: int
    max_file_size: int
    supported_formats: List[str]
    categories: List[ObjectCategory]
    confidence_threshold: float
    batch_size: Optional[int] = None
    preprocessing: Dict[str, Any] = field(default_factory=dict)

    def supports_format(self, file_format: str) -> bool:
        return file_format.lower().lstrip(".") in self.supported_formats

    def default_config(self) -> Dict[str, Any]:
        """Model configuration sent to the worker when the job sets no overrides."""
        config: Dict[str, Any] = {
            "confidence_threshold": self.confidence_threshold,
            "categories": [c.value for c in self.categories],
        }
        if self.batch_size is not None:
            config["batch_size"] = self.batch_size
        if self.preprocessing:
            config["preprocessing"] = dict(self.preprocessing)
        return config
