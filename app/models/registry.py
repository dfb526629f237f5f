"""Catalog of recognition models served by the external worker."""

from typing import Dict, List, Optional

from app.models.base import ALL_CATEGORIES, MB, ModelSpec, ModelType, ObjectCategory as C


_DEFAULT_SPECS = [
    ModelSpec(
        model_type=ModelType.YOLO_V8,
        name="YOLO v8 General",
        endpoint="/api/v1/ai/yolo/detect",
        timeout_seconds=120,
        max_file_size=50 * MB,
        supported_formats=["jpg", "jpeg", "png", "pdf"],
        categories=[C.ARCHITECTURAL, C.FURNITURE, C.EQUIPMENT],
        confidence_threshold=0.7,
        batch_size=1,
    ),
    ModelSpec(
        model_type=ModelType.YOLO_V8_CUSTOM,
        name="YOLO v8 CAD Specialized",
        endpoint="/api/v1/ai/yolo/detect-cad",
        timeout_seconds=180,
        max_file_size=100 * MB,
        supported_formats=["dwg", "dxf", "pdf", "jpg", "png"],
        categories=ALL_CATEGORIES,
        confidence_threshold=0.8,
        batch_size=1,
        preprocessing={"resize": {"width": 1024, "height": 1024}, "normalize": True},
    ),
    ModelSpec(
        model_type=ModelType.DETECTRON2,
        name="Detectron2",
        endpoint="/api/v1/ai/detectron2/detect",
        timeout_seconds=300,
        max_file_size=100 * MB,
        supported_formats=["jpg", "jpeg", "png"],
        categories=[C.ARCHITECTURAL, C.STRUCTURAL, C.EQUIPMENT],
        confidence_threshold=0.75,
    ),
    ModelSpec(
        model_type=ModelType.DETECTRON2_CAD,
        name="Detectron2 CAD Specialized",
        endpoint="/api/v1/ai/detectron2/detect-cad",
        timeout_seconds=600,
        max_file_size=200 * MB,
        supported_formats=["dwg", "dxf", "ifc", "pdf"],
        categories=ALL_CATEGORIES,
        confidence_threshold=0.85,
        preprocessing={"normalize": True},
    ),
    ModelSpec(
        model_type=ModelType.TESSERACT,
        name="Tesseract OCR",
        endpoint="/api/v1/ai/ocr/tesseract",
        timeout_seconds=60,
        max_file_size=50 * MB,
        supported_formats=["jpg", "jpeg", "png", "pdf"],
        categories=[C.TEXT, C.DIMENSIONS],
        confidence_threshold=0.6,
        preprocessing={"grayscale": True},
    ),
    ModelSpec(
        model_type=ModelType.PADDLE_OCR,
        name="PaddleOCR",
        endpoint="/api/v1/ai/ocr/paddle",
        timeout_seconds=90,
        max_file_size=50 * MB,
        supported_formats=["jpg", "jpeg", "png", "pdf"],
        categories=[C.TEXT, C.DIMENSIONS],
        confidence_threshold=0.7,
    ),
    ModelSpec(
        model_type=ModelType.EASY_OCR,
        name="EasyOCR",
        endpoint="/api/v1/ai/ocr/easy",
        timeout_seconds=60,
        max_file_size=30 * MB,
        supported_formats=["jpg", "jpeg", "png"],
        categories=[C.TEXT],
        confidence_threshold=0.65,
    ),
    ModelSpec(
        model_type=ModelType.TEXT_RECOGNITION,
        name="Custom Text Recognition",
        endpoint="/api/v1/ai/text/recognize",
        timeout_seconds=120,
        max_file_size=100 * MB,
        supported_formats=["dwg", "dxf", "pdf"],
        categories=[C.TEXT, C.DIMENSIONS],
        confidence_threshold=0.8,
    ),
    ModelSpec(
        model_type=ModelType.CAD_PARSER,
        name="CAD Parser",
        endpoint="/api/v1/ai/cad/parse",
        timeout_seconds=300,
        max_file_size=500 * MB,
        supported_formats=["dwg", "dxf", "ifc"],
        categories=ALL_CATEGORIES,
        confidence_threshold=0.9,
    ),
    ModelSpec(
        model_type=ModelType.FLOOR_PLAN_AI,
        name="Floor Plan AI",
        endpoint="/api/v1/ai/floorplan/analyze",
        timeout_seconds=240,
        max_file_size=100 * MB,
        supported_formats=["dwg", "dxf", "pdf", "jpg", "png"],
        categories=[C.ARCHITECTURAL, C.ACCESSIBILITY, C.DIMENSIONS],
        confidence_threshold=0.85,
    ),
    ModelSpec(
        model_type=ModelType.FIRE_SAFETY_AI,
        name="Fire Safety AI",
        endpoint="/api/v1/ai/fire-safety/analyze",
        timeout_seconds=180,
        max_file_size=100 * MB,
        supported_formats=["dwg", "dxf", "pdf"],
        categories=[C.FIRE_SAFETY, C.EMERGENCY],
        confidence_threshold=0.9,
    ),
    ModelSpec(
        model_type=ModelType.ELECTRICAL_AI,
        name="Electrical Systems AI",
        endpoint="/api/v1/ai/electrical/analyze",
        timeout_seconds=200,
        max_file_size=100 * MB,
        supported_formats=["dwg", "dxf", "pdf"],
        categories=[C.ELECTRICAL],
        confidence_threshold=0.85,
    ),
    ModelSpec(
        model_type=ModelType.COMPLIANCE_AI,
        name="Compliance Analyzer AI",
        endpoint="/api/v1/ai/compliance/check",
        timeout_seconds=400,
        max_file_size=200 * MB,
        supported_formats=["dwg", "dxf", "ifc", "pdf"],
        categories=ALL_CATEGORIES,
        confidence_threshold=0.95,
    ),
    ModelSpec(
        model_type=ModelType.DIMENSION_AI,
        name="Dimension Extractor AI",
        endpoint="/api/v1/ai/dimensions/extract",
        timeout_seconds=150,
        max_file_size=100 * MB,
        supported_formats=["dwg", "dxf", "pdf"],
        categories=[C.DIMENSIONS, C.TEXT],
        confidence_threshold=0.8,
    ),
    ModelSpec(
        model_type=ModelType.LAYER_ANALYZER,
        name="CAD Layer Analyzer",
        endpoint="/api/v1/ai/layers/analyze",
        timeout_seconds=120,
        max_file_size=200 * MB,
        supported_formats=["dwg", "dxf", "ifc"],
        categories=ALL_CATEGORIES,
        confidence_threshold=0.7,
    ),
]

# Subject type -> models worth running, most relevant first
_RECOMMENDATIONS: Dict[str, List[ModelType]] = {
    "seguranca_incendio": [ModelType.FIRE_SAFETY_AI, ModelType.DETECTRON2_CAD, ModelType.COMPLIANCE_AI],
    "rotas_fuga": [ModelType.FIRE_SAFETY_AI, ModelType.FLOOR_PLAN_AI, ModelType.COMPLIANCE_AI],
    "instalacao_eletrica": [ModelType.ELECTRICAL_AI, ModelType.YOLO_V8_CUSTOM, ModelType.DIMENSION_AI],
    "planta_baixa": [
        ModelType.FLOOR_PLAN_AI,
        ModelType.DETECTRON2_CAD,
        ModelType.YOLO_V8_CUSTOM,
        ModelType.TEXT_RECOGNITION,
    ],
    "layout_stands": [ModelType.YOLO_V8_CUSTOM, ModelType.DETECTRON2, ModelType.DIMENSION_AI],
    "acessibilidade": [ModelType.FLOOR_PLAN_AI, ModelType.COMPLIANCE_AI, ModelType.DETECTRON2_CAD],
}
_DEFAULT_RECOMMENDATION = [ModelType.YOLO_V8_CUSTOM, ModelType.CAD_PARSER, ModelType.TEXT_RECOGNITION]

# Subject type -> processing priority (1 = critical, 5 = low)
_PRIORITIES: Dict[str, int] = {
    "seguranca_incendio": 1,
    "rotas_fuga": 1,
    "sistema_sprinkler": 1,
    "alarme_incendio": 1,
    "instalacao_eletrica": 2,
    "instalacao_gas": 2,
    "acessibilidade": 2,
    "estrutural_fundacao": 2,
    "planta_baixa": 3,
    "layout_stands": 3,
    "instalacao_hidraulica": 3,
    "layout_mobiliario": 4,
    "cenografia": 4,
    "paisagismo": 4,
}
DEFAULT_PRIORITY = 3


class ModelRegistry:
    """Serves model specs for the job service and the models API.

    - Lookup by model type
    - Filtering by object category and file format
    - Recommendations and default priority per subject type
    """

    def __init__(self, specs: Optional[List[ModelSpec]] = None):
        self._specs: Dict[ModelType, ModelSpec] = {}
        for spec in specs if specs is not None else _DEFAULT_SPECS:
            self.register(spec)

    def register(self, spec: ModelSpec) -> None:
        self._specs[spec.model_type] = spec

    def get(self, model_type: ModelType) -> ModelSpec:
        """Get a model spec by type. Raises KeyError for unknown types."""
        spec = self._specs.get(ModelType(model_type))
        if spec is None:
            raise KeyError(f"Model '{model_type}' not found in registry")
        return spec

    def list_models(
        self,
        category: Optional[str] = None,
        file_format: Optional[str] = None,
    ) -> List[ModelSpec]:
        """List registered models, optionally filtered by category and/or format."""
        specs = list(self._specs.values())
        if category:
            specs = [s for s in specs if category in [c.value for c in s.categories]]
        if file_format:
            specs = [s for s in specs if s.supports_format(file_format)]
        return specs

    def is_format_supported(self, model_type: ModelType, file_format: str) -> bool:
        return self.get(model_type).supports_format(file_format)

    def recommended_for(self, subject_type: Optional[str]) -> List[ModelType]:
        return list(_RECOMMENDATIONS.get(subject_type or "", _DEFAULT_RECOMMENDATION))

    def priority_for(self, subject_type: Optional[str]) -> int:
        return _PRIORITIES.get(subject_type or "", DEFAULT_PRIORITY)


# Global registry instance
registry = ModelRegistry()
