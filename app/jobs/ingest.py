"""Result ingestion: worker response -> canonical RecognitionResults.

The worker has shipped several field-name variants over time. All of them are
mapped here so nothing downstream depends on the wire shape.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from app.jobs.errors import TransientExecutionError
from app.jobs.models import (
    BoundingBox,
    ComplianceFinding,
    Detection,
    Dimension,
    Job,
    LayerAnalysis,
    RecognitionResults,
    ResultStatistics,
    TextRegion,
    utcnow,
)
from app.subjects.repository import SubjectRepository

logger = logging.getLogger(__name__)


def _first(data: Dict[str, Any], keys: Iterable[str], default: Any = None) -> Any:
    """Value of the first key present with a non-None value."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def confidence_stats(confidences: List[float]) -> Dict[str, float]:
    """min/avg/max over a list of confidences; all zero for an empty list."""
    if not confidences:
        return {"confidence_min": 0.0, "confidence_avg": 0.0, "confidence_max": 0.0}
    return {
        "confidence_min": min(confidences),
        "confidence_avg": sum(confidences) / len(confidences),
        "confidence_max": max(confidences),
    }


def _bounding_box(raw: Any) -> Optional[BoundingBox]:
    if isinstance(raw, dict):
        return BoundingBox(
            x=_float(raw.get("x")),
            y=_float(raw.get("y")),
            width=_float(_first(raw, ("width", "w"))),
            height=_float(_first(raw, ("height", "h"))),
        )
    if isinstance(raw, (list, tuple)) and len(raw) == 4:
        x, y, width, height = (_float(v) for v in raw)
        return BoundingBox(x=x, y=y, width=width, height=height)
    return None


def _detection(raw: Dict[str, Any]) -> Detection:
    return Detection(
        id=str(raw["id"]) if raw.get("id") is not None else None,
        type=str(_first(raw, ("type", "label", "class_name"), "unknown")),
        category=str(_first(raw, ("category", "object_category"), "unknown")),
        confidence=_float(_first(raw, ("confidence", "score"))),
        bounding_box=_bounding_box(_first(raw, ("boundingBox", "bounding_box", "bbox"))),
        properties=dict(raw.get("properties") or {}),
    )


def _text_region(raw: Any) -> TextRegion:
    if isinstance(raw, str):
        return TextRegion(text=raw)
    return TextRegion(
        text=str(_first(raw, ("text", "value"), "")),
        confidence=_float(raw.get("confidence")),
        position=raw.get("position"),
        category=raw.get("category"),
    )


def _layer(raw: Dict[str, Any]) -> LayerAnalysis:
    return LayerAnalysis(
        layer=str(_first(raw, ("layer_name", "layer", "name"), "")),
        object_count=int(_float(_first(raw, ("object_count", "objectCount", "count")))),
        recognized_types=[
            str(t) for t in _as_list(_first(raw, ("object_types", "recognizedTypes", "recognized_types")))
        ],
        confidence=_float(raw.get("confidence")),
    )


def _dimension(raw: Dict[str, Any]) -> Dimension:
    return Dimension(
        type=str(raw.get("type") or "linear"),
        value=_float(raw.get("value")),
        unit=str(raw.get("unit") or ""),
        confidence=_float(raw.get("confidence")),
        formatted_text=_first(raw, ("formatted_text", "formattedText")),
    )


def _finding(raw: Dict[str, Any]) -> ComplianceFinding:
    return ComplianceFinding(
        rule=str(_first(raw, ("rule", "rule_id"), "")),
        status=str(raw.get("status") or "not_applicable"),
        message=str(raw.get("message") or ""),
        confidence=_float(raw.get("confidence")),
        references=[str(r) for r in _as_list(raw.get("references"))],
    )


def _dicts(items: List[Any]) -> List[Dict[str, Any]]:
    return [i for i in items if isinstance(i, dict)]


class ResultIngestor:
    """Normalizes worker responses and mirrors a summary onto the subject."""

    def __init__(self, subjects: SubjectRepository):
        self.subjects = subjects

    def normalize(self, raw: Any, job: Job) -> RecognitionResults:
        if not isinstance(raw, dict):
            raise TransientExecutionError(
                f"Unexpected worker response type: {type(raw).__name__}",
                cause="invalid_response",
                job_id=job.id,
            )

        detections = [
            _detection(d)
            for d in _dicts(_as_list(_first(raw, ("detected_objects", "detections", "objects"))))
        ]
        text = [
            _text_region(t)
            for t in _as_list(_first(raw, ("extracted_text", "text_regions", "ocr_results")))
            if isinstance(t, (dict, str))
        ]
        layers = [_layer(l) for l in _dicts(_as_list(_first(raw, ("layer_analysis", "layers"))))]
        dimensions = [_dimension(d) for d in _dicts(_as_list(raw.get("dimensions")))]
        compliance = [
            _finding(f)
            for f in _dicts(_as_list(_first(raw, ("compliance_analysis", "compliance", "compliance_findings"))))
        ]

        statistics = ResultStatistics(
            count=len(detections),
            processing_time_ms=_float(_first(raw, ("processing_time_ms", "processingTimeMs"))),
            model_version=str(_first(raw, ("model_version", "modelVersion"), job.model_type.value)),
            **confidence_stats([d.confidence for d in detections]),
        )

        metadata = _first(raw, ("extracted_metadata", "metadata"), {})
        return RecognitionResults(
            detections=detections,
            extracted_text=text,
            layers=layers,
            dimensions=dimensions,
            compliance=compliance,
            metadata=metadata if isinstance(metadata, dict) else {},
            generated_files=_dicts(_as_list(raw.get("generated_files"))),
            statistics=statistics,
        )

    @staticmethod
    def subject_summary(results: RecognitionResults) -> Dict[str, Any]:
        return {
            "status": "completed",
            "completed_at": utcnow().isoformat(),
            "detected_objects": [d.model_dump(mode="json") for d in results.detections],
            "layer_analysis": [l.model_dump(mode="json") for l in results.layers],
            "text_recognition": [t.model_dump(mode="json") for t in results.extracted_text],
            "processing_time_ms": results.statistics.processing_time_ms,
        }

    async def publish(self, job: Job, results: RecognitionResults) -> None:
        await self.subjects.apply_ai_result(job.subject_id, self.subject_summary(results))
        logger.info(
            "Subject updated with recognition results",
            extra={"job_id": job.id, "subject_id": job.subject_id, "detections": len(results.detections)},
        )
