"""Models API: list the recognition model catalog."""

from fastapi import APIRouter, HTTPException
from typing import Optional

from app.models.base import ModelType
from app.models.registry import registry

router = APIRouter()


def _describe(spec) -> dict:
    return {
        "model_type": spec.model_type.value,
        "name": spec.name,
        "endpoint": spec.endpoint,
        "timeout_seconds": spec.timeout_seconds,
        "max_file_size": spec.max_file_size,
        "supported_formats": spec.supported_formats,
        "categories": [c.value for c in spec.categories],
        "confidence_threshold": spec.confidence_threshold,
    }


@router.get("/models")
async def list_models(
    category: Optional[str] = None,
    file_format: Optional[str] = None,
):
    """List all catalog models with optional filtering."""
    specs = registry.list_models(category=category, file_format=file_format)
    return {
        "models": [_describe(s) for s in specs],
        "count": len(specs),
    }


@router.get("/models/{model_type}")
async def get_model(model_type: ModelType):
    try:
        spec = registry.get(model_type)
    except KeyError:
        raise HTTPException(status_code=404, detail="Model not found")
    return {**_describe(spec), "default_config": spec.default_config()}
