"""Request models for the job API."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.jobs.models import JobStatus, MAX_PRIORITY, MIN_PRIORITY
from app.models.base import ModelType


class JobCreate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    subject_id: str
    model_type: ModelType
    priority: Optional[int] = Field(default=None, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    model_options: Dict[str, Any] = Field(default_factory=dict)
    processing_params: Dict[str, Any] = Field(default_factory=dict)
    scheduled_for: Optional[datetime] = None
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)


class JobBatchCreate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    subject_ids: List[str] = Field(min_length=1, max_length=100)
    model_type: ModelType
    base_name: str = "Batch Processing"
    priority: Optional[int] = Field(default=None, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    model_options: Dict[str, Any] = Field(default_factory=dict)
    processing_params: Dict[str, Any] = Field(default_factory=dict)


class JobUpdate(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    priority: Optional[int] = Field(default=None, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    model_options: Optional[Dict[str, Any]] = None
    processing_params: Optional[Dict[str, Any]] = None
    scheduled_for: Optional[datetime] = None
    max_attempts: Optional[int] = Field(default=None, ge=1, le=10)


class ExecuteRequest(BaseModel):
    force: bool = False
    worker_id: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0, description="Seconds")


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class ReportRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    model_types: List[ModelType] = Field(default_factory=list)
    statuses: List[JobStatus] = Field(default_factory=list)
    include_results: bool = False
