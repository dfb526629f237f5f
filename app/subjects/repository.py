"""Subject (plan document) repository consumed by the job service."""

import asyncio
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.config import settings
from app.jobs.errors import NotFoundError


@dataclass
class Subject:
    """The document a job analyzes. Owned by the plan registry, read-only here."""
    id: str
    tenant_id: str
    original_name: str
    file_ref: str
    mime_type: Optional[str] = None
    subject_type: Optional[str] = None
    size_bytes: Optional[int] = None
    ai_processing: Dict[str, Any] = field(default_factory=dict)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.original_name)[1].lower().lstrip(".")


class SubjectRepository(ABC):

    @abstractmethod
    async def get_by_id(self, subject_id: str, tenant_id: str) -> Subject:
        """Return the subject or raise NotFoundError."""
        ...

    @abstractmethod
    async def apply_ai_result(self, subject_id: str, result_summary: Dict[str, Any]) -> None:
        """Write the latest AI-derived state back onto the subject."""
        ...

    async def get_many(self, subject_ids: List[str], tenant_id: str) -> List[Subject]:
        found = []
        missing = []
        for subject_id in subject_ids:
            try:
                found.append(await self.get_by_id(subject_id, tenant_id))
            except NotFoundError:
                missing.append(subject_id)
        if missing:
            raise NotFoundError(f"Subjects not found: {', '.join(missing)}")
        return found


class InMemorySubjectRepository(SubjectRepository):

    def __init__(self, subjects: Optional[List[Subject]] = None):
        self._subjects: Dict[str, Subject] = {s.id: s for s in subjects or []}

    def add(self, subject: Subject) -> Subject:
        self._subjects[subject.id] = subject
        return subject

    async def get_by_id(self, subject_id: str, tenant_id: str) -> Subject:
        subject = self._subjects.get(subject_id)
        if subject is None or subject.tenant_id != tenant_id:
            raise NotFoundError(f"Subject {subject_id} not found")
        return subject

    async def apply_ai_result(self, subject_id: str, result_summary: Dict[str, Any]) -> None:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise NotFoundError(f"Subject {subject_id} not found")
        subject.ai_processing = dict(result_summary)


class SupabaseSubjectRepository(SubjectRepository):
    """Reads subjects from the plan registry table and writes ``ai_processing`` back."""

    def __init__(self, client=None, table: Optional[str] = None):
        self._client = client
        self._table = table or settings.subjects_table

    def _supabase(self):
        if self._client is None:
            from app.db.supabase_client import get_supabase
            self._client = get_supabase()
        return self._client

    async def get_by_id(self, subject_id: str, tenant_id: str) -> Subject:
        request = (
            self._supabase().table(self._table)
            .select("id, tenant_id, original_name, filename, mime_type, planta_tipo, file_size, ai_processing")
            .eq("id", subject_id)
            .eq("tenant_id", tenant_id)
            .eq("is_active", True)
            .limit(1)
        )
        response = await asyncio.to_thread(request.execute)
        if not response.data:
            raise NotFoundError(f"Subject {subject_id} not found")
        row = response.data[0]
        return Subject(
            id=row["id"],
            tenant_id=row["tenant_id"],
            original_name=row.get("original_name") or "",
            file_ref=row.get("filename") or "",
            mime_type=row.get("mime_type"),
            subject_type=row.get("planta_tipo"),
            size_bytes=row.get("file_size"),
            ai_processing=row.get("ai_processing") or {},
        )

    async def apply_ai_result(self, subject_id: str, result_summary: Dict[str, Any]) -> None:
        request = self._supabase().table(self._table).update(
            {"ai_processing": result_summary}
        ).eq("id", subject_id)
        await asyncio.to_thread(request.execute)
