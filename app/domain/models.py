from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import JobStatus, ProviderName, StepName


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Stored records
# -----------------------------


class GenerationParams(BaseModel):
    """Immutable snapshot of what the caller asked for."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    style: str = "pop"
    duration_seconds: int = 60
    instrumental: bool = False
    lyrics: Optional[str] = None
    title: Optional[str] = None


class PipelineParams(GenerationParams):
    enable_extension: bool = False
    enable_vocal_separation: bool = False
    enable_wav_conversion: bool = False
    extend_at_seconds: int = 30
    extend_prompt: str = "Continue the song with a final chorus"

    def generation_params(self, *, style: Optional[str] = None) -> GenerationParams:
        return GenerationParams(
            prompt=self.prompt,
            style=style or self.style,
            duration_seconds=self.duration_seconds,
            instrumental=self.instrumental,
            lyrics=self.lyrics,
            title=self.title,
        )


class GenerationJob(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    provider: ProviderName
    model: str
    status: JobStatus = JobStatus.pending
    progress: int = 0
    request_params: GenerationParams
    request_hash: str = ""
    provider_task_id: Optional[str] = None
    result_track_id: Optional[UUID] = None
    response_data: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    revision: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Track(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    title: str
    duration_seconds: int = 0
    audio_location: str
    artwork_location: Optional[str] = None
    genre: Optional[str] = None
    provider: ProviderName
    provider_native_id: str
    lyrics: Optional[str] = None
    is_public: bool = False
    generation_job_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=utcnow)


class PipelineStep(BaseModel):
    name: StepName
    status: JobStatus = JobStatus.pending
    provider_task_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    progress: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class PipelineJob(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID
    provider: ProviderName
    model: str
    status: JobStatus = JobStatus.pending
    current_step_index: int = 0
    steps: List[PipelineStep]
    request_params: PipelineParams
    final_result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    revision: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# -----------------------------
# API (camelCase on the wire)
# -----------------------------


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class GenerationJobCreate(ApiModel):
    # Everything optional here; validators produce the user-facing messages.
    prompt: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    style: Optional[str] = None
    duration_seconds: Optional[int] = None
    instrumental: bool = False
    lyrics: Optional[str] = None
    title: Optional[str] = None


class PipelineCreate(GenerationJobCreate):
    enable_extension: bool = False
    enable_vocal_separation: bool = False
    enable_wav_conversion: bool = False
    extend_at_seconds: Optional[int] = None
    extend_prompt: Optional[str] = None


class JobCreatedOut(ApiModel):
    success: bool = True
    job_id: UUID
    status: JobStatus
    message: str
    deduplicated: bool = False
    previous_job_id: Optional[UUID] = None


class TrackOut(ApiModel):
    id: UUID
    title: str
    duration_seconds: int
    audio_location: str
    artwork_location: Optional[str] = None
    genre: Optional[str] = None
    provider: ProviderName
    provider_native_id: str
    lyrics: Optional[str] = None
    is_public: bool = False
    created_at: datetime


class JobOut(ApiModel):
    success: bool = True
    job_id: UUID
    provider: ProviderName
    model: str
    status: JobStatus
    progress: int
    provider_task_id: Optional[str] = None
    result_track_id: Optional[UUID] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    track: Optional[TrackOut] = None


class StepSummaryOut(ApiModel):
    name: StepName
    status: JobStatus


class PipelineCreatedOut(ApiModel):
    success: bool = True
    pipeline_id: UUID
    steps: List[StepSummaryOut]
    message: str


class PipelineStepOut(ApiModel):
    name: StepName
    status: JobStatus
    progress: int = 0
    provider_task_id: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


class PipelineStatusOut(ApiModel):
    success: bool = True
    pipeline_id: UUID
    status: JobStatus
    current_step_index: int
    steps: List[PipelineStepOut]
    aggregate_progress: float
    estimated_time_remaining: int
    final_result: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None


class CleanupOut(ApiModel):
    success: bool = True
    cleaned_jobs: int
    cleaned_pipelines: int = 0
    message: str = ""
