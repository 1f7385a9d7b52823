from __future__ import annotations

from enum import Enum, IntEnum


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.completed, JobStatus.failed)


ACTIVE_STATUSES = (JobStatus.pending, JobStatus.processing)


class ProviderName(str, Enum):
    suno = "suno"
    mureka = "mureka"
    test = "test"


class RequestKind(str, Enum):
    generate = "generate"
    extend = "extend"
    separate_vocals = "separate_vocals"
    convert_wav = "convert_wav"


class PollState(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class StepName(str, Enum):
    style_refinement = "style_refinement"
    base_generation = "base_generation"
    extension = "extension"
    vocal_separation = "vocal_separation"
    wav_conversion = "wav_conversion"


STAGE_KINDS = {
    StepName.extension: RequestKind.extend,
    StepName.vocal_separation: RequestKind.separate_vocals,
    StepName.wav_conversion: RequestKind.convert_wav,
}


class Checkpoint(IntEnum):
    """Progress reported when a job enters each phase."""

    entitlement_check = 5
    prompt_refinement = 15
    lyric_generation = 30
    style_refinement = 45
    provider_generation = 70
    artifact_persistence = 85
    finalize = 100
