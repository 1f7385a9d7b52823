"""
Response envelopes for api.sunoapi.org.

Field names mirror the wire format. Anything that does not validate against
these models is rejected; there is no alias guessing.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

SUCCESS_CODE = 200

GENERATE_PENDING = {"PENDING", "TEXT_SUCCESS", "FIRST_SUCCESS"}
GENERATE_SUCCEEDED = {"SUCCESS"}
GENERATE_FAILED = {
    "CREATE_TASK_FAILED",
    "GENERATE_AUDIO_FAILED",
    "CALLBACK_EXCEPTION",
    "SENSITIVE_WORD_ERROR",
}

# vocal-removal and wav share the same flag vocabulary
TASK_PENDING = {"PENDING"}
TASK_SUCCEEDED = {"SUCCESS"}
TASK_FAILED = {"CREATE_TASK_FAILED", "GENERATE_AUDIO_FAILED", "CALLBACK_EXCEPTION"}


class SunoEnvelope(BaseModel):
    code: int
    msg: str = ""


class SunoTaskData(BaseModel):
    taskId: str = Field(min_length=1)


class SunoSubmitEnvelope(SunoEnvelope):
    data: SunoTaskData


class SunoTrackItem(BaseModel):
    id: str = Field(min_length=1)
    audioUrl: str = ""
    imageUrl: Optional[str] = None
    title: Optional[str] = None
    duration: Optional[float] = None
    prompt: Optional[str] = None
    tags: Optional[str] = None


class SunoGenerateResponse(BaseModel):
    sunoData: List[SunoTrackItem] = Field(default_factory=list)


class SunoGenerateRecord(BaseModel):
    taskId: str
    status: str
    response: Optional[SunoGenerateResponse] = None
    errorMessage: Optional[str] = None


class SunoGenerateRecordEnvelope(SunoEnvelope):
    data: SunoGenerateRecord


class SunoVocalResponse(BaseModel):
    vocalUrl: Optional[str] = None
    instrumentalUrl: Optional[str] = None
    originUrl: Optional[str] = None


class SunoVocalRecord(BaseModel):
    taskId: str
    successFlag: str
    response: Optional[SunoVocalResponse] = None
    errorMessage: Optional[str] = None


class SunoVocalRecordEnvelope(SunoEnvelope):
    data: SunoVocalRecord


class SunoWavResponse(BaseModel):
    audioWavUrl: Optional[str] = None


class SunoWavRecord(BaseModel):
    taskId: str
    successFlag: str
    response: Optional[SunoWavResponse] = None
    errorMessage: Optional[str] = None


class SunoWavRecordEnvelope(SunoEnvelope):
    data: SunoWavRecord


class SunoLyricsItem(BaseModel):
    text: str = ""
    title: Optional[str] = None
    status: Optional[str] = None


class SunoLyricsResponse(BaseModel):
    data: List[SunoLyricsItem] = Field(default_factory=list)


class SunoLyricsRecord(BaseModel):
    taskId: str
    status: str
    response: Optional[SunoLyricsResponse] = None
    errorMessage: Optional[str] = None


class SunoLyricsRecordEnvelope(SunoEnvelope):
    data: SunoLyricsRecord


class SunoStyleData(BaseModel):
    result: str = Field(min_length=1)


class SunoStyleEnvelope(SunoEnvelope):
    data: SunoStyleData


class SunoCallbackData(BaseModel):
    callbackType: str = ""
    task_id: str = Field(min_length=1)


class SunoCallback(BaseModel):
    code: int
    msg: str = ""
    data: SunoCallbackData
