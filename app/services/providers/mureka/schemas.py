from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

PENDING = {"preparing", "queued", "running", "streaming", "reviewing"}
SUCCEEDED = {"succeeded"}
FAILED = {"failed", "timeouted", "cancelled"}


class MurekaChoice(BaseModel):
    id: Optional[str] = None
    url: Optional[str] = None
    flac_url: Optional[str] = None
    duration: Optional[int] = None  # milliseconds


class MurekaTask(BaseModel):
    id: str = Field(min_length=1)
    status: str
    model: Optional[str] = None
    failed_reason: Optional[str] = None
    choices: List[MurekaChoice] = Field(default_factory=list)


class MurekaLyrics(BaseModel):
    title: Optional[str] = None
    lyrics: str = ""
