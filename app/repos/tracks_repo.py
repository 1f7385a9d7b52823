from __future__ import annotations

from typing import Any, Mapping, Optional
from uuid import UUID

import asyncpg

from app.domain.models import Track

_COLUMNS = """
  id, user_id, title, duration, file_url, artwork_url, genre, provider,
  provider_track_id, lyrics, is_public, generation_job_id, created_at
"""


def _to_track(row: Mapping[str, Any]) -> Track:
    return Track(
        id=row["id"],
        owner_id=row["user_id"],
        title=row["title"],
        duration_seconds=row["duration"],
        audio_location=row["file_url"],
        artwork_location=row["artwork_url"],
        genre=row["genre"],
        provider=row["provider"],
        provider_native_id=row["provider_track_id"],
        lyrics=row["lyrics"],
        is_public=row["is_public"],
        generation_job_id=row["generation_job_id"],
        created_at=row["created_at"],
    )


class TracksRepo:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert(self, track: Track) -> Track:
        # generation_job_id is UNIQUE: a replayed persist returns the existing row
        sql = f"""
        INSERT INTO tracks (
          id, user_id, title, duration, file_url, artwork_url, genre, provider,
          provider_track_id, lyrics, is_public, generation_job_id
        )
        VALUES ($1::uuid, $2::uuid, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12::uuid)
        ON CONFLICT (generation_job_id) DO UPDATE SET generation_job_id = EXCLUDED.generation_job_id
        RETURNING {_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                sql,
                track.id,
                track.owner_id,
                track.title,
                track.duration_seconds,
                track.audio_location,
                track.artwork_location,
                track.genre,
                track.provider.value,
                track.provider_native_id,
                track.lyrics,
                track.is_public,
                track.generation_job_id,
            )
        return _to_track(row)

    async def get(self, track_id: UUID) -> Optional[Track]:
        sql = f"SELECT {_COLUMNS} FROM tracks WHERE id = $1::uuid"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, track_id)
        return _to_track(row) if row else None

    async def get_by_generation_job(self, job_id: UUID) -> Optional[Track]:
        sql = f"SELECT {_COLUMNS} FROM tracks WHERE generation_job_id = $1::uuid"
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(sql, job_id)
        return _to_track(row) if row else None
