"""PostgreSQL-backed repositories for activity records and game aggregates."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional, Sequence
from uuid import UUID

import asyncpg

from ggdb.domain.activity.models import (
    PAYLOAD_FIELDS,
    REACTION_TYPES,
    SINGLETON_TYPES,
    Achievement,
    ActivityRecord,
    ActivityType,
    GameSnapshot,
    GameStats,
)
from ggdb.domain.activity.repository import ActivityRepository, GameRepository, build_record
from ggdb.infra.postgres import get_pool

_REACTION_PREDICATE = "activity_type IN ('like', 'dislike', 'loved')"
_SINGLETON_PREDICATE = "activity_type IN ('plantoplay', 'progress')"

_RECORD_COLUMNS = (
    "id",
    "user_id",
    "game_id",
    "activity_type",
    "progress",
    "rating",
    "comment",
    "spoiler",
    "review_title",
    "review_text",
    "review_recommended",
    "review_helpful",
    "review_images",
    "achievements",
    "session_duration",
    "completion_time",
    "platform",
    "device",
    "difficulty",
    "playstyle",
    "visibility",
    "source",
    "game_title",
    "game_cover",
    "game_genres",
    "game_platforms",
    "date",
    "updated_at",
)
_SELECT = ", ".join(_RECORD_COLUMNS)

_COUNTER_KEYS = frozenset(key for key in GameStats().to_mapping() if key != "lastUpdated")


def _decode_json(raw: Any) -> Any:
    if isinstance(raw, str):
        return json.loads(raw)
    return raw


def _record_from_row(row: Mapping[str, Any]) -> ActivityRecord:
    achievements = _decode_json(row.get("achievements")) or []
    return ActivityRecord(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        game_id=str(row["game_id"]),
        activity_type=ActivityType(row["activity_type"]),
        date=row["date"],
        updated_at=row["updated_at"],
        progress=row.get("progress"),
        rating=row.get("rating"),
        comment=row.get("comment"),
        spoiler=row.get("spoiler"),
        review_title=row.get("review_title") or "",
        review_text=row.get("review_text") or "",
        review_recommended=row.get("review_recommended"),
        review_helpful=row.get("review_helpful") or 0,
        review_images=list(row.get("review_images") or []),
        achievements=[Achievement.from_mapping(item) for item in achievements],
        session_duration=row.get("session_duration") or 0,
        completion_time=row.get("completion_time") or 0,
        platform=row.get("platform") or "",
        device=row.get("device") or "",
        difficulty=row.get("difficulty") or "",
        playstyle=row.get("playstyle") or "",
        visibility=row.get("visibility") or "public",
        source=row.get("source") or "manual",
        game_title=row.get("game_title") or "",
        game_cover=row.get("game_cover") or "",
        game_genres=list(row.get("game_genres") or []),
        game_platforms=list(row.get("game_platforms") or []),
    )


def _column_value(record: ActivityRecord, column: str) -> Any:
    value = getattr(record, column)
    if column == "id":
        return UUID(value)
    if column == "activity_type":
        return value.value
    if column == "achievements":
        return json.dumps([item.to_mapping() for item in value])
    return value


def _placeholder(column: str, index: int) -> str:
    return f"${index}::jsonb" if column == "achievements" else f"${index}"


class PostgresActivityRepository(ActivityRepository):
    """Persists activity records using asyncpg."""

    def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        return await get_pool()

    async def find_one(self, user_id: str, game_id: str, activity_type: ActivityType) -> ActivityRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            SELECT {_SELECT} FROM game_activities
            WHERE user_id = $1 AND game_id = $2 AND activity_type = $3
            ORDER BY date DESC
            LIMIT 1
            """,
            str(user_id),
            str(game_id),
            activity_type.value,
        )
        return _record_from_row(row) if row else None

    async def find_reaction(self, user_id: str, game_id: str) -> ActivityRecord | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"SELECT {_SELECT} FROM game_activities WHERE user_id = $1 AND game_id = $2 AND {_REACTION_PREDICATE}",
            str(user_id),
            str(game_id),
        )
        return _record_from_row(row) if row else None

    async def get(self, activity_id: str) -> ActivityRecord | None:
        try:
            key = UUID(str(activity_id))
        except ValueError:
            return None
        pool = await self._get_pool()
        row = await pool.fetchrow(f"SELECT {_SELECT} FROM game_activities WHERE id = $1", key)
        return _record_from_row(row) if row else None

    async def _upsert(
        self,
        user_id: str,
        game_id: str,
        activity_type: ActivityType,
        payload: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        if activity_type in REACTION_TYPES:
            conflict = f"(user_id, game_id) WHERE {_REACTION_PREDICATE}"
        elif activity_type in SINGLETON_TYPES:
            conflict = f"(user_id, game_id, activity_type) WHERE {_SINGLETON_PREDICATE}"
        else:
            raise ValueError(f"{activity_type.value} records are append-only")

        record = build_record(user_id, game_id, activity_type, payload)
        supplied = sorted(key for key, value in payload.items() if key in PAYLOAD_FIELDS and value is not None)
        columns = ["id", "user_id", "game_id", "activity_type", *supplied]
        values = [_column_value(record, column) for column in columns]
        placeholders = ", ".join(_placeholder(column, idx) for idx, column in enumerate(columns, start=1))
        updates = ", ".join(
            ["activity_type = EXCLUDED.activity_type", "date = now()", "updated_at = now()"]
            + [f"{column} = EXCLUDED.{column}" for column in supplied]
        )
        query = f"""
        INSERT INTO game_activities ({", ".join(columns)})
        VALUES ({placeholders})
        ON CONFLICT {conflict}
        DO UPDATE SET {updates}
        RETURNING {_SELECT}, (xmax <> 0) AS replaced
        """
        pool = await self._get_pool()
        row = await pool.fetchrow(query, *values)
        if row is None:
            raise RuntimeError(f"upsert of {activity_type.value} returned no row")
        return row

    async def upsert_current(
        self,
        user_id: str,
        game_id: str,
        activity_type: ActivityType,
        payload: Mapping[str, Any],
    ) -> ActivityRecord:
        return _record_from_row(await self._upsert(user_id, game_id, activity_type, payload))

    async def upsert_reaction(
        self,
        user_id: str,
        game_id: str,
        reaction: ActivityType,
        payload: Mapping[str, Any],
    ) -> tuple[ActivityRecord, bool]:
        # xmax is set on the returned row only when ON CONFLICT took the update branch.
        if reaction not in REACTION_TYPES:
            raise ValueError(f"{reaction.value} is not a reaction")
        row = await self._upsert(user_id, game_id, reaction, payload)
        return _record_from_row(row), bool(row.get("replaced"))

    async def insert(self, record: ActivityRecord) -> ActivityRecord:
        columns = list(_RECORD_COLUMNS)
        placeholders = ", ".join(_placeholder(column, idx) for idx, column in enumerate(columns, start=1))
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"INSERT INTO game_activities ({_SELECT}) VALUES ({placeholders}) RETURNING {_SELECT}",
            *[_column_value(record, column) for column in columns],
        )
        if row is None:
            raise RuntimeError(f"insert of activity {record.id} returned no row")
        return _record_from_row(row)

    async def delete(self, user_id: str, game_id: str, activity_type: ActivityType) -> bool:
        return bool(await self.delete_many(user_id, game_id, [activity_type]))

    async def delete_by_id(self, activity_id: str) -> ActivityRecord | None:
        try:
            key = UUID(str(activity_id))
        except ValueError:
            return None
        pool = await self._get_pool()
        row = await pool.fetchrow(f"DELETE FROM game_activities WHERE id = $1 RETURNING {_SELECT}", key)
        return _record_from_row(row) if row else None

    async def delete_many(
        self,
        user_id: str,
        game_id: str,
        activity_types: Iterable[ActivityType],
    ) -> list[ActivityType]:
        types = [activity_type.value for activity_type in activity_types]
        if not types:
            return []
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            DELETE FROM game_activities
            WHERE user_id = $1 AND game_id = $2 AND activity_type = ANY($3::text[])
            RETURNING activity_type
            """,
            str(user_id),
            str(game_id),
            types,
        )
        return [ActivityType(row["activity_type"]) for row in rows]

    async def count_by_game_and_type(
        self,
        game_id: str,
        activity_type: ActivityType,
        *,
        min_progress: int | None = None,
    ) -> int:
        query = "SELECT COUNT(*) FROM game_activities WHERE game_id = $1 AND activity_type = $2"
        params: list[Any] = [str(game_id), activity_type.value]
        if min_progress is not None:
            query += " AND COALESCE(progress, 0) >= $3"
            params.append(min_progress)
        pool = await self._get_pool()
        return int(await pool.fetchval(query, *params) or 0)

    async def list_by_user(
        self,
        user_id: str,
        *,
        activity_type: ActivityType | None = None,
        since: datetime | None = None,
        visibilities: Iterable[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[ActivityRecord]:
        clauses = ["user_id = $1"]
        params: list[Any] = [str(user_id)]
        if activity_type is not None:
            params.append(activity_type.value)
            clauses.append(f"activity_type = ${len(params)}")
        if since is not None:
            params.append(since)
            clauses.append(f"date >= ${len(params)}")
        if visibilities is not None:
            params.append(list(visibilities))
            clauses.append(f"visibility = ANY(${len(params)}::text[])")
        params.extend([limit, offset])
        query = (
            f"SELECT {_SELECT} FROM game_activities WHERE {' AND '.join(clauses)} "
            f"ORDER BY date DESC, id DESC LIMIT ${len(params) - 1} OFFSET ${len(params)}"
        )
        pool = await self._get_pool()
        rows = await pool.fetch(query, *params)
        return [_record_from_row(row) for row in rows]

    async def refresh_snapshot(self, activity_id: str, snapshot: GameSnapshot) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            UPDATE game_activities
            SET game_title = $2, game_cover = $3, game_genres = $4, game_platforms = $5
            WHERE id = $1
            """,
            UUID(str(activity_id)),
            snapshot.title,
            snapshot.cover_image,
            list(snapshot.genres),
            list(snapshot.platforms),
        )


class PostgresGameRepository(GameRepository):
    """Reads game display data and maintains games.activity_stats."""

    def __init__(self, pool: Optional[asyncpg.Pool] = None) -> None:
        self._pool = pool

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool
        return await get_pool()

    async def get_snapshot(self, game_id: str) -> GameSnapshot | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            "SELECT id, title, cover_image, genres, platforms FROM games WHERE id = $1",
            str(game_id),
        )
        if not row:
            return None
        return GameSnapshot(
            game_id=str(row["id"]),
            title=row["title"] or "",
            cover_image=row["cover_image"] or "",
            genres=list(row["genres"] or []),
            platforms=list(row["platforms"] or []),
        )

    async def get_stats(self, game_id: str) -> GameStats | None:
        pool = await self._get_pool()
        row = await pool.fetchrow("SELECT activity_stats FROM games WHERE id = $1", str(game_id))
        if not row:
            return None
        return GameStats.from_mapping(_decode_json(row["activity_stats"]))

    async def apply_stat_delta(self, game_id: str, counter: str, delta: int) -> GameStats | None:
        if counter not in _COUNTER_KEYS:
            raise ValueError(f"unknown counter: {counter}")
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            UPDATE games
            SET activity_stats = COALESCE(activity_stats, $3::jsonb) || jsonb_build_object(
                $2::text, GREATEST(0, COALESCE((activity_stats ->> $2::text)::int, 0) + $4::int),
                'lastUpdated', to_jsonb(now())
            )
            WHERE id = $1
            RETURNING activity_stats
            """,
            str(game_id),
            counter,
            json.dumps(GameStats().to_mapping()),
            int(delta),
        )
        if not row:
            return None
        return GameStats.from_mapping(_decode_json(row["activity_stats"]))

    async def set_stats(self, game_id: str, stats: GameStats) -> bool:
        pool = await self._get_pool()
        status = await pool.execute(
            "UPDATE games SET activity_stats = $2::jsonb WHERE id = $1",
            str(game_id),
            json.dumps(stats.to_mapping()),
        )
        return str(status).strip().endswith(" 1")

    async def list_game_ids(self, *, after: str | None = None, limit: int = 500) -> Sequence[str]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            "SELECT id FROM games WHERE ($1::text IS NULL OR id > $1::text) ORDER BY id LIMIT $2",
            after,
            limit,
        )
        return [str(row["id"]) for row in rows]
