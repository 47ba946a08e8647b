"""Storage contracts and in-memory implementations for engagement activity."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, MutableMapping, Protocol, Sequence
from uuid import uuid4

from ggdb.domain.activity.models import (
    PAYLOAD_FIELDS,
    REACTION_TYPES,
    Achievement,
    ActivityRecord,
    ActivityType,
    GameSnapshot,
    GameStats,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def build_record(
    user_id: str,
    game_id: str,
    activity_type: ActivityType,
    payload: Mapping[str, Any] | None = None,
    *,
    at: datetime | None = None,
) -> ActivityRecord:
    """Create an unsaved record, ignoring payload keys the caller may not set."""
    moment = at or _now()
    record = ActivityRecord(
        id=str(uuid4()),
        user_id=str(user_id),
        game_id=str(game_id),
        activity_type=activity_type,
        date=moment,
        updated_at=moment,
    )
    return apply_payload(record, payload or {})


def apply_payload(record: ActivityRecord, payload: Mapping[str, Any]) -> ActivityRecord:
    changes: dict[str, Any] = {}
    for key, value in payload.items():
        if key not in PAYLOAD_FIELDS or value is None:
            continue
        if key == "achievements":
            value = [item if isinstance(item, Achievement) else Achievement.from_mapping(item) for item in value]
        elif key in ("review_images", "game_genres", "game_platforms"):
            value = [str(item) for item in value]
        changes[key] = value
    return replace(record, **changes) if changes else record


class ActivityRepository(Protocol):
    """Abstract persistence layer for activity records (the source of truth)."""

    async def find_one(self, user_id: str, game_id: str, activity_type: ActivityType) -> ActivityRecord | None:
        """Return the record of the given type for (user, game), if any."""

    async def find_reaction(self, user_id: str, game_id: str) -> ActivityRecord | None:
        """Return whichever like/dislike/loved record (user, game) currently holds."""

    async def get(self, activity_id: str) -> ActivityRecord | None:
        """Fetch a record by identifier."""

    async def upsert_current(
        self,
        user_id: str,
        game_id: str,
        activity_type: ActivityType,
        payload: Mapping[str, Any],
    ) -> ActivityRecord:
        """Replace or create the single current record for a singleton or reaction type.

        Reactions share one slot per (user, game), so writing a reaction replaces any
        other reaction atomically.
        """

    async def upsert_reaction(
        self,
        user_id: str,
        game_id: str,
        reaction: ActivityType,
        payload: Mapping[str, Any],
    ) -> tuple[ActivityRecord, bool]:
        """Write a reaction into the shared slot; the flag is True when an existing row was overwritten."""

    async def insert(self, record: ActivityRecord) -> ActivityRecord:
        """Append a record for an append-only type."""

    async def delete(self, user_id: str, game_id: str, activity_type: ActivityType) -> bool:
        """Remove the record if present; return whether anything was removed."""

    async def delete_by_id(self, activity_id: str) -> ActivityRecord | None:
        """Remove a record by identifier and return it."""

    async def delete_many(
        self,
        user_id: str,
        game_id: str,
        activity_types: Iterable[ActivityType],
    ) -> list[ActivityType]:
        """Remove every record of the given types for (user, game); return the removed types."""

    async def count_by_game_and_type(
        self,
        game_id: str,
        activity_type: ActivityType,
        *,
        min_progress: int | None = None,
    ) -> int:
        """Count records of a type for a game, optionally requiring progress >= min_progress."""

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
        """Return a user's records newest first."""

    async def refresh_snapshot(self, activity_id: str, snapshot: GameSnapshot) -> None:
        """Overwrite the denormalized game display fields of a record."""


class GameRepository(Protocol):
    """Boundary to the game catalog: display data plus the embedded stats aggregate."""

    async def get_snapshot(self, game_id: str) -> GameSnapshot | None:
        """Return the game's display data, or None when the game does not exist."""

    async def get_stats(self, game_id: str) -> GameStats | None:
        """Return the cached counters (zeros when never initialized), or None for unknown games."""

    async def apply_stat_delta(self, game_id: str, counter: str, delta: int) -> GameStats | None:
        """Atomically add delta to one counter, flooring at zero and initializing the aggregate."""

    async def set_stats(self, game_id: str, stats: GameStats) -> bool:
        """Overwrite the aggregate; return False for unknown games."""

    async def list_game_ids(self, *, after: str | None = None, limit: int = 500) -> Sequence[str]:
        """Return game identifiers in ascending order, starting after the given id."""


@dataclass
class InMemoryActivityRepository(ActivityRepository):
    """Simple repository with in-memory state for local development and tests."""

    records: MutableMapping[str, ActivityRecord] = field(default_factory=dict)

    def _matching(self, user_id: str, game_id: str, types: Iterable[ActivityType]) -> list[ActivityRecord]:
        wanted = set(types)
        return [
            record
            for record in self.records.values()
            if record.user_id == str(user_id) and record.game_id == str(game_id) and record.activity_type in wanted
        ]

    async def find_one(self, user_id: str, game_id: str, activity_type: ActivityType) -> ActivityRecord | None:
        matches = self._matching(user_id, game_id, [activity_type])
        if not matches:
            return None
        return max(matches, key=lambda record: record.date)

    async def find_reaction(self, user_id: str, game_id: str) -> ActivityRecord | None:
        matches = self._matching(user_id, game_id, REACTION_TYPES)
        return matches[0] if matches else None

    async def get(self, activity_id: str) -> ActivityRecord | None:
        return self.records.get(str(activity_id))

    async def upsert_current(
        self,
        user_id: str,
        game_id: str,
        activity_type: ActivityType,
        payload: Mapping[str, Any],
    ) -> ActivityRecord:
        slot = REACTION_TYPES if activity_type in REACTION_TYPES else [activity_type]
        existing = self._matching(user_id, game_id, slot)
        now = _now()
        if existing:
            current = replace(existing[0], activity_type=activity_type, date=now, updated_at=now)
            current = apply_payload(current, payload)
        else:
            current = build_record(user_id, game_id, activity_type, payload, at=now)
        self.records[current.id] = current
        return current

    async def upsert_reaction(
        self,
        user_id: str,
        game_id: str,
        reaction: ActivityType,
        payload: Mapping[str, Any],
    ) -> tuple[ActivityRecord, bool]:
        replaced = bool(self._matching(user_id, game_id, REACTION_TYPES))
        return await self.upsert_current(user_id, game_id, reaction, payload), replaced

    async def insert(self, record: ActivityRecord) -> ActivityRecord:
        self.records[record.id] = record
        return record

    async def delete(self, user_id: str, game_id: str, activity_type: ActivityType) -> bool:
        return bool(await self.delete_many(user_id, game_id, [activity_type]))

    async def delete_by_id(self, activity_id: str) -> ActivityRecord | None:
        return self.records.pop(str(activity_id), None)

    async def delete_many(
        self,
        user_id: str,
        game_id: str,
        activity_types: Iterable[ActivityType],
    ) -> list[ActivityType]:
        removed: list[ActivityType] = []
        for record in self._matching(user_id, game_id, activity_types):
            del self.records[record.id]
            removed.append(record.activity_type)
        return removed

    async def count_by_game_and_type(
        self,
        game_id: str,
        activity_type: ActivityType,
        *,
        min_progress: int | None = None,
    ) -> int:
        count = 0
        for record in self.records.values():
            if record.game_id != str(game_id) or record.activity_type is not activity_type:
                continue
            if min_progress is not None and (record.progress or 0) < min_progress:
                continue
            count += 1
        return count

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
        allowed = set(visibilities) if visibilities is not None else None
        rows = [
            record
            for record in self.records.values()
            if record.user_id == str(user_id)
            and (activity_type is None or record.activity_type is activity_type)
            and (since is None or record.date >= since)
            and (allowed is None or record.visibility in allowed)
        ]
        rows.sort(key=lambda record: (record.date, record.id), reverse=True)
        return rows[offset : offset + limit]

    async def refresh_snapshot(self, activity_id: str, snapshot: GameSnapshot) -> None:
        record = self.records.get(str(activity_id))
        if record is not None:
            self.records[record.id] = record.with_snapshot(snapshot)


@dataclass
class InMemoryGame:
    snapshot: GameSnapshot
    activity_stats: dict[str, Any] | None = None


_COUNTER_KEYS = tuple(key for key in GameStats().to_mapping() if key != "lastUpdated")


@dataclass
class InMemoryGameRepository(GameRepository):
    """Game catalog stand-in holding snapshots and the embedded aggregate in memory."""

    games: MutableMapping[str, InMemoryGame] = field(default_factory=dict)

    def add_game(self, game_id: str, title: str = "", **extra: Any) -> GameSnapshot:
        known = {f.name for f in fields(GameSnapshot)}
        snapshot = GameSnapshot(game_id=str(game_id), title=title, **{k: v for k, v in extra.items() if k in known})
        self.games[str(game_id)] = InMemoryGame(snapshot=snapshot)
        return snapshot

    async def get_snapshot(self, game_id: str) -> GameSnapshot | None:
        game = self.games.get(str(game_id))
        return game.snapshot if game else None

    async def get_stats(self, game_id: str) -> GameStats | None:
        game = self.games.get(str(game_id))
        if game is None:
            return None
        return GameStats.from_mapping(game.activity_stats)

    async def apply_stat_delta(self, game_id: str, counter: str, delta: int) -> GameStats | None:
        if counter not in _COUNTER_KEYS:
            raise ValueError(f"unknown counter: {counter}")
        game = self.games.get(str(game_id))
        if game is None:
            return None
        if game.activity_stats is None:
            game.activity_stats = GameStats().to_mapping()
        game.activity_stats[counter] = max(0, int(game.activity_stats.get(counter) or 0) + delta)
        game.activity_stats["lastUpdated"] = _now().isoformat()
        return GameStats.from_mapping(game.activity_stats)

    async def set_stats(self, game_id: str, stats: GameStats) -> bool:
        game = self.games.get(str(game_id))
        if game is None:
            return False
        game.activity_stats = stats.to_mapping()
        return True

    async def list_game_ids(self, *, after: str | None = None, limit: int = 500) -> Sequence[str]:
        ids = sorted(self.games)
        if after is not None:
            ids = [game_id for game_id in ids if game_id > after]
        return ids[:limit]
