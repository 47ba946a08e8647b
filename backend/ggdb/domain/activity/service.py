"""Engagement operations: reaction toggles, progress, reviews and activity reads."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from ggdb.domain.activity.exceptions import (
    ActivityForbidden,
    ActivityNotFound,
    ActivityValidationError,
    GameNotFound,
)
from ggdb.domain.activity.models import (
    COMPLETED_PROGRESS,
    DIFFICULTIES,
    PLAYSTYLES,
    REACTION_TYPES,
    SOURCES,
    VISIBILITIES,
    ActivityRecord,
    ActivityType,
    GameSnapshot,
    GameStats,
    ReactionToggle,
    TimeRange,
    snapshot_payload,
)
from ggdb.domain.activity.postgres_repo import PostgresActivityRepository, PostgresGameRepository
from ggdb.domain.activity.repository import (
    ActivityRepository,
    GameRepository,
    InMemoryActivityRepository,
    InMemoryGameRepository,
    build_record,
)
from ggdb.domain.activity.stats import ActivityStatsService, mark_dirty
from ggdb.obs import metrics as obs_metrics
from ggdb.settings import settings

logger = logging.getLogger(__name__)

# kind accepted by count_activity -> (record type, minimum progress)
COUNT_KINDS: Mapping[str, tuple[ActivityType, Optional[int]]] = {
    "liked": (ActivityType.LIKE, None),
    "disliked": (ActivityType.DISLIKE, None),
    "loved": (ActivityType.LOVED, None),
    "plantoplay": (ActivityType.PLAN_TO_PLAY, None),
    "reviews": (ActivityType.REVIEW, None),
    "players": (ActivityType.PROGRESS, 1),
    "completed": (ActivityType.PROGRESS, COMPLETED_PROGRESS),
}

PUBLIC_ONLY = ("public",)


def default_repositories() -> tuple[ActivityRepository, GameRepository]:
    if settings.activity_store == "memory":
        return InMemoryActivityRepository(), InMemoryGameRepository()
    return PostgresActivityRepository(), PostgresGameRepository()


def _clamp_progress(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        raise ActivityValidationError("progress_not_numeric")
    if isinstance(value, float):
        if not value.is_integer():
            raise ActivityValidationError("progress_not_integer")
        value = int(value)
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise ActivityValidationError("progress_not_numeric") from None
    if not isinstance(value, int):
        raise ActivityValidationError("progress_not_numeric")
    return max(0, min(COMPLETED_PROGRESS, value))


def _check_context(context: Mapping[str, Any]) -> dict[str, Any]:
    """Validate optional metadata before anything is written."""
    cleaned = {key: value for key, value in context.items() if value is not None}
    for key, allowed in (
        ("difficulty", DIFFICULTIES),
        ("playstyle", PLAYSTYLES),
        ("visibility", VISIBILITIES),
        ("source", SOURCES),
    ):
        if key in cleaned and cleaned[key] not in allowed:
            raise ActivityValidationError(f"invalid_{key}")
    for key in ("session_duration", "completion_time"):
        if key in cleaned and cleaned[key] < 0:
            raise ActivityValidationError(f"invalid_{key}")
    return cleaned


class ActivityService:
    """Request-facing engagement operations.

    Every mutation follows the same order: look up the game, clear conflicting
    records, write the record, then move the counters. A failure before the
    record write leaves counters untouched.
    """

    def __init__(
        self,
        activities: ActivityRepository | None = None,
        games: GameRepository | None = None,
    ) -> None:
        if activities is None or games is None:
            default_activities, default_games = default_repositories()
            activities = activities or default_activities
            games = games or default_games
        self.activities = activities
        self.games = games
        self.stats = ActivityStatsService(activities, games)

    async def _require_game(self, game_id: str) -> GameSnapshot:
        snapshot = await self.games.get_snapshot(str(game_id))
        if snapshot is None:
            raise GameNotFound()
        return snapshot

    # --- reactions -------------------------------------------------------------

    async def toggle_reaction(
        self,
        user_id: str,
        game_id: str,
        reaction: ActivityType,
        context: Mapping[str, Any] | None = None,
    ) -> ReactionToggle:
        """Flip one of like/dislike/loved; switching reactions clears the previous one."""
        if reaction not in REACTION_TYPES:
            raise ActivityValidationError("not_a_reaction")
        extra = _check_context(context or {})
        snapshot = await self._require_game(game_id)
        current = await self.activities.find_reaction(user_id, game_id)

        if current is not None and current.activity_type is reaction:
            if await self.activities.delete(user_id, game_id, reaction):
                obs_metrics.inc_activity_event(reaction.value, "removed")
                await self.stats.apply_delta(game_id, reaction, -1)
            return ReactionToggle(previous=reaction, current=None)

        cleared = await self.stats.resolve_mutual_exclusion(game_id, user_id, reaction)
        _, replaced = await self.activities.upsert_reaction(
            user_id, game_id, reaction, {**extra, **snapshot_payload(snapshot)}
        )
        obs_metrics.inc_activity_event(reaction.value, "added")
        await self.stats.apply_delta(game_id, reaction, 1)
        if replaced:
            # a concurrent toggle filled the slot after cleanup; its counter is now stale
            logger.warning("activity_reaction_slot_replaced", extra={"game_id": game_id, "reaction": reaction.value})
            await mark_dirty([game_id])
        return ReactionToggle(
            previous=current.activity_type if current is not None else None,
            current=reaction,
            cleared=cleared,
        )

    async def toggle_like(self, user_id: str, game_id: str) -> bool:
        return (await self.toggle_reaction(user_id, game_id, ActivityType.LIKE)).active

    async def toggle_dislike(self, user_id: str, game_id: str) -> bool:
        return (await self.toggle_reaction(user_id, game_id, ActivityType.DISLIKE)).active

    async def toggle_loved(self, user_id: str, game_id: str) -> bool:
        return (await self.toggle_reaction(user_id, game_id, ActivityType.LOVED)).active

    async def toggle_plan_to_play(self, user_id: str, game_id: str) -> bool:
        """Independent boolean toggle; returns whether the game is now planned."""
        snapshot = await self._require_game(game_id)
        if await self.activities.delete(user_id, game_id, ActivityType.PLAN_TO_PLAY):
            obs_metrics.inc_activity_event(ActivityType.PLAN_TO_PLAY.value, "removed")
            await self.stats.apply_delta(game_id, ActivityType.PLAN_TO_PLAY, -1)
            return False
        await self.activities.upsert_current(
            user_id, game_id, ActivityType.PLAN_TO_PLAY, snapshot_payload(snapshot)
        )
        obs_metrics.inc_activity_event(ActivityType.PLAN_TO_PLAY.value, "added")
        await self.stats.apply_delta(game_id, ActivityType.PLAN_TO_PLAY, 1)
        return True

    # --- progress ---------------------------------------------------------------

    async def save_progress(
        self,
        user_id: str,
        game_id: str,
        progress: Any,
        context: Mapping[str, Any] | None = None,
    ) -> ActivityRecord:
        """Replace the user's current progress and count them as a player on the 0 -> >0 crossing."""
        value = _clamp_progress(progress)
        extra = _check_context(context or {})
        snapshot = await self._require_game(game_id)
        previous = await self.activities.find_one(user_id, game_id, ActivityType.PROGRESS)
        old_value = (previous.progress or 0) if previous is not None else 0
        record = await self.activities.upsert_current(
            user_id,
            game_id,
            ActivityType.PROGRESS,
            {**extra, **snapshot_payload(snapshot), "progress": value},
        )
        obs_metrics.inc_activity_event(ActivityType.PROGRESS.value, "updated")
        await self.stats.apply_progress_transition(game_id, old_value, value)
        return record

    async def get_last_progress(self, user_id: str, game_id: str) -> int:
        record = await self.activities.find_one(user_id, game_id, ActivityType.PROGRESS)
        return (record.progress or 0) if record is not None else 0

    # --- append-only events ------------------------------------------------------

    async def _append(
        self,
        user_id: str,
        game_id: str,
        activity_type: ActivityType,
        payload: Mapping[str, Any],
    ) -> ActivityRecord:
        snapshot = await self._require_game(game_id)
        record = build_record(user_id, game_id, activity_type, {**payload, **snapshot_payload(snapshot)})
        saved = await self.activities.insert(record)
        obs_metrics.inc_activity_event(activity_type.value, "added")
        return saved

    async def add_review_activity(
        self,
        user_id: str,
        game_id: str,
        review: Mapping[str, Any],
    ) -> ActivityRecord:
        payload = _check_context(review)
        rating = payload.get("rating")
        if rating is not None and not 0 <= rating <= 10:
            raise ActivityValidationError("invalid_rating")
        record = await self._append(user_id, game_id, ActivityType.REVIEW, payload)
        await self.stats.apply_delta(game_id, ActivityType.REVIEW, 1)
        return record

    async def remove_review_activity(self, user_id: str, activity_id: str) -> ActivityRecord:
        """Delete one of the caller's reviews and give back its count."""
        record = await self.activities.get(activity_id)
        if record is None or record.activity_type is not ActivityType.REVIEW:
            raise ActivityNotFound()
        if record.user_id != str(user_id):
            raise ActivityForbidden()
        removed = await self.activities.delete_by_id(activity_id)
        if removed is None:
            raise ActivityNotFound()
        obs_metrics.inc_activity_event(ActivityType.REVIEW.value, "removed")
        await self.stats.apply_delta(removed.game_id, ActivityType.REVIEW, -1)
        logger.info("review_activity_removed", extra={"activity_id": removed.id, "game_id": removed.game_id})
        return removed

    async def add_achievement_activity(
        self,
        user_id: str,
        game_id: str,
        achievements: Sequence[Mapping[str, Any]],
        context: Mapping[str, Any] | None = None,
    ) -> ActivityRecord:
        if not achievements:
            raise ActivityValidationError("achievements_required")
        if any(not str(item.get("name") or "").strip() for item in achievements):
            raise ActivityValidationError("achievement_name_required")
        payload = {**_check_context(context or {}), "achievements": list(achievements)}
        return await self._append(user_id, game_id, ActivityType.ACHIEVEMENT, payload)

    async def add_session_activity(
        self,
        user_id: str,
        game_id: str,
        session_duration: int,
        context: Mapping[str, Any] | None = None,
    ) -> ActivityRecord:
        payload = _check_context({**(context or {}), "session_duration": session_duration})
        return await self._append(user_id, game_id, ActivityType.SESSION, payload)

    # --- reads -------------------------------------------------------------------

    async def get_status(self, user_id: str, game_id: str, activity_type: ActivityType) -> bool:
        return await self.activities.find_one(user_id, game_id, activity_type) is not None

    async def get_reaction(self, user_id: str, game_id: str) -> ActivityType | None:
        record = await self.activities.find_reaction(user_id, game_id)
        return record.activity_type if record is not None else None

    async def get_combined_status(self, user_id: str, game_id: str) -> dict[str, bool]:
        reaction = await self.get_reaction(user_id, game_id)
        planned = await self.get_status(user_id, game_id, ActivityType.PLAN_TO_PLAY)
        progress = await self.activities.find_one(user_id, game_id, ActivityType.PROGRESS)
        return {
            "liked": reaction is ActivityType.LIKE,
            "loved": reaction is ActivityType.LOVED,
            "disliked": reaction is ActivityType.DISLIKE,
            "plantoplay": planned,
            "completed": progress is not None and progress.is_completed,
        }

    async def get_game_stats(self, game_id: str) -> GameStats:
        """Cached counters straight from the game; not recomputed."""
        stats = await self.stats.get_game_stats(str(game_id))
        if stats is None:
            raise GameNotFound()
        return stats

    async def count_activity(self, game_id: str, kind: str) -> int:
        """Authoritative count from the records, independent of the cached aggregate."""
        try:
            activity_type, min_progress = COUNT_KINDS[kind]
        except KeyError:
            raise ActivityValidationError("unknown_count_kind") from None
        return await self.activities.count_by_game_and_type(str(game_id), activity_type, min_progress=min_progress)

    async def get_user_activity(
        self,
        user_id: str,
        *,
        activity_type: str = "all",
        time_range: str = "all",
        limit: int | None = None,
        offset: int = 0,
        viewer_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ActivityRecord]:
        """Newest-first feed for a user, backfilling game display data that is missing.

        Viewers other than the owner only see public records.
        """
        try:
            kind = None if activity_type in ("", "all") else ActivityType(activity_type)
            window = TimeRange(time_range or "all")
        except ValueError:
            raise ActivityValidationError("invalid_filter") from None
        size = limit if limit is not None else settings.activity_feed_default_limit
        size = max(1, min(size, settings.activity_feed_max_limit))
        since = window.since(now or datetime.now(timezone.utc))
        records = list(
            await self.activities.list_by_user(
                user_id,
                activity_type=kind,
                since=since,
                visibilities=None if viewer_id is not None and str(viewer_id) == str(user_id) else PUBLIC_ONLY,
                limit=size,
                offset=max(0, offset),
            )
        )

        snapshots: dict[str, GameSnapshot | None] = {}
        for index, record in enumerate(records):
            if record.game_title:
                continue
            if record.game_id not in snapshots:
                snapshots[record.game_id] = await self.games.get_snapshot(record.game_id)
            snapshot = snapshots[record.game_id]
            if snapshot is None:
                continue
            await self.activities.refresh_snapshot(record.id, snapshot)
            records[index] = record.with_snapshot(snapshot)
        return records
