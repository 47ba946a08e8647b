"""Keeps each game's activity_stats aggregate in step with activity records."""

from __future__ import annotations

import logging
from typing import Iterable

from ggdb.domain.activity.models import (
    PLAYERS_FIELD,
    REACTION_TYPES,
    STAT_FIELDS,
    ActivityType,
    GameStats,
)
from ggdb.domain.activity.repository import ActivityRepository, GameRepository
from ggdb.infra.redis import redis_client
from ggdb.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

# Games whose aggregate may have drifted; drained by the reconciliation sweep.
DIRTY_GAMES_KEY = "activity:stats:dirty"


class ActivityStatsService:
    """Applies counter deltas and mutual exclusion for the reaction family.

    Counter writes happen after the record mutation they mirror. When a counter
    write fails the record change stands, the failure is logged and the game is
    queued for reconciliation instead of failing the request.
    """

    def __init__(self, activities: ActivityRepository, games: GameRepository) -> None:
        self._activities = activities
        self._games = games

    async def apply_delta(self, game_id: str, activity_type: ActivityType, sign: int) -> GameStats | None:
        """Move the counter mapped from activity_type by +1/-1, floored at zero."""
        if sign not in (1, -1):
            raise ValueError("sign must be +1 or -1")
        counter = STAT_FIELDS.get(activity_type)
        if counter is None:
            raise ValueError(f"{activity_type.value} has no aggregate counter")
        return await self._bump(game_id, counter, sign)

    async def apply_progress_transition(
        self,
        game_id: str,
        old_progress: int | None,
        new_progress: int | None,
    ) -> GameStats | None:
        """Count a player only when progress crosses between zero and non-zero."""
        was_playing = (old_progress or 0) > 0
        is_playing = (new_progress or 0) > 0
        if not was_playing and is_playing:
            return await self._bump(game_id, PLAYERS_FIELD, 1)
        if was_playing and not is_playing:
            return await self._bump(game_id, PLAYERS_FIELD, -1)
        return None

    async def resolve_mutual_exclusion(
        self,
        game_id: str,
        user_id: str,
        new_type: ActivityType,
    ) -> tuple[ActivityType, ...]:
        """Remove the user's other reactions on the game and decrement their counters.

        Must complete before the new reaction is written so a reader never sees two
        reactions counted for one user.
        """
        if new_type not in REACTION_TYPES:
            raise ValueError(f"{new_type.value} is not a reaction")
        others = [kind for kind in REACTION_TYPES if kind is not new_type]
        removed = await self._activities.delete_many(user_id, game_id, others)
        for kind in removed:
            obs_metrics.inc_activity_event(kind.value, "cleared")
            await self.apply_delta(game_id, kind, -1)
        return tuple(removed)

    async def get_game_stats(self, game_id: str) -> GameStats | None:
        return await self._games.get_stats(game_id)

    async def _bump(self, game_id: str, counter: str, delta: int) -> GameStats | None:
        try:
            stats = await self._games.apply_stat_delta(game_id, counter, delta)
        except Exception:
            logger.warning(
                "activity_stats_update_failed",
                exc_info=True,
                extra={"game_id": game_id, "counter": counter, "delta": delta},
            )
            obs_metrics.inc_stats_update_failure(counter)
            await mark_dirty([game_id])
            return None
        if stats is None:
            logger.info("activity_stats_game_missing", extra={"game_id": game_id, "counter": counter})
        return stats


async def mark_dirty(game_ids: Iterable[str]) -> None:
    ids = [str(game_id) for game_id in game_ids]
    if not ids:
        return
    try:
        await redis_client.sadd(DIRTY_GAMES_KEY, *ids)
    except Exception:
        logger.error("activity_stats_dirty_mark_failed", exc_info=True, extra={"game_ids": ids})


async def pop_dirty(count: int) -> list[str]:
    members = await redis_client.spop(DIRTY_GAMES_KEY, count)
    if not members:
        return []
    if isinstance(members, (str, bytes)):
        members = [members]
    return [member.decode() if isinstance(member, bytes) else str(member) for member in members]
