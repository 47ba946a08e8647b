"""Reconciliation sweep rebuilding game aggregates from activity records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from ggdb.domain.activity import stats as stats_module
from ggdb.domain.activity.models import ActivityType, GameStats
from ggdb.domain.activity.repository import ActivityRepository, GameRepository
from ggdb.obs import logging as obs_logging
from ggdb.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

_JOB_NAME = "activity-stats-reconcile"


class StatsReconciler:
    """Recomputes every counter from the records and overwrites the cached aggregate.

    Idempotent: running it twice in a row leaves the second run with nothing to change.
    """

    def __init__(self, activities: ActivityRepository, games: GameRepository, *, batch_size: int = 500) -> None:
        self._activities = activities
        self._games = games
        self._batch_size = max(1, batch_size)

    async def compute(self, game_id: str) -> GameStats:
        count = self._activities.count_by_game_and_type
        return GameStats(
            likes_count=await count(game_id, ActivityType.LIKE),
            loved_count=await count(game_id, ActivityType.LOVED),
            dislikes_count=await count(game_id, ActivityType.DISLIKE),
            plan_to_play_count=await count(game_id, ActivityType.PLAN_TO_PLAY),
            players_count=await count(game_id, ActivityType.PROGRESS, min_progress=1),
            reviews_count=await count(game_id, ActivityType.REVIEW),
            last_updated=datetime.now(timezone.utc),
        )

    async def reconcile_game(self, game_id: str) -> GameStats | None:
        """Overwrite one game's aggregate; None when the game does not exist."""
        with obs_logging.bound(game_id=game_id):
            cached = await self._games.get_stats(game_id)
            if cached is None:
                return None
            fresh = await self.compute(game_id)
            await self._games.set_stats(game_id, fresh)
            changed = cached.counters() != fresh.counters()
            obs_metrics.inc_stats_reconciled(changed)
            if changed:
                logger.warning(
                    "activity_stats_drift_corrected",
                    extra={"cached": cached.counters(), "fresh": fresh.counters()},
                )
            return fresh

    async def run_once(self) -> int:
        """Sweep every game in id order; return how many were reconciled."""
        started = datetime.now(timezone.utc)
        reconciled = 0
        try:
            after: str | None = None
            while True:
                game_ids = await self._games.list_game_ids(after=after, limit=self._batch_size)
                if not game_ids:
                    break
                for game_id in game_ids:
                    if await self.reconcile_game(game_id) is not None:
                        reconciled += 1
                after = game_ids[-1]
                if len(game_ids) < self._batch_size:
                    break
        except Exception:
            obs_metrics.record_job_run(_JOB_NAME, result="error", duration_seconds=_elapsed(started))
            raise
        obs_metrics.record_job_run(_JOB_NAME, result="success", duration_seconds=_elapsed(started))
        logger.info("activity_stats_sweep_done", extra={"games": reconciled})
        return reconciled

    async def run_dirty(self) -> int:
        """Reconcile only games queued as possibly drifted."""
        reconciled = 0
        while True:
            game_ids = await stats_module.pop_dirty(self._batch_size)
            if not game_ids:
                break
            for position, game_id in enumerate(game_ids):
                try:
                    result = await self.reconcile_game(game_id)
                except Exception:
                    # put back what this batch has not finished so the next run retries it
                    await stats_module.mark_dirty(game_ids[position:])
                    raise
                if result is not None:
                    reconciled += 1
        return reconciled


def _elapsed(started: datetime) -> float:
    return (datetime.now(timezone.utc) - started).total_seconds()
