"""Recompute cached game engagement counters from activity records."""

from __future__ import annotations

import argparse
import asyncio
import json

from ggdb.domain.activity.postgres_repo import PostgresActivityRepository, PostgresGameRepository
from ggdb.domain.activity.reconcile import StatsReconciler
from ggdb.infra.postgres import close_pool, init_pool
from ggdb.obs import logging as obs_logging
from ggdb.settings import settings


def _parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Rebuild games.activity_stats from game_activities")
	group = parser.add_mutually_exclusive_group()
	group.add_argument("--game-id", help="Reconcile a single game")
	group.add_argument("--dirty", action="store_true", help="Only games queued after a failed counter update")
	parser.add_argument("--batch-size", type=int, default=settings.reconcile_batch_size)
	return parser.parse_args()


async def reconcile(game_id: str | None, dirty: bool, batch_size: int) -> dict[str, object]:
	await init_pool()
	try:
		reconciler = StatsReconciler(PostgresActivityRepository(), PostgresGameRepository(), batch_size=batch_size)
		if game_id:
			stats = await reconciler.reconcile_game(game_id)
			if stats is None:
				raise SystemExit(f"No game found for id {game_id}")
			return {"mode": "game", "game_id": game_id, "stats": stats.to_mapping()}
		if dirty:
			return {"mode": "dirty", "games": await reconciler.run_dirty()}
		return {"mode": "all", "games": await reconciler.run_once()}
	finally:
		await close_pool()


def main() -> None:
	args = _parse_args()
	obs_logging.configure_logging()
	result = asyncio.run(reconcile(args.game_id, args.dirty, args.batch_size))
	print(json.dumps(result, indent=2))


if __name__ == "__main__":
	main()
