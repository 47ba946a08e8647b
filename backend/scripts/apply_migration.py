"""Apply one SQL file from backend/migrations using the configured pool."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from ggdb.infra.postgres import close_pool, get_pool

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def _parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Apply a migration file")
	parser.add_argument("filename", nargs="?", help="Migration file name; all files when omitted")
	return parser.parse_args()


async def apply_migrations(filename: str | None) -> None:
	paths = [MIGRATIONS_DIR / filename] if filename else sorted(MIGRATIONS_DIR.glob("*.sql"))
	missing = [path for path in paths if not path.exists()]
	if missing or not paths:
		raise SystemExit(f"Migration file not found: {missing[0] if missing else MIGRATIONS_DIR}")

	pool = await get_pool()
	try:
		async with pool.acquire() as conn:
			for path in paths:
				async with conn.transaction():
					await conn.execute(path.read_text())
				print(f"Applied {path.name}")
	finally:
		await close_pool()


if __name__ == "__main__":
	asyncio.run(apply_migrations(_parse_args().filename))
