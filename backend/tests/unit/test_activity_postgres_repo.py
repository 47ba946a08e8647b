import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest

from ggdb.domain.activity.models import ActivityType, GameStats
from ggdb.domain.activity.postgres_repo import PostgresActivityRepository, PostgresGameRepository
from ggdb.domain.activity.repository import build_record

NOW = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)


class StubPool:
    """Records every query and hands back queued results in order."""

    def __init__(self):
        self.calls = []
        self.results = []

    def _next(self, default):
        return self.results.pop(0) if self.results else default

    async def fetchrow(self, query: str, *args):
        self.calls.append((query, args))
        return self._next(None)

    async def fetch(self, query: str, *args):
        self.calls.append((query, args))
        return self._next([])

    async def fetchval(self, query: str, *args):
        self.calls.append((query, args))
        return self._next(0)

    async def execute(self, query: str, *args):
        self.calls.append((query, args))
        return self._next("UPDATE 0")


def _row(activity_type: str = "like", **extra):
    row = {
        "id": uuid4(),
        "user_id": "u1",
        "game_id": "g1",
        "activity_type": activity_type,
        "date": NOW,
        "updated_at": NOW,
        "achievements": "[]",
        "platform": "PC",
    }
    row.update(extra)
    return row


@pytest.fixture
def pool():
    return StubPool()


@pytest.mark.asyncio
async def test_reaction_upsert_targets_shared_slot(pool):
    pool.results = [_row("loved", game_title="Celeste")]
    repo = PostgresActivityRepository(pool)

    record = await repo.upsert_current("u1", "g1", ActivityType.LOVED, {"game_title": "Celeste"})

    query, args = pool.calls[0]
    assert "ON CONFLICT (user_id, game_id) WHERE activity_type IN ('like', 'dislike', 'loved')" in query
    assert "activity_type = EXCLUDED.activity_type" in query
    assert args[1:4] == ("u1", "g1", "loved")
    assert "Celeste" in args
    assert record.activity_type is ActivityType.LOVED
    assert record.game_title == "Celeste"


@pytest.mark.asyncio
async def test_reaction_upsert_reports_overwritten_slot(pool):
    pool.results = [_row("dislike", replaced=True), _row("like", replaced=False)]
    repo = PostgresActivityRepository(pool)

    record, replaced = await repo.upsert_reaction("u1", "g1", ActivityType.DISLIKE, {})
    assert "(xmax <> 0) AS replaced" in pool.calls[0][0]
    assert record.activity_type is ActivityType.DISLIKE
    assert replaced is True

    _, replaced = await repo.upsert_reaction("u1", "g2", ActivityType.LIKE, {})
    assert replaced is False

    with pytest.raises(ValueError):
        await repo.upsert_reaction("u1", "g1", ActivityType.PROGRESS, {})


@pytest.mark.asyncio
async def test_write_without_returned_row_raises(pool):
    repo = PostgresActivityRepository(pool)
    with pytest.raises(RuntimeError):
        await repo.upsert_current("u1", "g1", ActivityType.PLAN_TO_PLAY, {})
    with pytest.raises(RuntimeError):
        await repo.insert(build_record("u1", "g1", ActivityType.SESSION, {"session_duration": 3}))


@pytest.mark.asyncio
async def test_progress_upsert_targets_singleton_slot(pool, monkeypatch):
    pool.results = [_row("progress", progress=40)]
    repo = PostgresActivityRepository()

    async def fake_get_pool(self):
        return pool

    monkeypatch.setattr(PostgresActivityRepository, "_get_pool", fake_get_pool)
    record = await repo.upsert_current("u1", "g1", ActivityType.PROGRESS, {"progress": 40, "difficulty": None})

    query, args = pool.calls[0]
    assert "ON CONFLICT (user_id, game_id, activity_type) WHERE activity_type IN ('plantoplay', 'progress')" in query
    assert "progress = EXCLUDED.progress" in query
    assert "difficulty = EXCLUDED" not in query
    assert 40 in args
    assert record.progress == 40


@pytest.mark.asyncio
async def test_append_only_types_cannot_be_upserted(pool):
    repo = PostgresActivityRepository(pool)
    with pytest.raises(ValueError):
        await repo.upsert_current("u1", "g1", ActivityType.REVIEW, {})
    assert pool.calls == []


@pytest.mark.asyncio
async def test_insert_serializes_achievements(pool):
    record = build_record("u1", "g1", ActivityType.ACHIEVEMENT, {"achievements": [{"name": "Dash", "rarity": "rare"}]})
    pool.results = [_row("achievement", id=record.id, achievements=json.dumps([{"name": "Dash", "rarity": "rare"}]))]
    repo = PostgresActivityRepository(pool)

    saved = await repo.insert(record)

    query, args = pool.calls[0]
    assert "::jsonb" in query
    assert json.loads(next(arg for arg in args if isinstance(arg, str) and arg.startswith("["))) == [
        {"name": "Dash", "description": "", "icon": "", "rarity": "rare"}
    ]
    assert saved.achievements[0].name == "Dash"


@pytest.mark.asyncio
async def test_delete_many_returns_removed_types(pool):
    pool.results = [[{"activity_type": "dislike"}]]
    repo = PostgresActivityRepository(pool)

    removed = await repo.delete_many("u1", "g1", [ActivityType.LIKE, ActivityType.DISLIKE])

    assert removed == [ActivityType.DISLIKE]
    query, args = pool.calls[0]
    assert "ANY($3::text[])" in query
    assert args[2] == ["like", "dislike"]
    assert await repo.delete_many("u1", "g1", []) == []
    assert len(pool.calls) == 1


@pytest.mark.asyncio
async def test_delete_reports_absence(pool):
    repo = PostgresActivityRepository(pool)
    assert await repo.delete("u1", "g1", ActivityType.PLAN_TO_PLAY) is False


@pytest.mark.asyncio
async def test_count_with_minimum_progress(pool):
    pool.results = [3]
    repo = PostgresActivityRepository(pool)

    assert await repo.count_by_game_and_type("g1", ActivityType.PROGRESS, min_progress=100) == 3
    query, args = pool.calls[0]
    assert "COALESCE(progress, 0) >= $3" in query
    assert args == ("g1", "progress", 100)


@pytest.mark.asyncio
async def test_list_by_user_builds_filters(pool):
    pool.results = [[_row("review"), _row("like")]]
    repo = PostgresActivityRepository(pool)

    records = await repo.list_by_user("u1", activity_type=ActivityType.REVIEW, since=NOW, limit=10, offset=20)

    query, args = pool.calls[0]
    assert "activity_type = $2" in query
    assert "date >= $3" in query
    assert "ORDER BY date DESC, id DESC LIMIT $4 OFFSET $5" in query
    assert args == ("u1", "review", NOW, 10, 20)
    assert len(records) == 2


@pytest.mark.asyncio
async def test_list_by_user_limits_visibility(pool):
    repo = PostgresActivityRepository(pool)

    await repo.list_by_user("u1", visibilities=("public",), limit=5)

    query, args = pool.calls[0]
    assert "visibility = ANY($2::text[])" in query
    assert "LIMIT $3 OFFSET $4" in query
    assert args == ("u1", ["public"], 5, 0)


@pytest.mark.asyncio
async def test_get_with_malformed_id_skips_query(pool):
    repo = PostgresActivityRepository(pool)
    assert await repo.get("not-a-uuid") is None
    assert await repo.delete_by_id("not-a-uuid") is None
    assert pool.calls == []


@pytest.mark.asyncio
async def test_game_snapshot(pool):
    pool.results = [{"id": "g1", "title": "Hades", "cover_image": None, "genres": ["Roguelike"], "platforms": None}]
    repo = PostgresGameRepository(pool)

    snapshot = await repo.get_snapshot("g1")
    assert snapshot.title == "Hades"
    assert snapshot.cover_image == ""
    assert snapshot.genres == ["Roguelike"]
    assert snapshot.platforms == []
    assert await repo.get_snapshot("missing") is None


@pytest.mark.asyncio
async def test_stat_delta_is_single_floored_update(pool):
    pool.results = [{"activity_stats": json.dumps({"likesCount": 4, "lastUpdated": NOW.isoformat()})}]
    repo = PostgresGameRepository(pool)

    stats = await repo.apply_stat_delta("g1", "likesCount", 1)

    query, args = pool.calls[0]
    assert "GREATEST(0" in query
    assert "COALESCE(activity_stats, $3::jsonb)" in query
    assert args[0:2] == ("g1", "likesCount")
    assert args[3] == 1
    assert stats.likes_count == 4
    assert stats.dislikes_count == 0


@pytest.mark.asyncio
async def test_stat_delta_rejects_unknown_counter(pool):
    repo = PostgresGameRepository(pool)
    with pytest.raises(ValueError):
        await repo.apply_stat_delta("g1", "hypeCount", 1)
    assert await repo.apply_stat_delta("missing", "likesCount", 1) is None


@pytest.mark.asyncio
async def test_get_stats_distinguishes_unknown_game(pool):
    pool.results = [{"activity_stats": None}, None]
    repo = PostgresGameRepository(pool)

    assert (await repo.get_stats("g1")).counters() == GameStats().counters()
    assert await repo.get_stats("missing") is None


@pytest.mark.asyncio
async def test_set_stats_and_list_ids(pool):
    pool.results = ["UPDATE 1", "UPDATE 0", [{"id": "g2"}, {"id": "g3"}]]
    repo = PostgresGameRepository(pool)

    assert await repo.set_stats("g1", GameStats(likes_count=2)) is True
    assert json.loads(pool.calls[0][1][1])["likesCount"] == 2
    assert await repo.set_stats("missing", GameStats()) is False
    assert await repo.list_game_ids(after="g1", limit=2) == ["g2", "g3"]
    assert pool.calls[-1][1] == ("g1", 2)
