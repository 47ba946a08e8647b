import pytest

from ggdb.domain.activity import stats as stats_module
from ggdb.domain.activity.models import GameStats
from ggdb.domain.activity.reconcile import StatsReconciler


@pytest.fixture
def reconciler(activities, games):
    return StatsReconciler(activities, games, batch_size=1)


async def _seed(service):
    await service.toggle_like("u1", "g1")
    await service.toggle_like("u2", "g1")
    await service.toggle_loved("u3", "g1")
    await service.toggle_plan_to_play("u1", "g2")
    await service.save_progress("u1", "g2", 0)
    await service.save_progress("u2", "g2", 60)
    await service.add_review_activity("u1", "g2", {"rating": 9})


@pytest.mark.asyncio
async def test_sweep_repairs_drifted_counters(service, games, reconciler):
    await _seed(service)
    games.games["g1"].activity_stats["likesCount"] = 17
    games.games["g2"].activity_stats["playersCount"] = 0

    assert await reconciler.run_once() == 2

    g1 = await service.get_game_stats("g1")
    g2 = await service.get_game_stats("g2")
    assert g1.likes_count == await service.count_activity("g1", "liked") == 2
    assert g1.loved_count == 1
    assert g2.players_count == 1
    assert g2.plan_to_play_count == 1
    assert g2.reviews_count == 1


@pytest.mark.asyncio
async def test_sweep_is_idempotent(service, reconciler):
    await _seed(service)
    await reconciler.run_once()
    first = (await service.get_game_stats("g1")).counters()
    await reconciler.run_once()
    assert (await service.get_game_stats("g1")).counters() == first


@pytest.mark.asyncio
async def test_sweep_initializes_games_without_aggregate(games, reconciler):
    games.add_game("g3", "Hades")
    await reconciler.run_once()
    assert games.games["g3"].activity_stats is not None
    assert (await games.get_stats("g3")).counters() == GameStats().counters()


@pytest.mark.asyncio
async def test_reconcile_single_game(service, games, reconciler):
    await service.toggle_dislike("u1", "g2")
    games.games["g2"].activity_stats["dislikesCount"] = 0

    stats = await reconciler.reconcile_game("g2")
    assert stats.dislikes_count == 1
    assert await reconciler.reconcile_game("unknown") is None


@pytest.mark.asyncio
async def test_compute_counts_players_with_progress(service, reconciler):
    await service.save_progress("u1", "g1", 0)
    await service.save_progress("u2", "g1", 1)
    await service.save_progress("u3", "g1", 100)
    stats = await reconciler.compute("g1")
    assert stats.players_count == 2


@pytest.mark.asyncio
async def test_run_dirty_only_touches_queued_games(service, games, reconciler, fake_redis):
    await service.toggle_like("u1", "g1")
    await service.toggle_like("u1", "g2")
    games.games["g1"].activity_stats["likesCount"] = 5
    games.games["g2"].activity_stats["likesCount"] = 5
    await stats_module.mark_dirty(["g1"])

    assert await reconciler.run_dirty() == 1
    assert (await service.get_game_stats("g1")).likes_count == 1
    assert (await service.get_game_stats("g2")).likes_count == 5
    assert await fake_redis.scard(stats_module.DIRTY_GAMES_KEY) == 0


@pytest.mark.asyncio
async def test_run_dirty_requeues_on_failure(activities, games, fake_redis, monkeypatch):
    reconciler = StatsReconciler(activities, games, batch_size=10)
    await stats_module.mark_dirty(["g1", "g2"])

    async def broken(game_id, activity_type, *, min_progress=None):
        raise ConnectionError("db unavailable")

    monkeypatch.setattr(activities, "count_by_game_and_type", broken)
    with pytest.raises(ConnectionError):
        await reconciler.run_dirty()
    assert await fake_redis.smembers(stats_module.DIRTY_GAMES_KEY) == {"g1", "g2"}


@pytest.mark.asyncio
async def test_sessions_and_achievements_have_no_counters(service, reconciler):
    await service.add_session_activity("u1", "g1", 30)
    await service.add_achievement_activity("u1", "g1", [{"name": "Dash"}])
    stats = await reconciler.compute("g1")
    assert stats.counters() == GameStats().counters()
