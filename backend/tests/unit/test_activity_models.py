from datetime import datetime, timedelta, timezone

from ggdb.domain.activity.models import (
    ActivityRecord,
    ActivityType,
    GameStats,
    ReactionToggle,
    TimeRange,
    describe,
    icon_for,
    time_ago,
)

NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def _record(activity_type: ActivityType, **extra) -> ActivityRecord:
    return ActivityRecord(
        id="a1",
        user_id="u1",
        game_id="g1",
        activity_type=activity_type,
        date=NOW,
        updated_at=NOW,
        game_title="Celeste",
        **extra,
    )


def test_game_stats_missing_keys_read_as_zero():
    stats = GameStats.from_mapping({"likesCount": 3, "reviewsCount": None})
    assert stats.likes_count == 3
    assert stats.reviews_count == 0
    assert stats.players_count == 0
    assert stats.last_updated is None


def test_game_stats_uninitialized_aggregate_is_all_zero():
    assert GameStats.from_mapping(None).counters() == GameStats().counters()
    assert all(value == 0 for value in GameStats.from_mapping({}).counters().values())


def test_game_stats_negative_stored_value_floors_at_zero():
    assert GameStats.from_mapping({"dislikesCount": -4}).dislikes_count == 0


def test_game_stats_mapping_uses_stored_keys():
    stats = GameStats(likes_count=1, plan_to_play_count=2, last_updated=NOW)
    mapping = stats.to_mapping()
    assert mapping["likesCount"] == 1
    assert mapping["planToPlayCount"] == 2
    assert mapping["lastUpdated"] == NOW.isoformat()
    assert GameStats.from_mapping(mapping).last_updated == NOW
    assert "lastUpdated" not in stats.counters()


def test_time_range_since():
    assert TimeRange.ALL.since(NOW) is None
    assert TimeRange.DAY.since(NOW) == NOW - timedelta(days=1)
    assert TimeRange.WEEK.since(NOW) == NOW - timedelta(days=7)
    assert TimeRange.YEAR.since(NOW) == NOW - timedelta(days=365)


def test_describe_progress_variants():
    assert describe(_record(ActivityType.PROGRESS, progress=100)) == 'Completed "Celeste"'
    assert describe(_record(ActivityType.PROGRESS, progress=45)) == '45% progress in "Celeste"'
    assert describe(_record(ActivityType.PROGRESS, progress=0)) == 'Started playing "Celeste"'


def test_describe_other_types():
    assert describe(_record(ActivityType.LIKE)) == 'Liked "Celeste"'
    assert describe(_record(ActivityType.PLAN_TO_PLAY)) == 'Added "Celeste" to wishlist'
    assert describe(_record(ActivityType.SESSION, session_duration=90)) == 'Played "Celeste" for 90 minutes'
    assert icon_for(ActivityType.ACHIEVEMENT) == "🏆"


def test_time_ago_buckets():
    assert time_ago(NOW - timedelta(seconds=20), NOW) == "Just now"
    assert time_ago(NOW - timedelta(minutes=5), NOW) == "5m ago"
    assert time_ago(NOW - timedelta(hours=3), NOW) == "3h ago"
    assert time_ago(NOW - timedelta(days=1, hours=2), NOW) == "Yesterday"
    assert time_ago(NOW - timedelta(days=4), NOW) == "4d ago"
    assert time_ago(NOW - timedelta(days=30), NOW) == "2026-02-12"


def test_completed_only_for_full_progress():
    assert _record(ActivityType.PROGRESS, progress=100).is_completed
    assert not _record(ActivityType.PROGRESS, progress=99).is_completed
    assert not _record(ActivityType.LIKE).is_completed


def test_reaction_toggle_active():
    assert ReactionToggle(previous=None, current=ActivityType.LIKE).active
    assert not ReactionToggle(previous=ActivityType.LIKE, current=None).active
