"""Domain models for per-user game engagement activity."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional


class ActivityType(str, Enum):
    LIKE = "like"
    DISLIKE = "dislike"
    LOVED = "loved"
    PLAN_TO_PLAY = "plantoplay"
    PROGRESS = "progress"
    REVIEW = "review"
    ACHIEVEMENT = "achievement"
    SESSION = "session"


# Mutually exclusive reactions: a (user, game) pair holds at most one of these.
REACTION_TYPES = frozenset({ActivityType.LIKE, ActivityType.DISLIKE, ActivityType.LOVED})

# One current record per (user, game, type); replaced in place.
SINGLETON_TYPES = frozenset({ActivityType.PLAN_TO_PLAY, ActivityType.PROGRESS})

# One record per event.
APPEND_ONLY_TYPES = frozenset({ActivityType.REVIEW, ActivityType.ACHIEVEMENT, ActivityType.SESSION})

# activity type -> counter key in the game's activity_stats sub-document.
# progress has no entry; players move on the 0 <-> >0 crossing.
STAT_FIELDS: Mapping[ActivityType, str] = {
    ActivityType.LIKE: "likesCount",
    ActivityType.DISLIKE: "dislikesCount",
    ActivityType.LOVED: "lovedCount",
    ActivityType.PLAN_TO_PLAY: "planToPlayCount",
    ActivityType.REVIEW: "reviewsCount",
}

PLAYERS_FIELD = "playersCount"
COMPLETED_PROGRESS = 100

DIFFICULTIES = ("Easy", "Normal", "Hard", "Extreme", "")
PLAYSTYLES = ("Casual", "Completionist", "Speedrun", "Challenge", "")
VISIBILITIES = ("public", "friends", "private")
SOURCES = ("manual", "steam", "epic", "gog", "auto")

ACTIVITY_ICONS: Mapping[ActivityType, str] = {
    ActivityType.LIKE: "❤️",
    ActivityType.DISLIKE: "💔",
    ActivityType.LOVED: "😍",
    ActivityType.PROGRESS: "🎮",
    ActivityType.PLAN_TO_PLAY: "📌",
    ActivityType.REVIEW: "✍️",
    ActivityType.ACHIEVEMENT: "🏆",
    ActivityType.SESSION: "⏱️",
}


class TimeRange(str, Enum):
    ALL = "all"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    def since(self, now: datetime) -> datetime | None:
        span = _TIME_RANGE_SPANS.get(self)
        return None if span is None else now - span


_TIME_RANGE_SPANS = {
    TimeRange.DAY: timedelta(days=1),
    TimeRange.WEEK: timedelta(days=7),
    TimeRange.MONTH: timedelta(days=30),
    TimeRange.YEAR: timedelta(days=365),
}


@dataclass(slots=True)
class Achievement:
    name: str
    description: str = ""
    icon: str = ""
    rarity: str = ""

    def to_mapping(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description, "icon": self.icon, "rarity": self.rarity}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "Achievement":
        return cls(
            name=str(mapping.get("name") or ""),
            description=str(mapping.get("description") or ""),
            icon=str(mapping.get("icon") or ""),
            rarity=str(mapping.get("rarity") or ""),
        )


@dataclass(slots=True)
class GameSnapshot:
    """Display data of a game copied onto activity records."""

    game_id: str
    title: str = ""
    cover_image: str = ""
    genres: list[str] = field(default_factory=list)
    platforms: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ActivityRecord:
    id: str
    user_id: str
    game_id: str
    activity_type: ActivityType
    date: datetime
    updated_at: datetime
    progress: Optional[int] = None
    rating: Optional[float] = None
    comment: Optional[str] = None
    spoiler: Optional[bool] = None
    review_title: str = ""
    review_text: str = ""
    review_recommended: Optional[bool] = None
    review_helpful: int = 0
    review_images: list[str] = field(default_factory=list)
    achievements: list[Achievement] = field(default_factory=list)
    session_duration: int = 0
    completion_time: float = 0
    platform: str = "PC"
    device: str = ""
    difficulty: str = ""
    playstyle: str = ""
    visibility: str = "public"
    source: str = "manual"
    game_title: str = ""
    game_cover: str = ""
    game_genres: list[str] = field(default_factory=list)
    game_platforms: list[str] = field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return self.activity_type is ActivityType.PROGRESS and (self.progress or 0) >= COMPLETED_PROGRESS

    def with_snapshot(self, snapshot: GameSnapshot) -> "ActivityRecord":
        return replace(
            self,
            game_title=snapshot.title,
            game_cover=snapshot.cover_image,
            game_genres=list(snapshot.genres),
            game_platforms=list(snapshot.platforms),
        )


# Columns a caller may set on a record; everything else is owned by the store.
PAYLOAD_FIELDS = frozenset(
    {
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
    }
)


def snapshot_payload(snapshot: GameSnapshot | None) -> dict[str, Any]:
    if snapshot is None:
        return {}
    return {
        "game_title": snapshot.title,
        "game_cover": snapshot.cover_image,
        "game_genres": list(snapshot.genres),
        "game_platforms": list(snapshot.platforms),
    }


@dataclass(slots=True)
class GameStats:
    """Denormalized engagement counters embedded in a game."""

    likes_count: int = 0
    loved_count: int = 0
    dislikes_count: int = 0
    plan_to_play_count: int = 0
    players_count: int = 0
    reviews_count: int = 0
    last_updated: Optional[datetime] = None

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "GameStats":
        """Build counters from the stored sub-document; missing keys read as zero."""
        if not mapping:
            return cls()

        def _get_int(name: str) -> int:
            raw = mapping.get(name, 0)
            if raw is None:
                return 0
            try:
                return max(0, int(raw))
            except (TypeError, ValueError):
                return 0

        last_updated = mapping.get("lastUpdated")
        if isinstance(last_updated, str):
            last_updated = datetime.fromisoformat(last_updated)
        return cls(
            likes_count=_get_int("likesCount"),
            loved_count=_get_int("lovedCount"),
            dislikes_count=_get_int("dislikesCount"),
            plan_to_play_count=_get_int("planToPlayCount"),
            players_count=_get_int(PLAYERS_FIELD),
            reviews_count=_get_int("reviewsCount"),
            last_updated=last_updated,
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "likesCount": self.likes_count,
            "lovedCount": self.loved_count,
            "dislikesCount": self.dislikes_count,
            "planToPlayCount": self.plan_to_play_count,
            PLAYERS_FIELD: self.players_count,
            "reviewsCount": self.reviews_count,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }

    def counters(self) -> dict[str, int]:
        """Counter keys only, for comparing cached against recomputed values."""
        mapping = self.to_mapping()
        mapping.pop("lastUpdated")
        return mapping


@dataclass(slots=True)
class ReactionToggle:
    """Outcome of toggling one member of the reaction family."""

    previous: Optional[ActivityType]
    current: Optional[ActivityType]
    cleared: tuple[ActivityType, ...] = ()

    @property
    def active(self) -> bool:
        return self.current is not None


def icon_for(activity_type: ActivityType) -> str:
    return ACTIVITY_ICONS.get(activity_type, "📝")


def describe(record: ActivityRecord) -> str:
    """Human readable feed line for an activity record."""
    title = record.game_title or "a game"
    kind = record.activity_type
    if kind is ActivityType.LIKE:
        return f'Liked "{title}"'
    if kind is ActivityType.DISLIKE:
        return f'Disliked "{title}"'
    if kind is ActivityType.LOVED:
        return f'Loved "{title}"'
    if kind is ActivityType.PROGRESS:
        progress = record.progress or 0
        if progress >= COMPLETED_PROGRESS:
            return f'Completed "{title}"'
        if progress > 0:
            return f'{progress}% progress in "{title}"'
        return f'Started playing "{title}"'
    if kind is ActivityType.PLAN_TO_PLAY:
        return f'Added "{title}" to wishlist'
    if kind is ActivityType.REVIEW:
        return f'Reviewed "{title}"'
    if kind is ActivityType.ACHIEVEMENT:
        return f'Unlocked achievement in "{title}"'
    if kind is ActivityType.SESSION:
        return f'Played "{title}" for {record.session_duration or 0} minutes'
    return f'Activity in "{title}"'


def time_ago(moment: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    seconds = abs((now - moment).total_seconds())
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if hours < 24:
        return f"{hours}h ago"
    if days == 1:
        return "Yesterday"
    if days < 7:
        return f"{days}d ago"
    return moment.date().isoformat()
