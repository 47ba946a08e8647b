"""Pydantic schemas for the activity API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from ggdb.domain.activity.models import ActivityRecord, ActivityType, GameStats, describe, icon_for, time_ago

Difficulty = Literal["Easy", "Normal", "Hard", "Extreme", ""]
Playstyle = Literal["Casual", "Completionist", "Speedrun", "Challenge", ""]
Visibility = Literal["public", "friends", "private"]
Source = Literal["manual", "steam", "epic", "gog", "auto"]


class GameActionRequest(BaseModel):
    game_id: str = Field(..., min_length=1)


class ActivityContext(BaseModel):
    """Optional metadata carried by progress, session and review writes."""

    platform: Optional[str] = None
    device: Optional[str] = None
    session_duration: Optional[int] = Field(default=None, ge=0)
    completion_time: Optional[float] = Field(default=None, ge=0)
    difficulty: Optional[Difficulty] = None
    playstyle: Optional[Playstyle] = None
    visibility: Optional[Visibility] = None
    source: Optional[Source] = None

    def context(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"game_id", "progress", "achievements"})


class ProgressRequest(ActivityContext):
    game_id: str = Field(..., min_length=1)
    progress: int


class ReviewRequest(ActivityContext):
    game_id: str = Field(..., min_length=1)
    rating: Optional[float] = Field(default=None, ge=0, le=10)
    comment: Optional[str] = Field(default=None, max_length=2000)
    spoiler: bool = False
    review_title: str = Field(default="", max_length=200)
    review_text: str = Field(default="", max_length=10000)
    review_recommended: Optional[bool] = None
    review_images: list[str] = Field(default_factory=list, max_length=10)


class AchievementSchema(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    icon: str = ""
    rarity: str = ""


class AchievementRequest(ActivityContext):
    game_id: str = Field(..., min_length=1)
    achievements: list[AchievementSchema] = Field(..., min_length=1)


class SessionRequest(ActivityContext):
    game_id: str = Field(..., min_length=1)
    session_duration: int = Field(..., ge=0)


class ActivityRecordSchema(BaseModel):
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
    review_images: list[str] = Field(default_factory=list)
    achievements: list[AchievementSchema] = Field(default_factory=list)
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
    game_genres: list[str] = Field(default_factory=list)
    game_platforms: list[str] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: ActivityRecord) -> "ActivityRecordSchema":
        data = {name: getattr(record, name) for name in cls.model_fields if hasattr(record, name)}
        data["achievements"] = [item.to_mapping() for item in record.achievements]
        return cls(**data)


class ActivityFeedItem(ActivityRecordSchema):
    message: str
    icon: str
    time_ago: str

    @classmethod
    def from_record(cls, record: ActivityRecord, now: Optional[datetime] = None) -> "ActivityFeedItem":
        base = ActivityRecordSchema.from_record(record).model_dump()
        return cls(
            **base,
            message=describe(record),
            icon=icon_for(record.activity_type),
            time_ago=time_ago(record.date, now),
        )


class ActivityFeedResponse(BaseModel):
    items: list[ActivityFeedItem]
    limit: int
    offset: int


class GameStatsSchema(BaseModel):
    game_id: str
    likes_count: int = 0
    loved_count: int = 0
    dislikes_count: int = 0
    plan_to_play_count: int = 0
    players_count: int = 0
    reviews_count: int = 0
    last_updated: Optional[datetime] = None

    @classmethod
    def from_stats(cls, game_id: str, stats: GameStats) -> "GameStatsSchema":
        return cls(
            game_id=game_id,
            likes_count=stats.likes_count,
            loved_count=stats.loved_count,
            dislikes_count=stats.dislikes_count,
            plan_to_play_count=stats.plan_to_play_count,
            players_count=stats.players_count,
            reviews_count=stats.reviews_count,
            last_updated=stats.last_updated,
        )


class CombinedStatusSchema(BaseModel):
    liked: bool = False
    loved: bool = False
    disliked: bool = False
    plantoplay: bool = False
    completed: bool = False


class ProgressStatusSchema(BaseModel):
    game_id: str
    progress: int = 0


class ActivityCountSchema(BaseModel):
    game_id: str
    kind: str
    count: int


class ReconcileResponse(BaseModel):
    mode: Literal["all", "game", "dirty"]
    games: int
