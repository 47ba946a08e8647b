"""FastAPI routes for per-user game activity and engagement counters."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ggdb.domain.activity.exceptions import (
	ActivityError,
	ActivityForbidden,
	ActivityNotFound,
	ActivityValidationError,
	GameNotFound,
)
from ggdb.domain.activity.models import ActivityType
from ggdb.domain.activity.reconcile import StatsReconciler
from ggdb.domain.activity.schemas import (
	AchievementRequest,
	ActivityCountSchema,
	ActivityFeedItem,
	ActivityFeedResponse,
	ActivityRecordSchema,
	CombinedStatusSchema,
	GameActionRequest,
	GameStatsSchema,
	ProgressRequest,
	ProgressStatusSchema,
	ReconcileResponse,
	ReviewRequest,
	SessionRequest,
)
from ggdb.domain.activity.service import COUNT_KINDS, ActivityService
from ggdb.infra.auth import AuthenticatedUser, get_current_user, require_roles
from ggdb.settings import settings

router = APIRouter(prefix="/activity", tags=["activity"])

_service = ActivityService()


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, (GameNotFound, ActivityNotFound)):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.reason)
	if isinstance(exc, ActivityForbidden):
		return HTTPException(status.HTTP_403_FORBIDDEN, detail=exc.reason)
	if isinstance(exc, ActivityValidationError):
		return HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=getattr(exc, "reason", str(exc)))


# --- feed ----------------------------------------------------------------------


@router.get("/users/{user_id}", response_model=ActivityFeedResponse)
async def user_activity_endpoint(
	user_id: str,
	activity_type: str = Query(default="all", alias="type"),
	time_range: str = Query(default="all"),
	limit: Optional[int] = Query(default=None, ge=1),
	offset: int = Query(default=0, ge=0),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ActivityFeedResponse:
	size = min(limit or settings.activity_feed_default_limit, settings.activity_feed_max_limit)
	try:
		records = await _service.get_user_activity(
			user_id,
			activity_type=activity_type,
			time_range=time_range,
			limit=size,
			offset=offset,
			viewer_id=auth_user.id,
		)
	except ActivityError as exc:
		raise _map_error(exc) from None
	now = datetime.now(timezone.utc)
	return ActivityFeedResponse(
		items=[ActivityFeedItem.from_record(record, now) for record in records],
		limit=size,
		offset=offset,
	)


# --- reactions and plan-to-play ------------------------------------------------


@router.post("/like")
async def toggle_like_endpoint(
	payload: GameActionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, bool]:
	try:
		return {"liked": await _service.toggle_like(auth_user.id, payload.game_id)}
	except ActivityError as exc:
		raise _map_error(exc) from None


@router.post("/dislike")
async def toggle_dislike_endpoint(
	payload: GameActionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, bool]:
	try:
		return {"disliked": await _service.toggle_dislike(auth_user.id, payload.game_id)}
	except ActivityError as exc:
		raise _map_error(exc) from None


@router.post("/loved")
async def toggle_loved_endpoint(
	payload: GameActionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, bool]:
	try:
		return {"loved": await _service.toggle_loved(auth_user.id, payload.game_id)}
	except ActivityError as exc:
		raise _map_error(exc) from None


@router.post("/plantoplay")
async def toggle_plan_to_play_endpoint(
	payload: GameActionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict[str, bool]:
	try:
		return {"plantoplay": await _service.toggle_plan_to_play(auth_user.id, payload.game_id)}
	except ActivityError as exc:
		raise _map_error(exc) from None


# --- progress ------------------------------------------------------------------


@router.post("/progress", response_model=ActivityRecordSchema)
async def save_progress_endpoint(
	payload: ProgressRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ActivityRecordSchema:
	try:
		record = await _service.save_progress(auth_user.id, payload.game_id, payload.progress, payload.context())
	except ActivityError as exc:
		raise _map_error(exc) from None
	return ActivityRecordSchema.from_record(record)


@router.get("/progress/{user_id}/{game_id}", response_model=ProgressStatusSchema)
async def last_progress_endpoint(user_id: str, game_id: str) -> ProgressStatusSchema:
	progress = await _service.get_last_progress(user_id, game_id)
	return ProgressStatusSchema(game_id=game_id, progress=progress)


# --- append-only events ------------------------------------------------------------


@router.post("/review", response_model=ActivityRecordSchema, status_code=status.HTTP_201_CREATED)
async def add_review_endpoint(
	payload: ReviewRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ActivityRecordSchema:
	try:
		record = await _service.add_review_activity(auth_user.id, payload.game_id, payload.context())
	except ActivityError as exc:
		raise _map_error(exc) from None
	return ActivityRecordSchema.from_record(record)


@router.delete("/review/{activity_id}", response_model=ActivityRecordSchema)
async def remove_review_endpoint(
	activity_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ActivityRecordSchema:
	try:
		record = await _service.remove_review_activity(auth_user.id, activity_id)
	except ActivityError as exc:
		raise _map_error(exc) from None
	return ActivityRecordSchema.from_record(record)


@router.post("/achievement", response_model=ActivityRecordSchema, status_code=status.HTTP_201_CREATED)
async def add_achievement_endpoint(
	payload: AchievementRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ActivityRecordSchema:
	achievements = [item.model_dump() for item in payload.achievements]
	try:
		record = await _service.add_achievement_activity(
			auth_user.id, payload.game_id, achievements, payload.context()
		)
	except ActivityError as exc:
		raise _map_error(exc) from None
	return ActivityRecordSchema.from_record(record)


@router.post("/session", response_model=ActivityRecordSchema, status_code=status.HTTP_201_CREATED)
async def add_session_endpoint(
	payload: SessionRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> ActivityRecordSchema:
	try:
		record = await _service.add_session_activity(
			auth_user.id, payload.game_id, payload.session_duration, payload.context()
		)
	except ActivityError as exc:
		raise _map_error(exc) from None
	return ActivityRecordSchema.from_record(record)


# --- status and counters -----------------------------------------------------------


@router.get("/status/{user_id}/{game_id}", response_model=CombinedStatusSchema)
async def combined_status_endpoint(user_id: str, game_id: str) -> CombinedStatusSchema:
	return CombinedStatusSchema(**await _service.get_combined_status(user_id, game_id))


@router.get("/stats/all/{game_id}", response_model=GameStatsSchema)
async def game_stats_endpoint(game_id: str) -> GameStatsSchema:
	try:
		stats = await _service.get_game_stats(game_id)
	except ActivityError as exc:
		raise _map_error(exc) from None
	return GameStatsSchema.from_stats(game_id, stats)


@router.get("/stats/{kind}/{game_id}", response_model=ActivityCountSchema)
async def activity_count_endpoint(kind: str, game_id: str) -> ActivityCountSchema:
	if kind not in COUNT_KINDS:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="unknown_count_kind")
	try:
		count = await _service.count_activity(game_id, kind)
	except ActivityError as exc:
		raise _map_error(exc) from None
	return ActivityCountSchema(game_id=game_id, kind=kind, count=count)


@router.post("/stats/reconcile", response_model=ReconcileResponse)
async def reconcile_endpoint(
	game_id: Optional[str] = Query(default=None),
	dirty_only: bool = Query(default=False),
	_: AuthenticatedUser = Depends(require_roles("admin")),
) -> ReconcileResponse:
	reconciler = StatsReconciler(_service.activities, _service.games, batch_size=settings.reconcile_batch_size)
	if game_id:
		if await reconciler.reconcile_game(game_id) is None:
			raise _map_error(GameNotFound())
		return ReconcileResponse(mode="game", games=1)
	if dirty_only:
		return ReconcileResponse(mode="dirty", games=await reconciler.run_dirty())
	return ReconcileResponse(mode="all", games=await reconciler.run_once())


# Generic per-type status; registered last so the fixed paths above win.
# path kind -> (record type, response key matching the toggle endpoints)
_STATUS_TYPES = {
	"like": (ActivityType.LIKE, "liked"),
	"dislike": (ActivityType.DISLIKE, "disliked"),
	"loved": (ActivityType.LOVED, "loved"),
	"plantoplay": (ActivityType.PLAN_TO_PLAY, "plantoplay"),
}


@router.get("/{kind}/{user_id}/{game_id}")
async def activity_status_endpoint(kind: str, user_id: str, game_id: str) -> dict[str, bool]:
	entry = _STATUS_TYPES.get(kind)
	if entry is None:
		raise HTTPException(status.HTTP_404_NOT_FOUND, detail="not_found")
	activity_type, key = entry
	return {key: await _service.get_status(user_id, game_id, activity_type)}
