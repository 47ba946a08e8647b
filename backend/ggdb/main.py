"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ggdb.api import activity, ops
from ggdb.api.errors import install_error_handlers
from ggdb.domain.activity.reconcile import StatsReconciler
from ggdb.infra import postgres
from ggdb.infra.scheduler import JobScheduler
from ggdb.obs import init as obs_init
from ggdb.settings import settings

logger = logging.getLogger(__name__)

RECONCILE_JOB_ID = "activity-stats-reconcile"


async def _reconcile_job() -> None:
	reconciler = StatsReconciler(
		activity._service.activities,
		activity._service.games,
		batch_size=settings.reconcile_batch_size,
	)
	try:
		await reconciler.run_dirty()
		await reconciler.run_once()
	except Exception:
		logger.exception("activity_stats_reconcile_failed")


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.activity_store == "postgres":
		await postgres.init_pool()
	scheduler: JobScheduler | None = None
	if settings.reconcile_interval_hours > 0:
		scheduler = JobScheduler()
		scheduler.start()
		scheduler.schedule_every(RECONCILE_JOB_ID, _reconcile_job, hours=settings.reconcile_interval_hours)
	app.state.scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		await postgres.close_pool()


app = FastAPI(title="GGDB Activity API", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else []

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"] if settings.is_dev() else []

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs_init(app)

app.include_router(activity.router, tags=["activity"])
app.include_router(ops.router, tags=["ops"])
