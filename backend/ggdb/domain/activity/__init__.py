"""Game engagement activity domain exports."""

from .exceptions import (  # noqa: F401
    ActivityError,
    ActivityForbidden,
    ActivityNotFound,
    ActivityValidationError,
    GameNotFound,
)
from .models import ActivityRecord, ActivityType, GameSnapshot, GameStats, ReactionToggle, TimeRange  # noqa: F401
from .reconcile import StatsReconciler  # noqa: F401
from .service import ActivityService  # noqa: F401
from .stats import DIRTY_GAMES_KEY, ActivityStatsService  # noqa: F401
