"""MCP Server - Tool definitions for assistant integration.

Defines the MCP tools an assistant can invoke to read and update today's
water and calorie tracking. Also owns the lazily built tracker shared with
the HTTP routes.
"""

import logging
import os
from pathlib import Path

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from pydantic import ValidationError

from ..core.models import GoalUpdate, IntakeKind
from .clock import SystemClock, load_timezone
from .daily_store import DailyRecordStore
from .store import (
    FileStoreConfig,
    FirestoreConfig,
    FirestoreRecordStore,
    InMemoryRecordStore,
    JsonFileRecordStore,
    RecordStore,
    StorageError,
)
from .tracker import HealthTracker


logger = logging.getLogger(__name__)

transport_security = TransportSecuritySettings(
    enable_dns_rebinding_protection=True,
    allowed_hosts=["localhost:*", "127.0.0.1:*"],
)

mcp = FastMCP(
    "hydratrack",
    instructions="""HydraTrack - Daily water and calorie tracker.

Use these tools to log glasses of water and meals, adjust the user's daily
goals and report progress. Today's totals reset automatically 24 hours after
the last update.

After logging, always show the updated progress for today.""",
    stateless_http=True,
    transport_security=transport_security,
)

# Lazy-initialized tracker
_tracker: HealthTracker | None = None


def build_record_store() -> RecordStore:
    """Create the record store selected by HYDRATRACK_STORE.

    Raises:
        ValueError: If the backend name is unknown
    """
    backend = os.environ.get("HYDRATRACK_STORE", "file").lower()

    if backend == "file":
        config = FileStoreConfig()
        if os.environ.get("HYDRATRACK_DATA_FILE"):
            config.path = Path(os.environ["HYDRATRACK_DATA_FILE"]).expanduser()
        return JsonFileRecordStore(config)
    if backend == "firestore":
        return FirestoreRecordStore(FirestoreConfig(
            project_id=os.environ.get("GOOGLE_CLOUD_PROJECT"),
            database=os.environ.get("FIRESTORE_DATABASE"),
            collection=os.environ.get("FIRESTORE_COLLECTION", "hydratrack"),
        ))
    if backend == "memory":
        return InMemoryRecordStore()
    raise ValueError(f"Unknown HYDRATRACK_STORE backend: {backend}")


def get_tracker() -> HealthTracker:
    """Get or create the tracker, opening it on first use."""
    global _tracker
    if _tracker is None:
        clock = SystemClock(load_timezone(os.environ.get("HYDRATRACK_TIMEZONE")))
        records = DailyRecordStore(build_record_store(), clock)
        logger.info("Opening tracker with %s", type(records.store).__name__)
        _tracker = HealthTracker(records).open()
    return _tracker


def use_tracker(tracker: HealthTracker | None) -> None:
    """Replace the shared tracker (None rebuilds it on next use)."""
    global _tracker
    _tracker = tracker


def _progress_summary() -> dict:
    snapshot = get_tracker().get_snapshot()
    return {
        "water": snapshot.water.model_dump(),
        "calories": snapshot.calories.model_dump(),
    }


# ==================== Goal Tools ====================


@mcp.tool()
def get_goals() -> dict:
    """Retrieve the user's daily goals.

    Returns:
        Dictionary with water_goal (glasses) and calorie_goal (kcal)
    """
    return get_tracker().get_goals().model_dump()


@mcp.tool()
def set_goals(water_goal: int, calorie_goal: int) -> dict:
    """Update the user's daily goals.

    Args:
        water_goal: Glasses of water per day (1-20)
        calorie_goal: Kilocalories per day (1000-5000)

    Returns:
        The saved goals and today's progress against them
    """
    try:
        update = GoalUpdate(water_goal=water_goal, calorie_goal=calorie_goal)
    except ValidationError as e:
        return {"error": f"Invalid goals: {e.errors()[0]['msg']}"}

    tracker = get_tracker()
    try:
        goals = tracker.set_goals(update.to_settings())
    except StorageError:
        return {"error": "Failed to save goals. Please try again."}

    return {"goals": goals.model_dump(), "progress": _progress_summary()}


# ==================== Logging Tools ====================


@mcp.tool()
def log_water(glasses: int = 1) -> dict:
    """Add glasses of water to today's intake.

    Args:
        glasses: Number of glasses drunk (default 1)

    Returns:
        Updated totals and progress
    """
    tracker = get_tracker()
    try:
        totals = tracker.add_intake(IntakeKind.WATER, glasses)
    except ValueError as e:
        return {"error": str(e)}
    except StorageError:
        return {
            "error": "Logged for this session, but saving failed. Storage may be full.",
            "totals": tracker.totals.model_dump(),
        }

    return {"totals": totals.model_dump(), "progress": _progress_summary()}


@mcp.tool()
def log_meal(calories: int, description: str | None = None) -> dict:
    """Add a meal's calories to today's intake.

    Args:
        calories: Kilocalories in the meal (1-5000)
        description: Optional name of the meal (e.g., "Breakfast")

    Returns:
        The logged meal, updated totals and progress
    """
    tracker = get_tracker()
    try:
        meal = tracker.log_meal(calories, description)
    except ValidationError as e:
        return {"error": f"Invalid meal: {e.errors()[0]['msg']}"}
    except StorageError:
        return {
            "error": "Logged for this session, but saving failed. Storage may be full.",
            "totals": tracker.totals.model_dump(),
        }

    return {
        "meal": meal.model_dump(mode="json"),
        "totals": tracker.totals.model_dump(),
        "progress": _progress_summary(),
    }


@mcp.tool()
def reset_intake(kind: str) -> dict:
    """Reset today's water or calorie count to zero.

    Args:
        kind: "water" or "calories"

    Returns:
        Updated totals
    """
    tracker = get_tracker()
    try:
        totals = tracker.reset_intake(kind)
    except ValueError:
        return {"error": "Kind must be 'water' or 'calories'."}
    except StorageError:
        return {
            "error": "Reset for this session, but saving failed.",
            "totals": tracker.totals.model_dump(),
        }

    return {"totals": totals.model_dump()}


# ==================== Query Tools ====================


@mcp.tool()
def get_today() -> dict:
    """Get today's totals, goals, progress and recent meals.

    Returns:
        Dictionary with log_date, totals, goals, water and calories
        progress, and recent_meals
    """
    snapshot = get_tracker().get_snapshot()
    return snapshot.model_dump(mode="json")
