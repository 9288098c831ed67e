"""HydraTrack Server - Entry point.

Serves the JSON API used by the tracker UI and the MCP server over HTTP.
Uses Starlette with the MCP HTTP app mounted at the root.
"""

import json
import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, Mount

from .core.models import GoalUpdate, IntakeKind
from .shell.mcp_server import mcp, get_tracker, use_tracker
from .shell.store import StorageError
from .shell.tracker import HealthTracker


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def _read_json(request: Request) -> dict:
    """Parse a JSON object body. An empty body reads as {}.

    Raises:
        ValueError: If the body is not a JSON object
    """
    body = await request.body()
    if not body:
        return {}
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _storage_failure(tracker: HealthTracker) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Saved for this session only. Storage is full or unavailable.",
            "totals": tracker.totals.model_dump(),
        },
        status_code=507,
    )


# ==================== Route Handlers ====================


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "healthy", "service": "hydratrack"})


async def get_today(request: Request) -> JSONResponse:
    """Today's totals, goals and progress."""
    snapshot = get_tracker().get_snapshot()
    return JSONResponse(snapshot.model_dump(mode="json"))


async def get_goals(request: Request) -> JSONResponse:
    return JSONResponse(get_tracker().get_goals().model_dump())


async def update_goals(request: Request) -> JSONResponse:
    """Replace the daily goals."""
    try:
        update = GoalUpdate.model_validate(await _read_json(request))
    except ValidationError as e:
        details = [f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()]
        return JSONResponse({"error": "Invalid goals", "details": details}, status_code=400)
    except ValueError:
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

    try:
        goals = get_tracker().set_goals(update.to_settings())
    except StorageError as e:
        logger.error("Saving goals failed: %s", str(e))
        return JSONResponse({"error": "Failed to save goals."}, status_code=507)
    return JSONResponse(goals.model_dump())


async def add_water(request: Request) -> JSONResponse:
    """Add glasses of water (default 1)."""
    try:
        body = await _read_json(request)
    except ValueError:
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

    tracker = get_tracker()
    try:
        totals = tracker.add_intake(IntakeKind.WATER, body.get("glasses", 1))
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    except StorageError:
        return _storage_failure(tracker)
    return JSONResponse(totals.model_dump())


async def add_calories(request: Request) -> JSONResponse:
    """Log a meal's calories with an optional description."""
    try:
        body = await _read_json(request)
    except ValueError:
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

    tracker = get_tracker()
    try:
        meal = tracker.log_meal(body.get("calories"), body.get("description"))
    except ValidationError:
        return JSONResponse({"error": "Please enter a valid calorie amount (1-5000)"}, status_code=400)
    except StorageError:
        return _storage_failure(tracker)
    return JSONResponse({
        "meal": meal.model_dump(mode="json"),
        "totals": tracker.totals.model_dump(),
    })


async def reset_intake(request: Request) -> JSONResponse:
    """Reset today's water or calorie count."""
    tracker = get_tracker()
    try:
        totals = tracker.reset_intake(request.path_params["kind"])
    except ValueError:
        return JSONResponse({"error": "Unknown intake kind"}, status_code=404)
    except StorageError:
        return _storage_failure(tracker)
    return JSONResponse(totals.model_dump())


# ==================== Create ASGI App ====================


def create_app(tracker: HealthTracker | None = None) -> Starlette:
    """Create the Starlette application with MCP at root.

    The expiry watch runs for the lifetime of the app and is cancelled on
    shutdown, alongside the MCP session manager's own lifespan.

    Args:
        tracker: Tracker to serve (defaults to one built from the environment)
    """
    if tracker is not None:
        use_tracker(tracker)

    mcp_app = mcp.streamable_http_app()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        watch = get_tracker().start_expiry_watch()
        try:
            async with mcp_app.router.lifespan_context(app):
                yield
        finally:
            watch.cancel()

    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route("/api/today", get_today, methods=["GET"]),
        Route("/api/goals", get_goals, methods=["GET"]),
        Route("/api/goals", update_goals, methods=["PUT"]),
        Route("/api/water", add_water, methods=["POST"]),
        Route("/api/calories", add_calories, methods=["POST"]),
        Route("/api/{kind}/reset", reset_intake, methods=["POST"]),
        # Mount MCP app at root - it handles /mcp/ path internally
        Mount("/", app=mcp_app),
    ]

    return Starlette(
        routes=routes,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["http://localhost:5173"],
                allow_methods=["GET", "POST", "PUT", "OPTIONS"],
                allow_headers=["*"],
            ),
        ],
        lifespan=lifespan,
    )


# Create app at module level for `uvicorn hydratrack.main:app`
app = create_app()


def main() -> None:
    """Run the server."""
    port = int(os.environ.get("PORT", 8080))
    host = os.environ.get("HOST", "127.0.0.1")

    logger.info("Starting HydraTrack on %s:%d", host, port)

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
