"""
Unified backend entry point.

Architecture:
- One Python process, one asyncio event loop
- Three peer services running concurrently:
  1. FastAPI (HTTP API for monitoring, delivery control and cron triggers)
  2. Delivery engine (one asyncio task per reminder delivery instance)
  3. APScheduler (daily scheduling pass, dispatch, retry and reconciliation jobs)

We use FastAPI's lifespan to manage startup/shutdown, but at runtime
all services are equal peers in the event loop. The lifespan pattern
gives us uvicorn's signal handling and --reload for free.

Run with: python main.py [--no-scheduler] [--port PORT]
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv

# Load .env.local first (if exists), then .env as fallback
# .env.local is gitignored and used for local dev overrides
load_dotenv(project_root / ".env.local")  # Local overrides (gitignored)
load_dotenv()  # Fallback to .env

import sentry_sdk
from fastapi import FastAPI

from circleday.config import check_required_env_vars, get_api_port, is_production
from circleday.database import close_engine, is_configured
from circleday.notifications.engine import (
    get_delivery_engine,
    init_delivery_engine,
    shutdown_delivery_engine,
)
from circleday.notifications.scheduler import init_scheduler, shutdown_scheduler
from web_api.routes.cron import router as cron_router
from web_api.routes.reminders import router as reminders_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

SENTRY_DSN = os.environ.get("SENTRY_DSN")
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment="production" if is_production() else "development",
        traces_sample_rate=0.1,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan context manager.

    Starts the delivery engine (recovering unfinished deliveries) and the
    job scheduler. They run alongside FastAPI in the same event loop.
    """
    ok, warnings = check_required_env_vars()
    for warning in warnings:
        print(warning)
    if not ok:
        raise RuntimeError("Missing required environment variables")

    engine = init_delivery_engine()
    if is_configured():
        try:
            await engine.recover()
        except Exception as e:
            print(f"Warning: Could not recover delivery instances: {e}")
            sentry_sdk.capture_exception(e)

    if os.getenv("DISABLE_SCHEDULER", "").lower() in ("true", "1", "yes"):
        print("Reminder scheduler disabled (--no-scheduler flag or DISABLE_SCHEDULER=true)")
    else:
        init_scheduler()

    yield  # FastAPI runs here, deliveries and jobs run alongside it

    print("Shutting down peer services...")
    shutdown_scheduler()
    await shutdown_delivery_engine()
    await close_engine()  # Close database connections


app = FastAPI(
    title="CircleDay Reminder API",
    lifespan=lifespan,
)

app.include_router(cron_router)
app.include_router(reminders_router)


@app.get("/health")
async def health():
    """Health check endpoint with detailed status."""
    return {
        "status": "healthy",
        "database_configured": is_configured(),
        "delivery_engine_running": get_delivery_engine() is not None,
    }


if __name__ == "__main__":
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="CircleDay Reminder Server")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Disable periodic jobs (useful for running multiple dev servers)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=get_api_port(),
        help="Port to run the server on (default: API_PORT or 8000)",
    )
    args = parser.parse_args()

    # Set env var so it persists across uvicorn reloads
    if args.no_scheduler:
        os.environ["DISABLE_SCHEDULER"] = "true"

    # Pass app object directly (not string) to avoid module reimport issues
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=args.port,
    )
