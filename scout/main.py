"""Scout — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for the
``run``, ``status`` and ``shadow-report`` modes.
"""

import logging

from fastapi import FastAPI

from scout.api.routers import router

app = FastAPI(title="Scout Signal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("scout")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import json

    from scout.config import load_config

    parser = argparse.ArgumentParser(description="Scout SMC signal engine")
    parser.add_argument(
        "--mode",
        choices=["run", "status", "shadow-report"],
        default="run",
        help="Run the service, print persisted stats, or summarise the shadow log",
    )
    parser.add_argument("--env", default=None, help="Path to a .env file")
    args = parser.parse_args()

    config = load_config(args.env)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "status":
        _print_persisted_status(config)
        return
    if args.mode == "shadow-report":
        from scout.strategy.shadow_log import analyze_shadow_log

        print(json.dumps(analyze_shadow_log(config.shadow_log_path), indent=2))
        return

    from scout.api.routers import configure_routers
    from scout.service import build_service

    service = build_service(config)
    configure_routers(service)

    import signal

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping gracefully.")
        service.stop()

    signal.signal(signal.SIGINT, handle_shutdown)

    asyncio.run(_run_service(service, config.api_port))


async def _run_service(service, port: int = 8080) -> None:
    """Start the API server and the signal service concurrently."""
    import asyncio
    import uvicorn

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        await server.serve()

    async def _run_scout():
        await service.run()
        server.should_exit = True

    logger.info("Metrics available at http://localhost:%d/metrics", port)
    results = await asyncio.gather(
        _run_server(),
        _run_scout(),
        return_exceptions=True,
    )
    logger.info("Scout stopped. Results: %s", results)


def _print_persisted_status(config) -> None:
    """Render the persisted counters without starting the service."""
    from scout.cli.dashboard import print_status
    from scout.config import load_settings
    from scout.lifecycle.clock import Scheduler
    from scout.lifecycle.manager import SignalLifecycleManager
    from scout.repos.db import init_db
    from scout.repos.stats_repo import StatsRepo

    init_db(config.db_path)
    settings = load_settings(config.settings_path)
    lifecycle = SignalLifecycleManager(
        price_lookup=lambda _instrument: None,
        scheduler=Scheduler(),
        repo=StatsRepo(config.db_path),
        min_confidence=settings.min_confidence_percent,
    )
    history = lifecycle.history(1)
    last = None
    if history:
        row = history[0]
        last = {
            "pair": row["instrument"],
            "action": row["direction"],
            "confidence": row["confidence"],
            "duration": row["duration_minutes"],
            "result": None if row["outcome"] == "pending" else row["outcome"].upper(),
        }
    print_status({
        "engine": config.engine,
        "metrics": {
            **lifecycle.stats(),
            "currentInterval": settings.signal_interval_minutes,
            "currentWarmup": settings.warmup_candles_count,
        },
        "lastSignal": last,
        "pairStatus": {},
        "activePairs": 0,
        "warmupCompletePairs": 0,
    })


if __name__ == "__main__":
    _run_cli()
