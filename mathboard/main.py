"""
Mathboard - Application Entry Point
===================================

Bootstrap
---------
- Config validation and structured logging
- ConfigManager (YAML tunables)
- Database and Redis services
- Event bus
- Leaderboard components wired into a LeaderboardService
- Rollover scheduler start
- Graceful shutdown on SIGTERM / SIGINT, in reverse order
"""

import asyncio
import signal
import sys
from dataclasses import dataclass
from typing import Optional

from mathboard.core.config.config import Config
from mathboard.core.logging.logger import get_logger, setup_logging, shutdown_logging
from mathboard.core.config.manager import ConfigManager
from mathboard.core.database.service import DatabaseService
from mathboard.core.event.bus import EventBus
from mathboard.core.redis.service import RedisService
from mathboard.modules.leaderboard.persistence import PersistenceSynchronizer
from mathboard.modules.leaderboard.ranking_store import RankingStore
from mathboard.modules.leaderboard.repository import SnapshotRepository, StatisticsRepository
from mathboard.modules.leaderboard.rewards import RewardDistributor
from mathboard.modules.leaderboard.scheduler import RolloverScheduler
from mathboard.modules.leaderboard.service import LeaderboardService

logger = get_logger(__name__)


@dataclass
class Application:
    event_bus: EventBus
    leaderboard: LeaderboardService
    scheduler: RolloverScheduler


# ============================================================================
# Component Wiring
# ============================================================================


def build_application(event_bus: Optional[EventBus] = None) -> Application:
    """Wire the leaderboard components over the already-initialized services."""
    event_bus = event_bus or EventBus()

    store = RankingStore(RedisService, config_manager=ConfigManager)
    snapshots = SnapshotRepository(DatabaseService)
    statistics = StatisticsRepository(DatabaseService)
    rewards = RewardDistributor(config_manager=ConfigManager, event_bus=event_bus)
    synchronizer = PersistenceSynchronizer(
        store,
        snapshots,
        statistics,
        rewards,
        config_manager=ConfigManager,
        event_bus=event_bus,
        database=DatabaseService,
    )
    scheduler = RolloverScheduler(
        synchronizer,
        config_manager=ConfigManager,
        event_bus=event_bus,
    )
    leaderboard = LeaderboardService(
        store,
        snapshots,
        statistics,
        synchronizer,
        scheduler=scheduler,
        config_manager=ConfigManager,
        event_bus=event_bus,
    )
    return Application(event_bus=event_bus, leaderboard=leaderboard, scheduler=scheduler)


# ============================================================================
# Application Bootstrap
# ============================================================================


async def _startup() -> Application:
    """Initialize all infrastructure components, then start the scheduler."""
    logger.info("========== MATHBOARD INITIALIZATION START ==========")

    # Step 1: Configuration
    try:
        Config.validate()
        await ConfigManager.initialize()
        logger.info("✓ Configuration loaded")
    except Exception as exc:
        logger.critical(f"Configuration failed: {exc}", exc_info=True)
        raise

    # Step 2: Database
    try:
        await DatabaseService.initialize()
        logger.info("✓ Database service initialized")
    except Exception as exc:
        logger.critical(f"Database initialization failed: {exc}", exc_info=True)
        raise

    # Step 3: Redis
    try:
        await RedisService.initialize()
        logger.info("✓ Redis service initialized")
    except Exception as exc:
        logger.critical(f"Redis initialization failed: {exc}", exc_info=True)
        raise

    # Step 4: Leaderboard components
    try:
        app = build_application()
        logger.info("✓ Leaderboard components wired")
    except Exception as exc:
        logger.critical(f"Component wiring failed: {exc}", exc_info=True)
        raise

    # Step 5: Rollover scheduler
    await app.scheduler.start()
    logger.info(
        "✓ Rollover scheduler ready",
        extra={"status": app.scheduler.get_status().to_dict()},
    )

    logger.info("========== INFRASTRUCTURE INITIALIZED SUCCESSFULLY ==========")
    return app


# ============================================================================
# Application Shutdown
# ============================================================================


async def _shutdown(app: Optional[Application]) -> None:
    """Gracefully shut down in reverse startup order."""
    logger.info("========== MATHBOARD SHUTDOWN START ==========")

    if app is not None:
        try:
            await app.scheduler.stop()
            logger.info("✓ Rollover scheduler stopped")
        except Exception as exc:
            logger.error(f"Scheduler shutdown error: {exc}", exc_info=True)

        try:
            await app.event_bus.drain()
            logger.info("✓ Event bus drained")
        except Exception as exc:
            logger.error(f"Event bus drain error: {exc}", exc_info=True)

    try:
        await RedisService.shutdown()
        logger.info("✓ Redis service shut down")
    except Exception as exc:
        logger.error(f"Redis service shutdown error: {exc}", exc_info=True)

    try:
        await DatabaseService.shutdown()
        logger.info("✓ Database service shut down")
    except Exception as exc:
        logger.error(f"Database service shutdown error: {exc}", exc_info=True)

    await ConfigManager.shutdown()
    logger.info("========== SHUTDOWN COMPLETE ==========")


# ============================================================================
# Application Entrypoint
# ============================================================================


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            logger.debug(f"{sig.name} handler installed")
        except NotImplementedError:
            logger.debug(f"{sig.name} not supported on this platform (likely Windows)")


async def main() -> None:
    """
    Lifecycle:
        1. Validate configuration
        2. Initialize infrastructure (Config, DB, Redis, components)
        3. Run until SIGTERM / SIGINT
        4. Shut down gracefully
    """
    app: Optional[Application] = None
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    try:
        app = await _startup()
        logger.info("Mathboard running; waiting for shutdown signal")
        await stop_event.wait()

    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        raise

    finally:
        await _shutdown(app)


def run() -> None:
    setup_logging()
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Mathboard manually stopped via keyboard interrupt.")
    except Exception as exc:
        logger.critical(f"Startup failure: {exc}", exc_info=True)
        sys.exit(1)
    finally:
        shutdown_logging()


if __name__ == "__main__":
    run()
