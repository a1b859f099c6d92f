# engine.py
"""
LevelPack engine - main entry point.

Loads configuration, prepares the database, wires the event handlers and
runs the maintenance scheduler until interrupted. Registrations arrive as
MEMBER_REGISTERED events.
"""
import asyncio
import logging
import sys

from config import Config
from core.db import setup_database, get_db_session_ctx
from models.listeners import register_all_listeners

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('levelpack.log')
    ]
)

logger = logging.getLogger(__name__)


async def initialize_engine():
    """
    Initialize configuration, database, listeners, events and scheduler.

    Returns:
        Tuple[MLMScheduler, LevelStatsCache]: Started scheduler and the shared cache
    """
    from background.mlm_scheduler import MLMScheduler
    from mlm_system.events.setup import setup_mlm_event_handlers
    from mlm_system.services.registration_service import RegistrationService
    from mlm_system.utils.level_cache import LevelStatsCache

    try:
        logger.info("=" * 60)
        logger.info("LEVELPACK ENGINE INITIALIZATION")
        logger.info("=" * 60)

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 1: Load configuration from .env
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("📋 Loading configuration from .env...")
        Config.initialize_from_env()
        logger.info("✓ Configuration loaded")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 2: Setup database and listeners
        # ═══════════════════════════════════════════════════════════════════════
        logger.info("💾 Setting up database...")
        setup_database()
        register_all_listeners()
        logger.info("✓ Database ready")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 3: Make sure the creator (tree root) exists
        # ═══════════════════════════════════════════════════════════════════════
        with get_db_session_ctx() as session:
            creator = RegistrationService(session).ensureCreator()
            logger.info(f"✓ Creator member: {creator.memberID} ({creator.username})")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 4: Event handlers
        # ═══════════════════════════════════════════════════════════════════════
        cache = LevelStatsCache(ttlSeconds=Config.get(Config.LEVEL_STATS_CACHE_TTL))
        setup_mlm_event_handlers(cache)
        logger.info("✓ MLM event handlers registered")

        # ═══════════════════════════════════════════════════════════════════════
        # STEP 5: Background jobs
        # ═══════════════════════════════════════════════════════════════════════
        scheduler = MLMScheduler()
        await scheduler.start()

        logger.info("=" * 60)
        logger.info("✅ INITIALIZATION COMPLETE")
        logger.info("=" * 60)

        return scheduler, cache

    except Exception as e:
        logger.critical(f"❌ Initialization failed: {e}", exc_info=True)
        raise


async def main():
    """Main entry point."""
    scheduler = None
    try:
        scheduler, _ = await initialize_engine()

        # Run until cancelled
        await asyncio.Event().wait()

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("⚠️ Engine stopped by user")
    except Exception as e:
        logger.critical(f"❌ Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if scheduler is not None:
            await scheduler.stop()
        logger.info("👋 Engine shutdown complete")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Engine stopped")
