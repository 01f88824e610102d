import logging

logger = logging.getLogger(__name__)


async def init_models():
    """Create the totp and backup code tables if they do not exist."""
    from backend.app.db.base import Base, engine
    # Registers the tables on Base.metadata
    from backend.app.models import backup_code, totp  # noqa: F401

    try:
        async with engine.begin() as conn:
            logger.info(f"Creating tables on {engine.url.render_as_string(hide_password=True)}")
            await conn.run_sync(Base.metadata.create_all)
            logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    except Exception as e:
        logger.error(f"Table creation failed: {e}")
        raise
