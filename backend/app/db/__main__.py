# python -m backend.app.db
import asyncio
import logging
import sys

from backend.app.core.config import settings
from backend.app.db import init_models

if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    asyncio.run(init_models())
