import uvicorn
import os
from logging_config import setup_logging

# Setup logging before importing app so module loggers pick it up
log_level = os.getenv("LOG_LEVEL", "DEBUG")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)

from app import app
from constants import PRESENCE_ENABLED, ROOM_IDLE_SUSPEND_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    logger.info(
        f"Starting PeerRelay on {host}:{port} "
        f"(presence={'on' if PRESENCE_ENABLED else 'off'}, idle suspend={ROOM_IDLE_SUSPEND_SECONDS or 'off'})"
    )
    # Room state lives in this process, so a single worker and no reload
    uvicorn.run(app, host=host, port=port, log_config=None, ws_ping_interval=20.0)
