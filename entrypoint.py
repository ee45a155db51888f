import uvicorn
from constants import HOST, PORT, LOG_LEVEL, LOG_FILE, SSL_CERTFILE, SSL_KEYFILE
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app
from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    ssl_options = {}
    if SSL_CERTFILE and SSL_KEYFILE:
        ssl_options = {"ssl_certfile": SSL_CERTFILE, "ssl_keyfile": SSL_KEYFILE}
        scheme = "https"
    else:
        scheme = "http"
    logger.info(f"Starting signaling relay on {scheme}://{HOST}:{PORT}")
    # Rooms live in this process's memory: a single worker only
    uvicorn.run(app, host=HOST, port=PORT, log_config=None, **ssl_options)
