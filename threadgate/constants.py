from __future__ import annotations

import logging
import os

LOGGER = logging.getLogger("threadgate.relay")
HTTP_LOGGER = logging.getLogger("threadgate.http")

APP_NAME = "threadgate"
APP_VERSION = "0.1.0"
GIT_VERSION = os.getenv("THREADGATE_GIT_VERSION", "").strip() or "unknown"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
GRACEFUL_SHUTDOWN_SECONDS = 30
