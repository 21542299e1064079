from __future__ import annotations

import logging
import webbrowser
from typing import Callable

LOGGER = logging.getLogger("threadgate.auth")


def open_browser_best_effort(url: str, opener: Callable[[str], object] = webbrowser.open) -> bool:
    """Try to open ``url``; the caller has already shown it to the operator."""
    try:
        opened = opener(url)
    except (webbrowser.Error, OSError) as error:
        LOGGER.warning("Could not open browser: %s", error)
        return False
    if opened is False:
        LOGGER.warning("No browser available to open the authorization URL")
        return False
    return True
