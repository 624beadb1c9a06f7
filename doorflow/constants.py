from __future__ import annotations

import logging

LOGGER = logging.getLogger("doorflow")
APP_VERSION = "0.1.0"

DEFAULT_BASE_PATH = "https://api.doorflow.com"
DEFAULT_SCOPES = [
    "account.person",
    "account.channel.readonly",
    "account.event.access.readonly",
]
DEFAULT_REFRESH_BUFFER_SECONDS = 300
