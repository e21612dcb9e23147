"""
Process-level configuration for the kiosk controller.

Values needed before the settings layer is importable (logging).
Everything else lives in infrastructure.settings.
"""

import os
from typing import Final, Optional


# =============================================================================
# Logging Configuration
# =============================================================================

LOG_FILE: Final[str] = os.environ.get("KIOSK_LOG_FILE", "logs/kiosk.log")
LOG_LEVEL: Final[str] = os.environ.get("KIOSK_LOG_LEVEL", "DEBUG").upper()


# =============================================================================
# External Services Configuration
# =============================================================================

LOKI_URL: Final[Optional[str]] = os.environ.get("KIOSK_LOKI_URL") or None
