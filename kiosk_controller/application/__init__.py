"""
Application layer - Application services and use cases.

Contains:
- Session controller and timers
- Chain watcher
- Device link
- Command handlers and the API facade
"""

from .timers import EventTimer
from .chain_watcher import ChainWatcher
from .device_link import DeviceConnection, DeviceLink
from .session_controller import SessionController
from .api_facade import KioskFacade, build_match_rule
from .command_handler import CommandHandler, CommandResponse


__all__ = [
    "EventTimer",
    "ChainWatcher",
    "DeviceConnection",
    "DeviceLink",
    "SessionController",
    "KioskFacade",
    "build_match_rule",
    "CommandHandler",
    "CommandResponse",
]
