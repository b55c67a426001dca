# src/emitter_client/__init__.py
from .channel import format_channel
from .config import AppConfig, MQTTConfig, load_config
from .emitter import Emitter
from .exceptions import EmitterConnectionError, EmitterError, KeygenError
from .handlers import HandlerMap

__all__ = [
    "AppConfig",
    "Emitter",
    "EmitterConnectionError",
    "EmitterError",
    "HandlerMap",
    "KeygenError",
    "MQTTConfig",
    "format_channel",
    "load_config",
]
