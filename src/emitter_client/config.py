# src/emitter_client/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# relative paths, including the default config file, resolve against the cwd
DEFAULT_CONFIG_PATH = Path("config") / "config.yaml"


def _resolve(path: Path) -> Path:
    return path if path.is_absolute() else Path.cwd() / path


@dataclass
class MQTTConfig:
    host: str = "localhost"
    port: int = 8080
    username: Optional[str] = None
    client_id: str = ""
    keepalive: int = 60
    connect_timeout: float = 5.0
    keygen_timeout: float = 5.0
    loop_interval: float = 0.1


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Path = Path("logs") / "emitter-client.log"


@dataclass
class AppConfig:
    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env(raw_mqtt: Dict[str, Any]) -> Dict[str, Any]:
    host = os.environ.get("EMITTER_HOST")
    if host:
        raw_mqtt["host"] = host
    port = os.environ.get("EMITTER_PORT")
    if port:
        raw_mqtt["port"] = port
    return raw_mqtt


def load_config(path: Path | None = None) -> AppConfig:
    if path is None:
        path = DEFAULT_CONFIG_PATH
        raw: Dict[str, Any] = {}
        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
    else:
        with Path(path).open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    mqtt_cfg = _apply_env(dict(raw.get("mqtt") or {}))
    log_cfg = raw.get("logging") or {}

    username = mqtt_cfg.get("username")

    cfg = AppConfig(
        mqtt=MQTTConfig(
            host=mqtt_cfg.get("host", "localhost"),
            port=int(mqtt_cfg.get("port", 8080)),
            username=str(username) if username else None,
            client_id=str(mqtt_cfg.get("client_id") or ""),
            keepalive=int(mqtt_cfg.get("keepalive", 60)),
            connect_timeout=float(mqtt_cfg.get("connect_timeout", 5.0)),
            keygen_timeout=float(mqtt_cfg.get("keygen_timeout", 5.0)),
            loop_interval=float(mqtt_cfg.get("loop_interval", 0.1)),
        ),
        logging=LoggingConfig(
            level=log_cfg.get("level", "INFO"),
            file=_resolve(Path(log_cfg.get("file", "./logs/emitter-client.log"))),
        ),
    )
    return cfg
