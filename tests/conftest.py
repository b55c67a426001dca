"""Pytest configuration: an in-memory paho client standing in for the broker."""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, Generator, List, Optional, Tuple

import pytest

import emitter_client.emitter as emitter_module
from emitter_client.config import MQTTConfig
from emitter_client.emitter import Emitter


class FakeClient:
    """Records calls and plays back broker traffic on ``loop()``.

    Messages published to a subscribed channel are echoed back with the key
    stripped from the topic, as the emitter server does, unless ``me=0``.
    """

    instances: List["FakeClient"] = []
    connack_code: Any = 0
    connect_error: Optional[Exception] = None
    keygen_response: Any = {"status": 200, "key": "k" * 32}
    keygen_reply_topic = "emitter/keygen/"

    def __init__(self, callback_api_version: Any, client_id: str = "") -> None:
        self.callback_api_version = callback_api_version
        self.client_id = client_id
        self.username: Optional[str] = None
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None
        self.connected = False
        self.pending_connack: Any = None
        self.published: List[Tuple[str, Any, int]] = []
        self.subscribed: List[str] = []
        self.unsubscribed: List[str] = []
        self.inbox: List[Tuple[str, bytes]] = []
        self.loop_calls = 0
        type(self).instances.append(self)

    def username_pw_set(self, username: str, password: Optional[str] = None) -> None:
        self.username = username

    def connect(self, host: str, port: int, keepalive: int = 60) -> int:
        if self.connect_error is not None:
            raise self.connect_error
        self.host = host
        self.port = port
        self.pending_connack = self.connack_code
        return 0

    def disconnect(self) -> int:
        self.connected = False
        return 0

    def is_connected(self) -> bool:
        return self.connected

    def want_write(self) -> bool:
        return False

    def loop(self, timeout: float = 1.0) -> int:
        self.loop_calls += 1
        if self.pending_connack is not None:
            code = self.pending_connack
            self.pending_connack = None
            self.connected = code == 0
            self.on_connect(self, None, {}, code, None)
            return 0
        while self.inbox:
            topic, payload = self.inbox.pop(0)
            self.on_message(self, None, SimpleNamespace(topic=topic, payload=payload))
        return 0

    def publish(self, topic: str, payload: Any = None, qos: int = 0) -> None:
        self.published.append((topic, payload, qos))
        body = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload or b"")

        if topic == "emitter/keygen/":
            reply = self.keygen_response
            if reply is not None:
                raw = reply if isinstance(reply, bytes) else json.dumps(reply).encode("utf-8")
                self.inbox.append((self.keygen_reply_topic, raw))
            return

        base, _, query = topic.partition("?")
        if "me=0" in query.split("&"):
            return
        if any(sub.partition("?")[0] == base for sub in self.subscribed):
            self.inbox.append((base.split("/", 1)[1], body))

    def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)
        self.subscribed = [sub for sub in self.subscribed if sub.partition("?")[0] != topic]

    def sent_json(self, topic: str) -> Dict[str, Any]:
        """Decode the last JSON body published to ``topic``."""
        for sent_topic, payload, _ in reversed(self.published):
            if sent_topic == topic:
                return json.loads(payload)
        raise AssertionError(f"nothing published to {topic}")


@pytest.fixture
def fake_client_cls(monkeypatch: pytest.MonkeyPatch) -> Generator[type, None, None]:
    """Swap paho's Client for a fresh FakeClient subclass."""

    class Client(FakeClient):
        instances: List[FakeClient] = []

    monkeypatch.setattr(emitter_module.mqtt, "Client", Client)
    yield Client


@pytest.fixture
def mqtt_config() -> MQTTConfig:
    return MQTTConfig(
        host="emitter.test",
        port=8080,
        connect_timeout=0.05,
        keygen_timeout=0.05,
        loop_interval=0.0,
    )


@pytest.fixture
def emitter(fake_client_cls: type, mqtt_config: MQTTConfig) -> Emitter:
    return Emitter(mqtt_config).connect()


@pytest.fixture
def client(emitter: Emitter, fake_client_cls: type) -> FakeClient:
    return fake_client_cls.instances[-1]
