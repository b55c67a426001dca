# src/emitter_client/emitter.py
from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

import paho.mqtt.client as mqtt

from .channel import format_channel, publish_options, subscribe_options
from .config import MQTTConfig
from .exceptions import EmitterConnectionError, EmitterError, KeygenError
from .handlers import HandlerMap

logger = logging.getLogger(__name__)

KEYGEN_TOPIC = "emitter/keygen/"
LINK_TOPIC = "emitter/link/"
PRESENCE_TOPIC = "emitter/presence/"
ME_TOPIC = "emitter/me/"
ERROR_TOPIC = "emitter/error/"

MessageHandler = Callable[["Emitter", str, str], None]
LoopHandler = Callable[["Emitter", float], None]
Payload = Union[str, bytes, bytearray, Dict[str, Any], List[Any]]


def _encode(message: Payload) -> Union[str, bytes, bytearray]:
    if isinstance(message, (str, bytes, bytearray)):
        return message
    return json.dumps(message)


class Emitter:
    """Convenience wrapper over a paho MQTT client for an emitter.io server.

    Channel-level calls are turned into emitter topics (``key/channel/?opts``)
    and control requests (keygen, link, presence, me) are sent as JSON to the
    ``emitter/<verb>/`` topics. Handlers receive this object instead of the
    underlying paho client.
    """

    def __init__(self, cfg: MQTTConfig | None = None):
        self.cfg = cfg or MQTTConfig()
        self._client: Optional[mqtt.Client] = None
        self._handler_map = HandlerMap()
        self._message_handlers: List[Callable[[mqtt.Client, str, str], None]] = []
        self._loop_handlers: List[Callable[[mqtt.Client, float], None]] = []
        self._subscriptions: Set[str] = set()
        self._connack: Any = None
        self._interrupted = False
        self._received = 0

    # -- connection ---------------------------------------------------------

    def connect(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
    ) -> "Emitter":
        host = host or self.cfg.host
        port = port or self.cfg.port
        username = username if username is not None else self.cfg.username

        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.cfg.client_id)
        if username:
            client.username_pw_set(username)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._connack = None
        try:
            client.connect(host, port, keepalive=self.cfg.keepalive)
        except OSError as exc:
            raise EmitterConnectionError(f"Failed to connect to {host}:{port}: {exc}") from exc

        deadline = time.monotonic() + self.cfg.connect_timeout
        while self._connack is None:
            if time.monotonic() >= deadline:
                client.disconnect()
                raise EmitterConnectionError(f"Timed out waiting for {host}:{port} to accept the connection")
            rc = client.loop(timeout=self.cfg.loop_interval)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                raise EmitterConnectionError(
                    f"Connection to {host}:{port} dropped: {mqtt.error_string(rc)}"
                )

        if self._connack != 0:
            client.disconnect()
            raise EmitterConnectionError(f"Connection to {host}:{port} refused: {self._connack}")

        self._client = client
        self._subscriptions.clear()
        logger.info("Connected to emitter at %s:%s", host, port)
        return self

    def disconnect(self) -> "Emitter":
        if self.is_connected():
            self._client.disconnect()
            logger.info("Disconnected from emitter")
        return self

    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected()

    def _require_client(self) -> mqtt.Client:
        if self._client is None:
            raise EmitterError("Emitter is not connected; call connect() first")
        return self._client

    # -- paho callbacks -----------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connack = reason_code
        if reason_code != 0:
            logger.warning("Emitter refused connection: %s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code != 0:
            logger.warning("Emitter connection lost (reason=%s)", reason_code)

    def _on_message(self, client, userdata, message) -> None:
        self._received += 1
        topic = message.topic
        payload = message.payload.decode("utf-8", errors="replace")
        logger.debug("<< %s: %s", topic, payload)
        for handler in list(self._message_handlers):
            handler(client, topic, payload)

    # -- handlers -----------------------------------------------------------

    def _register(self, handler: Any, wrapped: Any, registry: List[Any]) -> None:
        # re-adding a handler swaps its wrapper in place
        if self._handler_map.has(handler):
            previous = self._handler_map.get(handler)
            if previous in registry:
                registry[registry.index(previous)] = wrapped
                self._handler_map.add(handler, wrapped)
                return
        self._handler_map.add(handler, wrapped)
        registry.append(wrapped)

    def add_message_handler(self, handler: MessageHandler) -> "Emitter":
        """Call ``handler(emitter, topic, message)`` for every received message."""

        def wrapped(client: mqtt.Client, topic: str, message: str) -> None:
            handler(self, topic, message)

        self._register(handler, wrapped, self._message_handlers)
        return self

    def add_loop_handler(self, handler: LoopHandler) -> "Emitter":
        """Call ``handler(emitter, elapsed)`` on every cycle of :meth:`loop`."""

        def wrapped(client: mqtt.Client, elapsed: float) -> None:
            handler(self, elapsed)

        self._register(handler, wrapped, self._loop_handlers)
        return self

    def remove_message_handler(self, handler: MessageHandler) -> "Emitter":
        wrapped = self._handler_map.get(handler)
        if wrapped in self._message_handlers:
            self._message_handlers.remove(wrapped)
        self._handler_map.remove(handler)
        return self

    def remove_loop_handler(self, handler: LoopHandler) -> "Emitter":
        wrapped = self._handler_map.get(handler)
        if wrapped in self._loop_handlers:
            self._loop_handlers.remove(wrapped)
        self._handler_map.remove(handler)
        return self

    # -- event loop ---------------------------------------------------------

    def loop(
        self,
        allow_sleep: bool = True,
        exit_when_queues_empty: bool = False,
        queue_wait_limit: Optional[float] = None,
    ) -> "Emitter":
        """Run the network loop until :meth:`interrupt` is called.

        With ``exit_when_queues_empty`` the loop also stops once nothing is
        waiting to be sent, no message arrived during the cycle and there are
        no active subscriptions, or after ``queue_wait_limit`` seconds.
        """
        client = self._require_client()
        timeout = self.cfg.loop_interval if allow_sleep else 0.0
        started = time.monotonic()
        self._interrupted = False

        while not self._interrupted:
            received = self._received
            rc = client.loop(timeout=timeout)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                raise EmitterConnectionError(f"Network loop failed: {mqtt.error_string(rc)}")

            elapsed = time.monotonic() - started
            for handler in list(self._loop_handlers):
                handler(client, elapsed)

            if exit_when_queues_empty:
                if queue_wait_limit is not None and elapsed > queue_wait_limit:
                    break
                idle = self._received == received and not client.want_write()
                if idle and not self._subscriptions:
                    break

        return self

    def interrupt(self) -> "Emitter":
        self._interrupted = True
        return self

    # -- pub/sub ------------------------------------------------------------

    def _publish(self, topic: str, message: Payload, qos: int = 0) -> None:
        client = self._require_client()
        logger.debug(">> %s", topic)
        client.publish(topic, _encode(message), qos=qos)

    def publish(
        self,
        key: str,
        channel: str,
        message: Payload,
        ttl: Optional[int] = None,
        me: Optional[bool] = None,
    ) -> "Emitter":
        """Publish to ``channel``; ``key`` needs write (``w``) permission."""
        topic = format_channel(key, channel, publish_options(ttl, me))
        self._publish(topic, message)
        return self

    def subscribe(self, key: str, channel: str, last: Optional[int] = None) -> "Emitter":
        """Subscribe to ``channel``; ``key`` needs read (``r``) permission.

        Messages are only delivered to message handlers while :meth:`loop`
        runs. ``last`` asks the server to replay that many stored messages.
        """
        client = self._require_client()
        topic = format_channel(key, channel, subscribe_options(last))
        logger.debug("Subscribing to %s", topic)
        client.subscribe(topic)
        self._subscriptions.add(format_channel(key, channel))
        return self

    def unsubscribe(self, key: str, channel: str) -> "Emitter":
        client = self._require_client()
        topic = format_channel(key, channel)
        logger.debug("Unsubscribing from %s", topic)
        client.unsubscribe(topic)
        self._subscriptions.discard(topic)
        return self

    def publish_with_link(self, link: str, message: Payload) -> "Emitter":
        self._publish(link, message)
        return self

    # -- control plane ------------------------------------------------------

    def link(
        self,
        key: str,
        channel: str,
        name: str,
        private: bool,
        subscribe: bool,
        ttl: Optional[int] = None,
        me: Optional[bool] = None,
    ) -> "Emitter":
        """Ask the server to bind ``name`` to the key/channel pair."""
        request = {
            "key": key,
            "channel": format_channel(key, channel, publish_options(ttl, me)),
            "name": name,
            "private": private,
            "subscribe": subscribe,
        }
        logger.debug("Link request %s -> %s", name, request["channel"])
        self._publish(LINK_TOPIC, request)
        return self

    def keygen(self, key: str, channel: str, type: str, ttl: int) -> str:
        """Generate a channel key with permissions ``type`` (e.g. ``"rw"``).

        Blocks until the server answers or ``keygen_timeout`` runs out.
        """
        request = {"key": key, "channel": channel, "type": type, "ttl": ttl}
        responses: List[Dict[str, Any]] = []

        def on_response(emitter: Emitter, topic: str, message: str) -> None:
            if topic not in (KEYGEN_TOPIC, ERROR_TOPIC):
                return
            try:
                decoded = json.loads(message)
            except ValueError as exc:
                raise EmitterError(f"Malformed keygen response: {message!r}") from exc
            if not isinstance(decoded, dict):
                raise EmitterError(f"Malformed keygen response: {message!r}")
            responses.append(decoded)
            emitter.interrupt()

        def on_cycle(emitter: Emitter, elapsed: float) -> None:
            if elapsed > self.cfg.keygen_timeout:
                emitter.interrupt()

        self.add_message_handler(on_response)
        self.add_loop_handler(on_cycle)
        try:
            logger.debug("Keygen request for channel %s (type=%s ttl=%s)", channel, type, ttl)
            self._publish(KEYGEN_TOPIC, request)
            self.loop(True)
        finally:
            self.remove_message_handler(on_response)
            self.remove_loop_handler(on_cycle)

        if not responses:
            raise EmitterError(f"No keygen response within {self.cfg.keygen_timeout}s")

        response = responses[0]
        status = response.get("status")
        if status != 200:
            raise KeygenError(response.get("message", "Key generation failed"), status)

        generated = response.get("key")
        if not isinstance(generated, str):
            raise EmitterError(f"Keygen response carries no key: {response!r}")
        return generated

    def presence(
        self,
        key: str,
        channel: str,
        status: Optional[bool] = None,
        changes: Optional[bool] = None,
    ) -> "Emitter":
        """Request presence info; ``key`` needs presence (``p``) permission.

        ``status`` asks for a full occupancy snapshot, ``changes`` subscribes
        this client to subscribe/unsubscribe notifications.
        """
        request = {"key": key, "channel": channel, "status": status, "changes": changes}
        self._publish(PRESENCE_TOPIC, request)
        return self

    def me(self) -> "Emitter":
        self._publish(ME_TOPIC, "")
        return self
