# src/emitter_client/channel.py
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional


def format_channel(
    key: str,
    channel: str,
    options: Optional[Mapping[str, Any]] = None,
) -> str:
    """Build an emitter topic of the form ``key/channel/?opt=val&...``.

    Option order follows the mapping's insertion order. Inputs are not
    escaped, so ``/``, ``?`` or ``&`` inside ``key`` or ``channel`` end up
    in the topic as-is.
    """
    formatted = channel
    if key:
        formatted = key + channel if key.endswith("/") else f"{key}/{channel}"

    if not formatted.endswith("/"):
        formatted += "/"

    if options:
        formatted += "?" + "&".join(f"{name}={value}" for name, value in options.items())

    return formatted


def publish_options(ttl: Optional[int] = None, me: Optional[bool] = None) -> Dict[str, Any]:
    # me defaults to on: the server echoes our own messages back
    options: Dict[str, Any] = {"me": "1" if me is None or me is True else "0"}
    if ttl:
        options["ttl"] = ttl
    return options


def subscribe_options(last: Optional[int] = None) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    if last is not None:
        options["last"] = last
    return options
