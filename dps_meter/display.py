"""Fan display payloads out to whatever renders the meter."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, MutableMapping, Optional

_LOGGER = logging.getLogger("DPSMeter.Display")
_MAX_MESSAGE_BYTES = 65_536

DisplaySink = Callable[[Mapping[str, Any]], Any]


class DisplayPublisher:
    """Delivers meter payloads to registered sinks.

    A sink is any callable taking the payload mapping: the host's UI
    callback, or :meth:`SnapshotBroadcaster.publish` for an external client.
    """

    def __init__(self) -> None:
        self._sinks: List[DisplaySink] = []

    def register(self, sink: DisplaySink) -> None:
        if sink not in self._sinks:
            self._sinks.append(sink)

    def unregister(self, sink: DisplaySink) -> None:
        try:
            self._sinks.remove(sink)
        except ValueError:
            pass

    def publish(self, message: Mapping[str, Any]) -> bool:
        """Validate ``message`` and hand it to every sink.

        Returns ``True`` if at least one sink accepted the payload.
        """

        payload = _normalise_message(message)
        if payload is None:
            return False

        try:
            serialised = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            _LOGGER.warning("Meter payload is not JSON serialisable: %s", exc)
            return False
        payload_size = len(serialised.encode("utf-8"))
        if payload_size > _MAX_MESSAGE_BYTES:
            _LOGGER.warning("Meter payload exceeds size limit (%d > %d bytes)", payload_size, _MAX_MESSAGE_BYTES)
            return False

        delivered = False
        for sink in list(self._sinks):
            try:
                sink(payload)
            except Exception as exc:
                _LOGGER.warning("Display sink %r raised error: %s", sink, exc)
                continue
            delivered = True
        return delivered


def _normalise_message(message: Mapping[str, Any]) -> Optional[MutableMapping[str, Any]]:
    if not isinstance(message, Mapping) or not message:
        _LOGGER.warning("Meter payload must be a non-empty mapping")
        return None
    payload: MutableMapping[str, Any] = dict(message)
    event = payload.get("event")
    if not isinstance(event, str) or not event:
        _LOGGER.warning("Meter payload requires a non-empty 'event' string")
        return None
    if "timestamp" not in payload:
        payload["timestamp"] = datetime.now(timezone.utc).isoformat()
    return payload
