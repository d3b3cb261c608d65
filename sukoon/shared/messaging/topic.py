"""Durable topic interface and an in-process implementation.

The risk pipeline only needs three things from its transport: publish
a JSON payload with string routing attributes, deliver it at least
once, and let the consumer ack or nack each delivery. Cloud adapters
implement DurableTopic; InMemoryTopic backs tests and local runs.
"""
import itertools
import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional, Union

from sukoon.shared.errors import PublishFailure

logger = logging.getLogger(__name__)


class Delivery:
    """One delivery of a topic message.

    A delivery settles exactly once: the first ack() or nack() wins and
    later calls are ignored (returning False). This lets a consumer nack
    on a deadline without racing a late ack from the worker.
    """

    def __init__(
        self,
        topic: str,
        message_id: str,
        data: Union[str, bytes],
        attributes: Optional[Dict[str, str]] = None,
        delivery_attempt: int = 1,
        on_ack: Optional[Callable[[], None]] = None,
        on_nack: Optional[Callable[[], None]] = None,
    ):
        self.topic = topic
        self.message_id = message_id
        self.data = data
        self.attributes = dict(attributes or {})
        self.delivery_attempt = delivery_attempt
        self._on_ack = on_ack
        self._on_nack = on_nack
        self._lock = threading.Lock()
        self.outcome: Optional[str] = None

    @property
    def payload(self) -> Dict[str, Any]:
        """Decoded JSON payload.

        Raises:
            ValueError: If the body is not a JSON object
        """
        raw = self.data.decode("utf-8") if isinstance(self.data, bytes) else self.data
        decoded = json.loads(raw)
        if not isinstance(decoded, dict):
            raise ValueError("Message payload is not a JSON object")
        return decoded

    @property
    def settled(self) -> bool:
        return self.outcome is not None

    def _settle(self, outcome: str, callback: Optional[Callable[[], None]]) -> bool:
        with self._lock:
            if self.outcome is not None:
                return False
            self.outcome = outcome
        if callback is not None:
            callback()
        return True

    def ack(self) -> bool:
        return self._settle("acked", self._on_ack)

    def nack(self) -> bool:
        return self._settle("nacked", self._on_nack)


class DurableTopic(ABC):
    """At-least-once pub/sub transport. No ordering guarantee."""

    @abstractmethod
    def publish(self, topic: str, payload: Dict[str, Any], attributes: Dict[str, str]) -> str:
        """Append one message to `topic`.

        Returns:
            Transport message id

        Raises:
            PublishFailure: If the message was not durably accepted
        """

    @abstractmethod
    def subscribe(
        self,
        topic: str,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[Delivery]:
        """Yield deliveries from `topic`.

        With a stop_event the stream is long-lived and ends once the event
        is set; without one it ends as soon as the topic has nothing ready.
        """


@dataclass
class PublishedMessage:
    message_id: str
    topic: str
    data: str
    attributes: Dict[str, str] = field(default_factory=dict)

    @property
    def payload(self) -> Dict[str, Any]:
        return json.loads(self.data)


class InMemoryTopic(DurableTopic):
    """Thread-safe in-process topic with at-least-once semantics.

    Nacked deliveries go back on the queue with their attempt count
    bumped. `redeliver()` re-enqueues an already-published message to
    simulate a duplicate delivery from the transport.
    """

    def __init__(self, poll_interval_seconds: float = 0.05):
        self.poll_interval_seconds = poll_interval_seconds
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._pending: Dict[str, Deque[tuple]] = {}
        self._log: Dict[str, List[PublishedMessage]] = {}
        self._in_flight: Dict[str, int] = {}

    def publish(self, topic: str, payload: Dict[str, Any], attributes: Dict[str, str]) -> str:
        try:
            data = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise PublishFailure(f"Payload for {topic} is not serializable: {e}", topic=topic) from e

        with self._lock:
            message_id = f"msg_{next(self._ids)}"
            message = PublishedMessage(
                message_id=message_id,
                topic=topic,
                data=data,
                attributes={k: str(v) for k, v in attributes.items()},
            )
            self._log.setdefault(topic, []).append(message)
            self._pending.setdefault(topic, deque()).append((message, 1))

        logger.debug("TOPIC_MESSAGE_PUBLISHED", extra={"topic": topic, "message_id": message_id})
        return message_id

    def published(self, topic: str) -> List[PublishedMessage]:
        """Every message ever published to `topic`, in publish order."""
        with self._lock:
            return list(self._log.get(topic, []))

    def pending_count(self, topic: str) -> int:
        with self._lock:
            return len(self._pending.get(topic, ()))

    def in_flight_count(self, topic: str) -> int:
        with self._lock:
            return self._in_flight.get(topic, 0)

    def redeliver(self, topic: str, message_id: str) -> None:
        """Enqueue another delivery of a previously published message."""
        with self._lock:
            for message in self._log.get(topic, []):
                if message.message_id == message_id:
                    self._pending.setdefault(topic, deque()).append((message, 2))
                    return
        raise KeyError(f"No message {message_id} on {topic}")

    def receive(self, topic: str) -> Optional[Delivery]:
        """Take the next ready delivery, or None if the queue is empty."""
        with self._lock:
            queue = self._pending.get(topic)
            if not queue:
                return None
            message, attempt = queue.popleft()
            self._in_flight[topic] = self._in_flight.get(topic, 0) + 1

        def on_ack():
            with self._lock:
                self._in_flight[topic] -= 1

        def on_nack():
            with self._lock:
                self._in_flight[topic] -= 1
                self._pending.setdefault(topic, deque()).append((message, attempt + 1))

        return Delivery(
            topic=topic,
            message_id=message.message_id,
            data=message.data,
            attributes=message.attributes,
            delivery_attempt=attempt,
            on_ack=on_ack,
            on_nack=on_nack,
        )

    def subscribe(
        self,
        topic: str,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[Delivery]:
        while stop_event is None or not stop_event.is_set():
            delivery = self.receive(topic)
            if delivery is not None:
                yield delivery
                continue
            if stop_event is None:
                return
            stop_event.wait(self.poll_interval_seconds)
