"""Triage subscriber: durable consumer of the risk.flagged topic.

Per delivery: received -> classifying -> deciding -> persisting ->
acked | nacked. The whole sequence is safe to repeat: the event, the
decision and the notified flag are all written under ids derived from
the event, and the decision itself only depends on durable history.

Delivery is at-least-once and unordered. Two things keep that from
causing duplicate or missed escalations:
- a decision already notified is never notified again, and only the
  worker holding the decision's notification claim may publish it;
- when an event lands after later events of the same user were already
  triaged, those later events are re-decided against the now larger
  window (late-arrival re-triage).
"""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import timedelta
from enum import Enum
from typing import Optional

from sukoon.shared.database import DecisionConflict
from sukoon.shared.errors import NotificationInFlight
from sukoon.shared.messaging import Delivery, DurableTopic
from sukoon.shared.models import ESCALATION_LEVELS, RiskEvent, RiskLevel, TriageDecision
from sukoon.shared.utils import hash_pii
from .config import TriagePolicy
from .decision import decide, needs_history
from .history import RiskHistoryStore
from .notifier import NotificationDispatcher

logger = logging.getLogger(__name__)


class DeliveryState(Enum):
    """State machine for one delivered risk event."""
    RECEIVED = "received"
    CLASSIFYING = "classifying"
    DECIDING = "deciding"
    PERSISTING = "persisting"
    ACKED = "acked"
    NACKED = "nacked"


class TriageSubscriber:
    """Consumes risk events, decides escalation and dispatches notices.

    Holds no per-user state between messages; everything it needs is
    read back from the history store.
    """

    def __init__(
        self,
        topic_client: DurableTopic,
        store: RiskHistoryStore,
        dispatcher: NotificationDispatcher,
        policy: Optional[TriagePolicy] = None,
        topic: str = "risk.flagged",
        max_workers: int = 8,
        message_timeout_seconds: float = 30.0,
        notification_lease_seconds: float = 300.0,
    ):
        """Initialize subscriber with dependencies.

        Args:
            topic_client: Transport delivering risk events
            store: Risk history store (read and write)
            dispatcher: Publisher for escalation notices
            policy: Escalation thresholds
            topic: Topic to consume
            max_workers: Deliveries processed concurrently by run()
            message_timeout_seconds: Per-delivery deadline in run()
            notification_lease_seconds: How long a worker owns the right to
                publish a decision's notice before another may take over
        """
        self.topic_client = topic_client
        self.store = store
        self.dispatcher = dispatcher
        self.policy = policy or TriagePolicy()
        self.topic = topic
        self.max_workers = max_workers
        self.message_timeout_seconds = message_timeout_seconds
        self.notification_lease = timedelta(seconds=notification_lease_seconds)
        self._stop_event = threading.Event()

        logger.info(
            "TRIAGE_SUBSCRIBER_INITIALIZED",
            extra={
                "topic": topic,
                "window_days": self.policy.window_days,
                "escalation_threshold": self.policy.escalation_threshold,
                "max_workers": max_workers,
                "message_timeout_seconds": message_timeout_seconds,
                "notification_lease_seconds": notification_lease_seconds,
            }
        )

    def _transition(self, delivery: Delivery, state: DeliveryState, **extra) -> DeliveryState:
        logger.debug(
            "TRIAGE_DELIVERY_STATE",
            extra={
                "message_id": delivery.message_id,
                "delivery_attempt": delivery.delivery_attempt,
                "state": state.value,
                **extra,
            }
        )
        return state

    def _settle(self, delivery: Delivery, operation: str) -> bool:
        """Ack or nack without letting a transport error escape.

        An unsettled message is redelivered once its visibility lapses, so
        a failed settle is logged and reported as not settled.
        """
        try:
            return delivery.ack() if operation == "ack" else delivery.nack()
        except Exception as e:
            logger.error(
                "TRIAGE_SETTLE_FAILED",
                extra={
                    "message_id": delivery.message_id,
                    "operation": operation,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            return False

    def _ack(self, delivery: Delivery) -> bool:
        return self._settle(delivery, "ack")

    def _nack(self, delivery: Delivery) -> bool:
        return self._settle(delivery, "nack")

    def handle(self, delivery: Delivery) -> DeliveryState:
        """Process one delivery and settle it.

        Acks only after every write and dispatch succeeded. Any exception
        nacks the delivery for redelivery; nothing is dropped silently.
        """
        self._transition(delivery, DeliveryState.RECEIVED)

        try:
            event = RiskEvent.from_payload(delivery.payload)
            decision = self.triage(event, delivery)
        except NotificationInFlight as e:
            logger.info(
                "TRIAGE_NOTIFICATION_DEFERRED",
                extra={
                    "message_id": delivery.message_id,
                    "decision_id": e.decision_id,
                    "action": "NACK_FOR_REDELIVERY",
                }
            )
            self._nack(delivery)
            return self._transition(delivery, DeliveryState.NACKED)
        except DecisionConflict as e:
            logger.critical(
                "TRIAGE_DECISION_CONFLICT",
                extra={
                    "message_id": delivery.message_id,
                    "error": str(e),
                    "action": "KEY_DERIVATION_BUG_INVESTIGATE",
                }
            )
            self._nack(delivery)
            return self._transition(delivery, DeliveryState.NACKED)
        except Exception as e:
            logger.error(
                "TRIAGE_DELIVERY_FAILED",
                extra={
                    "message_id": delivery.message_id,
                    "delivery_attempt": delivery.delivery_attempt,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "action": "NACK_FOR_REDELIVERY",
                }
            )
            self._nack(delivery)
            return self._transition(delivery, DeliveryState.NACKED)

        if not self._ack(delivery):
            # Deadline already nacked this delivery, or the transport rejected
            # the ack; redelivery will converge
            logger.warning(
                "TRIAGE_ACK_AFTER_DEADLINE",
                extra={"message_id": delivery.message_id, "decision_id": decision.decision_id}
            )
            return self._transition(delivery, DeliveryState.NACKED)

        return self._transition(
            delivery,
            DeliveryState.ACKED,
            decision_id=decision.decision_id,
            escalated=decision.escalated,
        )

    def triage(self, event: RiskEvent, delivery: Optional[Delivery] = None) -> TriageDecision:
        """Persist a risk event and its decision; notify when escalated.

        Raises:
            StoreUnavailable: If the history store fails
            PublishFailure: If the notification could not be published
            DecisionConflict: If a stored key belongs to another event
            NotificationInFlight: If another worker is publishing this notice
        """
        # escalated is triage's to set, whatever the producer sent
        event = self.store.save_event(replace(event, escalated=False))

        decision = self._decide_and_persist(event, delivery)

        if event.risk_level in ESCALATION_LEVELS:
            self._retriage_later_events(event)

        return decision

    def _decide_and_persist(
        self,
        event: RiskEvent,
        delivery: Optional[Delivery] = None,
    ) -> TriageDecision:
        if delivery is not None:
            self._transition(delivery, DeliveryState.CLASSIFYING, risk_level=event.risk_level.value)

        window_count = 0
        if needs_history(event):
            window_count = self.store.count_events(
                event.user_id,
                event.created_at - self.policy.window,
                event.created_at,
            )

        if delivery is not None:
            self._transition(delivery, DeliveryState.DECIDING, window_count=window_count)
        decision = decide(event, window_count, self.policy)

        if delivery is not None:
            self._transition(delivery, DeliveryState.PERSISTING)
        stored = self.store.upsert_decision(decision)

        user_id_hash = hash_pii(event.user_id)
        logger.info(
            "TRIAGE_DECISION_STORED",
            extra={
                "decision_id": stored.decision_id,
                "user_id_hash": user_id_hash,
                "risk_level": event.risk_level.value,
                "priority": stored.priority.value,
                "escalated": stored.escalated,
                "window_count": window_count,
            }
        )

        if not stored.escalated:
            return stored

        self.store.save_event(replace(event, escalated=True))

        if stored.notified:
            logger.info(
                "TRIAGE_RENOTIFY_SKIPPED",
                extra={"decision_id": stored.decision_id, "user_id_hash": user_id_hash}
            )
            return stored

        if not self.store.claim_notification(stored.decision_id, self.notification_lease):
            current = self.store.get_decision(stored.decision_id)
            if current is not None and current.notified:
                return current
            logger.warning(
                "TRIAGE_NOTIFICATION_IN_FLIGHT",
                extra={"decision_id": stored.decision_id, "user_id_hash": user_id_hash}
            )
            raise NotificationInFlight(
                f"Notification for {stored.decision_id} is claimed by another worker",
                decision_id=stored.decision_id,
            )

        try:
            self.dispatcher.dispatch(stored, event.reason)
        except Exception:
            self.store.release_notification(stored.decision_id)
            raise

        if not self.store.mark_notified(stored.decision_id):
            logger.warning(
                "TRIAGE_NOTIFIED_CONCURRENTLY",
                extra={"decision_id": stored.decision_id, "user_id_hash": user_id_hash}
            )
        return replace(stored, notified=True)

    def _retriage_later_events(self, event: RiskEvent) -> None:
        """Re-decide later HIGH events whose window now includes `event`."""
        later_events = self.store.events_between(
            event.user_id,
            event.created_at,
            event.created_at + self.policy.window,
            levels=frozenset({RiskLevel.HIGH}),
        )
        for later in later_events:
            if later.created_at <= event.created_at:
                continue
            prior = self.store.get_decision(later.decision_id)
            if prior is not None and prior.escalated and prior.notified:
                continue

            logger.info(
                "TRIAGE_LATE_ARRIVAL_RETRIAGE",
                extra={
                    "trigger_event_id": event.event_id,
                    "retriaged_event_id": later.event_id,
                    "user_id_hash": hash_pii(event.user_id),
                }
            )
            self._decide_and_persist(later)

    def process_pending(self, max_messages: Optional[int] = None) -> int:
        """Handle deliveries sequentially until the topic is drained.

        Args:
            max_messages: Stop after this many deliveries. Bound it when
                a delivery may keep failing, since nacks requeue it.

        Returns:
            Number of deliveries handled
        """
        handled = 0
        for delivery in self.topic_client.subscribe(self.topic):
            self.handle(delivery)
            handled += 1
            if max_messages is not None and handled >= max_messages:
                break
        return handled

    def _expire(self, delivery: Delivery) -> None:
        if self._nack(delivery):
            logger.error(
                "TRIAGE_DEADLINE_EXCEEDED",
                extra={
                    "message_id": delivery.message_id,
                    "timeout_seconds": self.message_timeout_seconds,
                    "action": "NACK_FOR_REDELIVERY",
                }
            )

    def _handle_with_deadline(self, delivery: Delivery) -> DeliveryState:
        timer = threading.Timer(self.message_timeout_seconds, self._expire, args=(delivery,))
        timer.daemon = True
        timer.start()
        try:
            return self.handle(delivery)
        finally:
            timer.cancel()

    def _on_worker_done(
        self,
        future: Future,
        delivery: Delivery,
        slots: threading.BoundedSemaphore,
    ) -> None:
        slots.release()
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(
                "TRIAGE_WORKER_FAILED",
                extra={
                    "message_id": delivery.message_id,
                    "error": str(error),
                    "error_type": type(error).__name__,
                }
            )

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Long-lived subscription loop.

        Processes up to max_workers deliveries concurrently, each under
        its own deadline. Returns once stop() is called (or the given
        stop_event is set) and in-flight deliveries have settled.
        """
        stop_event = stop_event or self._stop_event
        slots = threading.BoundedSemaphore(self.max_workers)

        logger.info("TRIAGE_SUBSCRIBER_STARTED", extra={"topic": self.topic})

        with ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="triage",
        ) as executor:
            for delivery in self.topic_client.subscribe(self.topic, stop_event):
                slots.acquire()
                future = executor.submit(self._handle_with_deadline, delivery)
                future.add_done_callback(
                    lambda f, d=delivery: self._on_worker_done(f, d, slots)
                )

        logger.info("TRIAGE_SUBSCRIBER_STOPPED", extra={"topic": self.topic})

    def stop(self) -> None:
        self._stop_event.set()
