"""Amazon SQS adapter for the durable topic interface.

Each logical topic maps to one queue URL. Ack deletes the message;
nack resets its visibility timeout to zero so SQS redelivers it right
away. Retry limits and dead-lettering come from the queue's redrive
policy, not from this code.
"""
import json
import logging
import os
import threading
from typing import Any, Dict, Iterator, Optional

from sukoon.shared.errors import PublishFailure
from .topic import Delivery, DurableTopic

logger = logging.getLogger(__name__)


class SqsTopic(DurableTopic):
    """Durable topic backed by SQS queues."""

    def __init__(
        self,
        queue_urls: Dict[str, str],
        region: Optional[str] = None,
        wait_time_seconds: int = 20,
        max_messages: int = 10,
        error_backoff_seconds: float = 5.0,
    ):
        """Initialize adapter.

        Args:
            queue_urls: Logical topic name -> SQS queue URL
            region: AWS region (defaults to AWS_REGION env var)
            wait_time_seconds: Long-poll duration for receive_message
            max_messages: Messages per receive_message call (max 10)
            error_backoff_seconds: Pause after a failed receive
        """
        self.queue_urls = dict(queue_urls)
        self.region = region or os.getenv("AWS_REGION", "us-east-1")
        self.wait_time_seconds = wait_time_seconds
        self.max_messages = max_messages
        self.error_backoff_seconds = error_backoff_seconds
        self._sqs_client = None

        logger.info(
            "SQS_TOPIC_INITIALIZED",
            extra={"topics": sorted(self.queue_urls), "region": self.region}
        )

    @property
    def sqs_client(self):
        """Lazy initialization of SQS client."""
        if self._sqs_client is None:
            import boto3
            self._sqs_client = boto3.client("sqs", region_name=self.region)
        return self._sqs_client

    def _queue_url(self, topic: str) -> str:
        try:
            return self.queue_urls[topic]
        except KeyError:
            raise PublishFailure(f"No queue configured for topic {topic}", topic=topic) from None

    def publish(self, topic: str, payload: Dict[str, Any], attributes: Dict[str, str]) -> str:
        queue_url = self._queue_url(topic)
        try:
            response = self.sqs_client.send_message(
                QueueUrl=queue_url,
                MessageBody=json.dumps(payload),
                MessageAttributes={
                    key: {"DataType": "String", "StringValue": str(value)}
                    for key, value in attributes.items()
                },
            )
        except Exception as e:
            logger.error(
                "SQS_PUBLISH_FAILED",
                extra={
                    "topic": topic,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
            )
            raise PublishFailure(f"Publish to {topic} failed: {e}", topic=topic) from e

        return response["MessageId"]

    def subscribe(
        self,
        topic: str,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[Delivery]:
        queue_url = self._queue_url(topic)

        while stop_event is None or not stop_event.is_set():
            try:
                response = self.sqs_client.receive_message(
                    QueueUrl=queue_url,
                    MaxNumberOfMessages=self.max_messages,
                    WaitTimeSeconds=self.wait_time_seconds,
                    MessageAttributeNames=["All"],
                    AttributeNames=["ApproximateReceiveCount"],
                )
            except Exception as e:
                logger.error(
                    "SQS_RECEIVE_FAILED",
                    extra={"topic": topic, "error": str(e), "error_type": type(e).__name__}
                )
                if stop_event is None:
                    raise
                stop_event.wait(self.error_backoff_seconds)
                continue

            messages = response.get("Messages", [])
            if not messages and stop_event is None:
                return

            for message in messages:
                yield self._to_delivery(topic, queue_url, message)

    def _to_delivery(self, topic: str, queue_url: str, message: Dict[str, Any]) -> Delivery:
        receipt_handle = message["ReceiptHandle"]
        attributes = {
            key: value.get("StringValue", "")
            for key, value in message.get("MessageAttributes", {}).items()
        }

        def on_ack():
            self.sqs_client.delete_message(QueueUrl=queue_url, ReceiptHandle=receipt_handle)

        def on_nack():
            self.sqs_client.change_message_visibility(
                QueueUrl=queue_url,
                ReceiptHandle=receipt_handle,
                VisibilityTimeout=0,
            )

        return Delivery(
            topic=topic,
            message_id=message["MessageId"],
            data=message["Body"],
            attributes=attributes,
            delivery_attempt=int(message.get("Attributes", {}).get("ApproximateReceiveCount", "1")),
            on_ack=on_ack,
            on_nack=on_nack,
        )
