"""Error taxonomy for the risk pipeline.

Store errors live in sukoon.shared.database so they also belong to the
repository error hierarchy.
"""


class PipelineError(Exception):
    """Base exception for risk pipeline errors."""
    pass


class ClassificationError(PipelineError):
    """Classifier was given something that is not text.

    Never raised for a str input: classification is total over strings.
    """
    pass


class PublishFailure(PipelineError):
    """A durable topic rejected or failed to accept a message.

    Transient; the publisher does not retry. Producers log and continue,
    consumers nack for redelivery.
    """

    def __init__(self, message: str, topic: str = ""):
        super().__init__(message)
        self.topic = topic


class NotificationInFlight(PipelineError):
    """Another worker holds the claim to publish this notification.

    Transient; the consumer nacks and the redelivery either sees the
    decision notified or finds the claim expired and takes it over.
    """

    def __init__(self, message: str, decision_id: str = ""):
        super().__init__(message)
        self.decision_id = decision_id
