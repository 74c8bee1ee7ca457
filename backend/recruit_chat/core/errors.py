class MessagingError(Exception):
    """Base class for failures raised by the conversation layer."""

    retryable = False

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(MessagingError):
    """Rejected input: empty content, self-conversation, non-participant sender."""


class ResolutionFailed(MessagingError):
    """Conversation get-or-create could not produce an id."""

    retryable = True


class StoreUnavailable(MessagingError):
    """Transient read/write failure against the relational store."""

    retryable = True


class SubscriptionError(MessagingError):
    """Live bus connect, delivery or teardown failure."""
