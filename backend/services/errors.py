"""Error types raised by the metrics services.

Nothing here is fatal to the process. Callers decide whether a failure aborts
a batch or is reported and skipped.
"""


class MetricsError(Exception):
    """Base class for all metrics service errors."""


class TransportError(MetricsError):
    """Network or HTTP-level failure talking to the GraphQL API."""


class RemoteAPIError(MetricsError):
    """The API answered with a GraphQL error envelope."""

    def __init__(self, messages, context: str = None):
        self.messages = list(messages)
        self.context = context
        joined = "; ".join(self.messages) or "Unknown error"
        if context:
            super().__init__(f"GitLab API error ({context}): {joined}")
        else:
            super().__init__(f"GitLab API error: {joined}")


class ResourceNotFoundError(MetricsError):
    """A group, project or iteration could not be resolved."""

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message)


class ValidationError(MetricsError):
    """Invalid input handed to a calculation."""


class ConfigurationError(MetricsError):
    """Required settings are missing."""
