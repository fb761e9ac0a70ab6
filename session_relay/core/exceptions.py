"""Custom exception classes for the relay."""


class RelayError(Exception):
    """Base exception for relay operations."""

    def __init__(self, message: str, code: str = "RELAY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigurationError(RelayError):
    """Raised when a configuration value cannot be used."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_CONFIGURATION")


class BrokerError(RelayError):
    """Base exception for pub/sub backend failures."""

    def __init__(self, message: str, code: str = "BROKER_ERROR"):
        super().__init__(message, code=code)


class BrokerUnavailableError(BrokerError):
    """Raised when the backend does not answer a ping."""

    def __init__(self, message: str):
        super().__init__(message, code="BROKER_UNAVAILABLE")


class SubscriptionError(BrokerError):
    """Raised when a pattern subscription cannot be created."""

    def __init__(self, pattern: str, message: str):
        self.pattern = pattern
        super().__init__(message, code="SUBSCRIPTION_FAILED")


class BrokerConnectionError(BrokerError):
    """Raised when an established subscription stream breaks."""

    def __init__(self, message: str):
        super().__init__(message, code="BROKER_CONNECTION_LOST")


class SubscriptionLostError(RelayError):
    """Raised when the router gives up re-establishing its subscription."""

    def __init__(self, pattern: str, attempts: int, last_error: str | None = None):
        self.pattern = pattern
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Subscription to {pattern} lost after {attempts} resubscribe attempts",
            code="SUBSCRIPTION_LOST",
        )


class HandshakeError(RelayError):
    """Raised when a client message is not a valid handshake."""

    def __init__(self, message: str):
        super().__init__(message, code="INVALID_HANDSHAKE")


class DeliveryError(RelayError):
    """Raised when a payload cannot be written to a client connection."""

    def __init__(self, connection_id: str, message: str):
        self.connection_id = connection_id
        super().__init__(message, code="DELIVERY_FAILED")
