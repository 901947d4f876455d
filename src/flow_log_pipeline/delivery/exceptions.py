"""
Custom exceptions for the delivery module.

Per-batch failures are reported through DeliveryReport rather than raised;
these exceptions cover a client that cannot be built at all.
"""


class DeliveryError(Exception):
    """Base exception for delivery errors."""

    pass


class DeliveryConfigError(DeliveryError):
    """
    Raised when the delivery client is misconfigured.

    Attributes:
        setting: Name of the offending setting (optional)
        message: Detailed error message
    """

    def __init__(self, message: str, setting: str | None = None):
        self.setting = setting
        self.message = message
        super().__init__(f"{message} (setting='{setting}')" if setting else message)
