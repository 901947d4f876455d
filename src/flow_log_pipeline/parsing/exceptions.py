"""
Custom exceptions for the parsing module.

Shape problems inside a flow log document never raise; these exceptions
cover content that cannot be read as JSON at all.
"""


class FlowLogParseError(Exception):
    """
    Raised when blob content cannot be decoded into a JSON document.

    Attributes:
        source: Name of the blob or file being parsed (optional)
        message: Detailed error message
    """

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        self.message = message
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with source context."""
        if self.source:
            return f"{self.message} (source='{self.source}')"
        return self.message
