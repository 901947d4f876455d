"""Azure VNet flow log denormalization and delivery pipeline."""

__version__ = "0.1.0"
