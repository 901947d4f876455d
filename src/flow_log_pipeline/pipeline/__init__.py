"""Flow log pipeline driver."""

from .flow_pipeline import (
    AccountResult,
    BlobOutcome,
    FlowLogPipeline,
    PipelineResult,
    make_store_factory,
    setup_logging,
)

__all__ = [
    "FlowLogPipeline",
    "PipelineResult",
    "AccountResult",
    "BlobOutcome",
    "make_store_factory",
    "setup_logging",
]
