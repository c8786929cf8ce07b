"""Request/response schemas and pipeline value types."""

from .mining import (
    Candidate,
    EmailValidationResult,
    EnrichmentOutcome,
    MiningRequest,
    MiningResponse,
    PageResult,
    SearchPage,
)

__all__ = [
    "Candidate",
    "EmailValidationResult",
    "EnrichmentOutcome",
    "MiningRequest",
    "MiningResponse",
    "PageResult",
    "SearchPage",
]
