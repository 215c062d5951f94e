"""
ChartSage - Error Taxonomy

Domain exceptions raised by engines and the analysis store. The HTTP layer
maps them to status codes in ``error_handlers``.
"""

from __future__ import annotations


class ChartSageError(Exception):
    """Base class for all ChartSage errors."""

    status_code = 500


class InvalidInputError(ChartSageError, ValueError):
    """Malformed input, e.g. an empty pattern name."""

    status_code = 400


class VisionUnavailableError(ChartSageError):
    """The external vision model failed, timed out, or is not configured.

    Never reaches the client: the analyzer falls back to the simulator.
    """

    status_code = 503

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        super().__init__(message or reason)


class AnalysisNotFoundError(ChartSageError, LookupError):
    """No stored analysis has the requested id."""

    status_code = 404

    def __init__(self, analysis_id: str):
        self.analysis_id = analysis_id
        super().__init__(f"Analysis '{analysis_id}' not found")


class FeedbackAlreadyRecordedError(ChartSageError):
    """Feedback for an analysis may only be submitted once."""

    status_code = 409

    def __init__(self, analysis_id: str):
        self.analysis_id = analysis_id
        super().__init__(f"Feedback already recorded for analysis '{analysis_id}'")
