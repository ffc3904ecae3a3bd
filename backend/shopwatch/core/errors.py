"""
   Pipeline-wide exception types.
   Keeps payload / upstream / queue errors apart so the job processor can log them uniformly;
   every one of them ends up as a job failure that the retry policy handles.
"""

class PipelineError(Exception):
    """Base for all pipeline errors."""

class PayloadError(PipelineError):
    """Webhook payload is not valid JSON or does not match the topic's shape."""

class UpstreamError(PipelineError):
    """The catalog platform could not be reached or answered with an error."""
