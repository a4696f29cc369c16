"""
Error kinds surfaced by the tutor pipeline.

Rationale:
- Only configuration, input validation and primary completion failures reach the caller.
- Envelope parsing problems are absorbed locally (see envelope.py) and have no error type here.
"""


class TutorError(Exception):
    """Base class for errors that produce an error response."""

    status_code = 500
    label = "Server error"


class ConfigurationMissing(TutorError):
    """A required secret or endpoint is not configured."""

    label = "Configuration missing"

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing {' or '.join(self.missing)}")


class InvalidInput(TutorError):
    status_code = 400
    label = "Invalid input"


class UpstreamFailure(TutorError):
    """The completion (or embedding/retrieval) provider failed."""

    status_code = 502
    label = "Upstream failure"
