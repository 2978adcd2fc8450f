"""Error taxonomy shared by the HTTP layer and the orchestrator."""
from __future__ import annotations

from typing import Any, Dict


class ShioriError(Exception):
    """Base class for failures that map to a stable client-facing code."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return {"error": body}


class BadRequestError(ShioriError):
    code = "bad_request"
    status_code = 400


class ConfigurationError(ShioriError):
    """A required credential or setting is missing on the server."""

    code = "server_misconfiguration"
    status_code = 500


class ExtractionError(ShioriError):
    """An AI response could not be parsed into the expected JSON shape."""

    code = "extraction_failed"
    status_code = 422


class UpstreamError(ShioriError):
    code = "upstream_error"
    status_code = 502


class RenderTimeoutError(ShioriError):
    code = "render_timeout"
    status_code = 504
