# askdocs/errors.py
"""
Error taxonomy shared by adapters, pipeline and HTTP layer.

The message passed to the constructor is meant for server logs.
`public_message` is the only text that may reach an end user.
"""
from __future__ import annotations


class AskDocsError(Exception):
    public_message = "Internal Server Error"


class ConfigurationError(AskDocsError):
    """Missing or invalid credentials / collection name."""


class BackendUnavailable(AskDocsError):
    """Similarity-search service cannot be reached."""


class IndexNotFound(AskDocsError):
    """Configured collection does not exist."""


class GenerationError(AskDocsError):
    """Upstream model failure (rate limit, credentials, bad request, timeout)."""


class ValidationError(AskDocsError):
    public_message = "Question is required"
