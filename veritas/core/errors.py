"""
Veritas error taxonomy.

  SourceConnectionError  auth/network failure establishing a source connection
  FetchError             search/stream call failed on a connected source
  ClassificationError    classification oracle failure
  TransformError         hashing/scoring failure on malformed input
  StorageError           repository read/write failure
  ValidationError        malformed insight or trend shape
  ConfigurationError     missing or invalid configuration (fatal)
"""
from __future__ import annotations

from typing import Optional


class VeritasError(Exception):
    """Base class for every error raised by the ingestion core."""


class ConfigurationError(VeritasError):
    pass


class SourceError(VeritasError):
    """An error attributable to one upstream source."""

    def __init__(self, platform: str, message: str):
        self.platform = platform
        super().__init__(f"[{platform}] {message}")


class SourceConnectionError(SourceError):
    pass


class FetchError(SourceError):
    pass


class ClassificationError(VeritasError):
    pass


class TransformError(VeritasError):
    def __init__(self, message: str, post_id: Optional[str] = None):
        self.post_id = post_id
        super().__init__(message if post_id is None else f"{message} (post {post_id})")


class StorageError(VeritasError):
    pass


class ValidationError(VeritasError):
    pass
