"""
Error taxonomy.

  NotInitializedError    client used before its credential was entered
  RateLimitedError       provider quota / 429, after retries (if any) ran out
  VisionInputError       caller-side page selection problems, never sent out
  ProviderTimeoutError   explicit abort of a single call; the user may retry
  ProviderError          any other provider failure, passed through
  MalformedResponseError unparseable model output; recovered locally
  EmptyExtractionError   nothing usable came out of a PDF
  EmptyDocumentError     a PDF without pages reached the classifier
  InvalidImportError     a backup file with the wrong structure
  UnsupportedFileError   an upload that is not a PDF
"""

from __future__ import annotations


class DocQAError(Exception):
    """Base class for every error raised by docqa."""


class NotInitializedError(DocQAError):
    def __init__(self, service: str) -> None:
        super().__init__(f"{service} client is not initialized: enter an API key first")
        self.service = service


class RateLimitedError(DocQAError):
    pass


class ProviderError(DocQAError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(DocQAError):
    def __init__(self, message: str, timeout: float | None = None) -> None:
        super().__init__(message)
        self.timeout = timeout


class VisionInputError(DocQAError):
    pass


class NoPagesError(VisionInputError):
    pass


class TooManyPagesError(VisionInputError):
    pass


class PayloadTooLargeError(VisionInputError):
    pass


class MalformedResponseError(DocQAError):
    pass


class EmptyExtractionError(DocQAError):
    pass


class EmptyDocumentError(DocQAError):
    pass


class InvalidImportError(DocQAError):
    pass


class UnsupportedFileError(DocQAError):
    pass
