from __future__ import annotations


class ReferralIntakeError(Exception):
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class IngestionError(ReferralIntakeError):
    """Aborts an upload before anything is written to the record store."""


class UnsupportedFormatError(IngestionError):
    status_code = 415


class TextExtractionError(IngestionError):
    status_code = 422


class ExtractionServiceError(IngestionError):
    status_code = 502


class ExtractionParseError(IngestionError):
    status_code = 502


class StorageUploadError(ReferralIntakeError):
    status_code = 502


class DuplicateRecordError(ReferralIntakeError):
    status_code = 409


class RecordNotFoundError(ReferralIntakeError):
    status_code = 404


class InvalidStatusTransitionError(ReferralIntakeError):
    status_code = 409


class ReviewValidationError(ReferralIntakeError):
    status_code = 422
