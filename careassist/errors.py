"""Exceptions raised by the Care-Assist client layer."""


class CareAssistError(Exception):
    """Base class for all ledger/client errors."""


class InvalidInputError(CareAssistError, ValueError):
    """Malformed user input caught before anything is submitted."""


class NotAuthenticatedError(CareAssistError):
    pass


class PatientNotFoundError(CareAssistError):
    pass


class StoreError(CareAssistError):
    """A record fetch failed (network or store side)."""


class MutationError(CareAssistError):
    """Insert, update or delete was rejected by the record store."""


class BlobUploadError(CareAssistError):
    pass


class SubmissionError(CareAssistError):
    """A submission was aborted before the record was written."""
