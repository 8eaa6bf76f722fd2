from __future__ import annotations


class DatasetError(Exception):
    """Base error for ingestion, sync and store failures.

    ``kind`` is the stable identifier surfaced to clients; ``status_code`` is the
    HTTP status the API layer maps it to.
    """

    kind = "DatasetError"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class UnsupportedFormat(DatasetError):
    kind = "UnsupportedFormat"
    status_code = 400


class FileTooLarge(DatasetError):
    kind = "FileTooLarge"
    status_code = 413


class EmptyDataset(DatasetError):
    kind = "EmptyDataset"
    status_code = 400


class InvalidSheetUrl(DatasetError):
    kind = "InvalidSheetUrl"
    status_code = 400


class FetchFailed(DatasetError):
    kind = "FetchFailed"
    status_code = 502


class ParseTimeout(DatasetError):
    kind = "ParseTimeout"
    status_code = 504


class NotFound(DatasetError):
    kind = "NotFound"
    status_code = 404

    def __init__(self, message: str = "Dataset not found.") -> None:
        super().__init__(message)


class InvalidOperation(DatasetError):
    kind = "InvalidOperation"
    status_code = 409


class PersistenceFailure(DatasetError):
    kind = "PersistenceFailure"
    status_code = 500


class SheetAlreadyTracked(InvalidOperation):
    """Raised when an owner already has a dataset for the same sheet URL."""

    def __init__(self, message: str = "Sheet is already imported for this owner.") -> None:
        super().__init__(message)
