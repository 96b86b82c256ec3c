from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    FETCH_FAILED = "FETCH_FAILED"
    CONFIG_INVALID = "CONFIG_INVALID"
    SNAPSHOT_NOT_FOUND = "SNAPSHOT_NOT_FOUND"
    SNAPSHOT_INVALID = "SNAPSHOT_INVALID"
    FACTION_NOT_FOUND = "FACTION_NOT_FOUND"
    PARSE_FAILED = "PARSE_FAILED"
    INVALID_INPUT = "INVALID_INPUT"


class CodexSyncError(Exception):
    """Raised for all expected failure conditions of an ingestion run.

    Fetch errors propagate out of ``Fetcher.fetch`` once retries are spent;
    the ingestion layer catches them per URL and records them in the run
    summary. Reconciliation catches them per record.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, dict[str, str | bool]]:
        """Error envelope printed by the CLI on stderr."""
        return {
            "error": {
                "code": str(self.code),
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }
