from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

# Ledger rejection codes -> HTTP status.
_APPLY_STATUS: Dict[str, int] = {
    "invalid_payload": 400,
    "tx_unimplemented": 400,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "invalid_state": 409,
    "invalid_time": 409,
    "insufficient_power": 422,
    "insufficient_funds": 422,
    "paused": 423,
    "frozen": 423,
}


@dataclass
class ApiError(Exception):
    status_code: int
    code: str
    message: str
    details: Dict[str, Any]

    @staticmethod
    def bad_request(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(400, code, message, details or {})

    @staticmethod
    def not_found(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(404, code, message, details or {})

    @staticmethod
    def internal(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> "ApiError":
        return ApiError(500, code, message, details or {})

    @staticmethod
    def from_rejection(err: Dict[str, Any]) -> "ApiError":
        """Map an executor rejection ({code, reason, details}) to an HTTP error."""
        code = str(err.get("code") or "rejected")
        details = err.get("details")
        return ApiError(
            _APPLY_STATUS.get(code, 400),
            code,
            str(err.get("reason") or "tx rejected"),
            details if isinstance(details, dict) else {"details": details},
        )

    def to_json(self) -> Dict[str, Any]:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}
