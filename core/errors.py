from __future__ import annotations
from fastapi import HTTPException


class ApiError(HTTPException):
    def __init__(self, status_code: int, message: str, type_: str | None = None, details: dict | None = None):
        self.type = type_ or self.__class__.__name__
        self.message = message
        self.details = details or {}
        super().__init__(status_code=status_code, detail={"type": self.type, "message": self.message, "details": self.details})


class SymbolNotFound(ApiError):
    def __init__(self, symbol: str):
        super().__init__(404, f"Unknown symbol: {symbol}", details={"symbol": symbol})


class InvalidPeriod(ApiError):
    def __init__(self, period: str):
        super().__init__(400, f"Invalid period: {period}", details={"allowed": ["1M", "6M", "1Y", "ALL"]})


class InvalidRange(ApiError):
    def __init__(self, start: int | None, end: int | None):
        super().__init__(400, "Invalid time range: start must be <= end", details={"start": start, "end": end})


class SignalNotFound(ApiError):
    def __init__(self, signal_id: str):
        super().__init__(404, f"Unknown or inactive signal: {signal_id}", details={"id": signal_id})
