from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ValidationError(AppError):
    """Local input rejected before any network call."""


class AuthError(AppError):
    """Login or registration rejected by the service."""


class BrokerConnectionError(AppError):
    """Transport or broker level failure; retried by the reconnect loop."""


class HistoryFetchError(AppError):
    """History snapshot could not be fetched or decoded."""
