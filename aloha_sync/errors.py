"""Exceptions raised across the scrape pipeline."""

from __future__ import annotations

from typing import Any


class ConfigError(Exception):
    pass


class RunAlreadyActive(RuntimeError):
    pass


class SessionError(RuntimeError):
    """Browser session could not reach a usable dashboard.

    The message starts with a stable upper-case code (``AUTH_REJECTED: ...``)
    and ``diagnostics`` carries the page snapshot taken at the failure point.
    """

    code = "SESSION_FAILED"

    def __init__(self, detail: str, diagnostics: dict[str, Any] | None = None) -> None:
        self.detail = detail
        self.diagnostics = diagnostics or {}
        super().__init__(f"{self.code}: {detail}")


class SessionLaunchFailed(SessionError):
    code = "SESSION_LAUNCH_FAILED"


class LoginFormNotFound(SessionError):
    code = "LOGIN_FORM_NOT_FOUND"


class AuthenticationRejected(SessionError):
    code = "AUTH_REJECTED"


class DashboardTimeout(SessionError):
    code = "DASHBOARD_TIMEOUT"
