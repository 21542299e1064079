from __future__ import annotations


class OAuthError(RuntimeError):
    pass


class TokenExchangeError(OAuthError):
    pass


class NetworkError(TokenExchangeError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Request failed: {detail}")
        self.detail = detail


class ProviderHttpError(TokenExchangeError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"HTTP {status}: {body}")
        self.status = status
        self.body = body


class ParseError(TokenExchangeError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Parse error: {detail}")
        self.detail = detail


class CodeReuseError(TokenExchangeError):
    def __init__(self) -> None:
        super().__init__("Authorization code was already submitted for exchange.")


class AuthorizationDenied(OAuthError):
    def __init__(self, reason: str) -> None:
        super().__init__(f"Authorization denied: {reason}")
        self.reason = reason


class SessionNotFound(OAuthError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found or expired.")
        self.session_id = session_id


class SessionTimeout(OAuthError):
    def __init__(self, message: str = "Auth session timed out.") -> None:
        super().__init__(message)


class SessionAlreadyTerminal(OAuthError):
    def __init__(self, session_id: str) -> None:
        super().__init__("Session already reached a terminal state.")
        self.session_id = session_id


class CertificateError(OAuthError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Failed to generate certificate: {detail}")


class TlsConfigError(OAuthError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"TLS configuration error: {detail}")


class ChannelClosed(OAuthError):
    def __init__(self) -> None:
        super().__init__("Callback delivery channel closed unexpectedly.")


class ServerShutdown(OAuthError):
    def __init__(self, detail: str | None = None) -> None:
        message = "OAuth callback server shut down unexpectedly."
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)


class RelayError(OAuthError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Relay auth error: {detail}")
        self.detail = detail
