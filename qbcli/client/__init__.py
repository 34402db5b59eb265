"""qBittorrent Web API client.

This module provides:
- HttpTransport mapping every request to Success, Transient, or Fatal
- SessionNegotiator with cache-first token acquisition
- QbClient running each call under the retry engine
- Header redaction for logs
"""

from qbcli.client.auth import Authenticator, NoAuth, SessionAuth
from qbcli.client.client import QbClient
from qbcli.client.errors import (
    AuthRejectedError,
    FatalError,
    RequestError,
    TransientError,
    is_transient_error,
    new_fatal_error,
    new_transient_error,
    wrap_fatal_unless_explicit,
)
from qbcli.client.models import (
    ApiRequest,
    ClientConfig,
    Fatal,
    RequestOutcome,
    Success,
    Transient,
    unwrap_outcome,
)
from qbcli.client.redact import redact_form, redact_headers, redact_url_credentials
from qbcli.client.session import (
    SessionNegotiator,
    SessionState,
    SessionStateError,
    SessionStateMachine,
)
from qbcli.client.transport import (
    HttpTransport,
    classify_response,
    extract_session_token,
    parse_retry_after,
)


__all__ = [
    # Client
    "QbClient",
    "HttpTransport",
    # Session
    "SessionNegotiator",
    "SessionState",
    "SessionStateError",
    "SessionStateMachine",
    # Auth
    "Authenticator",
    "NoAuth",
    "SessionAuth",
    # Models
    "ApiRequest",
    "ClientConfig",
    "Fatal",
    "RequestOutcome",
    "Success",
    "Transient",
    "unwrap_outcome",
    # Errors
    "AuthRejectedError",
    "FatalError",
    "RequestError",
    "TransientError",
    "is_transient_error",
    "new_fatal_error",
    "new_transient_error",
    "wrap_fatal_unless_explicit",
    # Helpers
    "classify_response",
    "extract_session_token",
    "parse_retry_after",
    "redact_form",
    "redact_headers",
    "redact_url_credentials",
]
