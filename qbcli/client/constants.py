"""HTTP and API constants for the client layer."""

from http import HTTPStatus


# HTTP Status Code Ranges
HTTP_STATUS_OK_MIN = 200
HTTP_STATUS_OK_MAX = 300
HTTP_STATUS_REDIRECT_MAX = 400

# Statuses worth another attempt
TRANSIENT_STATUS_CODES = frozenset(
    {
        HTTPStatus.REQUEST_TIMEOUT,
        HTTPStatus.TOO_MANY_REQUESTS,
        HTTPStatus.INTERNAL_SERVER_ERROR,
        HTTPStatus.BAD_GATEWAY,
        HTTPStatus.SERVICE_UNAVAILABLE,
        HTTPStatus.GATEWAY_TIMEOUT,
    }
)

DEFAULT_API_VERSION = "v2"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
DEFAULT_USER_AGENT = "qbcli/0.1.0"

# Upper bound for a server-suggested Retry-After delay (seconds)
MAX_RETRY_AFTER_SECONDS = 300.0

# Session exchange
SESSION_COOKIE_NAME = "SID"
LOGIN_PATH = "auth/login"
LOGOUT_PATH = "auth/logout"
VERSION_PATH = "app/version"
LOGIN_SUCCESS_MARKER = "Ok"

# Preferences API
PREFERENCES_PATH = "app/preferences"
SET_PREFERENCES_PATH = "app/setPreferences"
LISTEN_PORT_KEY = "listen_port"

CONTENT_TYPE_FORM = "application/x-www-form-urlencoded"
