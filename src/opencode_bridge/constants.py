OPENCODE_SERVER_URL_ENV = "OPENCODE_SERVER_URL"
OPENCODE_SERVER_PASSWORD_ENV = "OPENCODE_SERVER_PASSWORD"

DEFAULT_OPENCODE_SERVER_URL = "http://127.0.0.1:4096"
OPENCODE_BASIC_AUTH_USERNAME = "opencode"

OPENCODE_HEALTH_ENDPOINT = "/global/health"
OPENCODE_SESSION_ENDPOINT = "/session"
OPENCODE_EVENT_ENDPOINT = "/global/event"

DEFAULT_RESPONSE_TIMEOUT_MS = 120_000
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
# EventSource default reconnection delay when the server sends no "retry:" field.
DEFAULT_EVENT_RETRY_SECONDS = 3.0
