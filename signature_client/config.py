from typing import FrozenSet

# Current stable API root (every resource lives under /api/v1/)
API_ROOT = "/api/v1"

# Organization auth paths
AUTH_LOGIN_PATH = f"{API_ROOT}/auth/login"
AUTH_REFRESH_PATH = f"{API_ROOT}/auth/refresh"
AUTH_LOGOUT_PATH = f"{API_ROOT}/auth/logout"

# Signer-session token paths
SIGNER_REFRESH_PATH = f"{API_ROOT}/signers/refresh-token"
SIGNER_REVOKE_PATH = f"{API_ROOT}/signers/revoke-token"

HEALTH_PATH = f"{API_ROOT}/health"
HEALTH_READY_PATH = f"{API_ROOT}/health/ready"
HEALTH_LIVE_PATH = f"{API_ROOT}/health/live"

USER_AGENT = "signature-client-python/1.0.0"

# Request timeouts (seconds)
DEFAULT_TIMEOUT = 30.0

# Retry defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY = 0.5  # seconds
DEFAULT_MAX_DELAY = 30.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Circuit breaker defaults
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_SUCCESS_THRESHOLD = 1
DEFAULT_RESET_TIMEOUT = 30.0  # seconds spent OPEN before a trial call
DEFAULT_HALF_OPEN_MAX_REQUESTS = 1

# Refresh access tokens this many seconds before the server-issued expiry
DEFAULT_REFRESH_SKEW = 120.0

DEFAULT_CACHE_MAX_SIZE = 500

MUTATING_METHODS: FrozenSet[str] = frozenset({"POST", "PUT", "PATCH", "DELETE"})

# Environment variables read by SignatureClient.from_env()
ENV_BASE_URL = "SIGNATURE_API_URL"
ENV_API_TOKEN = "SIGNATURE_API_TOKEN"
ENV_TIMEOUT = "SIGNATURE_API_TIMEOUT"
