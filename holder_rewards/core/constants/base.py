# Timeout constants (seconds)
DEFAULT_RPC_TIMEOUT = 5.0  # per chain read
DEFAULT_HTTP_TIMEOUT = 10.0

DEFAULT_RPC_MAX_RETRIES = 2

# Challenge and nonce lifetimes (milliseconds, matching wallet-side Date.now())
CHALLENGE_MAX_AGE_MS = 24 * 60 * 60 * 1000
CHALLENGE_MAX_FUTURE_SKEW_MS = 60 * 1000
NONCE_RETENTION_MS = 24 * 60 * 60 * 1000

NONCE_BYTES = 16

PRICE_CACHE_TTL_SECONDS = 5 * 60
PRICE_STALE_TTL_SECONDS = 24 * 60 * 60

TICK_BASE = 1.0001
