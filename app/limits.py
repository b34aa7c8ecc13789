from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

# Keyed by client address: customers have no account to key on
limiter = Limiter(key_func=get_remote_address)

SIGNUP_LIMIT = "10/hour"
LOGIN_LIMIT = "5/minute"
# public chat endpoints, reachable by anyone holding a chat link
CUSTOMER_START_LIMIT = "20/hour"
CUSTOMER_SEND_LIMIT = "30/minute"

__all__ = [
    "limiter",
    "RateLimitExceeded",
    "SlowAPIMiddleware",
    "SIGNUP_LIMIT",
    "LOGIN_LIMIT",
    "CUSTOMER_START_LIMIT",
    "CUSTOMER_SEND_LIMIT",
]
