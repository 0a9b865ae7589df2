"""Rate limiting (slowapi), keyed on the client address."""

from slowapi import Limiter
from slowapi.util import get_remote_address

DEFAULT_LIMIT = "100/minute"

limiter = Limiter(key_func=get_remote_address, default_limits=[DEFAULT_LIMIT])
