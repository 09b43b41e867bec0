import os

from slowapi import Limiter
from slowapi.util import get_remote_address

WRITE_LIMIT = os.getenv("RATE_LIMIT_WRITES", "60/minute")

limiter = Limiter(key_func=get_remote_address)
