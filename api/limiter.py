"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/users.py (to apply per-route limits with @limiter.limit()).

A single shared instance means all routes share the same in-memory counter
store. The limits on login and the OTP endpoints are the network-boundary
brute-force bound that the OTP attempt counter complements.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
