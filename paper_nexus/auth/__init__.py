"""Authentication / authorization helpers.

Auth is kept lightweight:

- Users table (username/email, password hash, role, verification + lockout state)
- Stateless JWT sessions: a short-lived access token and a long-lived refresh token

The API accepts either:

- httpOnly `access_token` / `refresh_token` cookies (set by `/auth/login`)
- `Authorization: Bearer <access token>` (useful for scripts / API clients)
"""

from .crud import authenticate, bootstrap_admin_if_needed, create_user, public_user
from .deps import get_optional_user, require_admin, require_auth, require_moderator

__all__ = [
    "authenticate",
    "bootstrap_admin_if_needed",
    "create_user",
    "public_user",
    "get_optional_user",
    "require_admin",
    "require_auth",
    "require_moderator",
]
