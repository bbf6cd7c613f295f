"""
Identity: resolve a Supabase Auth access token to the caller's user id.
"""
import logging

from supabase import AuthError, Client

logger = logging.getLogger(__name__)


def current_user_id(db: Client, access_token: str) -> str | None:
    if not access_token:
        return None
    try:
        res = db.auth.get_user(access_token)
    except AuthError as e:
        logger.info("Rejected access token: %s", e)
        return None
    user = getattr(res, "user", None) if res else None
    return str(user.id) if user else None
