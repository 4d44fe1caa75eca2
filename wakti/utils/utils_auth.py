import jwt
import logging

from urllib.parse import unquote

from .config import global_config
from .req_ctx import update_req_ctx

#-----------------------------------------------------------------------------

def verify_token_string(token_string: str | None, jwt_key: str = "") -> str | None:
    """
    Resolve a session token to its user ID.

    Accepts a bare JWT or an `Authorization` header value. The user ID is
    the `sub` claim; None is returned for anything that does not verify.
    """
    if not token_string or not isinstance(token_string, str):
        return None

    token = unquote(token_string).strip()

    # Remove Bearer prefix.
    while token.startswith("Bearer "):
        token = token[7:].strip()

    if not token:
        return None

    if not jwt_key:
        config = global_config()
        jwt_key = config.jwt_key if config else ""

    if not jwt_key:
        logging.error("JWT key not configured")
        return None

    #-----------------------------------------------------

    try:
        decoded = jwt.decode(
            token,
            jwt_key,
            algorithms  = ["HS256"],
            options     = {
                "verify_signature"  : True,
                "verify_exp"        : True,
                "verify_aud"        : False,
                "verify_iss"        : False
            }
        )

    except jwt.PyJWTError as e:
        logging.warning(f"Failed to decode JWT token: {str(e)}")
        return None

    subject = decoded.get("sub")
    if not subject:
        return None

    user_id = str(subject).strip()
    if not user_id:
        return None

    update_req_ctx(user_id=user_id)
    return user_id

#-----------------------------------------------------------------------------
