"""
WHOOP sync error taxonomy
"""

from typing import Optional


class WhoopError(Exception):
    """Base error for the WHOOP integration"""


class ConfigurationError(WhoopError):
    """Client credentials are missing; nothing can run until an operator fixes it"""


class Unauthenticated(WhoopError):
    """The calling request carries no resolvable session"""


class NoCredentials(WhoopError):
    def __init__(self, user_id: str):
        super().__init__(f"No WHOOP credentials stored for user {user_id}")
        self.user_id = user_id


class Unauthorized(WhoopError):
    """The provider rejected the access token"""

    def __init__(self, url: str = "", status: int = 401):
        super().__init__(f"WHOOP returned {status} for {url}" if url else f"WHOOP returned {status}")
        self.url = url
        self.status = status


class RefreshFailed(WhoopError):
    def __init__(self, status: int, detail: Optional[str] = None):
        super().__init__(f"refresh failed {status}" + (f": {detail}" if detail else ""))
        self.status = status
        self.detail = detail

    @property
    def credentials_invalid(self) -> bool:
        """400/401 from the token endpoint means the refresh token itself is dead"""
        return self.status in (400, 401)


class TokenExchangeFailed(WhoopError):
    def __init__(self, status: int, detail: Optional[str] = None):
        super().__init__(f"Token exchange failed: {status}" + (f" {detail}" if detail else ""))
        self.status = status
        self.detail = detail


class InvalidWindow(WhoopError):
    """start/end could not be turned into a sync window"""
