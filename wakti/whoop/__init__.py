from .credential_store import CredentialStore, PgCredentialStore
from .errors import (
    ConfigurationError,
    InvalidWindow,
    NoCredentials,
    RefreshFailed,
    TokenExchangeFailed,
    Unauthenticated,
    Unauthorized,
    WhoopError,
)
from .models import SyncCounts, SyncMode, SyncSummary, WhoopCredential
from .oauth import WhoopOAuthService
from .orchestrator import WhoopSyncService
from .pull_task import WhoopPullTask
from .resource_store import PgResourceStore, ResourceStore
from .token_manager import TokenCell, TokenRefreshManager
