#-----------------------------------------------------------------------------

DEFAULT_AUTH_URL    = "https://api.prod.whoop.com/oauth/oauth2/auth"
DEFAULT_TOKEN_URL   = "https://api.prod.whoop.com/oauth/oauth2/token"
DEFAULT_API_BASE_URL= "https://api.prod.whoop.com/developer/v1"
DEFAULT_SCOPES      = "offline read:recovery read:sleep read:cycles read:profile read:workout read:body_measurement"

#-----------------------------------------------------------------------------

class WhoopConfig:
    def __init__(
        self,
        client_id       : str = "",
        client_secret   : str = "",
        redirect_url    : str = "",
        auth_url        : str = "",
        token_url       : str = "",
        api_base_url    : str = "",
        scopes          : str = "",
        request_timeout : int = 0,
        window_days     : int = 0,
        batch_size      : int = 0,
        refresh_margin  : int = 0,
        sync_interval_hours : float = 24.0,
        oauth_temp_ttl  : int = 0,
        service_key     : str = ""
    ):
        self.client_id      = client_id.strip()
        self.client_secret  = client_secret.strip()
        self.redirect_url   = redirect_url.strip()

        self.auth_url       = auth_url.strip() or DEFAULT_AUTH_URL
        self.token_url      = token_url.strip() or DEFAULT_TOKEN_URL
        self.api_base_url   = (api_base_url.strip() or DEFAULT_API_BASE_URL).rstrip("/")
        self.scopes         = scopes.strip() or DEFAULT_SCOPES

        self.request_timeout= request_timeout if request_timeout > 0 else 30
        self.window_days    = window_days if window_days > 0 else 180
        self.batch_size     = batch_size if batch_size > 0 else 50
        self.refresh_margin = refresh_margin if refresh_margin > 0 else 60

        self.sync_interval_hours = sync_interval_hours if sync_interval_hours >= 0 else 0.0

        self.oauth_temp_ttl = oauth_temp_ttl if oauth_temp_ttl > 0 else 900
        self.service_key    = service_key.strip()

    #-----------------------------------------------------

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @property
    def cycle_url(self) -> str:
        return f"{self.api_base_url}/cycle"

    @property
    def sleep_url(self) -> str:
        return f"{self.api_base_url}/activity/sleep"

    @property
    def workout_url(self) -> str:
        return f"{self.api_base_url}/activity/workout"

    @property
    def recovery_url(self) -> str:
        return f"{self.api_base_url}/recovery"

    @property
    def profile_url(self) -> str:
        return f"{self.api_base_url}/user/profile/basic"

    @property
    def body_url(self) -> str:
        return f"{self.api_base_url}/user/measurement/body"

    #-----------------------------------------------------

    def print(self):
        client = f"{self.client_id[:3]}***" if self.client_id else "not configured"
        print(f"whoop           : {self.api_base_url} ({client})")
        print(f"                  window={self.window_days}d batch={self.batch_size} interval={self.sync_interval_hours}h")

#-----------------------------------------------------------------------------
