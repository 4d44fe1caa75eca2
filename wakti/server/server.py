import logging, os

from contextlib import asynccontextmanager

from fastapi import FastAPI
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.requests import Request

from .middlewares import RequestContextMiddleware

from ..utils import Config, close_db, json_response
from ..whoop import (
    PgCredentialStore,
    PgResourceStore,
    TokenRefreshManager,
    WhoopOAuthService,
    WhoopPullTask,
    WhoopSyncService,
)
from ..whoop.router import router as whoop_router

#-----------------------------------------------------------------------------

class Server:
    def __init__(
        self,
        config          : Config,
        sync_service    : WhoopSyncService,
        oauth_service   : WhoopOAuthService,
        pull_task       : WhoopPullTask | None = None,
    ):
        self._config = config
        self._sync_service = sync_service
        self._oauth_service = oauth_service
        self._pull_task = pull_task

    #-----------------------------------------------------

    @staticmethod
    def from_config(config: Config) -> "Server":
        credential_store = PgCredentialStore()
        resource_store = PgResourceStore()
        token_manager = TokenRefreshManager(config.whoop, credential_store)

        sync_service = WhoopSyncService(
            config          = config.whoop,
            credential_store= credential_store,
            resource_store  = resource_store,
            token_manager   = token_manager,
        )
        oauth_service = WhoopOAuthService(config.whoop, credential_store, token_manager)
        pull_task = WhoopPullTask(sync_service, interval_hours=config.whoop.sync_interval_hours)

        return Server(config, sync_service, oauth_service, pull_task)

    #-----------------------------------------------------

    def get_middlewares(self) -> list[Middleware]:
        return [
            Middleware(RequestContextMiddleware),
            Middleware(GZipMiddleware, minimum_size=1000),
        ]

    def create_app(self) -> FastAPI:
        pull_task = self._pull_task

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            if pull_task:
                await pull_task.start()
            try:
                yield
            finally:
                if pull_task:
                    await pull_task.stop()
                await close_db()

        app = FastAPI(
            debug       = self._config.log.level <= logging.DEBUG,
            middleware  = self.get_middlewares(),
            lifespan    = lifespan,
        )

        app.state.whoop_sync_service = self._sync_service
        app.state.whoop_oauth_service = self._oauth_service
        app.state.jwt_key = self._config.jwt_key

        @app.get("/api/health")
        async def health(request: Request):
            return json_response({"status": "ok"}, request=request, disable_log=True)

        app.include_router(whoop_router)
        return app

    #-----------------------------------------------------

    @staticmethod
    async def apply_sql_files(config: Config):
        dirname = os.path.join(os.path.dirname(__file__), "..", "res", "sql")

        async with await config.get_postgresql().get_async_client(cursor_factory=None) as conn:
            async with conn.cursor() as cur:
                for filename in sorted(os.listdir(dirname)):
                    if not filename.endswith(".sql"):
                        continue
                    with open(os.path.join(dirname, filename), "r", encoding="utf-8") as f:
                        statements = f.read()
                    try:
                        await cur.execute(statements)
                        await conn.commit()
                        logging.info(f"SQL file {filename} executed successfully.")
                    except Exception as e:
                        await conn.rollback()
                        logging.error(str(e), exc_info=True, extra={"sql_filename": filename})
            logging.info("SQL files initialization completed.")

    @staticmethod
    async def start(yaml_files: list[str] = []):
        # Load configuration via file.
        config = Config.init(yaml_filenames=yaml_files)
        config.print()

        if os.environ.get("ENV", "").strip().upper() not in ["TEST", "GRAY", "PROD"]:
            await Server.apply_sql_files(config)

        if not config.whoop.configured:
            logging.error("WHOOP OAuth credentials not configured. Please set WHOOP_CLIENT_ID and WHOOP_CLIENT_SECRET")

        app = Server.from_config(config).create_app()

        #-----------------------------------------------------
        # Start asgi server.

        import uvicorn
        asgi_server = uvicorn.Server(
            uvicorn.Config(
                app         = app,
                host        = config.http.host,
                port        = config.http.port,
                headers     = config.http.headers,
                log_level   = config.log.level if config.log.level <= logging.DEBUG else logging.WARNING
            )
        )
        await asgi_server.serve()

#-----------------------------------------------------------------------------
