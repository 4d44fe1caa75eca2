import logging, time
import psycopg, psycopg.abc
import sqlalchemy, sqlalchemy.ext.asyncio

from typing import Self

#-----------------------------------------------------------------------------

class LoggedAsyncCursor(psycopg.AsyncCursor):
    async def execute(
        self,
        query: psycopg.abc.Query,
        params: psycopg.abc.Params | None = None,
        *,
        prepare: bool | None = None,
        binary: bool | None = None
    ) -> Self:
        start_time = time.time()
        cur = await super().execute(query, params, prepare=prepare, binary=binary)
        end_time = time.time()

        logging.info(
            " ".join(str(query).split()),
            extra = {
                "time_cost" : round((end_time-start_time)*1e3, 2),
                "records"   : cur.rowcount
            },
            stacklevel = 2
        )

        return self

#-----------------------------------------------------------------------------

class PostgreSQLConfig:
    def __init__(
        self,
        user    : str,
        password: str,
        database: str,
        host    : str,
        port    : int = 0,
        schema  : str = "",
        maxconn : int = 0,
        timeout : int = 0
    ):
        self.host       = host if host else "127.0.0.1"
        self.port       = port if port > 0 else 5432
        self.user       = user
        self.password   = password
        self.database   = database
        self.maxconn    = maxconn if maxconn > 0 else 10
        self.timeout    = timeout if timeout > 0 else 10

        if not schema:
            schemas = []
        else:
            schemas = schema.split(",")

        if "public" not in schemas:
            schemas.append("public")
        self.schema = ",".join(schemas)


    def print(self):
        print(f"pg              : {self.host}:{self.port}/{self.database}")

    # -----------------------------------------------------

    async def get_async_client(self, cursor_factory: type[psycopg.AsyncCursor] | None = LoggedAsyncCursor):
        kargs = {}
        if cursor_factory:
            kargs["cursor_factory"] = cursor_factory

        return await psycopg.AsyncConnection.connect(
            host    = self.host,
            port    = self.port,
            dbname  = self.database,
            user    = self.user,
            password= self.password,
            connect_timeout = self.timeout,
            options = f"-c search_path={self.schema}",
            **kargs
        )

    #-----------------------------------------------------

    def get_async_engine(self) -> sqlalchemy.ext.asyncio.AsyncEngine:
        return sqlalchemy.ext.asyncio.create_async_engine(
            f"postgresql+psycopg://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}",
            connect_args= {
                "options"           : f"-c search_path={self.schema}",
                "connect_timeout"   : self.timeout,
            },
            poolclass   = sqlalchemy.AsyncAdaptedQueuePool,
            pool_size   = self.maxconn
        )

#-----------------------------------------------------------------------------
