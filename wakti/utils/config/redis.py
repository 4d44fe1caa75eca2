import logging
import redis.asyncio

#-----------------------------------------------------------------------------

class RedisConfig:
    def __init__(
        self,
        host    : str = "",
        port    : int = 0,
        password: str = "",
        database: int = 0,
        maxconn : int = 0,
        timeout : int = 0,
        ssl     : bool = False
    ):
        self.host       = host
        self.port       = port if port > 0 else 6379
        self.password   = password
        self.database   = database

        self.maxconn    = maxconn if maxconn > 0 else 10
        self.timeout    = timeout if timeout > 0 else 300

        self.ssl        = ssl


    def print(self):
        if self.host:
            print(f"redis           : {self.host}:{self.port}/{self.database}")
        else:
            print("redis           : disabled")

    # -----------------------------------------------------
    # redis.asyncio.Redis pools connections by itself,
    #   so one client per process is enough.

    async def get_async_client(self) -> redis.asyncio.Redis | None:
        if not self.host:
            return None

        client = redis.asyncio.Redis(
            host            = self.host,
            port            = self.port,
            db              = self.database,
            password        = self.password or None,
            ssl             = self.ssl,
            decode_responses= True,
            socket_timeout  = self.timeout,
            max_connections = self.maxconn,
        )

        # Check it beforehand.
        try:
            if not await client.ping():
                await client.aclose()

                logging.error(f"Failed to ping Redis server '{self.host}:{self.port}' asynchronously.")
                return None

        except Exception as e:
            logging.error(str(e), extra={"host": self.host, "port": self.port})
            await client.aclose()
            return None

        return client

#-----------------------------------------------------------------------------
