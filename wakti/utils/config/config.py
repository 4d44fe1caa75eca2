import base64, dotenv, io, json, logging, os, re

from ruamel.yaml import YAML
from typing import Any

from .encrypt import AbstractEncrypter, FernetEncrypter
from .log import LogConfig
from .http import HttpConfig
from .postgresql import PostgreSQLConfig
from .redis import RedisConfig
from .whoop import WhoopConfig

#-----------------------------------------------------------------------------

_global_config = None

#-----------------------------------------------------------------------------

class Config:

    yaml = YAML()

    #-------------------------------------------------

    def __init__(
        self,
        yaml_filenames: str | io.StringIO | list[str | io.StringIO] | None = None,
        encrypter: AbstractEncrypter | None = None
    ):
        if isinstance(yaml_filenames, str|io.StringIO):
            self._yaml_filenames = [yaml_filenames]
        elif isinstance(yaml_filenames, list):
            self._yaml_filenames = yaml_filenames
        else:
            self._yaml_filenames = []

        #-------------------------------------------------

        self._raw = {}

        self._postgresqls = {}
        self._redises = {}

        #-------------------------------------------------

        self._encrypter = encrypter
        if not self._encrypter:
            self._encrypter = FernetEncrypter(self.get_fernet_key("CONFIG_ENCRYPTION_KEY"))

        #-------------------------------------------------

        # Load YAML files.
        for yaml_filename in self._yaml_filenames:
            self.load_yaml(yaml_filename)

        self.refresh()

        global _global_config
        _global_config = self

    #-----------------------------------------------------

    def refresh(self, data: dict = {}):
        if data:
            self._raw.update({k.upper(): v for k, v in data.items()})

        # Clear cached configuration objects to ensure they use updated _raw values
        self._postgresqls = {}
        self._redises = {}

        self.log = LogConfig(
            name        = self.get_str("LOG_NAME"),
            dir         = self.get_str("LOG_DIR"),
            level       = logging.getLevelNamesMapping().get(self.get_str("LOG_LEVEL").strip().upper(), logging.INFO)
        )

        self.http = HttpConfig(
            name        = self.get_str("HTTP_SERVER_NAME", "wakti-whoop"),
            version     = self.get_str("HTTP_SERVER_VERSION"),
            host        = self.get_str("HTTP_HOST"),
            port        = self.get_int("HTTP_PORT"),
            uri_prefix  = self.get_str("HTTP_URI_PREFIX"),
            headers     = self.get_dict("HTTP_HEADERS", {})
        )

        self.whoop = WhoopConfig(
            client_id       = self.get_str("WHOOP_CLIENT_ID"),
            client_secret   = self.get_str("WHOOP_CLIENT_SECRET"),
            redirect_url    = self.get_str("WHOOP_REDIRECT_URL"),
            auth_url        = self.get_str("WHOOP_AUTH_URL"),
            token_url       = self.get_str("WHOOP_TOKEN_URL"),
            api_base_url    = self.get_str("WHOOP_API_BASE_URL"),
            scopes          = self.get_str("WHOOP_SCOPES"),
            request_timeout = self.get_int("WHOOP_REQUEST_TIMEOUT"),
            window_days     = self.get_int("WHOOP_SYNC_WINDOW_DAYS"),
            batch_size      = self.get_int("WHOOP_UPSERT_BATCH_SIZE"),
            refresh_margin  = self.get_int("WHOOP_REFRESH_MARGIN_SECONDS"),
            sync_interval_hours = self.get_float("WHOOP_SYNC_INTERVAL_HOURS", 24.0),
            oauth_temp_ttl  = self.get_int("OAUTH_TEMP_TTL_SECONDS"),
            service_key     = self.get_str("WHOOP_SYNC_SERVICE_KEY")
        )

        self.jwt_key = self.get_str("JWT_KEY")


    def load_yaml(self, file: str | io.StringIO):
        if not file:
            return

        stream = None

        if isinstance(file, str):
            # Filename.
            try:
                with open(file, "r", encoding="utf-8") as f:
                    stream = io.StringIO(f.read())

            except Exception as e:
                logging.warning(f"Failed to load YAML file '{file}': {str(e)}")
                return

        elif isinstance(file, io.StringIO):
            stream = file

        if stream is None:
            return

        #-------------------------------------------------

        modified = False

        data = Config.yaml.load(stream)
        if not isinstance(data, dict):
            return

        for key, value in data.items():
            if not isinstance(key, str):
                continue

            upper_key = key.upper()

            if self._encrypter and isinstance(value, str) and len(value) > 0:
                # Check non-empty strings.

                if self._encrypter.is_encrypted(value):
                    # Decrypt it.
                    self._raw[upper_key] = self._encrypter.decrypt(value)
                    continue

                if re.search(r"_KEY|_PASSWORD|_PASS|_PWD|_SECRET|_SK|_TOKEN", upper_key) and \
                    not upper_key.endswith("_URL") and \
                    value != "REPLACE_THIS_VALUE_IN_PRODUCTION":

                    # Encrypt it.
                    encrypted = self._encrypter.encrypt(value)
                    if encrypted != value:
                        data[key] = encrypted
                        modified = True

            self._raw[upper_key] = value

        #-------------------------------------------------

        if isinstance(file, str) and modified:
            try:
                with open(file, "w+t", encoding="utf-8") as f:
                    if f.writable():
                        Config.yaml.dump(data, f)

            except Exception as e:
                logging.warning(f"Failed to update YAML file '{file}': {str(e)}")

    #-----------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        stripped_key = key.strip()
        if not stripped_key:
            return default

        # Check environment variables beforehand.
        s = os.environ.get(stripped_key)
        if s is not None:
            return s

        # Check key in upper case again.
        upper_key = stripped_key.upper()
        s = os.environ.get(upper_key)
        if s is not None:
            return s

        # Then check the configuration variables.
        return self._raw.get(upper_key, default)


    def get_str(self, key: str, default: str = "") -> str:
        s = self.get(key, default)
        if s is None:
            return default

        return s if isinstance(s, str) else str(s)


    def get_int(self, key: str, default: int = 0) -> int:
        obj = self.get(key)

        if isinstance(obj, bool):
            return default

        if isinstance(obj, int):
            return obj

        try:
            return int(obj)
        except (TypeError, ValueError):
            return default


    def get_float(self, key: str, default: float = 0.0) -> float:
        obj = self.get(key)

        if isinstance(obj, int | float) and not isinstance(obj, bool):
            return float(obj)

        try:
            return float(obj)
        except (TypeError, ValueError):
            return default


    def get_bool(self, key: str, default: bool = False) -> bool:
        obj = self.get(key)

        if isinstance(obj, bool):
            return obj

        if isinstance(obj, str):
            return obj.strip().upper() == "TRUE"

        if isinstance(obj, int):
            return obj != 0

        return default


    def get_dict(self, key: str, default: dict | None = None) -> dict:
        obj = self.get(key)

        if isinstance(obj, dict):
            return obj

        if isinstance(obj, str | bytes | bytearray):
            try:
                d = json.loads(obj)
                if isinstance(d, dict):
                    return d
            except ValueError:
                return default

        return default


    def get_fernet_key(self, key: str) -> str:
        s = self.get_str(key).strip()
        if not s:
            return ""

        if len(s) > 32:
            s = s[:32]

        try:
            return base64.urlsafe_b64encode(s.encode().ljust(32, b"0")).decode()

        except Exception as e:
            logging.error(str(e), extra={"key": key})
            return ""

    #-----------------------------------------------------

    def get_postgresql(self, key: str="") -> PostgreSQLConfig:
        upper_key = key.strip().upper()
        if upper_key in self._postgresqls:
            return self._postgresqls[upper_key]

        #-------------------------------------------------

        suffix = upper_key
        if suffix:
            suffix = "_" + suffix

        pg_config = PostgreSQLConfig(
            host        = self.get_str(f"PG_HOST{suffix}"),
            port        = self.get_int(f"PG_PORT{suffix}"),
            user        = self.get_str(f"PG_USER{suffix}"),
            password    = self.get_str(f"PG_PASSWORD{suffix}"),
            database    = self.get_str(f"PG_DBNAME{suffix}"),
            schema      = self.get_str(f"PG_SCHEMA{suffix}"),
            maxconn     = self.get_int(f"PG_MAX_CONNECTION{suffix}"),
            timeout     = self.get_int(f"PG_TIMEOUT{suffix}")
        )

        self._postgresqls[upper_key] = pg_config
        return pg_config

    #-----------------------------------------------------

    def get_redis(self, key: str="") -> RedisConfig:
        upper_key = key.strip().upper()
        if upper_key in self._redises:
            return self._redises[upper_key]

        #-------------------------------------------------

        suffix = upper_key
        if suffix:
            suffix = "_" + suffix

        redis_config = RedisConfig(
            host        = self.get_str(f"REDIS_HOST{suffix}"),
            port        = self.get_int(f"REDIS_PORT{suffix}"),
            password    = self.get_str(f"REDIS_PASSWORD{suffix}"),
            database    = self.get_int(f"REDIS_DB{suffix}"),
            maxconn     = self.get_int(f"REDIS_MAX_CONNECTION{suffix}"),
            timeout     = self.get_int(f"REDIS_TIMEOUT{suffix}"),
            ssl         = self.get_bool(f"REDIS_SSL{suffix}")
        )

        self._redises[upper_key] = redis_config
        return redis_config

    #-----------------------------------------------------

    def print(self):
        print(f"Configuration loaded from {[f if isinstance(f, str) else '<stream>' for f in self._yaml_filenames]}:")
        print("----------------------------------------------------------")
        print(f"env             : {os.environ.get('ENV', '').strip().lower()}")
        print(f"debug           : {self.log.level <= logging.DEBUG}")

        self.log.print()
        self.http.print()

        self.get_redis().print()
        self.get_postgresql().print()

        self.whoop.print()

        if self.jwt_key:
            print(f"jwt             : {Config.to_masked_str(self.jwt_key)}")

        print("----------------------------------------------------------")

    #-------------------------------------------------------------------------

    @staticmethod
    def to_masked_str(s: str) -> str:
        n = len(s)
        if n <= 0:
            return ""
        if n < 6:
            return "************"

        return f"{s[:3]}******{s[n-3:]}"

    #-------------------------------------------------------------------------

    @staticmethod
    def load_dotenv(filenames: str | list[str] | None = None):
        if isinstance(filenames, str):
            l = [filenames]
        elif isinstance(filenames, list):
            l = filenames
        else:
            return

        for filename in l:
            filename = filename.strip()
            if not filename:
                continue

            for key, value in dotenv.dotenv_values(filename).items():
                if value:
                    value = value.strip()
                if not value:
                    continue

                key = key.strip()
                if not key:
                    continue

                os.environ.setdefault(key.upper(), value)

    #-------------------------------------------------------------------------

    @staticmethod
    def expand_yaml_filenames(yaml_filenames: str | list[str] | None, env: str = "") -> list[str]:
        yaml_file_list = []

        if isinstance(yaml_filenames, str):
            yaml_file_list.append(yaml_filenames)

        elif isinstance(yaml_filenames, list):
            yaml_file_list.extend(yaml_filenames)

        #-----------------------------------------------------
        # Fill .key.yaml files.

        temp_yaml_file_list = []

        for yaml_filename in yaml_file_list:
            if not isinstance(yaml_filename, str):
                continue

            yaml_filename = yaml_filename.strip()
            if not yaml_filename or yaml_filename in temp_yaml_file_list:
                continue

            temp_yaml_file_list.append(yaml_filename)

            if re.match(".*\\.key\\.yaml$", yaml_filename, re.IGNORECASE):
                continue

            elif not re.match(".*\\.yaml$", yaml_filename, re.IGNORECASE):
                continue

            temp_yaml_file_list.append(f"{yaml_filename[:-5]}.key.yaml")

        yaml_file_list = temp_yaml_file_list

        #-----------------------------------------------------
        # Fill .{env}.yaml and .{env}.key.yaml files.

        if env:
            if not yaml_file_list:
                return [f"config.{env}.yaml", f"config.{env}.key.yaml"]

            temp_yaml_file_list = []

            for yaml_filename in yaml_file_list:
                if yaml_filename in temp_yaml_file_list:
                    continue

                temp_yaml_file_list.append(yaml_filename)

                if re.match(".*\\.key\\.yaml$", yaml_filename, re.IGNORECASE):
                    env_yaml_filename = f"{yaml_filename[:-9]}.{env}.key.yaml"
                else:
                    env_yaml_filename = f"{yaml_filename[:-5]}.{env}.yaml"

                if env_yaml_filename not in temp_yaml_file_list:
                    temp_yaml_file_list.append(env_yaml_filename)

            yaml_file_list = temp_yaml_file_list

        return yaml_file_list

    #-------------------------------------------------------------------------

    @staticmethod
    def init(
        yaml_filenames  : str | list[str] | None = None,
        dotenv_filenames: str | list[str] = [".env"],
        log_extra       : dict = {}
    ) -> "Config":
        from ..log import init_log_console
        init_log_console(extra=log_extra)

        #-----------------------------------------------------

        class URLFilter(logging.Filter):
            def __init__(self, blocked_urls):
                super().__init__()
                self.blocked_urls = blocked_urls

            def filter(self, record: logging.LogRecord) -> bool:
                # The URL sits at index 2 of uvicorn access log args.
                if record.args and len(record.args) >= 3:
                    if record.args[2] in self.blocked_urls:
                        return False
                return True

        logging.getLogger("uvicorn.access").addFilter(
            URLFilter(["/api/health"])
        )

        #-----------------------------------------------------

        Config.load_dotenv(dotenv_filenames)

        env = os.environ.get("ENV", "").strip().lower()
        if env and log_extra:
            log_extra["env"] = env

        yaml_file_list = Config.expand_yaml_filenames(yaml_filenames, env)

        final_yaml_file_list = []

        default_yaml = "config.yaml"
        if os.path.exists(default_yaml) and default_yaml not in yaml_file_list:
            final_yaml_file_list.append(default_yaml)
            logging.info("Default config has been loaded.")

        for yaml_filename in yaml_file_list:
            if os.path.exists(yaml_filename):
                final_yaml_file_list.append(yaml_filename)

        config = Config(yaml_filenames=final_yaml_file_list)

        #-----------------------------------------------------

        from ..log import init_log
        init_log(
            name    = config.log.name,
            dir     = config.log.dir,
            level   = config.log.level,
            extra   = log_extra
        )

        from ..db import init_db
        init_db(config)

        return config

#-----------------------------------------------------------------------------

def global_config(*args, **kargs) -> Config | None:
    return _global_config

#-----------------------------------------------------------------------------
