import base64, datetime, json, logging, os

from .req_ctx import get_req_ctx

#-----------------------------------------------------------------------------

class JsonEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, datetime.datetime | datetime.date):
            return o.isoformat()

        if isinstance(o, bytes):
            try:
                return o.decode()
            except UnicodeDecodeError:
                return base64.urlsafe_b64encode(o).decode()

        if isinstance(o, set | tuple):
            return list(o)

        return str(o)

#-----------------------------------------------------------------------------

class JsonFormatter(logging.Formatter):
    def __init__(self, extra: dict | None = None):
        super().__init__()

        self._extra = extra

        self._predefined_fields = {
            "name",
            "msg",
            "args",
            "levelname",
            "levelno",
            "pathname",
            "filename",
            "module",
            "exc_info",
            "exc_text",
            "stack_info",
            "lineno",
            "funcName",
            "created",
            "msecs",
            "relativeCreated",
            "thread",
            "threadName",
            "processName",
            "process",
            "taskName",
            "exception"
        }

    #-----------------------------------------------------

    def format(self, record: logging.LogRecord):
        # Common fields.
        json_record = {
            "time"  : self.formatTime(record, self.datefmt),
            "level" : getattr(record, "levelname", "INFO"),
            "msg"   : record.getMessage()
        }

        #-------------------------------------------------
        # Exception information.

        if record.exc_info:
            json_record["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            json_record["stack_info"] = record.stack_info

        #-------------------------------------------------

        function = getattr(record, "funcName", None)
        if function and function != "<module>":
            json_record["function"] = function

        if hasattr(record, "pathname") and hasattr(record, "lineno"):
            filename = getattr(record, "pathname").removeprefix(os.getcwd()).removeprefix(os.sep)
            json_record["file"] = f"{filename}:{getattr(record, 'lineno')}"

        if record.module:
            json_record["module"] = record.module

        #-------------------------------------------------
        # Other fields.

        for k in record.__dict__:
            if k not in self._predefined_fields:
                json_record[k] = record.__dict__[k]

        if self._extra:
            json_record.update(self._extra)

        for key, ctx_key in (("trace_id", "trace_id"), ("url", "url"), ("method", "method"), ("user_id", "user_id")):
            if key not in json_record:
                value = get_req_ctx(ctx_key)
                if value:
                    json_record[key] = value

        return json.dumps(json_record, ensure_ascii=False, separators=(",", ":"), cls=JsonEncoder)

#-----------------------------------------------------------------------------

def init_log_console(level: int = logging.INFO, extra: dict = {}):
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(JsonFormatter(extra))

    logging.root.handlers = [stream_handler]
    logging.root.setLevel(level=level)

#-----------------------------------------------------------------------------

def init_log_file(name: str, dir: str, level: int = logging.INFO, extra: dict = {}):
    if dir:
        os.makedirs(dir, exist_ok=True)

    formatter = JsonFormatter(extra)

    now = datetime.datetime.now()
    file_handler = logging.FileHandler(
        os.path.join(dir, f"{now.strftime('%Y-%m-%d')}_{name}_{now.strftime('%H%M%S_%f')}.log"),
        mode="w+"
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    logging.root.handlers = [file_handler, stream_handler]
    logging.root.setLevel(level=level)

#-----------------------------------------------------------------------------

def init_log(name: str = "", dir: str = "", level: int = logging.INFO, extra: dict = {}):
    if name:
        init_log_file(name, dir, level, extra)
    else:
        init_log_console(level, extra)

#-----------------------------------------------------------------------------
