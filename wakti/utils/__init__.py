from .config import (
    Config,

    global_config
)

from .log import (
    init_log_console,
    init_log_file,

    init_log
)

from .http import (
    get_client_ip,
    get_bearer_token,

    json_response
)

from .db import (
    init_db,
    close_db,
    execute_query
)

from .utils_auth import verify_token_string

from .req_ctx import (
    REQ_CTX,

    get_req_ctx,
    update_req_ctx,
    set_req_ctx
)
