from .config import (
    Config,

    global_config
)

from .encrypt import (
    AbstractEncrypter,
    FernetEncrypter
)
