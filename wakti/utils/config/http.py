#-----------------------------------------------------------------------------

class HttpConfig:
    def __init__(
        self,
        name        : str = "",
        version     : str = "",
        host        : str = "",
        port        : int = 0,
        uri_prefix  : str = "",
        headers     : dict[str, str] = {}
    ):
        self.name   = name
        self.version= version

        self.host   = host if host else "0.0.0.0"
        self.port   = port if port > 0 else 80

        stripped_uri_prefix = uri_prefix.strip().strip("/")
        if stripped_uri_prefix:
            self.uri_prefix = f"/{stripped_uri_prefix}"
        else:
            self.uri_prefix = ""

        #-------------------------------------------------

        self.headers = []
        has_server_header = False

        for key, value in headers.items():
            if not key or not value:
                continue

            self.headers.append((key, value))

            if not has_server_header and key.lower() == "server":
                has_server_header = True

        if not has_server_header and name:
            self.headers.append(("Server", f"{name}/{version}" if version else name))

    #-----------------------------------------------------

    def print(self):
        print(f"http            : {self.host}:{self.port}{self.uri_prefix}")
        for header in self.headers:
            print(f"                   {header[0]}: {header[1]}")

#-----------------------------------------------------------------------------
