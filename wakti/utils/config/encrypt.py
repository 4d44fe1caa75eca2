import logging

from cryptography.fernet import Fernet

#-----------------------------------------------------------------------------

class AbstractEncrypter:
    def decrypt(self, s: str) -> str: ...
    def encrypt(self, s: str) -> str: ...
    def is_encrypted(self, s: str) -> bool: ...

#-----------------------------------------------------------------------------

class FernetEncrypter(AbstractEncrypter):
    def __init__(self, key: str):
        self._key = key.strip() if key else ""

        try:
            self._fernet = Fernet(self._key) if self._key else None
        except Exception as e:
            logging.error(str(e), exc_info=True)
            self._fernet = None

    #-----------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    #-----------------------------------------------------

    def decrypt(self, s: str) -> str:
        if not s or not self._fernet:
            return s or ""

        if not self.is_encrypted(s):
            return s

        try:
            return self._fernet.decrypt(s.encode()).decode()

        except Exception as e:
            logging.error(str(e), extra={"s": s[:8]})
            return s

    #-----------------------------------------------------

    def encrypt(self, s: str) -> str:
        if not s or not self._fernet:
            return s or ""

        try:
            return self._fernet.encrypt(s.encode()).decode()

        except Exception as e:
            logging.error(str(e), extra={"s": s[:8]})
            return s

    #-----------------------------------------------------

    def is_encrypted(self, s: str) -> bool:
        return s.startswith("gAAAA")

#-----------------------------------------------------------------------------
