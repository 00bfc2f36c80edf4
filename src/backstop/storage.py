import json
import logging
import os
import threading
from typing import Union

from .state import Credential

ACCESS_TOKEN_KEY = "access-token"
REFRESH_TOKEN_KEY = "refresh-token"


class TokenStore:
    """Durable home of the credential, keyed by ``access-token`` / ``refresh-token``.

    A missing key means "not authenticated", never an error.
    """

    def load(self) -> Union[Credential, None]:
        values = self._read()
        access = values.get(ACCESS_TOKEN_KEY)
        if not access:
            return None
        return Credential.from_tokens(access, values.get(REFRESH_TOKEN_KEY))

    def save(self, credential: Credential) -> None:
        values = {ACCESS_TOKEN_KEY: credential.access_token}
        if credential.refresh_token:
            values[REFRESH_TOKEN_KEY] = credential.refresh_token
        self._write(values)

    def clear(self) -> None:
        self._write({})

    def _read(self) -> dict[str, str]:
        raise NotImplementedError

    def _write(self, values: dict[str, str]) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, values: Union[dict[str, str], None] = None):
        self.values: dict[str, str] = dict(values or {})

    def _read(self):
        return dict(self.values)

    def _write(self, values):
        self.values = dict(values)


class FileTokenStore(TokenStore):
    """JSON file store. Writes go through a temp file and ``os.replace``."""

    def __init__(self, path: Union[str, os.PathLike]):
        self.path = os.fspath(path)
        self._lock = threading.Lock()
        self._logger = logging.getLogger("backstop")

    def _read(self):
        try:
            with open(self.path) as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            self._logger.warning(f"token store unreadable path={self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _write(self, values):
        with self._lock:
            if not values:
                try:
                    os.remove(self.path)
                except FileNotFoundError:
                    pass
                return
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp = f"{self.path}.tmp"
            with open(tmp, "w") as f:
                json.dump(values, f)
            os.replace(tmp, self.path)
