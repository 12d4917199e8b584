"""Persistent storage for the runner token.

Entries live in a small JSON file in the data directory, keyed by
``service/account``. A missing file or entry is a normal empty result;
only real I/O or format problems raise ``CredentialStoreError``.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from .config import CREDENTIAL_ACCOUNT, CREDENTIAL_SERVICE, get_credentials_path

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "bc_runner_"


class CredentialStoreError(Exception):
    """The credential file could not be read or written."""


def validate_token(token: str) -> None:
    """Reject tokens that are obviously not runner tokens.

    Raises:
        ValueError: if the token does not start with ``bc_runner_``.
    """
    if not token or not token.startswith(TOKEN_PREFIX):
        raise ValueError(f"Invalid token format. Token should start with {TOKEN_PREFIX}")


class TokenStore:
    """get/set/delete access to one stored secret."""

    def __init__(
        self,
        service: str = CREDENTIAL_SERVICE,
        account: str = CREDENTIAL_ACCOUNT,
        path: Optional[Path] = None,
    ):
        self.service = service
        self.account = account
        self._path = path

    @property
    def path(self) -> Path:
        if self._path is None:
            self._path = get_credentials_path()
        return self._path

    @property
    def key(self) -> str:
        return f"{self.service}/{self.account}"

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise CredentialStoreError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise CredentialStoreError(f"Cannot read {self.path}: not a JSON object")
        return data

    def _write_all(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            raise CredentialStoreError(f"Cannot write {self.path}: {e}") from e

    def get(self) -> Optional[str]:
        """Return the stored token, or None if there is none."""
        return self._read_all().get(self.key) or None

    def set(self, token: str) -> None:
        """Store the token, replacing any previous one."""
        data = self._read_all()
        data[self.key] = token
        self._write_all(data)
        logger.debug(f"Saved token for {self.key}")

    def delete(self) -> None:
        """Remove the stored token. Does nothing if there is none."""
        data = self._read_all()
        if self.key not in data:
            return
        del data[self.key]
        self._write_all(data)
        logger.debug(f"Cleared token for {self.key}")
