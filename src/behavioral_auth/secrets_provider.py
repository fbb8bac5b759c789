"""
Installation secret handling for integrity tags.

The integrity store never sees the installation secret directly. A
``SecretProvider`` supplies it and ``derive_tag_key`` stretches it with
Argon2id into the HMAC key, so a leaked store file does not allow forging
tags without the secret.
"""

import os
import secrets
from pathlib import Path
from typing import Optional, Protocol, Union

import structlog
from argon2.exceptions import Argon2Error
from argon2.low_level import Type, hash_secret_raw

from .constants import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    DEFAULT_SECRET_ENV_VAR,
    SECRET_LENGTH,
    TAG_KEY_LENGTH,
    TAG_KEY_SALT,
)
from .exceptions import ConfigurationError

# Initialize structured logger
logger = structlog.get_logger(__name__)


class SecretProvider(Protocol):
    """Supplies the per-installation secret."""

    def get_secret(self) -> bytes:
        ...


class StaticSecretProvider:
    """
    Provider holding a secret in memory.

    Parameters
    ----------
    secret : Union[bytes, str]
        Secret material; strings are UTF-8 encoded.
    """

    def __init__(self, secret: Union[bytes, str]) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ConfigurationError("Secret must not be empty", config_key="secret")
        self._secret = bytes(secret)

    def get_secret(self) -> bytes:
        return self._secret


class EnvironmentSecretProvider:
    """Provider reading the secret from an environment variable."""

    def __init__(self, variable: str = DEFAULT_SECRET_ENV_VAR) -> None:
        self.variable = variable

    def get_secret(self) -> bytes:
        value = os.getenv(self.variable)
        if not value:
            raise ConfigurationError(
                f"Environment variable {self.variable} is not set",
                config_key=self.variable,
            )
        return value.encode("utf-8")


class FileSecretProvider:
    """
    Provider backed by a secret file.

    A random secret is generated on first use and written with owner-only
    permissions.

    Parameters
    ----------
    path : Union[str, Path]
        Location of the secret file.
    create : bool, default=True
        Generate the file when it does not exist.
    """

    def __init__(self, path: Union[str, Path], create: bool = True) -> None:
        self.path = Path(path)
        self.create = create
        self._secret: Optional[bytes] = None

    def _generate(self) -> bytes:
        secret = secrets.token_bytes(SECRET_LENGTH)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(secret)
        logger.info("Installation secret created", path=str(self.path))
        return secret

    def get_secret(self) -> bytes:
        if self._secret is not None:
            return self._secret

        try:
            secret = self.path.read_bytes()
        except FileNotFoundError:
            if not self.create:
                raise ConfigurationError(
                    "Secret file not found", config_key="secret_file", config_value=str(self.path)
                )
            secret = self._generate()
        except OSError as e:
            raise ConfigurationError(
                f"Cannot read secret file: {e}",
                config_key="secret_file",
                config_value=str(self.path),
            )

        if not secret:
            raise ConfigurationError(
                "Secret file is empty", config_key="secret_file", config_value=str(self.path)
            )
        self._secret = secret
        return secret


def derive_tag_key(secret: bytes) -> bytes:
    """
    Derive the HMAC key from the installation secret with Argon2id.

    Parameters
    ----------
    secret : bytes
        Installation secret.

    Returns
    -------
    bytes
        ``TAG_KEY_LENGTH`` bytes of key material.

    Raises
    ------
    ConfigurationError
        If the secret is empty or key derivation fails.
    """
    if not secret:
        raise ConfigurationError("Secret must not be empty", config_key="secret")

    try:
        return hash_secret_raw(
            secret=secret,
            salt=TAG_KEY_SALT,
            time_cost=ARGON2_TIME_COST,
            memory_cost=ARGON2_MEMORY_COST,
            parallelism=ARGON2_PARALLELISM,
            hash_len=TAG_KEY_LENGTH,
            type=Type.ID,
        )
    except Argon2Error as e:
        raise ConfigurationError(f"Tag key derivation failed: {e}", config_key="secret")
