import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

import yaml

from .exceptions import InvalidConnectionConfiguration
from .jwt import Credential, PrivateKey, load_private_key, read_private_key

_ENV_VARS = {
    "SNOWFLAKE_ACCOUNT_URL": "account_url",
    "SNOWFLAKE_ACCOUNT": "account_identifier",
    "SNOWFLAKE_USER": "user_identifier",
    "SNOWFLAKE_PRIVATE_KEY": "private_key",
    "SNOWFLAKE_PRIVATE_KEY_PATH": "private_key_path",
    "PRIVATE_KEY_PASSPHRASE": "private_key_passphrase",
    "SNOWFLAKE_PUBLIC_KEY_FINGERPRINT": "public_key_fingerprint",
    "SNOWGRANT_SYNC_SECRETS": "sync_secrets",
}

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off", "")


def get_env_vars() -> dict:
    env_vars = {}
    for env_var, key in _ENV_VARS.items():
        value = os.environ.get(env_var)
        if value:
            env_vars[key] = value
    return env_vars


def _to_bool(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
    raise ValueError(f"{name} must be a boolean, got: {value!r}")


def _to_positive_int(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got: {value!r}")
    if number <= 0:
        raise ValueError(f"{name} must be positive, got: {number}")
    return number


@dataclass
class ConnectorConfig:
    account_url: str = ""
    account_identifier: str = ""
    user_identifier: str = ""
    private_key: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_passphrase: Optional[str] = None
    public_key_fingerprint: Optional[str] = None
    sync_secrets: bool = False
    page_size: int = 50
    table_page_size: int = 200
    timeout: float = 60.0

    def __post_init__(self):
        for name in ("account_url", "account_identifier", "user_identifier"):
            if not getattr(self, name):
                raise ValueError(f"{name} must be provided")

        if not self.account_url.startswith(("https://", "http://")):
            raise ValueError(f"account_url must be an http(s) URL, got: {self.account_url}")

        if not self.private_key and not self.private_key_path:
            raise ValueError("private_key or private_key_path must be provided")
        if self.private_key and self.private_key_path:
            raise ValueError("only one of private_key or private_key_path can be provided")

        self.sync_secrets = _to_bool("sync_secrets", self.sync_secrets)
        self.page_size = _to_positive_int("page_size", self.page_size)
        self.table_page_size = _to_positive_int("table_page_size", self.table_page_size)

        try:
            self.timeout = float(self.timeout)
        except (TypeError, ValueError):
            raise ValueError(f"timeout must be a number, got: {self.timeout!r}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got: {self.timeout}")

    def load_private_key(self) -> PrivateKey:
        if self.private_key_path:
            return read_private_key(self.private_key_path, self.private_key_passphrase)
        return load_private_key(self.private_key, self.private_key_passphrase)

    def credential(self) -> Credential:
        return Credential(
            account_identifier=self.account_identifier,
            user_identifier=self.user_identifier,
            private_key=self.load_private_key(),
            public_key_fingerprint=self.public_key_fingerprint,
        )


def _read_config_file(path: Union[str, Path]) -> dict:
    path = Path(path)
    if not path.exists():
        raise InvalidConnectionConfiguration(f"Config file not found: {path}")
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as err:
            raise InvalidConnectionConfiguration(f"Could not parse {path}: {err}") from err
    if not isinstance(data, dict):
        raise InvalidConnectionConfiguration(f"Config file {path} must contain a mapping")
    # Accept the dashed flag spelling (account-url) as well as account_url
    return {str(key).replace("-", "_"): value for key, value in data.items()}


def load_config(path: Optional[Union[str, Path]] = None, **overrides) -> ConnectorConfig:
    """
    Build a ConnectorConfig from, in increasing precedence: a YAML file,
    SNOWFLAKE_* environment variables, and keyword overrides (None ignored).
    """
    values = {}
    if path:
        values.update(_read_config_file(path))
    values.update(get_env_vars())
    values.update({key: value for key, value in overrides.items() if value is not None})

    known = {f.name for f in fields(ConnectorConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise InvalidConnectionConfiguration(f"Unknown config keys: {', '.join(unknown)}")

    try:
        return ConnectorConfig(**values)
    except ValueError as err:
        raise InvalidConnectionConfiguration(str(err)) from err
