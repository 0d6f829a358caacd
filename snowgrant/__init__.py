import logging

from .client import SnowflakeClient
from .config import ConnectorConfig, load_config
from .connector import Connector
from .context import CallContext, background
from .exceptions import SnowgrantError

logger = logging.getLogger("snowgrant")


__all__ = [
    "CallContext",
    "Connector",
    "ConnectorConfig",
    "SnowflakeClient",
    "SnowgrantError",
    "background",
    "load_config",
]
