import logging
from typing import Optional

import httpx

from . import data_provider
from .client import SnowflakeClient
from .config import ConnectorConfig
from .context import CallContext
from .enums import ResourceType
from .exceptions import InvalidArgumentError, SnowgrantError, wrap_error
from .syncers import (
    AccountRoleSyncer,
    DatabaseSyncer,
    ResourceSyncer,
    RsaPublicKeySyncer,
    SecretSyncer,
    TableSyncer,
    UserSyncer,
)

logger = logging.getLogger("snowgrant")


class Connector:
    """
    Entry point for the governance host: owns the Snowflake client and hands
    out one syncer per resource type.
    """

    def __init__(self, config: ConnectorConfig, http_client: Optional[httpx.Client] = None):
        self.config = config
        self.client = SnowflakeClient(
            config.account_url,
            config.credential(),
            http_client=http_client,
            timeout=config.timeout,
        )
        self._syncers = self._build_syncers()

    def _build_syncers(self) -> dict[ResourceType, ResourceSyncer]:
        syncers = [
            UserSyncer(self.client, self.config.page_size, self.config.sync_secrets),
            AccountRoleSyncer(self.client, self.config.page_size),
            DatabaseSyncer(self.client, self.config.page_size, self.config.sync_secrets),
            TableSyncer(self.client, self.config.table_page_size),
        ]
        if self.config.sync_secrets:
            syncers.append(SecretSyncer(self.client))
            syncers.append(RsaPublicKeySyncer(self.client))
        return {syncer.resource_type: syncer for syncer in syncers}

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def syncers(self) -> list[ResourceSyncer]:
        return list(self._syncers.values())

    def syncer(self, resource_type) -> ResourceSyncer:
        try:
            return self._syncers[ResourceType(resource_type)]
        except (KeyError, ValueError):
            raise InvalidArgumentError(f"no syncer for resource type {resource_type}")

    def validate(self, ctx: CallContext):
        try:
            users = data_provider.list_users(self.client, ctx, limit=1)
        except SnowgrantError as err:
            raise wrap_error(err, "failed to validate connection") from err
        if not users:
            raise SnowgrantError("snowflake-connector: failed to validate connection: no users returned")
        logger.debug(f"connection validated account_url={self.config.account_url}")
