"""
Publish table schema and partitions to an external catalog
"""

from abc import ABC, abstractmethod
from typing import Optional
import logging

import httpx

from core.exceptions import CatalogSyncError
from schemas.timeline import TableDescription
from streamer.store.base import TableStore

logger = logging.getLogger(__name__)


class CatalogSyncTool(ABC):
    """Client of a catalog / metastore service"""

    @abstractmethod
    async def sync_table(self, description: TableDescription) -> None:
        pass


class HttpCatalogSyncTool(CatalogSyncTool):
    """
    Catalog reachable over HTTP.

    PUT {catalog_url}/databases/{database}/tables/{table} with the table's
    schema and partition list.
    """

    def __init__(
        self,
        catalog_url: str,
        database: str = "default",
        api_key: Optional[str] = None,
        timeout: float = 30.0
    ):
        self.catalog_url = catalog_url.rstrip("/")
        self.database = database
        self.api_key = api_key
        self.timeout = timeout

    async def sync_table(self, description: TableDescription) -> None:
        url = f"{self.catalog_url}/databases/{self.database}/tables/{description.table_name}"
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body = {
            "table_name": description.table_name,
            "location": description.base_path,
            "schema": description.table_schema,
            "partitions": description.partitions,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.put(url, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise CatalogSyncError(
                f"Catalog sync failed for {description.table_name}",
                context={"table_name": description.table_name, "catalog_url": url},
                original_exception=e
            )


class CatalogSyncTrigger:
    """
    Invoke catalog sync after a successful non-empty commit.

    Failures do not fail the round; they are logged and returned to the
    caller so they reach the run's error channel.
    """

    def __init__(
        self,
        tool: CatalogSyncTool,
        table_store: TableStore,
        base_path: str,
        enabled: bool = True
    ):
        self.tool = tool
        self.table_store = table_store
        self.base_path = base_path
        self.enabled = enabled

    async def sync(self) -> Optional[str]:
        """
        Returns:
            None on success or when disabled, otherwise the error message
        """
        if not self.enabled:
            return None

        try:
            description = await self.table_store.describe_table(self.base_path)
            logger.info(
                f"Syncing target table with catalog table({description.table_name}). "
                f"basePath :{self.base_path}"
            )
            await self.tool.sync_table(description)
        except Exception as e:
            error = e if isinstance(e, CatalogSyncError) else CatalogSyncError(
                "Catalog sync failed",
                context={"base_path": self.base_path},
                original_exception=e
            )
            logger.error(f"Catalog sync failed: {error}", extra={"error_context": error.to_dict()})
            return str(error)

        return None
