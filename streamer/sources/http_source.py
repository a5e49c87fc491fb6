"""
HTTP JSON source with timestamp checkpoints and retry logic.

This module provides incremental extraction from a paginated JSON API with:
- Exponential backoff retry logic for transient failures
- Rate limiting protection
- Comprehensive error handling with custom exceptions
"""

import httpx
import asyncio
from typing import List, Dict, Any, Optional, Tuple
from streamer.sources.base import InputBatch, Source, SourceFormat
from core.exceptions import (
    SourceReadError,
    NetworkError,
    RateLimitError,
    AuthenticationError,
    ResourceNotFoundError,
)
import logging

logger = logging.getLogger(__name__)


class HttpJsonSource(Source):
    """
    Pull records newer than a timestamp checkpoint from a REST API.

    Features:
    - Bearer token authentication
    - Pagination ("page" parameter, "has_next" or short page terminates)
    - Incremental loading via the "since" parameter
    - source_limit as a record budget per round

    The checkpoint is the greatest value of timestamp_field among the records
    returned, so timestamps must be ISO-8601 strings that sort correctly.
    """

    source_format = SourceFormat.RECORD

    def __init__(
        self,
        source_name: str,
        api_url: str,
        api_key: Optional[str] = None,
        timestamp_field: str = "updated_at",
        page_size: int = 100,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 30.0,
        props=None,
        schema_provider=None
    ):
        super().__init__(source_name=source_name, props=props, schema_provider=schema_provider)
        self.api_url = api_url
        self.api_key = api_key
        self.timestamp_field = timestamp_field
        self.page_size = page_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout

    async def _get_with_retry(
        self,
        client: httpx.AsyncClient,
        headers: Dict[str, str],
        params: Dict[str, Any]
    ) -> httpx.Response:
        """
        GET one page, retrying 429/5xx/timeouts with exponential backoff.

        Raises:
            AuthenticationError: HTTP 401/403
            ResourceNotFoundError: HTTP 404
            RateLimitError: Still rate limited after max_retries
            NetworkError: Server or network errors after max_retries
        """
        context = {"source_name": self.source_name, "api_url": self.api_url}

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)
            try:
                response = await client.get(self.api_url, headers=headers, params=params)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if last_attempt:
                    raise NetworkError(
                        f"Request failed after {self.max_retries} attempts",
                        context={**context, "retry_count": attempt + 1},
                        original_exception=e
                    )
                logger.warning(f"{type(e).__name__} from {self.api_url}. Retrying in {delay} seconds")
                await asyncio.sleep(delay)
                continue

            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"Authentication failed for {self.api_url}",
                    context={**context, "status_code": response.status_code}
                )
            if response.status_code == 404:
                raise ResourceNotFoundError(
                    f"Resource not found: {self.api_url}",
                    context={**context, "status_code": 404}
                )
            if response.status_code == 429:
                retry_after = int(response.headers.get("Retry-After", delay))
                if last_attempt:
                    raise RateLimitError(
                        f"Rate limit exceeded for {self.api_url}",
                        context={**context, "retry_count": attempt + 1},
                        retry_after=retry_after
                    )
                logger.warning(f"Rate limited. Retrying after {retry_after} seconds")
                await asyncio.sleep(retry_after)
                continue
            if response.status_code >= 500:
                if last_attempt:
                    raise NetworkError(
                        f"Server error after {self.max_retries} attempts",
                        context={
                            **context,
                            "status_code": response.status_code,
                            "retry_count": attempt + 1,
                            "response_body": response.text[:500]
                        }
                    )
                logger.warning(
                    f"Server error {response.status_code}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
                continue

            response.raise_for_status()
            return response

        raise NetworkError("Max retries exceeded", context=context)

    def _timestamp(self, record: Dict[str, Any]) -> str:
        return str(record.get(self.timestamp_field) or "")

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        headers: Dict[str, str],
        params: Dict[str, Any],
        page: int
    ) -> Tuple[List[Dict[str, Any]], bool]:
        """Fetch one page, returning its records and whether more pages follow"""
        params["page"] = page
        logger.info(f"Fetching page {page} from {self.api_url}")
        response = await self._get_with_retry(client, headers, params)

        try:
            data = response.json()
        except ValueError as e:
            raise SourceReadError(
                "Failed to parse JSON response",
                context={
                    "source_name": self.source_name,
                    "page": page,
                    "response_body": response.text[:500]
                },
                original_exception=e
            )

        # Handle list and {"data": [...], "has_next": bool} responses
        page_records = data if isinstance(data, list) else data.get("data", data.get("results", []))
        if not page_records:
            return [], False

        has_next = data.get("has_next", False) if isinstance(data, dict) else len(page_records) >= self.page_size
        return page_records, has_next

    async def fetch_new_data(self, last_checkpoint: Optional[str], source_limit: int) -> InputBatch:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        params: Dict[str, Any] = {"page_size": self.page_size}
        if last_checkpoint:
            # Only fetch records newer than checkpoint
            params["since"] = last_checkpoint

        records: List[Dict[str, Any]] = []
        page = 0
        has_next = True

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while has_next and len(records) < source_limit:
                page += 1
                page_records, has_next = await self._fetch_page(client, headers, params, page)
                records.extend(page_records)

            records = sorted(records, key=self._timestamp)

            # The next round reads strictly after the checkpoint, so a batch may
            # only end between two distinct timestamps
            if has_next or len(records) > source_limit:
                cut = min(len(records), source_limit)
                boundary = self._timestamp(records[cut - 1])
                straddles = has_next or self._timestamp(records[cut]) == boundary
                if not straddles:
                    records = records[:cut]
                elif any(self._timestamp(r) < boundary for r in records[:cut]):
                    records = [r for r in records[:cut] if self._timestamp(r) < boundary]
                else:
                    # One timestamp fills the whole budget: read all of it
                    logger.warning(
                        f"More than {source_limit} records share timestamp {boundary}, "
                        f"reading past the source limit"
                    )
                    while has_next and all(self._timestamp(r) <= boundary for r in records):
                        page += 1
                        page_records, has_next = await self._fetch_page(client, headers, params, page)
                        records.extend(page_records)
                    records = sorted(
                        (r for r in records if self._timestamp(r) <= boundary),
                        key=self._timestamp
                    )

        timestamps = [self._timestamp(r) for r in records if r.get(self.timestamp_field)]
        checkpoint = max(timestamps) if timestamps else last_checkpoint

        logger.info(
            f"Fetched {len(records)} records from {self.source_name} "
            f"({page} pages), next checkpoint {checkpoint}"
        )
        return InputBatch(records, checkpoint, self.schema_provider)
