"""
Storefront Admin Client

Pages through the storefront Admin REST orders and products endpoints,
250 rows per page, following ``Link: <...>; rel="next"`` headers until
exhausted. Any transport error, timeout or non-2xx response raises
SourceUnreachable.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ingestion.errors import SourceUnreachable

logger = logging.getLogger(__name__)

PAGE_SIZE = 250


class ShopifyClient:
    """Read-only client for one storefront."""

    SOURCE = "shopify"

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2025-10",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_domain = store_domain
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport

    def resource_url(self, resource: str) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/{resource}.json"

    async def fetch_orders(
        self,
        since_id: Optional[str] = None,
        created_at_min: Optional[str] = None,
        created_at_max: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every order matching the filters, any status.

        Args:
            since_id: Only orders with a higher id
            created_at_min: ISO-8601 lower bound
            created_at_max: ISO-8601 upper bound
        """
        params = {"status": "any", "limit": PAGE_SIZE}
        if since_id:
            params["since_id"] = since_id
        if created_at_min:
            params["created_at_min"] = created_at_min
        if created_at_max:
            params["created_at_max"] = created_at_max

        return await self._fetch_all("orders", params)

    async def fetch_products(self) -> List[Dict[str, Any]]:
        """Fetch every active product with its variants."""
        return await self._fetch_all("products", {"status": "active", "limit": PAGE_SIZE})

    async def _fetch_all(self, resource: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }

        rows: List[Dict[str, Any]] = []
        url: Optional[str] = self.resource_url(resource)
        request_params: Optional[Dict[str, Any]] = params

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                while url:
                    response = await client.get(url, params=request_params, headers=headers)
                    if response.status_code >= 400:
                        raise SourceUnreachable(
                            self.SOURCE,
                            f"HTTP {response.status_code}: {response.text[:200]}",
                            status_code=response.status_code,
                        )

                    rows.extend(response.json().get(resource) or [])

                    # The next-page URL carries its own page_info query
                    url = response.links.get("next", {}).get("url")
                    request_params = None
        except httpx.TimeoutException:
            raise SourceUnreachable(self.SOURCE, f"timed out fetching {resource} from {self.store_domain}")
        except httpx.HTTPError as e:
            raise SourceUnreachable(self.SOURCE, f"cannot reach {self.store_domain}: {str(e)[:100]}")

        logger.info(f"Fetched {len(rows)} {resource} from {self.store_domain}")
        return rows
