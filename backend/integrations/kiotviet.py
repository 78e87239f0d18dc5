"""
KiotViet ERP Stock Client

Fetches on-hand quantities per barcode for one branch:
  1. client-credentials token from the identity endpoint
  2. branch lookup (configured store-code mapping, then name match)
  3. paginated product listing with inventories, filtered to the branch

A failing later page stops pagination and the partial map is returned;
token, branch or first-page failures raise UpstreamUnavailable.
"""

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import Settings, get_settings
from counting.errors import UpstreamUnavailable
from integrations.base import ErpStockSource

_transient = retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(min=1, max=10),
    reraise=True,
)


class KiotVietClient(ErpStockSource):
    """Client for the KiotViet public API."""

    name = "kiotviet"

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        super().__init__()
        self.settings = settings or get_settings()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.erp_timeout_seconds, transport=self._transport)

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Retailer": self.settings.erp_retailer}

    @_transient
    async def _get_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            self.settings.erp_token_url,
            data={
                "scopes": "PublicApi.Access",
                "grant_type": "client_credentials",
                "client_id": self.settings.erp_client_id,
                "client_secret": self.settings.erp_client_secret,
            },
        )
        response.raise_for_status()
        token = response.json().get("access_token")
        if not token:
            raise UpstreamUnavailable("ERP auth response missing access_token")
        return token

    @_transient
    async def _get_branches(self, client: httpx.AsyncClient, token: str) -> list[dict]:
        response = await client.get(f"{self.settings.erp_base_url}/branches", headers=self._headers(token))
        response.raise_for_status()
        return response.json().get("data", []) or []

    @_transient
    async def _get_products_page(self, client: httpx.AsyncClient, token: str, current_item: int) -> dict:
        response = await client.get(
            f"{self.settings.erp_base_url}/products",
            headers=self._headers(token),
            params={
                "pageSize": self.settings.erp_page_size,
                "currentItem": current_item,
                "includeInventory": "true",
            },
        )
        response.raise_for_status()
        return response.json()

    def branch_name_for(self, store_code: str) -> str:
        return self.settings.erp_branch_mapping.get(store_code, store_code)

    async def fetch_stock(self, store_code: str) -> dict[str, int]:
        if not (self.settings.erp_retailer and self.settings.erp_client_id and self.settings.erp_client_secret):
            raise UpstreamUnavailable("ERP credentials are not configured")

        target = self.branch_name_for(store_code)
        async with self._client() as client:
            try:
                token = await self._get_token(client)
                branches = await self._get_branches(client, token)
            except httpx.HTTPError as exc:
                self.logger.error("erp.connect_failed", store_code=store_code, error=str(exc))
                raise UpstreamUnavailable(f"Cannot reach ERP: {exc}") from exc

            branch = next(
                (b for b in branches if b.get("branchName") and target.lower() in b["branchName"].lower()),
                None,
            )
            if branch is None:
                known = ", ".join(b.get("branchName", "?") for b in branches)
                raise UpstreamUnavailable(f'ERP branch "{target}" not found (have: {known})')

            stock = await self._collect_stock(client, token, branch["id"])

        self.logger.info(
            "erp.stock_fetched", store_code=store_code, branch=branch.get("branchName"), products=len(stock)
        )
        return stock

    async def _collect_stock(self, client: httpx.AsyncClient, token: str, branch_id) -> dict[str, int]:
        stock: dict[str, int] = {}
        current_item = 0
        total = 0
        while True:
            try:
                page = await self._get_products_page(client, token, current_item)
            except httpx.HTTPError as exc:
                if current_item == 0:
                    raise UpstreamUnavailable(f"ERP product listing failed: {exc}") from exc
                self.logger.warning("erp.page_failed", current_item=current_item, error=str(exc))
                break

            total = page.get("total") or 0
            items = page.get("data") or []
            if not items:
                break
            for product in items:
                barcode = product.get("barCode")
                if not barcode:
                    continue
                for inventory in product.get("inventories") or []:
                    if inventory.get("branchId") == branch_id:
                        stock[barcode] = int(round(inventory.get("onHand") or 0))
                        break
            current_item += len(items)
            if current_item >= total:
                break
        return stock
