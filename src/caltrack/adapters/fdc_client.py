"""USDA FoodData Central API client."""

from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from caltrack.api.fdc_models import SearchPage
from caltrack.domain.sync import MalformedResponseError
from caltrack.services.sync import FoodSource


@dataclass
class HttpxFdcClient(FoodSource):
    """HTTPX-backed paginated FDC source."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 30

    @classmethod
    def create(
        cls, api_key: str, base_url: str, timeout_seconds: float = 30
    ) -> "HttpxFdcClient":
        """Create an FDC client with a managed httpx session."""
        return cls(
            api_key=api_key,
            base_url=base_url,
            http_client=httpx.AsyncClient(),
            timeout_seconds=timeout_seconds,
        )

    async def fetch_page(
        self, data_type: str, page_number: int, page_size: int
    ) -> SearchPage:
        """Fetch one page of a partition.

        Raises ``httpx.HTTPStatusError`` for non-2xx responses and
        ``MalformedResponseError`` when the body is not a search page.
        """
        url = f"{self.base_url}/foods/search"
        response = await self.http_client.post(
            url,
            params={"api_key": self.api_key},
            json={
                "query": "",
                "dataType": [data_type],
                "pageSize": page_size,
                "pageNumber": page_number,
            },
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        try:
            return SearchPage.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError(
                f"Malformed search page for {data_type} page {page_number}",
                status_code=response.status_code,
            ) from exc

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
