"""Currency rate client."""

import logging
from decimal import Decimal, InvalidOperation

import httpx

from ..exceptions import CurrencyAPIError

logger = logging.getLogger(__name__)


class CurrencyClient:
    """Client for a hexarate-compatible exchange rate API."""

    BASE_URL = "https://hexarate.paikama.co/api"

    def __init__(self, base_url: str | None = None, transport: httpx.BaseTransport | None = None):
        """Initialize the currency client."""
        self.client = httpx.Client(
            base_url=base_url or self.BASE_URL,
            timeout=10.0,
            transport=transport,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def get_rate(self, base: str, target: str) -> Decimal:
        """
        Get the mid-market rate for converting ``base`` into ``target``.

        Args:
            base: Source currency code (e.g. "USD")
            target: Target currency code (e.g. "VND")

        Returns:
            Units of target per unit of base

        Raises:
            CurrencyAPIError: If the request fails or the response is invalid
        """
        base, target = base.upper(), target.upper()
        if base == target:
            return Decimal("1")

        try:
            response = self.client.get(f"/rates/latest/{base}", params={"target": target})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CurrencyAPIError(f"Failed to fetch {base}->{target} rate: {e}") from e

        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payload, dict) or data.get("status_code") != 200:
            raise CurrencyAPIError(f"Invalid response from conversion API: {data}")

        try:
            rate = Decimal(str(payload["mid"]))
        except (KeyError, InvalidOperation) as e:
            raise CurrencyAPIError(f"Conversion API response has no usable rate: {payload}") from e

        if not rate.is_finite() or rate <= 0:
            raise CurrencyAPIError(f"Conversion API returned non-positive rate {rate}")

        logger.info(f"Rate {base}->{target}: {rate} (as of {payload.get('timestamp')})")
        return rate
