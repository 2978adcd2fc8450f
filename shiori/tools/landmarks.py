from typing import Any, Dict, Optional
import os

import httpx

from shiori.errors import ConfigurationError, UpstreamError

import logging

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    logger.addHandler(handler)
_level = os.getenv("SHIORI_LOG_LEVEL", "INFO").upper()
logger.setLevel(getattr(logging, _level, logging.INFO))
logger.propagate = False


class LandmarkLookup:
    """
    Thin proxy around Yahoo! place info. The provider payload is returned untouched.
    """
    ENDPOINT = "https://map.yahooapis.jp/placeinfo/V1/get"

    def __init__(self, *, api_key: Optional[str] = None, timeout: float = 10.0):
        self.api_key = api_key or os.getenv("YAHOO_API_KEY")
        self.timeout = timeout

    async def lookup(self, latitude: str, longitude: str) -> Dict[str, Any]:
        """Return the place info payload for a coordinate pair.

        Raises ``ConfigurationError`` when no API key is configured and
        ``UpstreamError`` for transport failures, non-2xx statuses or a body
        that is not JSON.
        """
        if not self.api_key:
            raise ConfigurationError("Server misconfiguration: YAHOO_API_KEY is not set")

        params = {
            "lat": latitude,
            "lon": longitude,
            "appid": self.api_key,
            "output": "json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.ENDPOINT, params=params)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Landmark lookup failed for %s,%s", latitude, longitude, exc_info=True)
            raise UpstreamError("Error fetching data from external API") from exc
