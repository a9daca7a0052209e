"""Best-effort existence lookup against the ethscriptions indexer API."""

import httpx
import structlog

logger = structlog.get_logger()


class ProvenanceClient:
    """Checks that an ethscription is known to the public indexer.

    Any transport, status or decoding error maps to False, never to True.
    """

    def __init__(
        self,
        base_url: str = "https://api.ethscriptions.com/api",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize provenance client.

        Args:
            base_url: API root (from PROVENANCE_API_URL env var)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def exists(self, hash_id: str) -> bool:
        """Return True if the API knows an ethscription created by ``hash_id``."""
        url = f"{self.base_url}/ethscriptions/{hash_id.lower()}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(url)
                if response.status_code == 404:
                    return False
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("provenance.lookup_failed", hash_id=hash_id, error=str(e))
            return False

        if not isinstance(body, dict):
            return False
        found = body.get("transaction_hash") or body.get("hash_id") or ""
        return str(found).lower() == hash_id.lower()
