"""
Cloudflare API client used to sanity-check DNS challenge credentials.

certbot reports a rejected Cloudflare token only after it has started an ACME
order. Verifying the token up front lets the entrypoint tell "credentials are
wrong" (fatal) apart from "issuance failed for another reason" (fall back to a
self-signed certificate).
"""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

CLOUDFLARE_API_URL = 'https://api.cloudflare.com/client/v4'


class CloudflareAPIError(Exception):
    """Exception raised when the Cloudflare API cannot be reached or answers garbage."""
    pass


class CloudflareCredentialsRejected(CloudflareAPIError):
    """The Cloudflare API explicitly refused the supplied token."""
    pass


class CloudflareClient:
    """Minimal client for the token and zone endpoints of the Cloudflare v4 API."""

    def __init__(self, api_token: str, base_url: Optional[str] = None, timeout: int = 30):
        """
        Initialize the Cloudflare client.

        Args:
            api_token: Cloudflare API token with Zone:DNS:Edit permission.
            base_url: API base URL. Defaults to the public v4 endpoint.
            timeout: Request timeout in seconds.
        """
        self.api_token = api_token
        self.base_url = base_url or CLOUDFLARE_API_URL
        self.timeout = timeout

    def _get(self, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {
            'Content-Type': 'application/json',
            'Authorization': f'Bearer {self.api_token}',
        }

        try:
            logger.debug("Querying Cloudflare API: %s", url)
            response = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise CloudflareAPIError(f"Failed to communicate with Cloudflare API: {e}")

        if response.status_code in (401, 403):
            raise CloudflareCredentialsRejected(
                f"Cloudflare API rejected the token (HTTP {response.status_code})"
            )

        try:
            response.raise_for_status()
            result = response.json()
        except requests.RequestException as e:
            raise CloudflareAPIError(f"Cloudflare API request failed: {e}")
        except ValueError as e:
            raise CloudflareAPIError(f"Invalid response from Cloudflare API: {e}")

        return result

    def verify_token(self) -> Dict[str, Any]:
        """
        Verify that the API token is valid and active.

        Returns:
            Dict containing the ``result`` block of the verify call

        Raises:
            CloudflareCredentialsRejected: Token unknown, revoked or inactive
            CloudflareAPIError: API unreachable or malformed response
        """
        body = self._get('/user/tokens/verify')
        result = body.get('result') or {}
        if not body.get('success') or result.get('status') != 'active':
            messages = '; '.join(e.get('message', '') for e in body.get('errors', []))
            raise CloudflareCredentialsRejected(
                f"Cloudflare token is not active: {messages or result.get('status', 'unknown')}"
            )
        logger.info("Cloudflare API token verified")
        return result

    def verify_zone(self, zone_id: str) -> Dict[str, Any]:
        """
        Check that the token can see the given zone.

        Raises:
            CloudflareCredentialsRejected: Token cannot access the zone
            CloudflareAPIError: API unreachable or malformed response
        """
        try:
            body = self._get(f'/zones/{zone_id}')
        except CloudflareCredentialsRejected:
            raise CloudflareCredentialsRejected(f"Cloudflare token has no access to zone {zone_id}")
        if not body.get('success'):
            raise CloudflareCredentialsRejected(f"Cloudflare zone {zone_id} is not accessible")
        zone = body.get('result') or {}
        logger.info("Cloudflare zone %s (%s) accessible", zone_id, zone.get('name', 'unknown'))
        return zone
