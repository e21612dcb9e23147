"""
Receipt minting client.

The kiosk holds no signing keys: receipts are minted by a separate service
that owns the hot wallet. This client posts the merchant and payer to that
service and reports the outcome; it never raises for a rejected mint.
"""

import time
from typing import Optional

import httpx

from core.exceptions import ConfigurationError
from core.value_objects import MintResult
from infrastructure.settings import MintingSettings
from loggers import logger


class HttpReceiptMinter:
    """
    ReceiptMinter backed by an HTTP minting service.

    Request:
        POST <service_url>
        Authorization: Bearer <api_key>
        {"merchant": "0x...", "payer": "0x...", "timestamp": 1700000000}

    Response:
        {"success": true, "hash": "0x..."} or {"success": false, "error": "..."}
    """

    def __init__(
        self,
        settings: MintingSettings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._settings = settings
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    async def mint_receipt(self, merchant_address: str, payer_address: str) -> MintResult:
        """
        Request a receipt for a confirmed payment.

        Raises:
            ConfigurationError: If the service URL or API key is missing.
        """
        if not self._settings.service_url:
            raise ConfigurationError("Minting service URL is not set", setting="KIOSK_MINT_URL")
        if not self._settings.api_key:
            raise ConfigurationError("Minting API key is not set", setting="KIOSK_MINT_API_KEY")

        payload = {
            "merchant": merchant_address,
            "payer": payer_address,
            "timestamp": int(time.time()),
        }
        headers = {"Authorization": f"Bearer {self._settings.api_key}"}

        logger.info(f"Minting receipt for {payer_address}")
        try:
            if self._client is not None:
                response = await self._client.post(
                    self._settings.service_url, json=payload, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._settings.timeout_sec) as client:
                    response = await client.post(
                        self._settings.service_url, json=payload, headers=headers
                    )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            return MintResult.failed(f"Minting service error: {e}")
        except ValueError:
            return MintResult.failed("Minting service returned invalid JSON")

        if not isinstance(data, dict) or not data.get("success"):
            error = data.get("error") if isinstance(data, dict) else None
            return MintResult.failed(error or "Minting failed")

        return MintResult.minted(data.get("hash"))
