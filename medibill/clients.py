"""Async HTTP client for the billing API and the EMR/pharmacy collaborators."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from medibill.config import BillingSettings
from medibill.errors import PaymentProcessingError

LOGGER = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ValueError)


def unwrap_collection(payload: Any) -> List[Dict[str, Any]]:
    """Accept ``[...]``, ``{"data": [...]}`` or ``{"success": true, "data": [...]}``."""
    if isinstance(payload, Mapping):
        if payload.get("success") is False:
            return []
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []
    return [row for row in payload if isinstance(row, dict)]


def unwrap_object(payload: Any) -> Dict[str, Any]:
    """Accept a bare object or one wrapped as ``{"data": {...}}``."""
    if not isinstance(payload, Mapping):
        return {}
    inner = payload.get("data")
    if isinstance(inner, Mapping):
        return dict(inner)
    return dict(payload)


class BillingApiClient:
    """Thin wrapper over :class:`aiohttp.ClientSession`.

    Read methods never raise: transport failures are logged and resolve to an
    empty list. Only :meth:`create_payment` reports failure to the caller.
    """

    def __init__(self, settings: BillingSettings, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.settings = settings
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "BillingApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout, raise_for_status=True)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        async with self._get_session().request(method, url, **kwargs) as response:
            return await response.json(content_type=None)

    async def _collection(self, url: Optional[str], params: Optional[Dict[str, str]] = None) -> Optional[List[Dict[str, Any]]]:
        """Rows at ``url``, or ``None`` when the request failed."""
        if not url:
            return None
        try:
            payload = await self._request("GET", url, params=params)
        except TRANSPORT_ERRORS as exc:
            LOGGER.warning("GET %s failed: %s", url, exc)
            return None
        return unwrap_collection(payload)

    def _api(self, path: str) -> Optional[str]:
        base = self.settings.api_base_url
        return f"{base}{path}" if base else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def fetch_invoices(self) -> List[Dict[str, Any]]:
        """Invoices, pharmacy sales and appointments from the combined endpoint, else plain invoices."""
        rows = await self._collection(self._api("/invoices/combined"))
        if rows is None:
            rows = await self._collection(self._api("/invoices"))
        return rows or []

    async def fetch_payments(self) -> List[Dict[str, Any]]:
        return await self._collection(self._api("/payments")) or []

    async def fetch_patients(self) -> List[Dict[str, Any]]:
        return await self._collection(self._api("/patients")) or []

    async def fetch_emr_appointments(self, patient_id: Optional[str] = None) -> List[Dict[str, Any]]:
        base = self.settings.emr_base_url
        if not base:
            LOGGER.debug("EMR base URL not configured")
            return []
        params = {"patientId": patient_id} if patient_id else None
        return await self._collection(f"{base}/appointments", params) or []

    async def fetch_pharmacy_sales(self, patient_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Pharmacy sales from the billing API, falling back to the pharmacy transactions feed."""
        params = {"patientId": patient_id} if patient_id else None
        rows = await self._collection(self._api("/pharmacy/sales"), params)
        if rows:
            return rows
        base = self.settings.pharmacy_base_url
        if not base:
            return []
        return await self._collection(f"{base}/transactions", params) or []

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def create_payment(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        errors = []
        for path in ("/payments", "/billing/payments"):
            url = self._api(path)
            if not url:
                break
            try:
                return unwrap_object(await self._request("POST", url, json=dict(payload)))
            except TRANSPORT_ERRORS as exc:
                LOGGER.warning("POST %s failed: %s", url, exc)
                errors.append(f"{path}: {exc}")
        raise PaymentProcessingError(
            "Failed to create payment" + (f" ({'; '.join(errors)})" if errors else ": API not configured")
        )

    async def update_invoice_status(self, invoice_id: str, status: str = "paid") -> bool:
        """PUT the new status, retrying as PATCH. Failure is logged and reported as ``False``."""
        url = self._api(f"/invoices/{invoice_id}")
        if not url or not invoice_id:
            return False
        for method in ("PUT", "PATCH"):
            try:
                await self._request(method, url, json={"status": status})
                return True
            except TRANSPORT_ERRORS as exc:
                LOGGER.warning("%s %s failed: %s", method, url, exc)
        return False


__all__ = ["BillingApiClient", "unwrap_collection", "unwrap_object", "TRANSPORT_ERRORS"]
