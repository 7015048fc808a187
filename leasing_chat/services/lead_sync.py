from __future__ import annotations

import asyncio
import random
from datetime import date
from typing import Mapping, Optional

import logging
import httpx

from leasing_chat.config import LeadSyncSettings
from leasing_chat.errors import LeadSyncError
from leasing_chat.models.crm import LeadSyncPayload, LeadSyncResult
from leasing_chat.services.extractor import normalize_move_in, normalize_tour_date, normalize_tour_time

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 429}


class LeadSyncGateway:
    def __init__(
        self,
        settings: LeadSyncSettings,
        *,
        property_name: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.property_name = property_name
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.url)

    def build_payload(self, fields: Mapping[str, str], today: Optional[date] = None) -> LeadSyncPayload:
        today = today or date.today()
        return LeadSyncPayload(
            first_name=fields.get("first_name", ""),
            last_name=fields.get("last_name", ""),
            phone=fields.get("phone", ""),
            email=fields.get("email", ""),
            property_interest=self.property_name,
            source=self.settings.source,
            company_id=self.settings.company_id,
            message=self.settings.message,
            preferred_date=normalize_tour_date(fields.get("tour_date"), today),
            preferred_time=normalize_tour_time(fields.get("tour_time")),
            move_in_date=normalize_move_in(fields.get("move_in_date"), today),
        )

    async def sync(
        self,
        fields: Mapping[str, str],
        *,
        session_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> LeadSyncResult:
        """Push a lead to the CRM. Never raises; failures come back as ``success=False``."""
        payload = self.build_payload(fields, today)
        if not self.configured:
            logger.info("lead_sync.skipped_unconfigured phone=%s session=%s", _redact(payload.phone), session_id)
            return LeadSyncResult(success=False, attempts=0, error="LEAD_SYNC_URL not set")

        try:
            response, attempts = await self._post_with_retry(payload, session_id)
        except LeadSyncError as exc:
            logger.warning("lead_sync.error phone=%s session=%s err=%s", _redact(payload.phone), session_id, exc)
            return LeadSyncResult(success=False, error=str(exc), attempts=exc.attempts)

        external_id = None
        try:
            data = response.json()
        except ValueError:
            data = {}
        if isinstance(data, dict) and data.get("leadId") is not None:
            external_id = str(data["leadId"])
        logger.info(
            "lead_sync.sent phone=%s session=%s external_id=%s attempts=%s",
            _redact(payload.phone),
            session_id,
            external_id,
            attempts,
        )
        return LeadSyncResult(
            success=True,
            external_id=external_id,
            status_code=response.status_code,
            attempts=attempts,
        )

    async def _post_with_retry(self, payload: LeadSyncPayload, session_id: Optional[str]):
        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        if session_id:
            headers["Idempotency-Key"] = session_id

        body = payload.to_wire()
        last_error: Optional[Exception] = None
        for attempt in range(1, self.settings.max_attempts + 1):
            try:
                response = await self._post(body, headers)
                response.raise_for_status()
                return response, attempt
            except httpx.HTTPStatusError as exc:
                last_error = exc
                status = exc.response.status_code
                if status < 500 and status not in _RETRYABLE_STATUS:
                    raise LeadSyncError(f"CRM rejected lead with HTTP {status}", attempts=attempt) from exc
            except httpx.HTTPError as exc:
                last_error = exc
            if attempt < self.settings.max_attempts:
                delay = random.uniform(0, self.settings.backoff_seconds * (2 ** (attempt - 1)))
                logger.info("lead_sync.retry attempt=%s delay=%.2f err=%s", attempt, delay, last_error)
                await asyncio.sleep(delay)
        raise LeadSyncError(
            f"CRM unreachable after {self.settings.max_attempts} attempts: {last_error}",
            attempts=self.settings.max_attempts,
        )

    async def _post(self, body: dict, headers: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.settings.url, json=body, headers=headers)
        timeout = httpx.Timeout(self.settings.timeout_seconds, connect=5.0)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(self.settings.url, json=body, headers=headers)


def _redact(phone: str) -> str:
    if not phone:
        return ""
    if len(phone) <= 4:
        return "***"
    return f"***{phone[-4:]}"
