"""Webhook-backed generation trigger."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

import httpx

from src.workflows.generation.base import (
    GenerationDispatch,
    GenerationRequest,
    GenerationTrigger,
    GenerationTriggerError,
)


class WebhookGenerationTrigger(GenerationTrigger):
    trigger_name = "webhook"

    def __init__(
        self,
        *,
        webhook_url: str,
        webhook_token: str = "",
        event_name: str = "article.generate.planner",
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._webhook_url = webhook_url.strip()
        self._webhook_token = webhook_token.strip()
        self._event_name = event_name
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._webhook_token:
            headers["Authorization"] = f"Bearer {self._webhook_token}"
        return headers

    def _post(self, body: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self._webhook_url, headers=self._headers(), json=body)
        with httpx.Client(timeout=self._timeout_seconds) as client:
            return client.post(self._webhook_url, headers=self._headers(), json=body)

    def start_generation(self, request: GenerationRequest) -> GenerationDispatch:
        if not self._webhook_url:
            raise GenerationTriggerError("generation_webhook_url_missing")

        body = {"name": self._event_name, "data": asdict(request)}
        try:
            response = self._post(body)
        except httpx.HTTPError as exc:
            raise GenerationTriggerError(f"generation_webhook_unreachable error={exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = response.text.strip()
            if len(detail) > 240:
                detail = detail[:240] + "..."
            raise GenerationTriggerError(f"generation_webhook_failed status={response.status_code} detail={detail}")

        payload: Dict[str, Any] = {}
        if response.content:
            try:
                decoded = response.json()
            except ValueError:
                decoded = None
            if isinstance(decoded, dict):
                payload = decoded

        dispatch_id = payload.get("id") or payload.get("event_id") or payload.get("ids")
        if isinstance(dispatch_id, list):
            dispatch_id = dispatch_id[0] if dispatch_id else None
        return GenerationDispatch(
            trigger=self.trigger_name,
            event_name=self._event_name,
            dispatch_id=str(dispatch_id) if dispatch_id else None,
            payload=payload,
        )
