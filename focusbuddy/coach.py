from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)

FALLBACK_QUOTE = "The secret to getting ahead is getting started."
FALLBACK_CHAT = "Sorry, I couldn't reach the study buddy service. Please try again in a moment."
FALLBACK_DISTRACTION = "Let's refocus. You've got this."


class CoachClient:
    """
    Client for the hosted text-generation service.

    Every call is a single attempt. Failures are logged and replaced by a
    fixed fallback so the session keeps going.
    """

    def __init__(self, base_url: str | None, token: str | None = None, timeout_seconds: float = 20.0):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.token = token
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.base_url:
            raise requests.ConnectionError("No coach base URL configured")
        r = requests.post(
            f"{self.base_url}{path}",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout_seconds,
        )
        r.raise_for_status()
        return r.json()

    def motivational_quote(self) -> str:
        try:
            text = str(self._post("/quote", {}).get("text", "")).strip()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Quote request failed: %s", e)
            return FALLBACK_QUOTE
        return text or FALLBACK_QUOTE

    def chat(self, history: list[dict[str, Any]], message: str) -> str:
        try:
            text = str(self._post("/chat", {"history": history, "message": message}).get("text", "")).strip()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Chat request failed: %s", e)
            return FALLBACK_CHAT
        return text or FALLBACK_CHAT

    def prioritize(self, tasks: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Returns the tasks reordered by the service, or unchanged on failure."""
        try:
            ordered = self._post("/prioritize", {"tasks": tasks}).get("tasks")
        except (requests.RequestException, ValueError) as e:
            logger.warning("Prioritize request failed: %s", e)
            return list(tasks)
        if not isinstance(ordered, list):
            return list(tasks)
        return ordered

    def distraction_message(self, fallback: str = FALLBACK_DISTRACTION) -> str:
        """Short refocus nudge; `fallback` when the service is unreachable."""
        try:
            text = str(self._post("/distraction-message", {}).get("text", "")).strip()
        except (requests.RequestException, ValueError) as e:
            logger.warning("Distraction message request failed: %s", e)
            return fallback
        return text or fallback
