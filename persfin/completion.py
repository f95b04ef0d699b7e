"""Client for the text-completion backend (OpenAI-compatible chat API)."""
from __future__ import annotations

import logging
from typing import List, Optional

import requests

from .errors import RateLimited, ServiceUnavailable

logger = logging.getLogger(__name__)


class CompletionClient:
    def __init__(self, url: str, api_key: Optional[str], model: str, timeout: float = 10,
                 session: Optional[requests.Session] = None):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, system: str, messages: List[dict]) -> str:
        if not self.api_key:
            logger.error("completion backend called without an API key")
            raise ServiceUnavailable()
        try:
            resp = self.session.post(
                self.url,
                json={"model": self.model, "messages": [{"role": "system", "content": system}, *messages]},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("completion backend unreachable: %r", e)
            raise ServiceUnavailable() from e
        if resp.status_code == 429:
            raise RateLimited()
        if not resp.ok:
            logger.error("completion backend error %s: %s", resp.status_code, resp.text[:200])
            raise ServiceUnavailable()
        try:
            return resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error("completion backend returned an unexpected body")
            raise ServiceUnavailable() from e
