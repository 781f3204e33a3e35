from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import httpx

from config import Settings, get_settings


logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    pass


class CompletionClient:
    """Chat-completion client shared by every request.

    Wraps one ``httpx.Client`` (thread-safe, connection pooled) configured with
    a bounded timeout. Any transport error, non-2xx status or unexpected
    payload is raised as ``CompletionError``; nothing is retried.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._http = http_client or httpx.Client(
            base_url=self.settings.completion_base_url,
            timeout=self.settings.completion_timeout_secs,
        )

    def complete(self, messages: list[dict[str, str]]) -> str:
        api_key = self.settings.completion_api_key
        if not api_key:
            raise CompletionError("Completion service is not configured")

        payload = {"model": self.settings.completion_model, "messages": messages}
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        try:
            resp = self._http.post("/chat/completions", json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                f"completion_failed: status={exc.response.status_code} "
                f"model={self.settings.completion_model}"
            )
            raise CompletionError(
                f"Completion service returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"completion_failed: error={type(exc).__name__}")
            raise CompletionError("Failed to reach completion service") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise CompletionError("Unexpected completion service response") from exc
        if not isinstance(content, str):
            raise CompletionError("Unexpected completion service response")
        return content

    def ask(self, system_prompt: str, user_message: str) -> str:
        return self.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ]
        )

    def close(self) -> None:
        self._http.close()


@lru_cache(maxsize=1)
def get_completion_client() -> CompletionClient:
    return CompletionClient()
