"""
Local LM capability over an OpenAI-compatible server (Ollama, llama.cpp
server, LM Studio).

Design notes:
- One client per loaded model; "loading" verifies the model is served.
- Completions are streamed so the cancellation token is checked at every
  token boundary; the stream is closed as soon as cancellation is seen.
- Adapter is responsible ONLY for talking to the server.
- Adapter does NOT retry, time, or decide orchestration outcomes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import openai
from openai import OpenAI

from adapters.llm.base import LMCapability
from errors import GenerationError, LoadError
from refinement.cancellation import CancellationToken
from refinement.prompts import Prompt


@dataclass(frozen=True)
class LocalLMHandle:
    client: OpenAI
    model: str


class LocalLM(LMCapability):
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "local",
        timeout_s: float = 60.0,
        temperature: float = 0.1,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._timeout_s = timeout_s
        self._temperature = temperature

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------

    def load_model(self, path: str) -> LocalLMHandle:
        """path is the model name as known to the server (e.g. "llama3.2:3b")."""
        if not path:
            raise LoadError("no language model configured")
        client = OpenAI(base_url=self._base_url, api_key=self._api_key, timeout=self._timeout_s)
        try:
            client.models.retrieve(path)
        except openai.NotFoundError as e:
            client.close()
            raise LoadError(f"model {path!r} is not available on {self._base_url}") from e
        except openai.APIError as e:
            client.close()
            raise LoadError(f"cannot reach LM server at {self._base_url}: {e}") from e
        return LocalLMHandle(client=client, model=path)

    def unload_model(self, handle: Any) -> None:
        handle.client.close()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        handle: Any,
        prompt: Prompt,
        token: CancellationToken,
        *,
        max_tokens: int,
    ) -> str:
        token.raise_if_cancelled()
        parts: list[str] = []
        try:
            stream = handle.client.chat.completions.create(
                model=handle.model,
                messages=prompt.as_messages(),
                max_tokens=max_tokens,
                temperature=self._temperature,
                stream=True,
            )
            try:
                for chunk in stream:
                    token.raise_if_cancelled()
                    delta = self._extract_delta(chunk)
                    if delta:
                        parts.append(delta)
            finally:
                stream.close()
        except openai.APIError as e:
            raise GenerationError(f"{type(e).__name__}: {e}") from e

        return "".join(parts)

    @staticmethod
    def _extract_delta(chunk: Any) -> str:
        if not chunk.choices:
            return ""
        return chunk.choices[0].delta.content or ""
