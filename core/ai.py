"""AI clients — OpenAI JSON generation and Hugging Face image generation."""

from __future__ import annotations

import base64
import json
import logging
import os
from typing import Any

import httpx
from openai import AsyncOpenAI

log = logging.getLogger(__name__)

HF_INFERENCE_URL = "https://api-inference.huggingface.co/models/{model}"

# Image calls routinely take 10-30s
IMAGE_TIMEOUT = httpx.Timeout(connect=5.0, read=90.0, write=10.0, pool=5.0)

BASE_STYLE_PROMPT = " ".join("""
  fantasy art style, high quality digital art, detailed illustration,
  vibrant colors with rich textures, soft magical lighting,
  inspired by classical fairy tale illustrations and modern fantasy games,
  elegant composition with dramatic atmosphere,
  featuring intricate details and whimsical elements,
  professional concept art quality, cinematic wide shot,
  atmospheric lighting with subtle color gradients,
  balanced composition with focus on storytelling,
  perfect for fantasy RPG character illustrations
""".split())


class AIGenerationError(RuntimeError):
    """The model returned nothing usable."""


class AIClient:
    """Thin wrapper over the text and image model APIs."""

    def __init__(self, config: dict[str, Any]) -> None:
        self._config = config
        self.model: str = config.get("model", "gpt-4o-mini")
        self.image_model: str = config.get("image_model", "black-forest-labs/FLUX.1-schnell")
        self.temperature: float = float(config.get("temperature", 0.7))
        self.hf_token: str | None = os.environ.get(
            "HUGGINGFACE_API_TOKEN", config.get("huggingface_token") or None
        )
        self._openai: AsyncOpenAI | None = None
        self._http: httpx.AsyncClient | None = None

    @property
    def openai(self) -> AsyncOpenAI:
        if self._openai is None:
            self._openai = AsyncOpenAI(
                api_key=os.environ.get("OPENAI_API_KEY", self._config.get("openai_api_key")),
            )
        return self._openai

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=IMAGE_TIMEOUT)
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._openai is not None:
            await self._openai.close()
            self._openai = None

    async def generate_json(self, prompt: str) -> dict[str, Any]:
        """Ask the chat model for a single JSON object."""
        response = await self.openai.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise AIGenerationError("Empty completion")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise AIGenerationError("Completion is not valid JSON") from exc
        if not isinstance(data, dict):
            raise AIGenerationError("Completion is not a JSON object")
        return data

    async def generate_text(self, prompt: str) -> str | None:
        response = await self.openai.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
        )
        content = response.choices[0].message.content if response.choices else None
        return content.strip() if content else None

    async def generate_image(self, prompt: str | None) -> str | None:
        """Render a prompt to a PNG data URI. Returns None on any failure."""
        if not prompt or not self.hf_token:
            return None
        enhanced = f"Depict {prompt}, Style: {BASE_STYLE_PROMPT}"
        try:
            resp = await self.http.post(
                HF_INFERENCE_URL.format(model=self.image_model),
                headers={"Authorization": f"Bearer {self.hf_token}"},
                json={"inputs": enhanced},
            )
            resp.raise_for_status()
        except httpx.HTTPError:
            log.exception("Image generation failed")
            return None
        encoded = base64.b64encode(resp.content).decode("ascii")
        return f"data:image/png;base64,{encoded}"
