from __future__ import annotations

import logging
import time
from typing import Optional

from openai import OpenAI

try:
    from google import genai  # type: ignore
    from google.genai import types as genai_types  # type: ignore
except ImportError:  # pragma: no cover
    genai = None
    genai_types = None  # type: ignore

from ..core.config import Settings, get_settings


class GenerationService:
    """Text generator backed by OpenAI chat completions or Gemini."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        openai_client: Optional[OpenAI] = None,
        system_prompt: Optional[str] = None,
    ):
        self.settings = settings or get_settings()
        self.logger = logging.getLogger("app.services.generation")
        self.provider = (self.settings.llm_provider or "openai").lower()
        self.system_prompt = system_prompt
        self._openai_client: Optional[OpenAI] = openai_client
        self._gemini_client: Optional["genai.Client"] = None  # type: ignore
        if self.provider == "gemini":
            self._init_gemini()

    @property
    def model_name(self) -> str:
        if self.provider == "gemini":
            return self.settings.gemini_model_flash
        return self.settings.openai_model_mini

    def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        start = time.perf_counter()
        if self.provider == "gemini":
            content = self._generate_gemini(prompt, temperature, max_tokens)
        else:
            content = self._generate_openai(prompt, temperature, max_tokens)
        self.logger.info(
            "Completion finished",
            extra={
                "provider": self.provider,
                "model": self.model_name,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return content

    def _client(self) -> OpenAI:
        if self._openai_client is None:
            api_key = self.settings.openai_api_key
            self._openai_client = OpenAI(api_key=api_key) if api_key else OpenAI()
        return self._openai_client

    def _init_gemini(self) -> None:
        if genai is None:  # pragma: no cover
            raise RuntimeError("google-genai is not installed. Run `pip install google-genai`.")
        if not self.settings.google_api_key:
            raise RuntimeError("Missing Google API key for Gemini models.")
        self._gemini_client = genai.Client(api_key=self.settings.google_api_key)

    def _generate_openai(self, prompt: str, temperature: float, max_tokens: int) -> str:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.append({"role": "user", "content": prompt})
        response = self._client().chat.completions.create(
            model=self.model_name,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""

    def _generate_gemini(self, prompt: str, temperature: float, max_tokens: int) -> str:
        if self._gemini_client is None:  # pragma: no cover
            self._init_gemini()
        response = self._gemini_client.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=genai_types.GenerateContentConfig(
                temperature=temperature,
                max_output_tokens=max_tokens,
                system_instruction=self.system_prompt,
            ),
        )
        if getattr(response, "text", None):
            return response.text
        # blocked or empty responses carry no top-level text
        if response.candidates:
            content = response.candidates[0].content
            if content and content.parts:
                return content.parts[0].text or ""
        return ""
