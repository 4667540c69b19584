"""
LLM completion client using Google Generative AI (Gemini).
Constructed once at startup with LLM_API_KEY and handed to the services
that need it. The SDK is synchronous, so calls run in the default executor.
"""
import asyncio
import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_MAX_TOKENS = 4096


class LLMClient:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key if api_key is not None else os.environ.get("LLM_API_KEY")
        self.model = model or os.environ.get("LLM_MODEL", DEFAULT_MODEL)

    def _sync_generate(
        self,
        system_prompt: str,
        user_text: str,
        model: str,
        max_tokens: int,
        temperature: float,
        json_output: bool,
    ) -> str:
        import google.generativeai as genai
        if not self.api_key:
            raise ValueError("LLM_API_KEY not found in environment")
        genai.configure(api_key=self.api_key)
        model_name = model if model and "gemini" in model else DEFAULT_MODEL
        generation_config = {
            "max_output_tokens": max_tokens,
            "temperature": temperature,
        }
        if json_output:
            generation_config["response_mime_type"] = "application/json"
        gemini = genai.GenerativeModel(
            model_name,
            system_instruction=system_prompt,
            generation_config=generation_config,
        )
        response = gemini.generate_content(user_text)
        if not response or not response.text:
            raise ValueError("Empty response from LLM")
        return response.text

    async def generate(
        self,
        system_prompt: str,
        user_text: str,
        model: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.2,
        json_output: bool = False,
    ) -> str:
        """Async completion. Runs sync SDK in thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self._sync_generate(
                system_prompt, user_text, model or self.model, max_tokens, temperature, json_output
            ),
        )
