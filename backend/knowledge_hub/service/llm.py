
import json
import logging
from typing import AsyncIterator, Optional

import httpx
import google.generativeai as genai

from knowledge_hub.core.exceptions import GenerationFailure

logger = logging.getLogger(__name__)


class OllamaGenerator:
    """Stream câu trả lời từ Ollama (/api/chat, NDJSON)"""

    def __init__(self, base_url: str, model: str, timeout: float = 120.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    async def stream(self, prompt: str, system_instruction: Optional[str] = None, temperature: float = 0.3) -> AsyncIterator[str]:
        """Generator trả về từng đoạn text"""
        url = f"{self.base_url}/api/chat"
        payload = {
            "model": self.model,
            "messages": self._build_messages(prompt, system_instruction),
            "stream": True, # ENABLE STREAM
            "options": {
                "temperature": temperature,
                "top_p": 0.9,
                "repeat_penalty": 1.2,
            }
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                async with client.stream("POST", url, json=payload) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line:
                            continue
                        try:
                            json_chunk = json.loads(line)
                        except json.JSONDecodeError:
                            logger.warning("Skipping malformed Ollama line: %r", line[:200])
                            continue
                        if json_chunk.get("error"):
                            raise GenerationFailure(f"Ollama error: {json_chunk['error']}")
                        msg_content = json_chunk.get("message", {}).get("content", "")
                        if msg_content:
                            yield msg_content
                        if json_chunk.get("done", False):
                            break
            except httpx.HTTPError as e:
                raise GenerationFailure(f"Ollama stream failed: {e}") from e

    def _build_messages(self, prompt, system_instruction):
        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})
        return messages


class GeminiGenerator:
    """Stream câu trả lời từ Gemini (google-generativeai)"""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        if api_key:
            genai.configure(api_key=api_key)
        self.model = model

    async def stream(self, prompt: str, system_instruction: Optional[str] = None, temperature: float = 0.3) -> AsyncIterator[str]:
        model = genai.GenerativeModel(self.model, system_instruction=system_instruction)
        try:
            response = await model.generate_content_async(
                prompt,
                generation_config={"temperature": temperature},
                stream=True,
            )
            async for chunk in response:
                # chunk bị chặn (safety) không có parts -> bỏ qua
                if not chunk.parts:
                    continue
                if chunk.text:
                    yield chunk.text
        except GenerationFailure:
            raise
        except Exception as e:
            raise GenerationFailure(f"Gemini stream failed: {e}") from e


def build_generator(settings):
    if settings.GENERATION_PROVIDER == "ollama":
        return OllamaGenerator(settings.OLLAMA_BASE_URL, settings.LOCAL_MODEL_NAME, timeout=settings.OLLAMA_TIMEOUT)
    if settings.GENERATION_PROVIDER == "gemini":
        return GeminiGenerator(settings.GOOGLE_API_KEY, settings.GENERATION_MODEL)
    raise ValueError(f"Unsupported GENERATION_PROVIDER: {settings.GENERATION_PROVIDER}")
