"""
Language Model Client — embeddings, classification and text generation.

Wraps the two external model services the engine depends on:
- an Ollama-compatible embedding endpoint (``POST {embed_url}``)
- an OpenAI-compatible chat completion endpoint

Used by:
- GuidelineMatcher: embed() for the query vector, classify() for fuzzy checks
- TurnOrchestrator: slot extraction, proactive extraction, reply, summary
- Embedding job: embed() for guideline titles
"""
from __future__ import annotations

import json
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from config.settings import LLMConfig, get_settings
from models.schemas import Facts

logger = structlog.get_logger()


MAX_TOOL_ROUNDS = 5  # model ↔ tool round trips per reply


def _configured(value: str) -> str:
    """Treat unresolved ${VAR} placeholders as unset."""
    return "" if not value or value.startswith("${") else value


def _safe_json(raw: Optional[str]) -> dict[str, Any]:
    try:
        value = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


class LanguageModelClient:
    """
    Thin async client over the embedding and chat-completion services.
    Retries live here, never in the matcher or planner.
    """

    def __init__(self, config: LLMConfig = None, http_client: httpx.AsyncClient = None):
        self.config = config or get_settings().llm
        self._http = http_client
        self._client = None

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=self.config.embed_timeout)
        return self._http

    async def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                base_url=_configured(self.config.base_url) or None,
                api_key=_configured(self.config.api_key) or "not-set",
            )
            logger.info("llm_client_initialized", provider=self.config.provider,
                        model=self.config.model)
        return self._client

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()

    # ── Embeddings ────────────────────────────────────────────

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, max=10), reraise=True)
    async def embed(self, text: str) -> list[float]:
        """Embed a single text; returns one vector."""
        client = await self._get_http()
        response = await client.post(
            self.config.embed_url,
            json={"model": self.config.embed_model, "input": text},
        )
        response.raise_for_status()
        data = response.json()
        return [float(x) for x in data["embeddings"][0]]

    # ── Chat completion ───────────────────────────────────────

    async def complete(
        self,
        messages: list[dict[str, str]],
        max_tokens: int = None,
        temperature: float = None,
        json_mode: bool = False,
    ) -> str:
        """Single chat completion; returns the stripped text."""
        client = await self._get_client()
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await client.chat.completions.create(
            model=self.config.model,
            messages=messages,
            max_tokens=max_tokens or self.config.max_tokens,
            temperature=temperature if temperature is not None else self.config.temperature,
            **kwargs,
        )
        return (response.choices[0].message.content or "").strip()

    async def complete_with_tools(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        tools_executor: Callable[[str, dict[str, Any]], Awaitable[Any]],
    ) -> str:
        """
        Chat completion that lets the model call tools until it answers in text.
        Tool errors are fed back to the model as results instead of raising.
        """
        client = await self._get_client()
        msgs = list(messages)

        for _ in range(MAX_TOOL_ROUNDS):
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=msgs,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                tools=tools,
                tool_choice="auto",
            )
            msg = response.choices[0].message
            tool_calls = msg.tool_calls or []
            if not tool_calls:
                return (msg.content or "").strip()

            msgs.append(msg.model_dump(exclude_none=True))
            for call in tool_calls:
                args = _safe_json(call.function.arguments)
                try:
                    result = await tools_executor(call.function.name, args)
                except Exception as e:
                    logger.warning("model_tool_call_failed", tool=call.function.name, error=str(e))
                    result = {"error": str(e), "args": args}
                msgs.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result, default=str),
                })

        logger.warning("tool_rounds_exhausted", rounds=MAX_TOOL_ROUNDS)
        return ""

    async def classify(self, prompt: str) -> str:
        """Deterministic yes/no style call; the caller interprets the literal text."""
        return await self.complete([{"role": "user", "content": prompt}], temperature=0)

    # ── Extraction helpers for the orchestrator ───────────────

    async def extract_slot_value(self, message: str, facts: Facts) -> str:
        """Extract the answer to the pending question from the user's message."""
        prompt = (
            f'Extract the user\'s response for the question "{facts.last_system_question}" '
            f'about "{facts.waiting_for}".\n'
            f'User message: "{message}"\n\n'
            "Instructions:\n"
            "- If asking about professional type, extract one of: psychology, coaching, nutrition, other\n"
            "- If asking about location, extract the city name\n"
            "- If asking about preferences, extract the specific preference\n"
            "- Return ONLY the extracted value, nothing else\n"
            '- If unclear, return "other"\n\n'
            "Response:"
        )
        response = await self.complete([{"role": "user", "content": prompt}])
        return response.strip().lower()

    async def extract_information(self, message: str, facts: Facts) -> Optional[dict[str, Any]]:
        """
        Pull clearly stated slot values out of a free-form message.
        Returns None when nothing usable was extracted or the answer is not JSON.
        """
        prompt = (
            "Analyze this user message and extract any obvious information about their needs.\n"
            f"Current facts information: {json.dumps(facts.information_retrieved)}\n"
            f'User message: "{message}"\n\n'
            "Extract information for these fields if clearly mentioned:\n"
            "- professionalType: psychology, coaching, nutrition, other\n"
            "- location: city name if mentioned\n"
            "- budget: if mentioned\n"
            "- sessionType: online, offline, either\n\n"
            "Rules:\n"
            "- Only extract if CLEARLY stated or strongly implied\n"
            '- Return JSON format or "null" if nothing obvious\n'
            "- Be conservative - if unsure, don't extract\n\n"
            "Response:"
        )
        try:
            response = await self.complete([{"role": "user", "content": prompt}], json_mode=True)
            extracted = json.loads(response)
        except json.JSONDecodeError as e:
            logger.warning("information_extraction_unparseable", error=str(e))
            return None
        if not isinstance(extracted, dict):
            return None
        filtered = {k: v for k, v in extracted.items() if v is not None}
        return filtered or None

    async def summarize(self, prev_summary: str, last_user_message: str, last_assistant_message: str) -> str:
        prompt = (
            "Summarize the conversation in <= 2 sentences in English. Keep only stable facts, "
            "the user's intent and the current status.\n"
            f'Previous summary: "{prev_summary}"\n'
            "Latest exchange:\n"
            f'user: "{last_user_message}"\n'
            f'assistant: "{last_assistant_message}"\n'
            "Output ONLY the new summary:"
        )
        return await self.complete([{"role": "user", "content": prompt}])
