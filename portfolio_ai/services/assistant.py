"""Chat assembler: retrieval, prompt building, model call, templated fallbacks."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Sequence

from pydantic import BaseModel, Field

from portfolio_ai.core.ai_constants import (
    CATEGORY_RESPONSE_TEMPLATES,
    CONVERSATION_HISTORY_WINDOW,
    ERROR_MESSAGE,
    GENERIC_RESPONSE,
    GREETING_RESPONSE,
    SOURCE_PREVIEW_CHARS,
    SYSTEM_PROMPT_TEMPLATE,
    USER_PROMPT_TEMPLATE,
)
from portfolio_ai.knowledge.config import FallbackWeights
from portfolio_ai.knowledge.exceptions import KnowledgeStoreUnavailable
from portfolio_ai.knowledge.intent import classify
from portfolio_ai.knowledge.models import KnowledgeFragment, RetrievalOptions, RetrievalResult
from portfolio_ai.knowledge.retriever import SmartRetriever
from portfolio_ai.knowledge.scoring import fallback_search
from portfolio_ai.services.llm import LanguageModel

logger = logging.getLogger(__name__)

_GREETING = re.compile(r"\b(hello|hi|hey)\b")

STORE_UNAVAILABLE_METHOD = "fallback_store_unavailable"


class ChatMessage(BaseModel):
    """One previous turn of the conversation."""

    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=5000)


@dataclass
class ChatAnswer:
    response: str
    sources: list[dict[str, Any]] = field(default_factory=list)
    retrieval_method: str = "vector_search"
    used_template: bool = False


class ChatAssembler:
    """Answers chat messages about the site owner.

    The retriever supplies context. When the knowledge store is down, the
    bundled static corpus is scored instead. When the language model is
    missing or fails, the answer falls back to a template keyed by the top
    fragment's category.
    """

    def __init__(
        self,
        retriever: SmartRetriever,
        language_model: LanguageModel | None = None,
        fallback_fragments: Sequence[KnowledgeFragment] = (),
        options: RetrievalOptions | None = None,
        owner_name: str = "Mai Trọng Nhân",
        owner_short_name: str = "Mai",
        fallback_weights: FallbackWeights | None = None,
    ) -> None:
        self.retriever = retriever
        self.language_model = language_model
        self.fallback_fragments = list(fallback_fragments)
        self.options = options or RetrievalOptions()
        self.owner_name = owner_name
        self.owner_short_name = owner_short_name
        self.fallback_weights = fallback_weights or FallbackWeights()

    async def retrieve(self, message: str) -> tuple[list[RetrievalResult], str]:
        """Return results and a retrieval-method label for the response."""
        try:
            report = await self.retriever.retrieve_with_report(message, self.options)
        except KnowledgeStoreUnavailable as e:
            logger.error("Knowledge store unavailable, using static fallback knowledge: %s", e)
            results = fallback_search(
                self.fallback_fragments,
                message,
                self.options.k,
                intent=classify(message),
                weights=self.fallback_weights,
            )
            return [r for r in results if r.score >= self.options.threshold], STORE_UNAVAILABLE_METHOD

        if report.degraded:
            method = f"fallback_{report.degradation_reason}"
        else:
            method = "vector_search"
        return report.results, method

    def build_system_prompt(
        self,
        results: Sequence[RetrievalResult],
        history: Sequence[ChatMessage] = (),
    ) -> str:
        knowledge = "\n\n".join(f"[{i}] {r.content}" for i, r in enumerate(results, 1))
        recent = list(history)[-CONVERSATION_HISTORY_WINDOW:]
        history_text = "\n".join(f"{m.role}: {m.content}" for m in recent)
        return SYSTEM_PROMPT_TEMPLATE.format(
            owner_name=self.owner_name,
            owner_short_name=self.owner_short_name,
            knowledge=knowledge,
            history=history_text,
        )

    def template_response(self, message: str, results: Sequence[RetrievalResult]) -> str:
        """Canned answer used when the model is not available."""
        names = {"owner_name": self.owner_name, "owner_short_name": self.owner_short_name}

        if results:
            top = results[0]
            template = CATEGORY_RESPONSE_TEMPLATES.get(top.category.value)
            if template is None:
                return top.content
            return template.format(content=top.content, **names)

        if _GREETING.search(message.lower()):
            return GREETING_RESPONSE.format(**names)
        return GENERIC_RESPONSE.format(**names)

    def _sources(self, results: Sequence[RetrievalResult]) -> list[dict[str, Any]]:
        return [r.to_source(SOURCE_PREVIEW_CHARS) for r in results]

    async def answer(
        self,
        message: str,
        history: Sequence[ChatMessage] = (),
    ) -> ChatAnswer:
        """Answer one message.

        Raises:
            InvalidQueryError: If the message is empty.
        """
        results, method = await self.retrieve(message)
        sources = self._sources(results)

        if not results or self.language_model is None:
            return ChatAnswer(
                response=self.template_response(message, results),
                sources=sources,
                retrieval_method=method,
                used_template=True,
            )

        try:
            text = await self.language_model.generate(
                self.build_system_prompt(results, history),
                USER_PROMPT_TEMPLATE.format(message=message),
            )
        except Exception as e:
            logger.warning("Language model call failed, using template: %s", e)
            text = ""

        if not text or not text.strip():
            return ChatAnswer(
                response=self.template_response(message, results),
                sources=sources,
                retrieval_method=method,
                used_template=True,
            )

        return ChatAnswer(response=text.strip(), sources=sources, retrieval_method=method)

    async def stream_answer(
        self,
        message: str,
        history: Sequence[ChatMessage] = (),
        word_delay_seconds: float = 0.0,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield ``chunk`` events, then ``sources`` and ``done``.

        Any failure ends the stream with a single ``error`` event.
        """
        try:
            results, method = await self.retrieve(message)

            emitted = False
            if results and self.language_model is not None:
                try:
                    async for text in self.language_model.stream(
                        self.build_system_prompt(results, history),
                        USER_PROMPT_TEMPLATE.format(message=message),
                    ):
                        emitted = True
                        yield {"type": "chunk", "content": text}
                except Exception as e:
                    logger.warning("Language model stream failed (emitted=%s): %s", emitted, e)

            if not emitted:
                for word in self.template_response(message, results).split(" "):
                    yield {"type": "chunk", "content": word + " "}
                    if word_delay_seconds:
                        await asyncio.sleep(word_delay_seconds)

            yield {"type": "sources", "sources": self._sources(results), "retrieval_method": method}
            yield {"type": "done"}
        except Exception:
            logger.exception("Error in streaming chat")
            yield {"type": "error", "error": ERROR_MESSAGE}
