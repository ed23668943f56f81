"""Answer generation through OpenAI chat completions."""

import logging
import time
from typing import TYPE_CHECKING, Protocol, Sequence

from lab_assistant.knowledge.errors import GenerationError
from lab_assistant.knowledge.models import ChatTurn, RetrievalResult
from lab_assistant.observability import MetricsBackend, get_metrics_backend

if TYPE_CHECKING:
    from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

PLAIN_SYSTEM_PROMPT = """You are a knowledgeable lab assistant helping users with questions about \
databases, application development and the hands-on lab modules they are working through.

Guidelines:
- Answer the question directly and accurately
- Include short code examples when they help
- Say so plainly when you are not sure about something
- Keep answers focused and well structured"""

RAG_SYSTEM_PROMPT_TEMPLATE = """You are a knowledgeable lab assistant helping users with questions about \
databases, application development and the hands-on lab modules they are working through.

Use the following information to answer the user's question:

{context}

Guidelines:
- Answer the question directly and accurately
- Prefer the details above over general knowledge when they apply
- Include short code examples when they help
- Say so plainly when the information does not cover the question"""


class GenerationService(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        history: Sequence[ChatTurn] = (),
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        ...


def build_context(results: Sequence[RetrievalResult]) -> str:
    """Join retrieved chunks into ``From "<title>":`` blocks."""
    return "\n\n".join(
        f'From "{result.title}":\n{result.chunk.content}' for result in results
    )


def build_rag_system_prompt(context: str) -> str:
    return RAG_SYSTEM_PROMPT_TEMPLATE.format(context=context)


class GenerationClient:
    """Chat-completions client. Errors surface as GenerationError."""

    def __init__(
        self,
        client: "AsyncOpenAI",
        model: str = "gpt-4o-mini",
        metrics: MetricsBackend | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.metrics = metrics or get_metrics_backend()

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        history: Sequence[ChatTurn] = (),
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        for turn in history:
            messages.append({"role": turn.role, "content": turn.content})
        messages.append({"role": "user", "content": user_message})

        start_time = time.perf_counter()
        status_code = 500
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            status_code = 200
        except Exception as e:
            status_code = getattr(e, "status_code", None) or 500
            raise GenerationError(f"Generation failed: {e}") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.observe_external_api("openai", "chat.completions", status_code, duration_ms)
            logger.info(
                "OpenAI API chat.completions status=%s duration_ms=%.2f",
                status_code,
                duration_ms,
            )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationError("Generation returned an empty response")
        return content
