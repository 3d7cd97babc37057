"""OpenAI chat adapter and the offline heuristic fallback."""

from __future__ import annotations

import logging
import os
import re
from typing import Any

from agentflow.core.config import RuntimeSettings
from agentflow.core.errors import ModelError
from agentflow.llm.base import ModelClient
from agentflow.observability.opik_client import track_openai_client
from agentflow.runtime.interceptors import ModelRequest, ModelResponse, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIChatModel(ModelClient):
    """Chat completions through the ``openai`` SDK."""

    name = "openai"

    def __init__(
        self, model: str | None = None, api_key: str | None = None, client: Any = None
    ) -> None:
        self.model = model or os.getenv("AGENTFLOW_MODEL") or DEFAULT_MODEL
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            api_key = self._api_key or os.getenv("OPENAI_API_KEY")
            self._client = track_openai_client(OpenAI(api_key=api_key))
        return self._client

    def complete(self, request: ModelRequest) -> ModelResponse:
        model = request.model or self.model
        messages = [
            {"role": str(message.get("role", "user")), "content": str(message.get("content", ""))}
            for message in request.messages
        ]
        try:
            completion = self._get_client().chat.completions.create(
                model=model, messages=messages
            )
            content = completion.choices[0].message.content or ""
        except Exception as exc:
            logger.warning("OpenAI completion failed for model %s: %s", model, exc)
            raise ModelError(f"OpenAI completion failed: {exc}") from exc

        usage = getattr(completion, "usage", None)
        token_usage = TokenUsage(
            input_tokens=int(getattr(usage, "prompt_tokens", 0) or 0),
            output_tokens=int(getattr(usage, "completion_tokens", 0) or 0),
        )
        return ModelResponse(text=content, usage=token_usage, model=model)


_TECHNICAL_HINTS = (
    "api", "code", "bug", "database", "deploy", "server", "python", "java",
    "algorithm", "performance", "architecture", "技术", "代码", "系统",
)
_BUSINESS_HINTS = (
    "revenue", "market", "sales", "customer", "pricing", "budget", "strategy",
    "profit", "业务", "市场", "销售", "客户",
)
_COMPLEX_HINTS = (
    "architecture", "distributed", "migration", "security", "integration",
    "microservice", "scalab", "compliance", "架构", "分布式",
)
_PLAN_MARKER = "expert|task"


def _count_hints(text: str, hints: tuple[str, ...]) -> int:
    return sum(1 for hint in hints if hint in text)


def heuristic_classification(text: str) -> dict[str, str]:
    """Keyword classification used when no language model is available."""
    lowered = text.lower()
    technical = _count_hints(lowered, _TECHNICAL_HINTS)
    business = _count_hints(lowered, _BUSINESS_HINTS)
    if technical > business:
        category = "technical"
    elif business > technical:
        category = "business"
    else:
        category = "general"

    complex_hits = _count_hints(lowered, _COMPLEX_HINTS)
    if complex_hits >= 2 or len(text) > 400:
        requirement_type, complexity = "complex", "high"
    elif complex_hits == 1 or len(text) > 150:
        requirement_type, complexity = "medium", "medium"
    else:
        requirement_type, complexity = "simple", "low"
    return {"type": requirement_type, "complexity": complexity, "category": category}


def heuristic_plan(text: str) -> list[tuple[str, str]]:
    """Split a request into ``(expert, task)`` pairs by sentence."""
    sentences = [part.strip() for part in re.split(r"[.;\n。；]+", text) if part.strip()]
    plan: list[tuple[str, str]] = []
    for sentence in sentences[:5]:
        category = heuristic_classification(sentence)["category"]
        expert = {"technical": "tech_expert", "business": "business_expert"}.get(
            category, "general_expert"
        )
        plan.append((expert, sentence))
    return plan


class HeuristicModel(ModelClient):
    """Deterministic offline model.

    Answers classification prompts (those mentioning ``category:``) and
    planning prompts (those mentioning ``expert|task``) with parseable output;
    anything else gets a short templated reply.
    """

    name = "heuristic"

    def complete(self, request: ModelRequest) -> ModelResponse:
        prompt = request.last_user_message() or ""
        instructions = " ".join(
            str(message.get("content", ""))
            for message in request.messages
            if message.get("role") == "system"
        )
        cue = f"{instructions}\n{prompt}"
        subject = prompt.split("\n\n", 1)[-1].strip()

        if _PLAN_MARKER in cue:
            plan = heuristic_plan(subject) or [("general_expert", subject)]
            text = "\n".join(f"{expert}|{task}" for expert, task in plan)
        elif "category:" in cue.lower():
            labels = heuristic_classification(subject)
            text = "\n".join(f"{key}: {value}" for key, value in labels.items())
        else:
            agent = request.agent_name or "assistant"
            text = f"[{agent}] {subject[:400]}" if subject else f"[{agent}] (empty request)"

        input_chars = sum(len(str(message.get("content", ""))) for message in request.messages)
        usage = TokenUsage(input_tokens=input_chars // 4, output_tokens=len(text) // 4)
        return ModelResponse(text=text, usage=usage, model=self.name)


def create_model_client(settings: RuntimeSettings) -> ModelClient:
    """Pick the OpenAI adapter when a key is configured, the heuristic model otherwise."""
    if settings.no_llm:
        logger.info("AGENTFLOW_NO_LLM set; using heuristic model")
        return HeuristicModel()
    if not os.getenv("OPENAI_API_KEY"):
        logger.info("OPENAI_API_KEY not configured; using heuristic model")
        return HeuristicModel()
    return OpenAIChatModel(model=settings.model)
