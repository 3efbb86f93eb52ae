"""Research synthesis: one structured LLM call, or a deterministic offline fallback."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, ValidationError

from core import ProviderConfig, ResearchClaim
from utils.exceptions import SchemaError

from .citations import clip
from .llm import BaseLLM, LLMResponse, get_llm


logger = logging.getLogger(__name__)

UsageCallback = Callable[[LLMResponse], Awaitable[None]]
LLMFactory = Callable[..., BaseLLM]

SYSTEM_PROMPT = " ".join(
    [
        "You are a deep research assistant for a fiction writing workflow.",
        "Return valid JSON only.",
        "Every claim MUST include at least one citation entry.",
        "Do not include markdown code fences.",
    ]
)

OUTPUT_SCHEMA = {
    "notes": "string",
    "outline": "string",
    "claims": [
        {
            "claim_ref": "string",
            "text": "string",
            "citations": [
                {
                    "url": "string",
                    "title": "string",
                    "published_at": "string | null",
                    "quote": "string",
                    "claim_ref": "string",
                }
            ],
        }
    ],
    "suggested_changes": "string",
}

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)


class PayloadCitation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    title: str
    quote: str
    claim_ref: str
    published_at: Optional[str] = None


class PayloadClaim(BaseModel):
    model_config = ConfigDict(extra="forbid")

    claim_ref: str
    text: str
    citations: List[PayloadCitation]


class SynthesisPayload(BaseModel):
    """Strict shape of the model's JSON answer, nested objects included."""

    model_config = ConfigDict(extra="forbid")

    notes: str
    outline: str
    claims: List[PayloadClaim]
    suggested_changes: str


@dataclass
class SynthesisResult:
    notes: str
    outline: str
    claims: List[ResearchClaim]
    suggested_changes: str
    mode: str = "llm"


def extract_json_object(raw: str) -> Any:
    """Parse a JSON object, tolerating markdown fences and surrounding prose."""
    text = str(raw or "").strip()
    candidates = [text]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise SchemaError("Could not parse synthesized research JSON from model output.")


def parse_synthesis(raw: str) -> SynthesisResult:
    try:
        payload = SynthesisPayload.model_validate(extract_json_object(raw))
    except ValidationError as exc:
        raise SchemaError(
            "Synthesized research JSON does not match the expected schema.",
            {"errors": exc.error_count()},
        ) from exc
    return SynthesisResult(
        notes=payload.notes,
        outline=payload.outline,
        claims=[ResearchClaim.model_validate(claim.model_dump()) for claim in payload.claims],
        suggested_changes=payload.suggested_changes,
        mode="llm",
    )


def fallback_synthesis(query: str, claims: Sequence[ResearchClaim]) -> SynthesisResult:
    """Build notes/outline straight from already-cited claims; no credential needed."""
    return SynthesisResult(
        notes="\n".join(f"- {claim.claim_ref}: {claim.text}" for claim in claims),
        outline=(
            f"Research outline for: {query}\n\n"
            "1) Core facts\n2) Contradictions\n3) Proposed story integration"
        ),
        claims=[claim.model_copy(deep=True) for claim in claims],
        suggested_changes="No automatic rewrite patches generated because no LLM credential is available.",
        mode="fallback",
    )


class Synthesizer:
    """Turns extracted claims into notes, outline, claims and suggested changes."""

    def __init__(
        self,
        llm_factory: LLMFactory = get_llm,
        *,
        max_tokens: int = 2200,
        temperature: float = 0.2,
        context_clip: int = 3000,
    ) -> None:
        self._llm_factory = llm_factory
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._context_clip = context_clip

    def _user_prompt(self, query: str, context: str, claims: Sequence[ResearchClaim]) -> str:
        return json.dumps(
            {
                "task": "Synthesize research for writing workflow with mandatory per-claim citations.",
                "query": query,
                "context": clip(context, self._context_clip),
                "claims": [claim.model_dump(mode="json") for claim in claims],
                "output_schema": OUTPUT_SCHEMA,
            },
            ensure_ascii=False,
            indent=2,
        )

    async def synthesize(
        self,
        query: str,
        context: str,
        extracted_claims: Sequence[ResearchClaim],
        *,
        api_key: Optional[str],
        provider_config: ProviderConfig,
        on_usage: Optional[UsageCallback] = None,
    ) -> SynthesisResult:
        if not api_key:
            logger.info("synthesis_fallback reason=no_llm_credential claims=%d", len(extracted_claims))
            return fallback_synthesis(query, extracted_claims)

        llm = self._llm_factory(
            provider=provider_config.llm_provider,
            model=provider_config.llm_model,
            api_key=api_key,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        try:
            response = await llm.achat(
                self._user_prompt(query, context, extracted_claims),
                system_prompt=SYSTEM_PROMPT,
            )
        finally:
            await llm.aclose()

        logger.info(
            "synthesis_llm_done provider=%s input_tokens=%d output_tokens=%d",
            llm.provider,
            response.input_tokens,
            response.output_tokens,
        )
        # Charge before parsing: a malformed answer still costs tokens.
        if on_usage is not None:
            await on_usage(response)
        return parse_synthesis(response.content)
