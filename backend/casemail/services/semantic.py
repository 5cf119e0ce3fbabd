"""Semantic fallback — asks a local LLM which case an email belongs to.

Only consulted when deterministic evidence is inconclusive. Every failure
mode (timeout, HTTP error, unparseable or out-of-range answer) is logged and
leaves the deterministic scores untouched.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional, Sequence, Union

import httpx

from casemail.config import settings
from casemail.exceptions import GenerationError
from casemail.services.types import CaseCandidate, CaseScore, EmailMessage, MatchType

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an email classification assistant for a Romanian law firm. "
    "Output valid JSON only."
)

SEMANTIC_PROMPT = """Classify this email to the most appropriate case.
The client has several active cases and we need to determine which one this email belongs to.

EMAIL:
- From: {sender}
- Subject: {subject}
- Preview: {preview}
- Date: {date}

CANDIDATE CASES:
{cases}

Consider subject matter, terminology and any references mentioned.
If the email clearly does not belong to any case, set mostLikelyCaseIndex to -1.

Respond with ONLY valid JSON (no markdown, no explanation):
{{
  "mostLikelyCaseIndex": <index of the case from the list above>,
  "confidence": <float 0.0-1.0>,
  "reasoning": "<brief explanation>"
}}"""

PREVIEW_CHARS = 500
DEFAULT_CONFIDENCE = 0.5
CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


@dataclass(frozen=True)
class GenerationResponse:
    content: str
    model: str = ""


@dataclass(frozen=True)
class SemanticMatch:
    """Parsed model answer pointing at one candidate."""
    case_index: int
    confidence: float
    reasoning: str


@dataclass(frozen=True)
class ParseFailure:
    reason: str


SemanticParse = Union[SemanticMatch, ParseFailure]


class OllamaClassifier:
    """Generative classifier backed by the Ollama generate API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = (base_url or settings.ollama_url).rstrip("/")
        self._model = model or settings.ollama_model
        self._client = client or httpx.AsyncClient(timeout=120.0)

    async def complete(
        self,
        prompt: str,
        system_prompt: str,
        max_tokens: int = 500,
        temperature: float = 0.2,
    ) -> GenerationResponse:
        """Run one non-streaming generation and return its text."""
        try:
            response = await self._client.post(
                f"{self._base_url}/api/generate",
                json={
                    "model": self._model,
                    "prompt": prompt,
                    "system": system_prompt,
                    "stream": False,
                    "options": {
                        "temperature": temperature,
                        "num_predict": max_tokens,
                    },
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise GenerationError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Ollama returned invalid JSON: {e}") from e

        content = (data.get("response") or "").strip()
        if not content:
            raise GenerationError("Ollama returned an empty response")
        return GenerationResponse(content=content, model=data.get("model", self._model))

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()


def extract_json(text: str) -> str:
    """Extract a JSON object from a response that might have markdown wrapping."""
    fenced = CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)

    brace_start = text.find("{")
    if brace_start == -1:
        return text

    depth = 0
    for i in range(brace_start, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return text[brace_start:i + 1]

    return text[brace_start:]


def parse_semantic_response(content: str, candidate_count: int) -> SemanticParse:
    """Parse the model's JSON answer into a match or an explicit failure."""
    try:
        data = json.loads(extract_json(content or ""))
    except json.JSONDecodeError as e:
        return ParseFailure(f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return ParseFailure("response is not a JSON object")

    index = data.get("mostLikelyCaseIndex")
    # bool is an int subclass; true/false are not indices
    if isinstance(index, bool) or not isinstance(index, int):
        return ParseFailure(f"mostLikelyCaseIndex is not an integer: {index!r}")
    if not 0 <= index < candidate_count:
        return ParseFailure(f"mostLikelyCaseIndex {index} out of range 0..{candidate_count - 1}")

    confidence = data.get("confidence", DEFAULT_CONFIDENCE)
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = DEFAULT_CONFIDENCE

    return SemanticMatch(
        case_index=index,
        confidence=max(0.0, min(1.0, float(confidence))),
        reasoning=str(data.get("reasoning") or "semantic analysis"),
    )


def build_prompt(email: EmailMessage, candidates: Sequence[CaseCandidate]) -> str:
    """Describe the email and every candidate case, indexed from 0."""
    blocks = []
    for index, case in enumerate(candidates):
        lines = [
            f"Case {index}: {case.title}",
            f"- Type: {case.case_type or 'unknown'}",
            f"- Description: {case.description or '(none)'}",
        ]
        if case.keywords:
            lines.append(f"- Keywords: {', '.join(case.keywords)}")
        if case.classification_notes:
            lines.append(f"- Notes: {case.classification_notes}")
        blocks.append("\n".join(lines))

    return SEMANTIC_PROMPT.format(
        sender=email.sender.name or email.sender.address or "Unknown",
        subject=email.subject or "(no subject)",
        preview=email.preview[:PREVIEW_CHARS] or "(empty body)",
        date=email.received_at.date().isoformat() if email.received_at else "unknown",
        cases="\n\n".join(blocks),
    )


class SemanticFallback:
    """Folds a generative model's opinion into the deterministic case scores."""

    def __init__(
        self,
        generator,
        timeout_seconds: Optional[float] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ):
        self._generator = generator
        self.timeout_seconds = timeout_seconds or settings.semantic_timeout_seconds
        self.max_tokens = max_tokens or settings.semantic_max_tokens
        self.temperature = settings.semantic_temperature if temperature is None else temperature

    async def suggest(
        self, email: EmailMessage, candidates: Sequence[CaseCandidate]
    ) -> SemanticParse:
        """Ask the model for the most likely candidate."""
        prompt = build_prompt(email, candidates)
        try:
            response = await asyncio.wait_for(
                self._generator.complete(
                    prompt,
                    SYSTEM_PROMPT,
                    max_tokens=self.max_tokens,
                    temperature=self.temperature,
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            return ParseFailure(f"semantic classification timed out after {self.timeout_seconds}s")
        except GenerationError as e:
            return ParseFailure(str(e))
        except Exception as e:
            logger.error(f"Semantic classification failed: {e}")
            return ParseFailure(f"generator error: {e}")

        return parse_semantic_response(response.content, len(candidates))

    async def apply(
        self,
        email: EmailMessage,
        candidates: Sequence[CaseCandidate],
        scores: dict[str, CaseScore],
        weight: float,
    ) -> Optional[SemanticMatch]:
        """Add ``confidence * weight`` to the model's pick in ``scores``; returns the match, or None if skipped."""
        outcome = await self.suggest(email, candidates)
        if isinstance(outcome, ParseFailure):
            logger.warning(f"Semantic fallback skipped for email {email.id}: {outcome.reason}")
            return None

        case = candidates[outcome.case_index]
        score = scores.get(case.id)
        if score is None:
            logger.warning(f"Semantic fallback picked unknown case {case.id} for email {email.id}")
            return None

        score.score += outcome.confidence * weight
        score.reasons.append(f"AI semantic match: {outcome.reasoning}")
        score.match_type = MatchType.SEMANTIC
        logger.info(
            f"Semantic fallback for email {email.id}: case={case.id}, "
            f"confidence={outcome.confidence:.2f}"
        )
        return outcome

    async def close(self):
        close = getattr(self._generator, "close", None)
        if close is not None:
            await close()
