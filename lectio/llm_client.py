import json
import logging
import re
from typing import Optional, Sequence

import httpx
from pydantic import ValidationError

from lectio.schemas import LessonContent
from lectio.settings.config import settings

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    pass


class GenerationInvalid(GenerationError):
    """The model answered, but not with a usable lesson."""


class GenerationUnavailable(GenerationError):
    """Transport, auth or quota failure talking to the model."""


#----------prompts---------------

SYSTEM_PROMPT = """You generate lesson content for Bible study plans. Be concise, accurate, and pastoral without being preachy. Use friendly, conversational, encouraging, practical language. Never alter the meaning of the text.

Your role is to help readers:
1. Preview what they're about to read
2. Understand the context BEFORE reading (historical and narrative background)
3. Grasp the main message with practical application
4. Take one actionable step
5. Remember key insights, reflect personally and discuss with others
6. Test their understanding

Keep content scannable and mobile-friendly. Prefer 2-3 sentences per paragraph.

CRITICAL REQUIREMENT: You MUST generate between 3 and 5 quiz questions (no fewer, no more).

Always be accurate to the source text. Never invent verses or misrepresent scripture."""

USER_PROMPT_TEMPLATE = """Generate lesson content for the following Bible passage:

**Translation:** {translation}
**References:** {references}
**Plan Theme:** {theme}

**Passage Text:**
{passage_text}

Return a JSON object with exactly these keys:
{{
  "intro": "One short paragraph (2-3 sentences) previewing the passage",
  "context": "3-5 sentences of historical background and how the passage fits the broader biblical narrative",
  "body": "1-2 short paragraphs explaining the main message with practical application; separate paragraphs with a blank line",
  "conclusion": "1 short paragraph with a single, concrete actionable step",
  "key_takeaways": ["3-5 concise bullet points"],
  "reflection_prompts": ["2-3 open-ended personal questions"],
  "discussion_questions": ["3-5 questions for a small group"],
  "quiz": [
    {{
      "q": "Question text",
      "choices": ["Choice A text", "Choice B text", "Choice C text", "Choice D text"],
      "answer": "Choice B text",
      "explanation": "Explanation with verse reference"
    }}
  ]
}}

CRITICAL QUIZ FORMATTING:
- EXACTLY 3-5 quiz questions
- Each question has exactly 4 choices (full text, not letters)
- "answer" must be the EXACT TEXT of one of the choices, never "A", "B", "C" or "D"
- Include specific verse references in explanations"""


def build_user_prompt(translation: str, references: Sequence[str], passage_text: str,
                      theme: Optional[str] = None) -> str:
    return USER_PROMPT_TEMPLATE.format(
        translation=translation,
        references=", ".join(references),
        theme=theme or "General Bible Study",
        passage_text=passage_text,
    )


def _extract_json(out: str) -> str:
    """Unwrap code fences and any chatter around the JSON object."""
    s = (out or "").strip()
    m = re.search(r"```(?:json)?\s*([\s\S]*?)```", s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    start, end = s.find("{"), s.rfind("}")
    if start != -1 and end > start:
        s = s[start:end + 1]
    return s


def parse_lesson_content(raw: str) -> LessonContent:
    """Parse and validate model output. Raises GenerationInvalid."""
    try:
        data = json.loads(_extract_json(raw))
    except ValueError as e:
        raise GenerationInvalid(f"Generator returned non-JSON: {(raw or '')[:200]}") from e
    if not isinstance(data, dict):
        raise GenerationInvalid("Generator returned JSON that is not an object")
    try:
        return LessonContent.model_validate(data)
    except ValidationError as e:
        raise GenerationInvalid(f"Generated lesson failed validation: {e}") from e


#----------client---------------

class LessonContentGenerator:
    """Chat-completions client producing validated LessonContent."""

    def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None,
                 model: Optional[str] = None, temperature: Optional[float] = None,
                 max_tokens: Optional[int] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY not set. Check your .env file.")
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.model = model or settings.OPENAI_MODEL
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.timeout = timeout or settings.GENERATION_TIMEOUT
        self._transport = transport

    async def _chat(self, system: str, user: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(f"{self.base_url}/chat/completions", json=payload, headers=headers)
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            raise GenerationUnavailable(f"Chat completion request failed: {e}") from e
        except ValueError as e:
            raise GenerationUnavailable("Chat completion returned non-JSON envelope") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        if not content:
            raise GenerationInvalid("Empty response from content generator.")
        return content

    async def generate(self, translation: str, references: Sequence[str], passage_text: str,
                       theme: Optional[str] = None) -> LessonContent:
        user = build_user_prompt(translation, references, passage_text, theme)
        raw = await self._chat(SYSTEM_PROMPT, user)
        content = parse_lesson_content(raw)
        logger.debug("Generated lesson with %d quiz questions", len(content.quiz))
        return content


__all__ = [
    "GenerationError",
    "GenerationInvalid",
    "GenerationUnavailable",
    "LessonContentGenerator",
    "build_user_prompt",
    "parse_lesson_content",
]
