"""
Compiles generated lesson content into a Story Manifest: the ordered,
tappable pages a reader swipes through.

Everything here is pure. Same content in, same manifest out.

Page order:
  cover -> preview -> passage (1..n) -> context -> message (1..2)
  -> next step -> key takeaways -> reflection -> discussion (1..2) -> cta
"""
from __future__ import annotations

import hashlib
import math
import re
from typing import List, Optional

from lectio.schemas import (
    CallToAction,
    LessonContent,
    PageContent,
    StoryManifest,
    StoryMetadata,
    StoryPage,
)

PASSAGE_CHUNK_CHARS = 600
BODY_SPLIT_CHARS = 900
DISCUSSION_SPLIT_COUNT = 3

CTA_TEXT = "Ready to see how much you remember? Take a short quiz to reinforce what you've learned."
CTA_BUTTON = "Start Quiz"


class StoryValidationError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Splitting helpers
# ---------------------------------------------------------------------------
def split_passage_text(text: str, max_chars: int = PASSAGE_CHUNK_CHARS) -> List[str]:
    """Split on verse markers like [12] so no verse straddles two pages."""
    text = (text or "").strip()
    if len(text) <= max_chars:
        return [text]

    chunks: List[str] = []
    current = ""
    for verse in re.split(r"(?=\[\d+\])", text):
        if current and len(current + verse) > max_chars:
            chunks.append(current.strip())
            current = verse
        else:
            current += verse
    if current.strip():
        chunks.append(current.strip())
    return chunks or [text]


def _paragraphs(text: str) -> List[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", text or "") if p.strip()]


def _halves(items: list) -> tuple[list, list]:
    mid = math.ceil(len(items) / 2)
    return items[:mid], items[mid:]


def split_body(body: str, threshold: int = BODY_SPLIT_CHARS) -> List[str]:
    """
    One page when the message is short; otherwise two continuation pages,
    split between paragraphs, or between sentences for a single long paragraph.
    """
    paras = _paragraphs(body)
    if len(paras) <= 2 and len(body) <= threshold:
        return [body.strip()]
    if len(paras) >= 2:
        first, second = _halves(paras)
        return ["\n\n".join(first), "\n\n".join(second)]
    sentences = [s for s in re.split(r"(?<=[.!?])\s+", body.strip()) if s]
    if len(sentences) < 2:
        return [body.strip()]
    first, second = _halves(sentences)
    return [" ".join(first), " ".join(second)]


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------
def _text_page(title: str, text: str, kind: str = "content") -> StoryPage:
    return StoryPage(type=kind, content=PageContent(title=title, text=text))


def _list_page(title: str, bullets: List[str]) -> StoryPage:
    return StoryPage(type="takeaways", content=PageContent(title=title, bullets=list(bullets)))


def compile_story(
    content: LessonContent,
    *,
    title: str,
    reference: str,
    translation: str,
    quiz_url: str,
    passage_text: str,
    passage_chunk_chars: int = PASSAGE_CHUNK_CHARS,
    body_split_chars: int = BODY_SPLIT_CHARS,
    discussion_split_count: int = DISCUSSION_SPLIT_COUNT,
) -> StoryManifest:
    pages: List[StoryPage] = []

    pages.append(StoryPage(type="cover", content=PageContent(title=title, text=reference)))
    pages.append(_text_page("What You're About to Read", content.intro))

    chunks = split_passage_text(passage_text, passage_chunk_chars)
    if len(chunks) == 1:
        pages.append(_text_page(reference, chunks[0], kind="passage"))
    else:
        for i, chunk in enumerate(chunks, start=1):
            pages.append(_text_page(f"{reference} ({i}/{len(chunks)})", chunk, kind="passage"))

    pages.append(_text_page("The Bigger Story", content.context))

    body_parts = split_body(content.body, body_split_chars)
    pages.append(_text_page("The Message", body_parts[0]))
    if len(body_parts) > 1:
        pages.append(_text_page("The Message (cont.)", body_parts[1]))

    pages.append(_text_page("Your Next Step", content.conclusion))
    pages.append(_list_page("Key Takeaways", content.key_takeaways))
    pages.append(_list_page("Reflect on This", content.reflection_prompts))

    questions = content.discussion_questions
    if len(questions) > discussion_split_count:
        first, second = _halves(questions)
        pages.append(_list_page("Discussion Questions", first))
        pages.append(_list_page("Discussion Questions (cont.)", second))
    else:
        pages.append(_list_page("Discussion Questions", questions))

    pages.append(StoryPage(
        type="cta",
        content=PageContent(
            title="Test Your Understanding",
            text=CTA_TEXT,
            cta=CallToAction(text=CTA_BUTTON, href=quiz_url),
        ),
    ))

    manifest = StoryManifest(
        pages=pages,
        metadata=StoryMetadata(title=title, reference=reference, translation=translation),
    )
    validate_manifest(manifest)
    return manifest


def validate_manifest(manifest: StoryManifest) -> bool:
    if not manifest.pages:
        raise StoryValidationError("Story manifest must have at least one page")
    meta = manifest.metadata
    if not meta or not (meta.title or "").strip() or not (meta.reference or "").strip():
        raise StoryValidationError("Story manifest must have metadata with title and reference")
    if manifest.pages[0].type != "cover":
        raise StoryValidationError("First page must be the cover")
    if manifest.pages[-1].type != "cta":
        raise StoryValidationError("Last page must be the call to action")

    for i, page in enumerate(manifest.pages):
        c = page.content
        title_ok = bool((c.title or "").strip())
        if page.type == "cover":
            if not title_ok:
                raise StoryValidationError(f"Page {i}: cover page must have a title")
        elif page.type in ("content", "passage"):
            if not title_ok or not (c.text or "").strip():
                raise StoryValidationError(f"Page {i}: {page.type} page must have title and text")
        elif page.type == "takeaways":
            if not title_ok or not c.bullets or not any((b or "").strip() for b in c.bullets):
                raise StoryValidationError(f"Page {i}: list page must have title and a non-empty list")
        elif page.type == "cta":
            if not title_ok or c.cta is None or not c.cta.href:
                raise StoryValidationError(f"Page {i}: call-to-action page must have title and link")
    return True


# ---------------------------------------------------------------------------
# Narration text
# ---------------------------------------------------------------------------
_VERSE_MARKER = re.compile(r"\[\d+\]")
_BULLET_GLYPH = re.compile(r"^\s*(?:[•·▪◦‣*\-–]|💡|🤔|\d+[.)])\s*")
_TERMINAL = ".!?…"
_CLOSERS = "\"'”’)"


def _translation_suffix(translation: Optional[str]) -> re.Pattern:
    names = ["ESV", "English Standard Version"]
    if translation and translation.upper() not in names:
        names.insert(0, translation)
    alt = "|".join(re.escape(n) for n in names)
    return re.compile(rf"\s*\(?\b(?:{alt})\b\)?\.?\s*$", re.IGNORECASE)


def _clean_passage(text: str, translation: Optional[str]) -> str:
    s = _VERSE_MARKER.sub("", text or "")
    s = _translation_suffix(translation).sub("", s)
    return s


def _clean_bullet(bullet: str) -> str:
    s = _BULLET_GLYPH.sub("", bullet or "").strip()
    # "Before you read:" is a section header, not something to say with a colon
    return s.rstrip(":").strip()


def _as_sentence(part: str) -> str:
    s = re.sub(r"\s+", " ", part).strip()
    if not s:
        return ""
    tail = s.rstrip(_CLOSERS)
    if tail and tail[-1] in _TERMINAL:
        return s
    return s + "."


def join_sentences(parts: List[str]) -> str:
    return " ".join(p for p in (_as_sentence(x) for x in parts) if p)


def extract_narratable_text(page: StoryPage, translation: Optional[str] = None) -> str:
    """Text a narrator should read aloud for one page."""
    c = page.content
    parts: List[str] = []

    if page.type == "passage":
        # the passage text already opens with its reference
        if c.text:
            parts.append(_clean_passage(c.text, translation))
    elif page.type in ("cover", "content", "cta"):
        # cta button label is not narrated
        parts.extend(x for x in (c.title, c.text) if x)
    elif page.type == "takeaways":
        if c.title:
            parts.append(c.title)
        parts.extend(_clean_bullet(b) for b in (c.bullets or []) if b and b.strip())
    else:
        raise ValueError(f"Unknown page type: {page.type}")

    return join_sentences(parts)


def hash_text(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


__all__ = [
    "StoryValidationError",
    "compile_story",
    "validate_manifest",
    "split_passage_text",
    "split_body",
    "extract_narratable_text",
    "join_sentences",
    "hash_text",
]
