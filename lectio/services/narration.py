# lectio/services/narration.py
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Protocol

from lectio.media_pipeline import AssetStoreError, LessonAudioStrategy, LocalAssetStore
from lectio.schemas import AudioManifest, AudioPage, StoryManifest
from lectio.settings.config import settings
from lectio.story_compiler import extract_narratable_text, hash_text
from lectio.tts_client import SynthesisFailed

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 150
AUDIO_MANIFEST_VERSION = "1.0"


class Synthesizer(Protocol):
    async def synthesize(self, voice_id: str, text: str) -> bytes: ...


def voice_for_page(page_type: str, *, teaching_voice_id: str, scripture_voice_id: str) -> str:
    # quoted scripture gets its own reader
    return scripture_voice_id if page_type == "passage" else teaching_voice_id


def estimate_duration(text: str) -> int:
    words = len(text.split())
    return math.ceil(words / WORDS_PER_MINUTE * 60)


async def generate_audio_manifest(
    manifest: StoryManifest,
    *,
    lesson_key: str,
    synthesizer: Synthesizer,
    store: LocalAssetStore,
    strategy: Optional[LessonAudioStrategy] = None,
    teaching_voice_id: Optional[str] = None,
    scripture_voice_id: Optional[str] = None,
) -> AudioManifest:
    """
    Narrate every page. Any page failing fails the whole manifest
    (SynthesisFailed / AssetStoreError propagate).
    """
    strategy = strategy or LessonAudioStrategy()
    teaching = teaching_voice_id or settings.TEACHING_VOICE_ID
    scripture = scripture_voice_id or settings.SCRIPTURE_VOICE_ID
    translation = manifest.metadata.translation

    pages: list[AudioPage] = []
    for i, page in enumerate(manifest.pages):
        text = extract_narratable_text(page, translation)
        voice = voice_for_page(page.type, teaching_voice_id=teaching, scripture_voice_id=scripture)
        audio = await synthesizer.synthesize(voice, text)
        stored = await store.put(strategy.page_audio_path(lesson_key, i), audio)
        pages.append(AudioPage(
            page_index=i,
            page_type=page.type,
            audio_url=stored.url,
            duration=estimate_duration(text),
            file_size=stored.size_bytes,
            text_hash=hash_text(text),
        ))
        logger.debug("Narrated page %d (%s) for %s: %d bytes", i, page.type, lesson_key, stored.size_bytes)

    return AudioManifest(
        version=AUDIO_MANIFEST_VERSION,
        generated_at=datetime.now(timezone.utc),
        teaching_voice_id=teaching,
        scripture_voice_id=scripture,
        pages=pages,
    )


async def narrate_best_effort(
    manifest: StoryManifest,
    *,
    lesson_key: str,
    synthesizer: Optional[Synthesizer],
    store: Optional[LocalAssetStore],
    **kwargs,
) -> Optional[AudioManifest]:
    """A lesson without narration is still a complete lesson: failures log and return None."""
    if synthesizer is None or store is None:
        return None
    try:
        return await generate_audio_manifest(
            manifest, lesson_key=lesson_key, synthesizer=synthesizer, store=store, **kwargs
        )
    except (SynthesisFailed, AssetStoreError) as e:
        logger.warning("Narration failed for %s, continuing without audio: %s", lesson_key, e)
        return None


__all__ = [
    "Synthesizer",
    "voice_for_page",
    "estimate_duration",
    "generate_audio_manifest",
    "narrate_best_effort",
]
