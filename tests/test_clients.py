import json

import httpx
import pytest

from lectio.llm_client import (
    GenerationInvalid,
    GenerationUnavailable,
    LessonContentGenerator,
    build_user_prompt,
    parse_lesson_content,
)
from lectio.passages import ESVProvider, PassageNotFound, PassageRouter, ProviderUnavailable
from lectio.tts_client import ElevenLabsSynthesizer, SynthesisFailed

from tests.fakes import make_content


def esv(handler):
    return ESVProvider("test-key", base_url="https://esv.test/v3/passage/text/",
                       transport=httpx.MockTransport(handler))


class TestESVProvider:
    """Passage lookups over the ESV HTTP API."""

    async def test_returns_canonical_and_text(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["q"] = request.url.params["q"]
            return httpx.Response(200, json={
                "query": "John 3:16-17",
                "canonical": "John 3:16–17",
                "passages": ["John 3:16–17\n\n[16] For God so loved the world. (ESV)"],
            })

        payload = await esv(handler).get_passage_text("John 3:16-17", "ESV")
        assert payload.canonical == "John 3:16–17"
        assert payload.translation == "ESV"
        assert "[16]" in payload.text
        assert seen == {"auth": "Token test-key", "q": "John 3:16-17"}

    async def test_empty_passages_is_not_found(self):
        provider = esv(lambda r: httpx.Response(200, json={"canonical": "", "passages": []}))
        with pytest.raises(PassageNotFound):
            await provider.get_passage_text("Hezekiah 1:1", "ESV")

    async def test_server_error_is_unavailable(self):
        provider = esv(lambda r: httpx.Response(503, text="down"))
        with pytest.raises(ProviderUnavailable):
            await provider.get_passage_text("John 1:1", "ESV")

    async def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProviderUnavailable):
            await esv(handler).get_passage_text("John 1:1", "ESV")

    async def test_router_rejects_unknown_translation(self):
        router = PassageRouter({"ESV": esv(lambda r: httpx.Response(500))})
        with pytest.raises(PassageNotFound):
            await router.get_passage_text("John 1:1", "NIV")


def chat_response(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class TestLessonContentGenerator:
    async def test_generates_validated_content(self):
        raw = make_content().model_dump()
        raw["quiz"][1]["answer"] = "D"
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return chat_response("```json\n" + json.dumps(raw) + "\n```")

        gen = LessonContentGenerator("sk-test", base_url="https://llm.test/v1", model="gpt-test",
                                     transport=httpx.MockTransport(handler))
        content = await gen.generate("ESV", ["John 3:16-17"], "[16] For God so loved...", theme="Love")
        assert content.quiz[1].answer == "D four"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-test"
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert "John 3:16-17" in seen["body"]["messages"][1]["content"]

    async def test_cardinality_violation_is_invalid(self):
        raw = make_content().model_dump()
        raw["quiz"] = raw["quiz"][:2]
        gen = LessonContentGenerator("sk-test", transport=httpx.MockTransport(lambda r: chat_response(json.dumps(raw))))
        with pytest.raises(GenerationInvalid):
            await gen.generate("ESV", ["John 1:1"], "text")

    async def test_quiz_without_explanation_is_invalid(self):
        raw = make_content().model_dump()
        del raw["quiz"][0]["explanation"]
        gen = LessonContentGenerator("sk-test", transport=httpx.MockTransport(lambda r: chat_response(json.dumps(raw))))
        with pytest.raises(GenerationInvalid):
            await gen.generate("ESV", ["John 1:1"], "text")

    def test_prompt_carries_plan_theme(self):
        prompt = build_user_prompt("ESV", ["Psalm 1", "Psalm 2"], "[1] Blessed is the man", theme="Wisdom")
        assert "Wisdom" in prompt
        assert "Psalm 1, Psalm 2" in prompt
        assert "General Bible Study" in build_user_prompt("ESV", ["Psalm 1"], "text")

    async def test_http_error_is_unavailable(self):
        gen = LessonContentGenerator("sk-test", transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        with pytest.raises(GenerationUnavailable):
            await gen.generate("ESV", ["John 1:1"], "text")

    def test_non_json_output_is_invalid(self):
        with pytest.raises(GenerationInvalid):
            parse_lesson_content("Sorry, I can't help with that.")


class TestElevenLabsSynthesizer:
    async def test_posts_voice_and_returns_audio(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["path"] = request.url.path
            seen["key"] = request.headers["xi-api-key"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"ID3audio", headers={"Content-Type": "audio/mpeg"})

        synth = ElevenLabsSynthesizer("xi-test", base_url="https://tts.test/v1",
                                      transport=httpx.MockTransport(handler))
        audio = await synth.synthesize("voice123", "Hello there.")
        assert audio == b"ID3audio"
        assert seen["path"] == "/v1/text-to-speech/voice123"
        assert seen["key"] == "xi-test"
        assert seen["body"]["text"] == "Hello there."
        assert seen["body"]["model_id"] == "eleven_turbo_v2_5"

    async def test_api_error_raises(self):
        synth = ElevenLabsSynthesizer("xi-test", transport=httpx.MockTransport(lambda r: httpx.Response(429)))
        with pytest.raises(SynthesisFailed):
            await synth.synthesize("voice123", "Hello.")

    async def test_blank_text_raises(self):
        synth = ElevenLabsSynthesizer("xi-test", transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(SynthesisFailed):
            await synth.synthesize("voice123", "   ")
