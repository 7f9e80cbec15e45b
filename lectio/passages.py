# lectio/passages.py
"""
Passage providers: resolve a human-entered reference + translation code to
canonical text and the provider's canonical reference string.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from lectio.schemas import PassagePayload
from lectio.settings.config import settings

logger = logging.getLogger(__name__)


class PassageError(RuntimeError):
    pass


class PassageNotFound(PassageError):
    pass


class ProviderUnavailable(PassageError):
    pass


class PassageProvider:
    """Contract shared by every translation backend."""

    translations: tuple[str, ...] = ()

    async def get_passage_text(self, reference: str, translation: str) -> PassagePayload:
        raise NotImplementedError

    def supports(self, translation: str) -> bool:
        return translation.upper() in self.translations


class ESVProvider(PassageProvider):
    translations = ("ESV",)

    # query flags: verse numbers stay in as [N] markers (story pages split on them)
    PARAMS = {
        "include-passage-references": "true",
        "include-verse-numbers": "true",
        "include-first-verse-numbers": "true",
        "include-footnotes": "false",
        "include-footnote-body": "false",
        "include-headings": "true",
        "include-short-copyright": "true",
        "include-passage-horizontal-lines": "false",
        "include-heading-horizontal-lines": "false",
    }

    def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key or settings.ESV_API_KEY
        if not self.api_key:
            raise ValueError("ESV_API_KEY not set. Check your .env file.")
        self.base_url = base_url or settings.ESV_API_URL
        self.timeout = timeout or settings.PASSAGE_TIMEOUT
        self._transport = transport

    async def get_passage_text(self, reference: str, translation: str = "ESV") -> PassagePayload:
        if not self.supports(translation):
            raise PassageNotFound(f"ESV provider cannot serve translation {translation!r}")

        params = {"q": reference, **self.PARAMS}
        headers = {"Authorization": f"Token {self.api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(self.base_url, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderUnavailable(f"ESV request failed: {e}") from e

        if r.status_code == 404:
            raise PassageNotFound(f"No passage found for reference: {reference}")
        if r.status_code >= 400:
            raise ProviderUnavailable(f"ESV API error: {r.status_code} {r.text[:200]}")

        try:
            data = r.json()
        except ValueError as e:
            raise ProviderUnavailable(f"ESV returned non-JSON: {r.text[:200]}") from e

        passages = [p for p in (data.get("passages") or []) if p and p.strip()]
        canonical = (data.get("canonical") or "").strip()
        if not passages or not canonical:
            raise PassageNotFound(f"No passage found for reference: {reference}")

        return PassagePayload(
            reference=data.get("query") or reference,
            canonical=canonical,
            text="\n\n".join(passages).strip(),
            translation="ESV",
        )


class PassageRouter(PassageProvider):
    """Dispatches to the provider registered for the requested translation."""

    def __init__(self, providers: Dict[str, PassageProvider]):
        self._providers = {k.upper(): v for k, v in providers.items()}
        self.translations = tuple(self._providers)

    async def get_passage_text(self, reference: str, translation: str) -> PassagePayload:
        provider = self._providers.get((translation or "").upper())
        if provider is None:
            raise PassageNotFound(f"Translation {translation!r} is not supported")
        return await provider.get_passage_text(reference, translation.upper())


def build_passage_provider() -> PassageRouter:
    providers: Dict[str, PassageProvider] = {}
    if settings.ESV_API_KEY:
        providers["ESV"] = ESVProvider()
    else:
        logger.warning("ESV_API_KEY not set; passage lookups will fail")
    return PassageRouter(providers)


__all__ = [
    "PassageError",
    "PassageNotFound",
    "ProviderUnavailable",
    "PassageProvider",
    "ESVProvider",
    "PassageRouter",
    "build_passage_provider",
]
