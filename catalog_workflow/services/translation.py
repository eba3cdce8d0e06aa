import logging
from typing import Protocol

logger = logging.getLogger(__name__)

class Translator(Protocol):
    async def translate(self, text: str, source_lang: str, target_lang: str) -> str: ...

    async def translate_batch(self, texts: list[str], source_lang: str, target_lang: str) -> list[str]: ...

class TaggingTranslationService:
    """
    Marks text with the target language instead of translating it.
    Used until a machine translation provider is configured.
    """

    async def translate(self, text: str, source_lang: str, target_lang: str) -> str:
        if not text or source_lang == target_lang:
            return text

        logger.debug(
            "Translating text from %s to %s: %s",
            source_lang, target_lang, text[:50] + "..." if len(text) > 50 else text
        )
        return f"{text} [{target_lang.upper()}]"

    async def translate_batch(self, texts: list[str], source_lang: str, target_lang: str) -> list[str]:
        return [await self.translate(text, source_lang, target_lang) for text in texts]
