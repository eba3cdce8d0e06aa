import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_workflow.db.models import Locale, ProductContent
from catalog_workflow.domain.errors import SourceContentNotFoundError, LocaleNotFoundError
from catalog_workflow.domain.models import utcnow
from catalog_workflow.services.products import ProductLookup
from catalog_workflow.services.translation import Translator

logger = logging.getLogger(__name__)

META_TITLE_MAX = 60
META_DESCRIPTION_MAX = 160
SHORT_DESCRIPTION_MAX = 100

STOP_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "is", "are", "was", "were", "be", "been",
    "have", "has", "had", "will", "would", "could", "should", "may", "might",
})

@dataclass
class LocalizedContent:
    name: str = ""
    description: str = ""
    short_description: str = ""
    meta_title: str = ""
    meta_description: str = ""
    keywords: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: ProductContent) -> "LocalizedContent":
        return cls(
            name=row.name or "",
            description=row.description or "",
            short_description=row.short_description or "",
            meta_title=row.meta_title or "",
            meta_description=row.meta_description or "",
            keywords=list(row.keywords or []),
        )

def language_of(locale_code: str) -> str:
    """'en_US' -> 'en'. Accepts '-' as separator too."""
    return re.split(r"[_-]", locale_code, maxsplit=1)[0].lower()

def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."

def extract_keywords(name: str, description: str, max_description_words: int = 5) -> list[str]:
    keywords: list[str] = []

    for word in name.split():
        word = word.strip().lower()
        if len(word) > 3 and word not in keywords:
            keywords.append(word)

    taken = 0
    for word in description.split():
        word = word.strip().lower()
        if len(word) <= 4 or word in STOP_WORDS:
            continue
        if taken >= max_description_words:
            break
        taken += 1
        if word not in keywords:
            keywords.append(word)

    return keywords

# Post-translation hooks per language
Formatter = Callable[[LocalizedContent], None]
_FORMATTERS: dict[str, list[Formatter]] = {}

def register_formatter(language: str) -> Callable[[Formatter], Formatter]:
    def decorator(func: Formatter) -> Formatter:
        _FORMATTERS.setdefault(language.lower(), []).append(func)
        return func
    return decorator

@register_formatter("de")
def _german_name_casing(content: LocalizedContent) -> None:
    # Product names are nouns in German
    if content.name:
        content.name = content.name[0].upper() + content.name[1:]

_FRENCH_PUNCTUATION = re.compile(r"\s*([:;!?])")

@register_formatter("fr")
def _french_punctuation(content: LocalizedContent) -> None:
    # No-break space before two-part punctuation
    for attr in ("name", "description", "short_description", "meta_title", "meta_description"):
        value = getattr(content, attr)
        if value:
            setattr(content, attr, _FRENCH_PUNCTUATION.sub("\u00a0\\1", value))

def apply_locale_formatting(content: LocalizedContent, locale_code: str) -> LocalizedContent:
    for formatter in _FORMATTERS.get(language_of(locale_code), []):
        formatter(content)

    content.meta_description = truncate(content.meta_description, META_DESCRIPTION_MAX)
    content.meta_title = truncate(content.meta_title, META_TITLE_MAX)
    return content

class MultiLanguageContentService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        translator: Translator,
        products: ProductLookup
    ):
        self.session_factory = session_factory
        self.translator = translator
        self.products = products

    async def generate_multi_language_content(
        self,
        product_id: UUID,
        source_locale: str,
        target_locales: list[str]
    ) -> list[str]:
        """
        Translates the product's source content into every target locale.
        Returns the locales that succeeded; a failing locale does not stop the others.
        """
        logger.info(
            "Generating multi-language content for product %s from %s to %d locales",
            product_id, source_locale, len(target_locales)
        )

        generated: list[str] = []

        async with self.session_factory() as session:
            source = await self.get_source_content(session, product_id, source_locale)
            if source is None:
                raise SourceContentNotFoundError(product_id, source_locale)

            for target_locale in dict.fromkeys(target_locales):
                try:
                    await self._generate_for_locale(session, product_id, source, source_locale, target_locale)
                    generated.append(target_locale)
                    logger.debug("Generated content for locale %s", target_locale)
                except Exception as e:
                    logger.error("Failed to generate content for locale %s: %s", target_locale, e, exc_info=True)

            await session.commit()

        logger.info(
            "Generated content for %d out of %d locales", len(generated), len(target_locales)
        )
        return generated

    async def get_source_content(
        self,
        session: AsyncSession,
        product_id: UUID,
        locale_code: str
    ) -> Optional[LocalizedContent]:
        stmt = (
            select(ProductContent)
            .join(Locale, ProductContent.locale_id == Locale.id)
            .where(ProductContent.product_id == product_id, Locale.code == locale_code)
        )
        existing = await session.scalar(stmt)
        if existing is not None:
            return LocalizedContent.from_row(existing)

        # English master data lives in the product catalog-of-record
        if language_of(locale_code) != "en":
            return None

        product = await self.products.get_product(product_id)
        if product is None:
            return None

        long_description = product.long_description or product.description
        return LocalizedContent(
            name=product.name,
            description=long_description,
            short_description=truncate(product.description, SHORT_DESCRIPTION_MAX + 3),
            meta_title=product.name,
            meta_description=truncate(long_description, META_DESCRIPTION_MAX + 3),
            keywords=extract_keywords(product.name, long_description),
        )

    async def _generate_for_locale(
        self,
        session: AsyncSession,
        product_id: UUID,
        source: LocalizedContent,
        source_locale: str,
        target_locale: str
    ) -> ProductContent:
        locale = await session.scalar(select(Locale).where(Locale.code == target_locale))
        if locale is None:
            raise LocaleNotFoundError(target_locale)

        source_lang = language_of(source_locale)
        target_lang = language_of(target_locale)

        if source_lang != target_lang:
            translated = LocalizedContent(
                name=await self.translator.translate(source.name, source_lang, target_lang),
                description=await self.translator.translate(source.description, source_lang, target_lang),
                short_description=await self.translator.translate(source.short_description, source_lang, target_lang),
                meta_title=await self.translator.translate(source.meta_title, source_lang, target_lang),
                meta_description=await self.translator.translate(source.meta_description, source_lang, target_lang),
                keywords=await self.translator.translate_batch(
                    [k.strip() for k in source.keywords], source_lang, target_lang
                ),
            )
            translation_status = "machine_translated"
        else:
            translated = LocalizedContent(
                name=source.name,
                description=source.description,
                short_description=source.short_description,
                meta_title=source.meta_title,
                meta_description=source.meta_description,
                keywords=list(source.keywords),
            )
            translation_status = "source_copy"

        apply_locale_formatting(translated, target_locale)

        # Translation calls are done; only now touch the session
        stmt = select(ProductContent).where(
            ProductContent.product_id == product_id,
            ProductContent.locale_id == locale.id
        )
        row = await session.scalar(stmt)
        now = utcnow()

        if row is None:
            row = ProductContent(product_id=product_id, locale_id=locale.id, content_version=1, created_at=now)
            session.add(row)
        else:
            row.content_version = (row.content_version or 1) + 1

        row.name = translated.name
        row.description = translated.description
        row.short_description = translated.short_description
        row.meta_title = translated.meta_title
        row.meta_description = translated.meta_description
        row.keywords = translated.keywords
        row.translation_status = translation_status
        row.updated_at = now

        return row
