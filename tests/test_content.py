from uuid import uuid4

import pytest
from sqlalchemy import select

from catalog_workflow.db.models import ProductContent
from catalog_workflow.domain.errors import SourceContentNotFoundError
from catalog_workflow.services.content import (
    LocalizedContent, MultiLanguageContentService, apply_locale_formatting, extract_keywords, language_of, truncate,
)
from catalog_workflow.services.translation import TaggingTranslationService


def test_language_of():
    assert language_of("de_DE") == "de"
    assert language_of("pt-BR") == "pt"
    assert language_of("fr") == "fr"


def test_truncate_adds_ellipsis_within_limit():
    assert truncate("short", 60) == "short"
    capped = truncate("x" * 61, 60)
    assert len(capped) == 60
    assert capped.endswith("...")


def test_keywords_skip_short_and_stop_words():
    keywords = extract_keywords("Wireless Headphones Pro", "These headphones would deliver excellent sound")
    assert keywords == ["wireless", "headphones", "deliver", "excellent", "sound"]


def test_french_punctuation_gets_no_break_space():
    content = apply_locale_formatting(LocalizedContent(name="Prix: bas!", description="Vraiment ?"), "fr_FR")
    assert content.name == "Prix\u00a0: bas\u00a0!"
    assert content.description == "Vraiment\u00a0?"


def test_german_names_start_upper_case():
    content = apply_locale_formatting(LocalizedContent(name="kopfhörer"), "de_DE")
    assert content.name == "Kopfhörer"


def test_meta_fields_are_capped():
    content = apply_locale_formatting(
        LocalizedContent(meta_title="t" * 80, meta_description="d" * 200), "en_US"
    )
    assert content.meta_title == "t" * 57 + "..."
    assert content.meta_description == "d" * 157 + "..."


class FailingTranslator(TaggingTranslationService):
    def __init__(self, fail_for: set[str]):
        self.fail_for = fail_for

    async def translate(self, text, source_lang, target_lang):
        if target_lang in self.fail_for:
            raise RuntimeError(f"translation provider rejected {target_lang}")
        return await super().translate(text, source_lang, target_lang)


async def load_content(session_factory, product_id):
    async with session_factory() as session:
        stmt = select(ProductContent).where(ProductContent.product_id == product_id)
        return {row.locale.code: row for row in (await session.scalars(stmt)).all()}


async def test_generates_content_from_english_master_data(session_factory, products, seed):
    service = MultiLanguageContentService(session_factory, TaggingTranslationService(), products)

    generated = await service.generate_multi_language_content(seed.product_id, "en_US", ["de_DE", "en_GB"])
    assert generated == ["de_DE", "en_GB"]

    rows = await load_content(session_factory, seed.product_id)
    german = rows["de_DE"]
    assert german.name == "Wireless Headphones [DE]"
    assert german.translation_status == "machine_translated"
    assert german.content_version == 1
    assert all(k.endswith("[DE]") for k in german.keywords)
    assert len(german.meta_title) <= 60

    british = rows["en_GB"]
    assert british.name == "Wireless Headphones"
    assert british.translation_status == "source_copy"


async def test_one_failing_locale_does_not_stop_the_rest(session_factory, products, seed):
    service = MultiLanguageContentService(session_factory, FailingTranslator({"ja"}), products)

    generated = await service.generate_multi_language_content(
        seed.product_id, "en_US", ["de_DE", "fr_FR", "ja_JP", "it_IT", "xx_XX"]
    )

    assert generated == ["de_DE", "fr_FR", "it_IT"]
    rows = await load_content(session_factory, seed.product_id)
    assert set(rows) == {"de_DE", "fr_FR", "it_IT"}


async def test_unknown_locale_is_excluded(session_factory, products, seed):
    service = MultiLanguageContentService(session_factory, TaggingTranslationService(), products)

    generated = await service.generate_multi_language_content(
        seed.product_id, "en_US", ["de_DE", "fr_FR", "ja_JP", "it_IT", "xx_XX"]
    )
    assert len(generated) == 4


async def test_regeneration_bumps_content_version(session_factory, products, seed):
    service = MultiLanguageContentService(session_factory, TaggingTranslationService(), products)

    await service.generate_multi_language_content(seed.product_id, "en_US", ["it_IT"])
    await service.generate_multi_language_content(seed.product_id, "en_US", ["it_IT"])

    rows = await load_content(session_factory, seed.product_id)
    assert rows["it_IT"].content_version == 2


async def test_stored_source_content_is_preferred(session_factory, products, seed):
    service = MultiLanguageContentService(session_factory, TaggingTranslationService(), products)

    async with session_factory() as session:
        session.add(ProductContent(
            product_id=seed.product_id,
            locale_id=seed.locales["de_DE"],
            name="Kabellose Kopfhörer",
            description="Geräuschunterdrückung",
            keywords=["kopfhörer"],
        ))
        await session.commit()

    generated = await service.generate_multi_language_content(seed.product_id, "de_DE", ["fr_FR"])
    assert generated == ["fr_FR"]

    rows = await load_content(session_factory, seed.product_id)
    assert rows["fr_FR"].name == "Kabellose Kopfhörer [FR]"
    assert products.calls == 0


async def test_missing_source_content_raises(session_factory, products, seed):
    service = MultiLanguageContentService(session_factory, TaggingTranslationService(), products)

    with pytest.raises(SourceContentNotFoundError):
        await service.generate_multi_language_content(seed.product_id, "de_DE", ["fr_FR"])

    with pytest.raises(SourceContentNotFoundError):
        await service.generate_multi_language_content(uuid4(), "en_US", ["fr_FR"])
