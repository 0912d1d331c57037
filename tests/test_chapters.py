import logging
import string
from datetime import date
from decimal import Decimal

import pytest

from manga_scout.chapters import (
    extract_chapters,
    find_chapter_links,
    find_chapter_numbers,
    find_missing_chapters,
    has_chapter_markers,
    is_same_series,
    parse_chapter_label,
    series_identity_token,
)
from manga_scout.document import StaticDocument
from manga_scout.errors import ScriptEvaluationError
from manga_scout.models import ChapterType

SERIES_URL = "https://mangasite.com/manga/hero-tale"
REFERENCE = date(2025, 10, 7)


class TestParseChapterLabel:
    """Ordinal grammar for a single anchor label."""

    @pytest.mark.parametrize(
        "label, ordinal",
        [
            ("Chapter 12.5", Decimal("12.5")),
            ("Ch. 40", Decimal("40")),
            ("Vol. 3", Decimal("3")),
            ("Episode: 8", Decimal("8")),
            ("#7", Decimal("7")),
            ("15", Decimal("15")),
            ("112 Chapter", Decimal("112")),
        ],
    )
    def test_numbered_labels(self, label, ordinal):
        parsed = parse_chapter_label(label)
        assert parsed is not None
        assert parsed.ordinal == ordinal
        assert parsed.chapter_type is ChapterType.NORMAL

    def test_tpb_with_part_combines(self):
        parsed = parse_chapter_label("TPB 2 (Part 1)")
        assert parsed.ordinal == Decimal(3)
        assert parsed.chapter_type is ChapterType.PART

    def test_tpb_alone(self):
        parsed = parse_chapter_label("TPB 3")
        assert parsed.ordinal == Decimal(903)
        assert parsed.chapter_type is ChapterType.TPB

    def test_part_alone(self):
        parsed = parse_chapter_label("(Part 2)")
        assert parsed.ordinal == Decimal(802)
        assert parsed.chapter_type is ChapterType.PART

    @pytest.mark.parametrize(
        "label, ordinal, chapter_type",
        [
            ("Special", 703, ChapterType.SPECIAL),
            ("Full", 701, ChapterType.FULL),
            ("Omnibus Edition", 702, ChapterType.OMNIBUS),
            ("One-Shot", 704, ChapterType.ONESHOT),
            ("Extra Chapter", 705, ChapterType.EXTRA),
            ("Bonus", 706, ChapterType.BONUS),
        ],
    )
    def test_bare_special_keywords(self, label, ordinal, chapter_type):
        parsed = parse_chapter_label(label)
        assert parsed.ordinal == Decimal(ordinal)
        assert parsed.chapter_type is chapter_type

    def test_numbered_special_keeps_number_and_tags_type(self):
        parsed = parse_chapter_label("Chapter 10 Special")
        assert parsed.ordinal == Decimal(10)
        assert parsed.chapter_type is ChapterType.SPECIAL

    @pytest.mark.parametrize("label", ["Iron Man (2016)", "Volume (3)", "", "Alpha Special Issue", "Home"])
    def test_rejected_labels(self, label):
        assert parse_chapter_label(label) is None


class TestSeriesFilter:
    """Same-series detection for candidate links."""

    def test_token_from_path_segment(self):
        assert series_identity_token("https://site.com/manga/hero-tale/") == "hero-tale"

    def test_token_from_query(self):
        assert series_identity_token("https://site.com/view?series=abc") == "abc"

    def test_token_falls_back_to_last_segment(self):
        assert series_identity_token("https://site.com/books/hero-tale") == "hero-tale"

    def test_other_series_on_same_host_is_rejected(self):
        token = series_identity_token(SERIES_URL)
        assert is_same_series("https://mangasite.com/manga/hero-tale/chapter-1", SERIES_URL, token)
        assert not is_same_series("https://mangasite.com/manga/other-saga/chapter-1", SERIES_URL, token)
        assert not is_same_series("https://elsewhere.com/chapter-1", SERIES_URL, token)


class TestExtractChapters:
    """Full-page extraction over static markup."""

    def test_numbers_relative_dates_and_series_filter(self):
        html = """
        <html><body>
          <div class="list">
            <section><p><a href="/manga/hero-tale/chapter-12-5">Chapter 12.5</a></p></section>
            <section><p><a href="/manga/hero-tale/chapter-11">Chapter 11 - 3 days ago</a></p></section>
            <section><p><a href="/manga/other-saga/chapter-1">Chapter 1</a></p></section>
          </div>
        </body></html>
        """
        chapters = extract_chapters(html, SERIES_URL, REFERENCE)

        assert set(chapters) == {Decimal("12.5"), Decimal("11")}
        latest = chapters[Decimal("12.5")]
        assert latest.url == "https://mangasite.com/manga/hero-tale/chapter-12-5"
        older = chapters[11]
        assert older.upload_date == date(2025, 10, 4)
        assert older.title == "Chapter 11"

    def test_title_only_entries_get_alphabetical_fractional_ordinals(self):
        page_url = "https://readcomiconline.li/Comic/Hero-Tale"
        html = """
        <ul>
          <li><a href="/Comic/Hero-Tale">Hero Tale</a></li>
          <li><a href="/Comic/Hero-Tale/Zeta-Extra-Issue?id=2">Zeta Extra Issue</a></li>
          <li><a href="/Comic/Hero-Tale/Alpha-Special-Issue?id=1">Alpha Special Issue</a></li>
          <li><a href="/">Home</a></li>
        </ul>
        """
        chapters = extract_chapters(html, page_url, REFERENCE)

        assert set(chapters) == {Decimal("0.01"), Decimal("0.02")}
        alpha = chapters[Decimal("0.01")]
        zeta = chapters[Decimal("0.02")]
        assert alpha.title == "Alpha Special Issue"
        assert alpha.url == "https://readcomiconline.li/Comic/Hero-Tale/Alpha-Special-Issue?id=1"
        assert alpha.chapter_type is ChapterType.TITLE_ONLY
        assert zeta.title == "Zeta Extra Issue"

    def test_title_only_sort_ignores_case(self):
        page_url = "https://readcomiconline.li/Comic/Hero-Tale"
        html = """
        <ul>
          <li><a href="/Comic/Hero-Tale/Zeta-Extra-Issue?id=2">Zeta Extra Issue</a></li>
          <li><a href="/Comic/Hero-Tale/alpha-special-issue?id=1">alpha special issue</a></li>
        </ul>
        """
        chapters = extract_chapters(html, page_url, REFERENCE)

        assert chapters[Decimal("0.01")].title == "alpha special issue"
        assert chapters[Decimal("0.02")].title == "Zeta Extra Issue"

    def test_title_only_entries_stay_below_first_chapter(self, caplog):
        page_url = "https://readcomiconline.li/Comic/Hero-Tale"
        names = [f"Side Story {a}{b}" for a in "abcde" for b in string.ascii_lowercase]
        links = "\n".join(
            f'<li><a href="/Comic/Hero-Tale/{name.replace(" ", "-")}?id={i}">{name}</a></li>'
            for i, name in enumerate(reversed(names))
        )
        html = f"""
        <ul>
          <li><a href="/Comic/Hero-Tale/Issue-1?id=999">Chapter 1</a></li>
          {links}
        </ul>
        """
        with caplog.at_level(logging.WARNING, logger="manga_scout.chapters"):
            chapters = extract_chapters(html, page_url, REFERENCE)

        title_only = [record for record in chapters.values() if record.chapter_type is ChapterType.TITLE_ONLY]
        assert len(title_only) == 99
        assert max(record.ordinal for record in title_only) == Decimal("0.99")
        assert chapters[Decimal("0.01")].title == "Side Story aa"
        assert chapters[Decimal("0.99")].title == "Side Story du"
        assert chapters[1].title == "Chapter 1"
        assert chapters[1].url == "https://readcomiconline.li/Comic/Hero-Tale/Issue-1?id=999"
        assert "Dropping 31 title-only" in caplog.text

    def test_malformed_href_is_skipped(self):
        page_url = "https://site.example.com/manga/foo"
        html = """
        <section><p><a href="/manga/foo/chapter-1">Chapter 1</a></p></section>
        <section><p><a href="http://[broken/manga/foo/chapter-2">Chapter 2</a></p></section>
        """
        chapters = extract_chapters(html, page_url, REFERENCE)

        assert list(chapters) == [Decimal(1)]
        assert chapters[1].url == "https://site.example.com/manga/foo/chapter-1"

    def test_table_dates_are_attached(self):
        html = """
        <table>
          <tr><td><a href="/manga/hero-tale/ch-2">Chapter 2</a></td><td>Jan 5, 2024</td></tr>
          <tr><td><a href="/manga/hero-tale/ch-1">Chapter 1</a></td><td>12/30/2023</td></tr>
        </table>
        """
        chapters = extract_chapters(html, SERIES_URL, REFERENCE)

        assert chapters[2].upload_date == date(2024, 1, 5)
        assert chapters[1].upload_date == date(2023, 12, 30)

    def test_dated_duplicate_replaces_undated_one(self):
        html = """
        <div><p><a href="/manga/hero-tale/c5-a">Chapter 5</a></p></div>
        <section><div><p><a href="/manga/hero-tale/c5-b">Chapter 5 Jan 2, 2024</a></p></div></section>
        """
        record = extract_chapters(html, SERIES_URL, REFERENCE)[5]

        assert record.url == "https://mangasite.com/manga/hero-tale/c5-b"
        assert record.upload_date == date(2024, 1, 2)
        assert record.title == "Chapter 5"

    def test_first_undated_duplicate_wins(self):
        html = """
        <div><p><a href="/manga/hero-tale/c5-a">Chapter 5</a></p></div>
        <section><div><p><a href="/manga/hero-tale/c5-b">Ch 5</a></p></div></section>
        """
        record = extract_chapters(html, SERIES_URL, REFERENCE)[5]
        assert record.url == "https://mangasite.com/manga/hero-tale/c5-a"

    def test_fast_path_container_wins_over_general_scan(self):
        page_url = "https://site.com/series/hero-tale"
        html = """
        <div class="flex items-center" x-data="{ new_chapter: false, checkNewChapter() {} }">
          <a href="https://site.com/series/hero-tale/chapters/5">Chapter 5</a>
          <time datetime="2024-03-01T10:00:00Z">Mar 1</time>
        </div>
        <a href="/series/hero-tale/bonus-99">Chapter 99</a>
        """
        chapters = extract_chapters(html, page_url, REFERENCE)

        assert list(chapters) == [Decimal(5)]
        assert chapters[5].upload_date == date(2024, 3, 1)

    def test_page_without_chapters_is_empty(self):
        chapters = extract_chapters("<p>Nothing here</p>", SERIES_URL, REFERENCE)
        assert len(chapters) == 0


class UnreadableDocument(StaticDocument):
    async def content(self) -> str:
        raise ScriptEvaluationError("page crashed")


class TestDocumentEntryPoints:
    """Async helpers driven through a DocumentQuery."""

    @pytest.mark.asyncio
    async def test_find_chapter_links_reads_document(self):
        document = StaticDocument('<a href="/manga/hero-tale/ch-1">Chapter 1</a>', SERIES_URL)
        chapters = await find_chapter_links(document, reference_date=REFERENCE)
        assert [record.ordinal for record in chapters.sorted()] == [Decimal(1)]

    @pytest.mark.asyncio
    async def test_unreadable_document_yields_empty_list(self):
        chapters = await find_chapter_links(UnreadableDocument("", SERIES_URL))
        assert len(chapters) == 0

    @pytest.mark.asyncio
    async def test_has_chapter_markers(self):
        listing = StaticDocument("<body><a href='/x'>Chapter 1</a></body>", SERIES_URL)
        landing = StaticDocument("<body><p>Welcome home</p></body>", SERIES_URL)
        assert await has_chapter_markers(listing)
        assert not await has_chapter_markers(landing)


class TestChapterNumbers:
    """Number scanning and gap detection."""

    def test_find_chapter_numbers(self):
        found = find_chapter_numbers("Chapter 1, Chapter 2.5 and #7, then Chapter 1 again")
        assert found == [Decimal(1), Decimal("2.5"), Decimal(7)]

    def test_missing_whole_numbers(self):
        assert find_missing_chapters([1, 2, 4, Decimal("4.5"), 6]) == [Decimal(3), Decimal(5)]

    def test_missing_against_explicit_expectation(self):
        expected = [Decimal(1), Decimal("1.5"), Decimal(2)]
        assert find_missing_chapters([Decimal(1), Decimal(2)], expected) == [Decimal("1.5")]

    def test_nothing_found_means_nothing_expected(self):
        assert find_missing_chapters([]) == []
