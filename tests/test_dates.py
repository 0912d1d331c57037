from datetime import date, datetime

import pytest
from bs4 import BeautifulSoup

from manga_scout.dates import (
    build_table_date_map,
    clean_title,
    find_date,
    find_nearby_date,
    lookup_table_date,
    parse_absolute_date,
    parse_relative_date,
)

REFERENCE = date(2025, 10, 7)


class TestAbsoluteDates:
    """Absolute formats, tried in priority order."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("Released 10/07/2025", date(2025, 10, 7)),
            ("3/4/24", date(2024, 3, 4)),
            ("posted 04-15-2023", date(2023, 4, 15)),
            ("2024-1-5", date(2024, 1, 5)),
            ("Oct 7, 2025", date(2025, 10, 7)),
            ("September 30 2024", date(2024, 9, 30)),
            ("7 October 2025", date(2025, 10, 7)),
        ],
    )
    def test_formats(self, text, expected):
        assert parse_absolute_date(text, REFERENCE).value == expected

    def test_today_and_yesterday(self):
        assert parse_absolute_date("Today", REFERENCE).value == REFERENCE
        assert parse_absolute_date("yesterday", REFERENCE).value == date(2025, 10, 6)

    def test_invalid_calendar_date_is_ignored(self):
        assert parse_absolute_date("13/45/2024", REFERENCE) is None

    def test_match_text_is_reported(self):
        assert parse_absolute_date("Chapter 4 Jan 5, 2024", REFERENCE).text == "Jan 5, 2024"


class TestRelativeDates:
    """``N units ago`` phrases resolved against a reference moment."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("3 days ago", date(2025, 10, 4)),
            ("2 weeks ago", date(2025, 9, 23)),
            ("1d ago", date(2025, 10, 6)),
            ("10 minutes ago", REFERENCE),
            ("just now", REFERENCE),
            ("2 hours ago", REFERENCE),
        ],
    )
    def test_units(self, text, expected):
        assert parse_relative_date(text, REFERENCE).value == expected

    def test_hours_cross_midnight_with_a_timestamp_reference(self):
        moment = datetime(2025, 10, 7, 3, 0)
        assert parse_relative_date("5h ago", moment).value == date(2025, 10, 6)

    def test_months_clamp_to_month_end(self):
        assert parse_relative_date("1 month ago", date(2025, 3, 31)).value == date(2025, 2, 28)
        assert parse_relative_date("2m ago", date(2025, 3, 31)).value == date(2025, 1, 31)

    def test_years_clamp_leap_day(self):
        assert parse_relative_date("1 year ago", date(2024, 2, 29)).value == date(2023, 2, 28)

    def test_absolute_wins_over_relative(self):
        assert find_date("01/02/2024 (3 days ago)", REFERENCE).value == date(2024, 1, 2)

    def test_no_date(self):
        assert find_date("Chapter 12", REFERENCE) is None


class TestCleanTitle:
    """Date text removal from chapter titles."""

    def test_relative_phrase_removed(self):
        assert clean_title("Chapter 11 - 3 days ago") == "Chapter 11"

    def test_matched_absolute_text_removed(self):
        assert clean_title("Chapter 4 Jan 5, 2024", "Jan 5, 2024") == "Chapter 4"

    def test_title_kept_when_nothing_remains(self):
        assert clean_title("3 days ago") == "3 days ago"


class TestStructuralDates:
    """Dates found in tables and around the link."""

    def test_table_map_and_lookup(self):
        soup = BeautifulSoup(
            "<table><tr><td><a href='/c/2'>Chapter 2</a></td><td>2 days ago</td></tr></table>",
            "html.parser",
        )
        date_map = build_table_date_map(soup, "https://site.com/manga/x", REFERENCE)

        assert lookup_table_date(date_map, "Chapter 2", "https://site.com/c/2") == date(2025, 10, 5)
        assert lookup_table_date(date_map, "Other", "https://site.com/c/2") == date(2025, 10, 5)
        assert lookup_table_date(date_map, "Nope", "https://site.com/c/9") is None

    def test_nearby_sibling_date(self):
        soup = BeautifulSoup(
            "<li><a href='/c/3'>Chapter 3</a><span class='date'>Mar 3, 2024</span></li>",
            "html.parser",
        )
        assert find_nearby_date(soup.a, REFERENCE) == date(2024, 3, 3)

    def test_parent_sibling_date(self):
        soup = BeautifulSoup(
            "<div><div class='name'><a href='/c/3'>Chapter 3</a></div><div class='when'>2024-03-03</div></div>",
            "html.parser",
        )
        assert find_nearby_date(soup.a, REFERENCE) == date(2024, 3, 3)
