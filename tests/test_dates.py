"""Tests for multi-locale date extraction and normalization."""

import pytest

from docintel.extraction.dates import DateExtractor, normalize_date


class TestNormalizeDate:
    """Tests for normalize_date."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("15.03.2024", "15/03/2024"),
            ("5/3/2024", "05/03/2024"),
            ("15-03-2024", "15/03/2024"),
            ("2024-03-15", "15/03/2024"),
            ("15 mars 2024", "15/03/2024"),
            ("1 Février 2023", "01/02/2023"),
            ("12 March 2022", "12/03/2022"),
            ("3 септември 2021", "03/09/2021"),
            ("2019", "2019"),
        ],
    )
    def test_formats(self, raw: str, expected: str) -> None:
        assert normalize_date(raw) == expected

    def test_unrecognized_returned_stripped(self) -> None:
        assert normalize_date("  sometime in spring ") == "sometime in spring"

    @pytest.mark.parametrize("normalized", ["15/03/2024", "01/12/1999", "31/01/2030"])
    def test_idempotent(self, normalized: str) -> None:
        assert normalize_date(normalized) == normalized
        assert normalize_date(normalize_date(normalized)) == normalized


class TestDateExtractor:
    """Tests for DateExtractor."""

    def test_european_date_not_dropped(self) -> None:
        dates = DateExtractor().extract("Échéance 15.03.2024")
        assert len(dates) == 1
        assert dates[0].raw == "15.03.2024"
        assert dates[0].normalized == "15/03/2024"
        assert dates[0].script_or_locale == "european"
        assert dates[0].confidence == 0.9

    def test_iso_date(self) -> None:
        dates = DateExtractor().extract("Issued 2023-11-02 in Geneva")
        assert [(d.normalized, d.script_or_locale) for d in dates] == [("02/11/2023", "iso")]

    def test_named_months_per_locale(self, macedonian_text: str) -> None:
        dates = DateExtractor().extract(macedonian_text)
        assert [(d.normalized, d.script_or_locale) for d in dates] == [("12/03/2023", "mk")]

    def test_french_months(self, french_text: str) -> None:
        dates = DateExtractor().extract(french_text)
        assert [d.normalized for d in dates] == ["15/01/2024", "20/03/2024"]
        assert all(d.confidence == 0.85 for d in dates)

    def test_bare_year_only_outside_full_dates(self) -> None:
        dates = DateExtractor().extract("Prime 2024, échéance 15.03.2024")
        assert [(d.raw, d.script_or_locale) for d in dates] == [
            ("15.03.2024", "european"),
            ("2024", "year"),
        ]
        assert dates[1].confidence == 0.5

    def test_year_inside_full_date_not_repeated(self) -> None:
        dates = DateExtractor().extract("Date: 01.02.2020")
        assert [d.raw for d in dates] == ["01.02.2020"]

    def test_duplicates_collapse(self) -> None:
        dates = DateExtractor().extract("15.03.2024 and again 15.03.2024")
        assert len(dates) == 1

    def test_bounded(self) -> None:
        text = " ".join(f"0{i}.01.2024" for i in range(1, 10))
        assert len(DateExtractor(max_dates=5).extract(text)) == 5

    def test_long_digit_runs_ignored(self) -> None:
        assert DateExtractor().extract("Reference 1115.03.20245") == []

    def test_no_dates(self) -> None:
        assert DateExtractor().extract("No temporal information here") == []
