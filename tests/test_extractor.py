"""Unit tests for ruling text extraction.

Tests cover:
- HTS code acceptance and rejection
- Issue date parsing
- Description and classification selection
- Keyword normalization and ranking
- Full-page extraction and the short-page sentinel
"""

from datetime import date

import pytest

from indexer.extractor import (
    extract_description_and_classification,
    extract_hts_codes,
    extract_issue_date,
    extract_keywords,
    extract_ruling_fields,
    html_to_text,
    is_valid_hts_code,
    merge_terms,
    normalize_terms,
)


class TestHTSCodes:
    """HTS code pattern tests."""

    @pytest.mark.parametrize("code", ["6402.91.50", "6404.19.90", "6402.91", "8517.62.0090"])
    def test_valid_codes_accepted(self, code):
        assert is_valid_hts_code(code)
        assert extract_hts_codes(f"classified under subheading {code}, HTSUS.") == {code}

    @pytest.mark.parametrize("code", ["640291", "64.02.91.50", "6402", "6402.9"])
    def test_malformed_codes_rejected(self, code):
        assert not is_valid_hts_code(code)
        assert extract_hts_codes(f"see {code} for details") == set()

    def test_codes_deduplicated(self):
        text = "6402.91.50 applies. We affirm 6402.91.50 and reject 6404.19.90."
        assert extract_hts_codes(text) == {"6402.91.50", "6404.19.90"}

    def test_empty_text(self):
        assert extract_hts_codes("") == set()
        assert not is_valid_hts_code("")


class TestIssueDate:
    """Issue date extraction tests."""

    def test_long_form_date(self):
        assert extract_issue_date("Issued January 5, 2023 by NY") == date(2023, 1, 5)

    def test_date_without_comma(self):
        assert extract_issue_date("March 12 2021") == date(2021, 3, 12)

    def test_first_date_wins(self):
        text = "February 1, 2020 ... referring to a ruling of May 3, 2015"
        assert extract_issue_date(text) == date(2020, 2, 1)

    def test_impossible_date_is_absent(self):
        assert extract_issue_date("February 30, 2021") is None

    def test_no_date(self):
        assert extract_issue_date("no dates here") is None


class TestDescriptionAndClassification:
    """Description paragraph and classification snippet selection."""

    def test_cue_paragraph_preferred(self):
        paragraphs = [
            "N330001",
            "Dear Ms. Smith: this letter responds to your request of last month.",
            "The article is a cotton knit shirt with a crew neck and short hemmed sleeves.",
        ]
        description, _ = extract_description_and_classification(paragraphs)
        assert description == paragraphs[2]

    def test_falls_back_to_first_paragraph(self):
        paragraphs = ["Short intro", "Another short one"]
        description, classification = extract_description_and_classification(paragraphs)
        assert description == "Short intro"
        assert classification == ""

    def test_no_paragraphs(self):
        assert extract_description_and_classification([]) == ("", "")

    def test_overlong_paragraph_skipped(self):
        long_paragraph = "The merchandise " + "x" * 600
        paragraphs = [long_paragraph, "The product is a leather handbag with a shoulder strap and zipper."]
        description, _ = extract_description_and_classification(paragraphs)
        assert description == paragraphs[1]

    def test_classification_snippet(self):
        text = ("The shirt is classifiable under subheading 6109.10.00, HTSUS, which provides "
                "for T-shirts of cotton. The rate of duty will be 16.5 percent.")
        _, classification = extract_description_and_classification([], text)
        assert classification.startswith("classifiable under subheading 6109.10.00")
        assert "T-shirts of cotton" in classification
        assert "rate of duty" not in classification


class TestKeywords:
    """Keyword normalization and frequency ranking."""

    def test_normalization_drops_short_tokens_and_stopwords(self):
        assert normalize_terms("The SHOE, with 2 rubber soles that fit!") == ["shoe", "rubber", "soles"]

    def test_ranked_by_frequency_ties_by_first_occurrence(self):
        text = "mango zebra apple zebra apple mango zebra"
        assert extract_keywords(text) == ["zebra", "mango", "apple"]

    def test_limit(self):
        text = " ".join(f"term{chr(97 + i)}word" for i in range(26))
        assert len(extract_keywords(text, limit=5)) == 5

    def test_merge_terms_keeps_first_occurrence(self):
        assert merge_terms(["shoe", "sole"], ["sole", "6404.11.90"]) == ["shoe", "sole", "6404.11.90"]


class TestRulingExtraction:
    """Full page extraction."""

    def test_extracts_all_fields(self, ruling_html):
        extracted = extract_ruling_fields(ruling_html)

        assert extracted is not None
        assert extracted.hts_codes == {"6404.11.90", "6402.91.50"}
        assert extracted.issue_date == date(2023, 1, 5)
        assert extracted.product_description.startswith("The merchandise under consideration")
        assert extracted.classification.startswith("classified under subheading 6404.11.90")
        assert "shoe" in extracted.keywords
        assert "rubber" in extracted.keywords

    def test_page_chrome_ignored(self, ruling_html):
        text = html_to_text(ruling_html)
        assert "9999.99.99" not in text
        assert "tracking" not in text
        assert "1234.56" not in text

    def test_short_page_is_not_a_ruling(self):
        assert extract_ruling_fields("<html><body><p>Ruling not found</p></body></html>") is None

    def test_threshold_is_configurable(self):
        html = "<html><body><main><p>Classified under 6402.91.50.</p></main></body></html>"
        assert extract_ruling_fields(html) is None
        assert extract_ruling_fields(html, min_content_length=10) is not None
