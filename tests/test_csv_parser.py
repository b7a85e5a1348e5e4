"""Tests for CSV upload parsing."""

from datetime import datetime, timezone

import pytest

from intel_triage.errors import ParseError
from intel_triage.processors.csv_parser import parse_csv, split_csv_line


class TestSplitCsvLine:
    def test_quoted_commas_and_escaped_quotes(self):
        assert split_csv_line('"a,b","c""d",e') == ["a,b", 'c"d', "e"]

    def test_fields_are_trimmed(self):
        assert split_csv_line(" one , two ,three ") == ["one", "two", "three"]

    def test_empty_fields_kept(self):
        assert split_csv_line("a,,c") == ["a", "", "c"]

    def test_quote_toggles_mid_field(self):
        assert split_csv_line('x"y,z"w,q') == ["xy,zw", "q"]

    def test_leading_quoted_word_then_text(self):
        assert split_csv_line('"alert" issued near plant,bob') == ["alert issued near plant", "bob"]

    def test_unterminated_quote(self):
        with pytest.raises(ParseError):
            split_csv_line('"never closed,x')


class TestParseCsv:
    def test_maps_header_aliases(self):
        text = "Text,Platform,Created,Country,User\nHello from the border,twitter,2024-01-01,UA,watcher\n"

        items = parse_csv(text, label="export.csv")

        assert len(items) == 1
        item = items[0]
        assert item.body == "Hello from the border"
        assert item.origin == "twitter"
        assert item.location == "UA"
        assert item.author == "watcher"
        assert item.published == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_label_used_when_no_source_column(self):
        items = parse_csv("content\nSomething happened\n", label="upload.csv")

        assert items[0].origin == "upload.csv"

    def test_title_defaults_to_leading_words(self):
        content = " ".join(f"w{i}" for i in range(20))
        items = parse_csv(f"message\n{content}\n")

        assert items[0].title == " ".join(f"w{i}" for i in range(12))

    def test_explicit_title_column(self):
        items = parse_csv('headline,body\n"Plant fire","Fire at the plant, no injuries"\n')

        assert items[0].title == "Plant fire"
        assert items[0].body == "Fire at the plant, no injuries"

    def test_requires_header_and_data_row(self):
        with pytest.raises(ParseError):
            parse_csv("content\n")

    def test_blank_lines_do_not_count(self):
        with pytest.raises(ParseError):
            parse_csv("\n\ncontent\n\n")

    def test_rows_with_empty_content_skipped(self):
        items = parse_csv("content,source\n ,x\nreal post,y\n")

        assert [i.body for i in items] == ["real post"]

    def test_quoted_prefix_row_is_kept(self):
        items = parse_csv('content,author\n"alert" issued near plant,bob\n')

        assert [(i.body, i.author) for i in items] == [("alert issued near plant", "bob")]

    def test_malformed_row_skipped_and_parse_continues(self):
        text = 'content,source\n"broken row,x\ngood row,y\n'

        items = parse_csv(text)

        assert [i.body for i in items] == ["good row"]
