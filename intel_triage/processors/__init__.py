"""Normalization, CSV parsing, dedup and classification."""

from .classify import ClassificationService, KeywordClassifier
from .csv_parser import parse_csv, split_csv_line
from .dedup import DedupStore
from .normalize import clean_html_to_text, normalize_plain_text, to_text

__all__ = [
    "ClassificationService",
    "KeywordClassifier",
    "parse_csv",
    "split_csv_line",
    "DedupStore",
    "clean_html_to_text",
    "normalize_plain_text",
    "to_text",
]
