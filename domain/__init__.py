"""
MDGRAPH DOMAIN LAYER

This module provides:
- parse_markdown: Wiki-link and hashtag extraction
"""
from .markdown_parser import (
    ParsedContent,
    parse_markdown,
    extract_wiki_links,
    extract_hashtags,
)

__all__ = [
    "ParsedContent",
    "parse_markdown",
    "extract_wiki_links",
    "extract_hashtags",
]
