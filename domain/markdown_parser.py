"""
MDGRAPH MARKDOWN PARSER - Reference and Tag Extraction

Regex-based extraction of the two structural markers the graph cares about:
- Wiki-links: [[title]] - a reference to another document by id
- Hashtags: #tag - a word-character tag

Matches are returned in occurrence order with duplicates preserved, since
the graph is a multigraph and a repeated reference counts twice.

Patterns are compiled once at import time.

Note:
    Hashtags are matched anywhere, including inside code blocks. Context-aware
    matching would need a real markdown parser.
"""
import re
from typing import List

import msgspec


WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")
HASHTAG_PATTERN = re.compile(r"#(\w+)")


class ParsedContent(msgspec.Struct, kw_only=True, frozen=True):
    """Outgoing references and tags found in one document."""
    wiki_links: List[str] = []
    hashtags: List[str] = []


def extract_wiki_links(content: str) -> List[str]:
    """
    Extract wiki-link targets without brackets.

    Matches [[text]], [[multi word text]], [[text-with-dashes]].
    Does not match [single bracket].
    """
    return WIKI_LINK_PATTERN.findall(content)


def extract_hashtags(content: str) -> List[str]:
    """Extract hashtag names without the hash symbol."""
    return HASHTAG_PATTERN.findall(content)


def parse_markdown(content: str) -> ParsedContent:
    """
    Parse markdown content and extract wiki-links and hashtags.

    Example:
        >>> parse_markdown("Some [[link]] with #tag")
        ParsedContent(wiki_links=['link'], hashtags=['tag'])
    """
    return ParsedContent(
        wiki_links=extract_wiki_links(content),
        hashtags=extract_hashtags(content),
    )
