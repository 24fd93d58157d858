"""
Unit tests for domain/markdown_parser.py - Reference and Tag Extraction
"""
from domain.markdown_parser import (
    ParsedContent,
    extract_hashtags,
    extract_wiki_links,
    parse_markdown,
)


def test_extract_wiki_links_in_order_with_duplicates():
    content = "Start [[Alpha]], then [[multi word title]], [[Alpha]] again."
    assert extract_wiki_links(content) == ["Alpha", "multi word title", "Alpha"]


def test_wiki_links_ignore_single_brackets_and_empty():
    assert extract_wiki_links("[single] [[]] [ [not] ]") == []


def test_wiki_link_with_dashes_and_digits():
    assert extract_wiki_links("[[note-2024-01]]") == ["note-2024-01"]


def test_extract_hashtags():
    assert extract_hashtags("#idea and #todo_later, not # space #idea") == [
        "idea",
        "todo_later",
        "idea",
    ]


def test_hashtags_match_markdown_headings():
    """Heading markers followed by a space are not tags; '#Heading' is."""
    assert extract_hashtags("# Heading\n#Tagged") == ["Tagged"]


def test_parse_markdown():
    parsed = parse_markdown("Some [[link]] with #tag")
    assert parsed == ParsedContent(wiki_links=["link"], hashtags=["tag"])


def test_parse_empty():
    parsed = parse_markdown("")
    assert parsed.wiki_links == []
    assert parsed.hashtags == []
