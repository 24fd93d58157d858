"""
MDGRAPH GRAPH BUILDER - Full-Scan Snapshot Construction

Turns a complete document set into a GraphSnapshot in three passes:
1. Edges: one edge per wiki-link occurrence, regardless of whether the
   target exists. Incoming counts are tallied by the graph itself.
2. Real nodes: one per document, value = incoming count, with hashtags.
3. Phantom nodes: one per referenced id without a document, in
   first-reference order.

Architecture:
- The tally lives in a rustworkx.PyDiGraph(multigraph=True); a node's value
  is its in_degree, so repeated references count with multiplicity
- No I/O here except in scan_and_build_graph(), which delegates reading to
  infrastructure.document_source

Performance:
- O(documents x average references per document)
"""
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Union

import rustworkx as rx

from core.schemas import Node, Edge, GraphSnapshot
from domain.markdown_parser import ParsedContent, parse_markdown
from infrastructure.document_source import MarkdownDocument, scan_directory


logger = logging.getLogger("mdgraph.graph_builder")

Extractor = Callable[[str], ParsedContent]


def dedupe_documents(documents: Iterable[MarkdownDocument]) -> List[MarkdownDocument]:
    """
    Drop documents whose id was already seen.

    Ids are file stems, so two files with the same name in different
    directories collide. The first one in scan order wins.
    """
    unique: List[MarkdownDocument] = []
    seen: Dict[str, str] = {}
    for doc in documents:
        if doc.id in seen:
            logger.warning(
                f"Duplicate document id '{doc.id}': keeping {seen[doc.id]}, ignoring {doc.path}"
            )
            continue
        seen[doc.id] = doc.path
        unique.append(doc)
    return unique


def build_graph(
    documents: Iterable[MarkdownDocument],
    extractor: Extractor = parse_markdown,
) -> GraphSnapshot:
    """
    Build a complete snapshot from already-read documents.

    Args:
        documents: Documents as returned by the scanner
        extractor: Content extractor returning wiki-links and hashtags

    Returns:
        GraphSnapshot where every edge endpoint is exactly one node
    """
    docs = dedupe_documents(documents)

    graph = rx.PyDiGraph(multigraph=True)
    node_map: Dict[str, int] = {}

    def index_of(node_id: str) -> int:
        idx = node_map.get(node_id)
        if idx is None:
            idx = graph.add_node(node_id)
            node_map[node_id] = idx
        return idx

    # Pass 1: edges and incoming tallies
    edges: List[Edge] = []
    parsed_docs: List[ParsedContent] = []
    referenced: Dict[str, None] = {}  # insertion-ordered set

    for doc in docs:
        parsed = extractor(doc.content)
        parsed_docs.append(parsed)
        source_idx = index_of(doc.id)
        for link in parsed.wiki_links:
            edges.append(Edge(doc.id, link))
            graph.add_edge(source_idx, index_of(link), None)
            referenced.setdefault(link, None)

    # Pass 2: real nodes
    nodes: List[Node] = []
    doc_ids = set()
    for doc, parsed in zip(docs, parsed_docs):
        nodes.append(Node.real(
            doc.id,
            doc.path,
            value=graph.in_degree(node_map[doc.id]),
            tags=parsed.hashtags,
        ))
        doc_ids.add(doc.id)

    # Pass 3: phantom nodes for dangling references
    for target in referenced:
        if target not in doc_ids:
            nodes.append(Node.phantom(target, value=graph.in_degree(node_map[target])))

    logger.debug(
        f"Built graph: {len(nodes)} nodes ({len(nodes) - len(doc_ids)} phantom), "
        f"{len(edges)} edges"
    )
    return GraphSnapshot(nodes=nodes, edges=edges)


def scan_and_build_graph(
    root: Union[str, Path],
    extractor: Extractor = parse_markdown,
) -> GraphSnapshot:
    """
    Scan a directory and build its graph in one call.

    Raises:
        DocumentAccessError: If the directory cannot be scanned
    """
    return build_graph(scan_directory(root), extractor)
