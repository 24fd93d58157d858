"""
MDGRAPH DELTA ENGINE - Incremental Graph Changes

Given one classified filesystem change and the shared ReferenceIndex,
compute the minimal set of node/edge additions and removals, and commit the
new state to the index.

State Machine (per document id):
    created : phantom -> real (remove phantom, add real node)
              absent  -> real
    modified: references diffed as sets; phantoms appear/disappear as
              their last reference comes and goes
    deleted : real -> phantom (still referenced elsewhere)
              real -> absent  (no remaining references)

Failure Semantics:
    Id derivation and content reading happen before the first index
    mutation. If either raises, the index is left exactly as it was. All
    index mutations after that point are in-memory and cannot fail.

Callers are expected to hold ReferenceIndex.locked() around each handler.
"""
import logging
from pathlib import Path
from typing import Callable, List, Union

import msgspec

from core.schemas import Node, Edge
from core.reference_index import ReferenceIndex
from core.graph_builder import Extractor
from domain.markdown_parser import parse_markdown
from infrastructure.document_source import (
    MarkdownDocument,
    derive_document_id,
    read_document,
)


logger = logging.getLogger("mdgraph.delta")

PathLike = Union[str, Path]
Reader = Callable[[PathLike], MarkdownDocument]


class GraphDelta(msgspec.Struct, kw_only=True):
    """
    Changes produced by one filesystem event.

    Lists keep computation order. An empty delta means no observable change
    and is never emitted.
    """
    nodes_added: List[Node] = msgspec.field(default_factory=list)
    nodes_removed: List[str] = msgspec.field(default_factory=list)
    nodes_updated: List[Node] = msgspec.field(default_factory=list)
    edges_added: List[Edge] = msgspec.field(default_factory=list)
    edges_removed: List[Edge] = msgspec.field(default_factory=list)

    def is_empty(self) -> bool:
        """Check if delta contains any changes."""
        return (
            not self.nodes_added and
            not self.nodes_removed and
            not self.nodes_updated and
            not self.edges_added and
            not self.edges_removed
        )


def _retire_orphaned_phantom(
    target: str,
    source_id: str,
    index: ReferenceIndex,
    delta: GraphDelta,
) -> None:
    """
    Remove the phantom `target` if `source_id` held its last references.

    Counted before source_id's references are replaced, with source_id's own
    occurrences discounted, so a document linking twice to a phantom still
    retires it.
    """
    if not index.is_phantom(target):
        return
    if index.count_incoming_links(target, exclude=source_id) == 0:
        delta.nodes_removed.append(target)
        index.remove_phantom(target)


def _materialize_phantom(
    target: str,
    source_id: str,
    new_links: List[str],
    index: ReferenceIndex,
    delta: GraphDelta,
) -> None:
    """
    Add a phantom for `target` if it is neither a document nor a phantom.

    A fresh phantom is referenced by source_id only, so its value is the
    number of occurrences in source_id's new references.
    """
    if target == source_id:
        return
    if not index.has_document(target) and not index.is_phantom(target):
        delta.nodes_added.append(Node.phantom(target, value=new_links.count(target)))
        index.add_phantom(target)


# =============================================================================
# HANDLERS
# =============================================================================

def handle_file_created(
    path: PathLike,
    index: ReferenceIndex,
    reader: Reader = read_document,
    extractor: Extractor = parse_markdown,
) -> GraphDelta:
    """
    Handle a new markdown document.

    1. Retire the phantom for this id, if any
    2. Add a real node valued by references from other documents
    3. Add an edge per reference, with phantoms for missing targets
    4. Store the document in the index

    Raises:
        DocumentIdError, DocumentReadError: Before any index mutation
    """
    document = reader(path)
    parsed = extractor(document.content)
    doc_id = document.id

    if index.has_document(doc_id):
        logger.debug(f"Create for known document '{doc_id}', handling as modify")
        return _diff_references(doc_id, parsed.wiki_links, index)

    delta = GraphDelta()

    if index.is_phantom(doc_id):
        delta.nodes_removed.append(doc_id)
        index.remove_phantom(doc_id)

    delta.nodes_added.append(Node.real(
        doc_id,
        str(path),
        value=index.count_incoming_links(doc_id) + parsed.wiki_links.count(doc_id),
        tags=parsed.hashtags,
    ))

    for link in parsed.wiki_links:
        delta.edges_added.append(Edge(doc_id, link))
        _materialize_phantom(link, doc_id, parsed.wiki_links, index, delta)

    index.add_document(doc_id, path, parsed.wiki_links, parsed.hashtags)
    return delta


def handle_file_modified(
    path: PathLike,
    index: ReferenceIndex,
    reader: Reader = read_document,
    extractor: Extractor = parse_markdown,
) -> GraphDelta:
    """
    Handle an edited markdown document.

    Old and new references are compared as sets. Equal sets produce an empty
    delta and leave the index untouched, so tag-only and
    multiplicity-only edits are not reported.

    Raises:
        DocumentIdError, DocumentReadError: Before any index mutation
    """
    document = reader(path)
    parsed = extractor(document.content)

    if not index.has_document(document.id):
        logger.debug(f"Modify for unknown document '{document.id}', handling as create")
        return handle_file_created(
            path,
            index,
            reader=lambda _: document,
            extractor=lambda _: parsed,
        )

    return _diff_references(document.id, parsed.wiki_links, index)


def _diff_references(doc_id: str, new_links: List[str], index: ReferenceIndex) -> GraphDelta:
    delta = GraphDelta()

    old_links = index.get_links(doc_id)
    old_set = set(old_links)
    new_set = set(new_links)

    if old_set == new_set:
        return delta

    # Membership is decided on sets; one edge per stored occurrence
    for link in old_links:
        if link in new_set:
            continue
        delta.edges_removed.append(Edge(doc_id, link))
        _retire_orphaned_phantom(link, doc_id, index, delta)

    for link in new_links:
        if link in old_set:
            continue
        delta.edges_added.append(Edge(doc_id, link))
        _materialize_phantom(link, doc_id, new_links, index, delta)

    index.update_links(doc_id, new_links)
    return delta


def handle_file_deleted(path: PathLike, index: ReferenceIndex) -> GraphDelta:
    """
    Handle a removed markdown document from cached state only.

    1. Remove every outgoing edge, retiring phantoms only it referenced
    2. Remove the node; re-add it as a phantom if others still reference it
    3. Drop the document from the index

    A path whose id the index never knew, or a shadowed duplicate of a
    kept id, yields an empty delta.

    Raises:
        DocumentIdError: Before any index mutation
    """
    doc_id = derive_document_id(path)
    delta = GraphDelta()

    if not index.has_document(doc_id):
        logger.debug(f"Delete for unknown document '{doc_id}', nothing to do")
        return delta

    if Path(index.get_path(doc_id)).resolve() != Path(path).resolve():
        logger.debug(f"Delete of shadowed duplicate {path}, '{doc_id}' kept")
        return delta

    for link in index.get_links(doc_id):
        delta.edges_removed.append(Edge(doc_id, link))
        _retire_orphaned_phantom(link, doc_id, index, delta)

    delta.nodes_removed.append(doc_id)
    incoming = index.count_incoming_links(doc_id, exclude=doc_id)
    if incoming > 0:
        delta.nodes_added.append(Node.phantom(doc_id, value=incoming))
        index.add_phantom(doc_id)

    index.remove_document(doc_id)
    return delta
