"""
MDGRAPH REFERENCE INDEX - The Authoritative Derived State

Keeps what the delta engine needs between filesystem events:
- documents: id -> path for every currently-real document
- links: id -> outgoing wiki-link targets (last parse, duplicates kept)
- hashtags: id -> tags
- phantoms: ids currently materialized as phantom nodes

Invariants (after every processed event):
- An id is never both a document and a phantom
- X is a phantom iff X has no document and some document links to X
- A node's value equals the number of stored references to it

Thread Safety:
    Mutators are plain and synchronous. The watcher holds locked() for the
    whole read-compute-mutate sequence of one event, so two events never
    interleave against the same state.
"""
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Union

from core.schemas import Node, Edge, GraphSnapshot, DocumentIdError
from core.graph_builder import Extractor, dedupe_documents
from domain.markdown_parser import parse_markdown
from infrastructure.document_source import MarkdownDocument, derive_document_id


logger = logging.getLogger("mdgraph.reference_index")


class ReferenceIndex:
    """
    In-memory reference cache for incremental graph updates.

    Usage:
        index = ReferenceIndex.from_documents(scan_directory(root))

        with index.locked():
            delta = handle_file_modified(path, index)
    """

    def __init__(self):
        self._documents: Dict[str, str] = {}
        self._links: Dict[str, List[str]] = {}
        self._hashtags: Dict[str, List[str]] = {}
        self._phantoms: Set[str] = set()
        self._lock = threading.RLock()

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[MarkdownDocument],
        extractor: Extractor = parse_markdown,
    ) -> "ReferenceIndex":
        """
        Seed an index from a full scan.

        Phantoms are every referenced id that has no document.
        """
        index = cls()
        index.reset(documents, extractor)
        return index

    def reset(
        self,
        documents: Iterable[MarkdownDocument],
        extractor: Extractor = parse_markdown,
    ) -> None:
        """Replace the whole state with a fresh scan."""
        docs = dedupe_documents(documents)
        parsed = [(doc, extractor(doc.content)) for doc in docs]

        with self._lock:
            self._documents.clear()
            self._links.clear()
            self._hashtags.clear()
            self._phantoms.clear()

            for doc, content in parsed:
                self._documents[doc.id] = doc.path
                self._links[doc.id] = list(content.wiki_links)
                self._hashtags[doc.id] = list(content.hashtags)

            for links in self._links.values():
                for target in links:
                    if target not in self._documents:
                        self._phantoms.add(target)

        logger.info(
            f"Reference index seeded: {len(self._documents)} documents, "
            f"{len(self._phantoms)} phantoms"
        )

    @contextmanager
    def locked(self) -> Iterator["ReferenceIndex"]:
        """Hold the index lock for one atomic read-compute-mutate sequence."""
        with self._lock:
            yield self

    # =========================================================================
    # QUERIES
    # =========================================================================

    def has_document(self, doc_id: str) -> bool:
        """True if the id denotes a currently-known document."""
        return doc_id in self._documents

    def has_document_path(self, path: Union[str, Path]) -> bool:
        """True if the path's stem denotes a currently-known document."""
        try:
            return self.has_document(derive_document_id(path))
        except DocumentIdError:
            return False

    def is_phantom(self, doc_id: str) -> bool:
        return doc_id in self._phantoms

    def get_path(self, doc_id: str) -> Optional[str]:
        return self._documents.get(doc_id)

    def get_links(self, doc_id: str) -> List[str]:
        """Outgoing references of a document (a copy, duplicates kept)."""
        return list(self._links.get(doc_id, []))

    def get_tags(self, doc_id: str) -> List[str]:
        return list(self._hashtags.get(doc_id, []))

    def count_incoming_links(self, target: str, exclude: Optional[str] = None) -> int:
        """
        Count references to `target` across all stored documents.

        Counts with multiplicity. Linear in the total number of stored
        references.

        Args:
            target: Node id being referenced
            exclude: Optional document id whose references are not counted
        """
        return sum(
            links.count(target)
            for source, links in self._links.items()
            if source != exclude
        )

    def document_ids(self) -> List[str]:
        return list(self._documents)

    def phantom_ids(self) -> Set[str]:
        return set(self._phantoms)

    def __len__(self) -> int:
        return len(self._documents)

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_document(
        self,
        doc_id: str,
        path: Union[str, Path],
        links: List[str],
        tags: List[str],
    ) -> None:
        """Add or replace a document entry. Ends its phantom status."""
        self._documents[doc_id] = str(path)
        self._links[doc_id] = list(links)
        self._hashtags[doc_id] = list(tags)
        self._phantoms.discard(doc_id)

    def update_links(self, doc_id: str, links: List[str]) -> None:
        """Replace (not merge) a document's outgoing references."""
        self._links[doc_id] = list(links)

    def update_tags(self, doc_id: str, tags: List[str]) -> None:
        self._hashtags[doc_id] = list(tags)

    def remove_document(self, doc_id: str) -> None:
        """Remove a document entry, its references and tags."""
        self._documents.pop(doc_id, None)
        self._links.pop(doc_id, None)
        self._hashtags.pop(doc_id, None)

    def add_phantom(self, doc_id: str) -> None:
        self._phantoms.add(doc_id)

    def remove_phantom(self, doc_id: str) -> None:
        self._phantoms.discard(doc_id)

    # =========================================================================
    # SNAPSHOT
    # =========================================================================

    def to_snapshot(self) -> GraphSnapshot:
        """
        Materialize the graph as the index currently sees it.

        Phantom nodes come from the tracked phantom set, not from a fresh
        derivation, so comparing this with a full rescan checks the
        incremental bookkeeping.
        """
        with self._lock:
            nodes: List[Node] = [
                Node.real(
                    doc_id,
                    path,
                    value=self.count_incoming_links(doc_id),
                    tags=self._hashtags.get(doc_id, []),
                )
                for doc_id, path in self._documents.items()
            ]
            nodes.extend(
                Node.phantom(phantom_id, value=self.count_incoming_links(phantom_id))
                for phantom_id in sorted(self._phantoms)
            )
            edges = [
                Edge(source, target)
                for source, links in self._links.items()
                for target in links
            ]
        return GraphSnapshot(nodes=nodes, edges=edges)
