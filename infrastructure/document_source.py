"""
MDGRAPH DOCUMENT SOURCE - Markdown File Discovery and Reading

Recursively collects markdown documents (.md) below a root directory and
reads them into MarkdownDocument records. The document id is the file stem,
so `notes/idea.md` and `archive/idea.md` collide on the id "idea".

Error Handling:
- A missing, non-directory or unreadable root raises DocumentAccessError
  and aborts the whole scan
- A file name that is not valid UTF-8 gets the placeholder id "unknown"
  during scans instead of failing them
- Single-file reads (used by the watcher) raise DocumentIdError or
  DocumentReadError so the caller can skip the event
"""
import logging
from pathlib import Path
from typing import List, Union

import msgspec

from core.schemas import DocumentAccessError, DocumentIdError, DocumentReadError


logger = logging.getLogger("mdgraph.document_source")

DOCUMENT_SUFFIX = ".md"
UNKNOWN_DOCUMENT_ID = "unknown"

PathLike = Union[str, Path]


class MarkdownDocument(msgspec.Struct, kw_only=True, frozen=True):
    """A discovered markdown file with its content."""
    id: str
    path: str
    content: str


# =============================================================================
# PATH HELPERS
# =============================================================================

def is_document_path(path: PathLike) -> bool:
    """True if the path names a markdown document (by extension only)."""
    return Path(path).suffix == DOCUMENT_SUFFIX


def derive_document_id(path: PathLike) -> str:
    """
    Derive a document id (the file stem) from a path.

    Raises:
        DocumentIdError: If the stem is empty or not valid UTF-8
    """
    stem = Path(path).stem
    if not stem:
        raise DocumentIdError(str(path))
    try:
        stem.encode("utf-8")
    except UnicodeEncodeError:
        raise DocumentIdError(str(path)) from None
    return stem


def _scan_document_id(path: Path) -> str:
    try:
        return derive_document_id(path)
    except DocumentIdError:
        logger.warning(f"Non-UTF-8 document name, using placeholder id: {path!r}")
        return UNKNOWN_DOCUMENT_ID


# =============================================================================
# READING
# =============================================================================

def read_document(path: PathLike) -> MarkdownDocument:
    """
    Read a single markdown document.

    Raises:
        DocumentIdError: If no id can be derived from the path
        DocumentReadError: If the file cannot be read or is not UTF-8
    """
    doc_id = derive_document_id(path)
    try:
        content = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentReadError(str(path), str(e)) from e
    return MarkdownDocument(id=doc_id, path=str(path), content=content)


def scan_directory(root: PathLike) -> List[MarkdownDocument]:
    """
    Recursively scan a directory for markdown documents.

    Args:
        root: Directory to scan

    Returns:
        All markdown documents below root, depth-first

    Raises:
        DocumentAccessError: If root is missing, not a directory, or any
            directory or document below it cannot be read
    """
    root_path = Path(root)

    if not root_path.exists():
        raise DocumentAccessError(str(root), "Path does not exist")

    if not root_path.is_dir():
        raise DocumentAccessError(str(root), "Path is not a directory")

    documents: List[MarkdownDocument] = []
    _scan_recursive(root_path, documents)

    logger.debug(f"Scanned {len(documents)} documents under {root_path}")
    return documents


def _scan_recursive(directory: Path, documents: List[MarkdownDocument]) -> None:
    try:
        entries = sorted(directory.iterdir())
    except OSError as e:
        raise DocumentAccessError(str(directory), f"Error reading directory ({e})") from e

    for entry in entries:
        if entry.is_dir():
            _scan_recursive(entry, documents)
        elif entry.is_file() and is_document_path(entry):
            try:
                content = entry.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise DocumentAccessError(str(entry), f"Error reading file ({e})") from e

            documents.append(MarkdownDocument(
                id=_scan_document_id(entry),
                path=str(entry),
                content=content,
            ))
