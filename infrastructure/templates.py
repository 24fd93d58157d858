"""
MDGRAPH TEMPLATES - New Notes for Phantom Nodes

A phantom node is a wiki link with no file behind it. Creating it writes
`<root_dir>/<id>.md` from the configured template. The watcher then sees
the new file and turns the phantom into a real node.

Template Variables:
    {{date}}  -> current local date, YYYY-MM-DD
    {{week}}  -> ISO week number, no leading zero
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from core.schemas import DocumentExistsError, DocumentIdError, TemplateError
from infrastructure.document_source import DOCUMENT_SUFFIX


logger = logging.getLogger("mdgraph.templates")

PathLike = Union[str, Path]


def replace_variables(template: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return (
        template
        .replace("{{date}}", now.strftime("%Y-%m-%d"))
        .replace("{{week}}", str(now.isocalendar()[1]))
    )


def load_template(template_path: PathLike) -> str:
    try:
        return Path(template_path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TemplateError(str(template_path), str(e))


def create_from_template(
    template_path: PathLike,
    output_path: PathLike,
    now: Optional[datetime] = None,
) -> Path:
    """
    Write a new file from a template, substituting variables.

    Existing files are never overwritten. Missing parent directories
    are created.

    Raises:
        DocumentExistsError: If output_path already exists
        TemplateError: If the template cannot be read
        OSError: If the file cannot be written
    """
    output = Path(output_path)
    if output.exists():
        raise DocumentExistsError(str(output))

    content = replace_variables(load_template(template_path), now)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(content, encoding="utf-8")
    logger.info(f"Created {output} from template {template_path}")
    return output


def create_phantom_note(root_dir: PathLike, node_id: str, template_path: PathLike) -> Path:
    """
    Create the note for a phantom node below root_dir.

    Raises:
        DocumentIdError: If node_id cannot name a file in root_dir
        DocumentExistsError, TemplateError, OSError: See create_from_template
    """
    if not node_id or "/" in node_id or "\\" in node_id or node_id in (".", ".."):
        raise DocumentIdError(node_id)
    return create_from_template(template_path, Path(root_dir) / f"{node_id}{DOCUMENT_SUFFIX}")
