"""Version history for document content.

History holds prior states. Two entry paths:
- seed_initial_version: a freshly created document records its initial
  content as version 1.
- append_version: on every later content change the OLD content is
  archived under the next version number, then replaced.

So after N content updates a document has N + 1 snapshots, and
snapshot 1 always equals the content the document was created with.
"""
from datetime import datetime, timezone
from typing import List, Dict, Any

from errors import NotFoundError
from models.documents import Document, VersionSnapshot

DEFAULT_CHANGE_DESCRIPTION = "Manual update"


def next_version_number(document: Document) -> int:
    if not document.version_history:
        return 1
    return max(s.version for s in document.version_history) + 1


def seed_initial_version(document: Document, editor_id: str, change_description: str) -> Document:
    """Record the current content as version 1. Only valid on an empty history."""
    if document.version_history:
        raise ValueError(f"Document {document.document_id} already has version history")
    document.version_history.append(
        VersionSnapshot(
            version=1,
            content=document.content,
            modified_by=editor_id,
            change_description=change_description,
        )
    )
    return document


def append_version(
    document: Document,
    new_content: str,
    editor_id: str,
    change_description: str = None,
) -> Document:
    """Archive the current content and replace it with new_content."""
    now = datetime.now(timezone.utc)
    document.version_history.append(
        VersionSnapshot(
            version=next_version_number(document),
            content=document.content,
            modified_by=editor_id,
            modified_at=now,
            change_description=change_description or DEFAULT_CHANGE_DESCRIPTION,
        )
    )
    document.content = new_content
    document.updated_at = now
    return document


def get_version(document: Document, version: int) -> VersionSnapshot:
    for snapshot in document.version_history:
        if snapshot.version == version:
            return snapshot
    raise NotFoundError(f"Version {version} not found")


def list_versions(document: Document) -> List[Dict[str, Any]]:
    """Snapshot summaries (no content), newest first."""
    return [
        s.model_dump(exclude={"content"})
        for s in sorted(document.version_history, key=lambda s: s.version, reverse=True)
    ]
