"""Document access control.

Single place that decides what a user may do with a document.
Precedence (first match wins):
1. creator       - everything
2. admin         - view, edit, delete (no signing, no collaborator management)
3. collaborator  - view; edit for "edit" and "sign" permissions
4. anyone else   - nothing
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import ForbiddenError
from models.documents import Document, CollaboratorPermission
from models.user import User


class AccessGrant(str, Enum):
    CREATOR = "creator"
    ADMIN = "admin"
    COLLABORATOR = "collaborator"
    NONE = "none"


@dataclass(frozen=True)
class AccessDecision:
    grant: AccessGrant
    permission: Optional[CollaboratorPermission] = None
    can_view: bool = False
    can_edit: bool = False
    can_delete: bool = False
    can_manage_signing: bool = False
    can_manage_collaborators: bool = False


def resolve_access(user: User, document: Document) -> AccessDecision:
    """Resolve the user's rights over a document. Pure; no I/O."""
    if user.user_id == document.creator:
        return AccessDecision(
            grant=AccessGrant.CREATOR,
            can_view=True,
            can_edit=True,
            can_delete=True,
            can_manage_signing=True,
            can_manage_collaborators=True,
        )

    if user.is_admin:
        return AccessDecision(
            grant=AccessGrant.ADMIN,
            can_view=True,
            can_edit=True,
            can_delete=True,
        )

    collab = document.collaborator(user.user_id)
    if collab is not None:
        return AccessDecision(
            grant=AccessGrant.COLLABORATOR,
            permission=collab.permission,
            can_view=True,
            can_edit=collab.permission in (CollaboratorPermission.EDIT, CollaboratorPermission.SIGN),
        )

    return AccessDecision(grant=AccessGrant.NONE)


def can_view(user: User, document: Document) -> bool:
    return resolve_access(user, document).can_view


def can_edit(user: User, document: Document) -> bool:
    return resolve_access(user, document).can_edit


def can_delete(user: User, document: Document) -> bool:
    return resolve_access(user, document).can_delete


def can_manage_signing(user: User, document: Document) -> bool:
    return resolve_access(user, document).can_manage_signing


def can_manage_collaborators(user: User, document: Document) -> bool:
    return resolve_access(user, document).can_manage_collaborators


def require(allowed: bool, message: str) -> None:
    if not allowed:
        raise ForbiddenError(message)
