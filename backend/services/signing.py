"""In-app signing workflow.

not_started -> in_progress -> completed

Preparation and completion are creator-only (admins are excluded).
Completion does not check signer states: the creator may force-complete.
"""
from datetime import datetime, timezone
from typing import List, Optional
import logging

from errors import BadRequestError, NotFoundError
from models.documents import (
    Document,
    DocumentStatus,
    SignatureInfo,
    SignatureStatus,
    Signer,
    SignerInput,
    SignerStatus,
)
from models.user import User
from services.access_control import resolve_access, require

logger = logging.getLogger(__name__)


def prepare_for_signing(user: User, document: Document, signers: Optional[List[SignerInput]]) -> Document:
    require(
        resolve_access(user, document).can_manage_signing,
        "Only the creator can start the signing process",
    )
    if not signers:
        raise BadRequestError("At least one signer is required")

    document.signature_info = SignatureInfo(
        is_signable=True,
        signature_status=SignatureStatus.NOT_STARTED,
        signers=[Signer(name=s.name, email=s.email) for s in signers],
    )
    document.updated_at = datetime.now(timezone.utc)
    logger.info(f"Document {document.document_id} prepared for signing with {len(signers)} signer(s)")
    return document


def signing_status(user: User, document: Document) -> SignatureInfo:
    require(resolve_access(user, document).can_view, "You do not have access to this document")
    return document.signature_info


def complete_signing_process(user: User, document: Document) -> Document:
    require(
        resolve_access(user, document).can_manage_signing,
        "Only the creator can complete the signing process",
    )
    document.signature_info.signature_status = SignatureStatus.COMPLETED
    document.status = DocumentStatus.SIGNED
    document.updated_at = datetime.now(timezone.utc)
    logger.info(f"Signing completed for document {document.document_id}")
    return document


def record_signer_event(document: Document, email: str, status: SignerStatus) -> Document:
    """Apply a signer status reported by the e-signature provider."""
    for signer in document.signature_info.signers:
        if signer.email.lower() == email.lower():
            signer.status = status
            if status == SignerStatus.SIGNED:
                signer.signed_at = datetime.now(timezone.utc)
            break
    else:
        raise NotFoundError(f"Signer {email} not found")

    if document.signature_info.signature_status == SignatureStatus.NOT_STARTED:
        document.signature_info.signature_status = SignatureStatus.IN_PROGRESS
    document.updated_at = datetime.now(timezone.utc)
    return document
