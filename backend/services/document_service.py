"""Document Service

Persistence and lifecycle of documents: create, read, update with
version history, delete, sharing, signing and export.

Every operation loads the document, gates it through the access
resolver, mutates the in-memory model and writes it back. Writes are a
compare-and-swap on the document's revision stamp so two concurrent
editors cannot silently overwrite each other or mint the same version
number.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
import logging
import math

from pydantic import ValidationError

from errors import BadRequestError, ConflictError, InternalError, NotFoundError
from models.documents import (
    Collaborator,
    CollaboratorPermission,
    Document,
    DocumentMetadata,
    DocumentStatus,
    DocumentType,
    DocumentUpdateRequest,
    ExportFormat,
    ShareEntry,
    SignatureInfo,
    SignatureStatus,
    SignerInput,
    SignerStatus,
    VersionSnapshot,
)
from models.user import User
from services import signing, version_history
from services.access_control import resolve_access, require
from services.document_export import DOCX_MIME, render_docx, render_pdf, render_text, safe_filename
from services.esignature_service import ESignatureClient, ESignatureError

logger = logging.getLogger(__name__)

INITIAL_VERSION_DESCRIPTION = "Initial version"


class DocumentService:
    """Document lifecycle service."""

    def __init__(self, db, esignature: Optional[ESignatureClient] = None):
        self.db = db
        self.esignature = esignature

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _load(self, document_id: str) -> Document:
        doc = await self.db.documents.find_one({"document_id": document_id}, {"_id": 0})
        if not doc:
            raise NotFoundError("Document not found")
        return Document(**doc)

    async def _save(self, document: Document, expected_revision: int) -> Document:
        """Write back only if nobody else wrote since expected_revision."""
        document.revision = expected_revision + 1
        document.updated_at = datetime.now(timezone.utc)
        result = await self.db.documents.replace_one(
            {"document_id": document.document_id, "revision": expected_revision},
            document.model_dump(),
        )
        if result.matched_count == 0:
            logger.warning(
                f"Concurrent modification on document {document.document_id} (expected revision {expected_revision})"
            )
            raise ConflictError("Document was modified by another request. Reload and try again.")
        return document

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def create(
        self,
        creator: User,
        title: str,
        doc_type: DocumentType,
        content: str,
        category: str = "General",
        metadata: Optional[DocumentMetadata] = None,
        change_description: str = INITIAL_VERSION_DESCRIPTION,
    ) -> Document:
        """Create a draft document; history is seeded with version 1 = initial content."""
        if not title or not title.strip():
            raise BadRequestError("Title is required")
        if content is None:
            raise BadRequestError("Content is required")

        document = Document(
            title=title.strip(),
            type=doc_type,
            category=category or "General",
            content=content,
            metadata=metadata or DocumentMetadata(),
            creator=creator.user_id,
            status=DocumentStatus.DRAFT,
        )
        version_history.seed_initial_version(document, creator.user_id, change_description)

        await self.db.documents.insert_one(document.model_dump())
        logger.info(f"Created document {document.document_id} for user {creator.user_id}")
        return document

    async def get(self, document_id: str, requestor: User) -> Document:
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_view, "You do not have access to this document")
        return document

    async def get_for_edit(self, document_id: str, requestor: User) -> Document:
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_edit, "You do not have permission to edit this document")
        return document

    async def count_created_since(self, user_id: str, since: datetime) -> int:
        return await self.db.documents.count_documents({
            "creator": user_id,
            "created_at": {"$gte": since},
        })

    async def update(self, document_id: str, requestor: User, request: DocumentUpdateRequest) -> Document:
        """Apply title/status/metadata directly; a content change appends a version."""
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_edit, "You do not have permission to edit this document")

        if request.expected_revision is not None and request.expected_revision != document.revision:
            raise ConflictError("Document has changed since it was loaded. Reload and try again.")
        expected = document.revision

        if request.title:
            document.title = request.title
        if request.status:
            document.status = request.status
        if request.metadata:
            try:
                document.metadata = DocumentMetadata(**{**document.metadata.model_dump(), **request.metadata})
            except ValidationError as e:
                raise BadRequestError(f"Invalid metadata: {e.errors()[0].get('msg')}")
        if request.content is not None:
            version_history.append_version(
                document, request.content, requestor.user_id, request.change_description
            )

        await self._save(document, expected)
        logger.info(f"Document {document_id} updated by {requestor.user_id} (revision {document.revision})")
        return document

    async def create_version(
        self,
        document_id: str,
        requestor: User,
        content: Optional[str],
        change_description: Optional[str] = None,
    ) -> Document:
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_edit, "You do not have permission to edit this document")
        if not content:
            raise BadRequestError("Content is required")

        expected = document.revision
        number = version_history.next_version_number(document)
        version_history.append_version(
            document, content, requestor.user_id, change_description or f"Version {number}"
        )
        return await self._save(document, expected)

    async def replace_content(
        self,
        document: Document,
        requestor: User,
        content: str,
        change_description: str,
    ) -> Document:
        """Append a version to an already loaded document (AI edit results)."""
        require(resolve_access(requestor, document).can_edit, "You do not have permission to edit this document")
        expected = document.revision
        version_history.append_version(document, content, requestor.user_id, change_description)
        return await self._save(document, expected)

    async def delete(self, document_id: str, requestor: User) -> None:
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_delete, "You do not have permission to delete this document")
        await self.db.documents.delete_one({"document_id": document_id})
        logger.info(f"Document {document_id} deleted by {requestor.user_id}")

    async def list_for_user(
        self,
        user: User,
        doc_type: Optional[DocumentType] = None,
        category: Optional[str] = None,
        status: Optional[DocumentStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Documents the user created or collaborates on, newest first."""
        query: Dict[str, Any] = {
            "$or": [
                {"creator": user.user_id},
                {"collaborators.user": user.user_id},
            ]
        }
        if doc_type:
            query["type"] = doc_type.value
        if category:
            query["category"] = category
        if status:
            query["status"] = status.value
        return await self._paginate(query, page, limit)

    async def list_all(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        return await self._paginate({}, page, limit)

    async def _paginate(self, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
        skip = (page - 1) * limit
        total = await self.db.documents.count_documents(query)
        docs = await self.db.documents.find(
            query,
            {"_id": 0, "version_history": 0},
        ).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)

        return {
            "count": len(docs),
            "total": total,
            "total_pages": math.ceil(total / limit) if limit else 0,
            "current_page": page,
            "documents": docs,
        }

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    async def list_versions(self, document_id: str, requestor: User) -> List[Dict[str, Any]]:
        document = await self.get(document_id, requestor)
        return version_history.list_versions(document)

    async def get_version(self, document_id: str, requestor: User, version: int) -> VersionSnapshot:
        document = await self.get(document_id, requestor)
        return version_history.get_version(document, version)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    async def share_with(self, document_id: str, requestor: User, entries: List[ShareEntry]) -> List[Collaborator]:
        """Replace the whole collaborator set. Later entries for the same user win."""
        document = await self._load(document_id)
        require(
            resolve_access(requestor, document).can_manage_collaborators,
            "Only the creator can share this document",
        )
        if entries is None:
            raise BadRequestError("Collaborators list is required")

        by_user: Dict[str, CollaboratorPermission] = {}
        for entry in entries:
            if entry.user_id == document.creator:
                continue
            by_user[entry.user_id] = entry.permission

        expected = document.revision
        document.collaborators = [Collaborator(user=u, permission=p) for u, p in by_user.items()]
        await self._save(document, expected)
        logger.info(f"Document {document_id} shared with {len(document.collaborators)} collaborator(s)")
        return document.collaborators

    async def get_collaborators(self, document_id: str, requestor: User) -> List[Dict[str, Any]]:
        """Collaborators with the user's name and email attached."""
        document = await self.get(document_id, requestor)
        ids = [c.user for c in document.collaborators]
        users = {}
        if ids:
            cursor = self.db.users.find({"user_id": {"$in": ids}}, {"_id": 0, "user_id": 1, "name": 1, "email": 1})
            for u in await cursor.to_list(len(ids)):
                users[u["user_id"]] = u

        result = []
        for c in document.collaborators:
            info = users.get(c.user, {})
            result.append({
                "user": c.user,
                "name": info.get("name"),
                "email": info.get("email"),
                "permission": c.permission.value,
            })
        return result

    async def update_collaborator_permission(
        self,
        document_id: str,
        requestor: User,
        target_user_id: str,
        permission: CollaboratorPermission,
    ) -> List[Collaborator]:
        document = await self._load(document_id)
        require(
            resolve_access(requestor, document).can_manage_collaborators,
            "Only the creator can change collaborator permissions",
        )
        collab = document.collaborator(target_user_id)
        if collab is None:
            raise NotFoundError("Collaborator not found")

        expected = document.revision
        collab.permission = permission
        await self._save(document, expected)
        return document.collaborators

    async def remove_collaborator(self, document_id: str, requestor: User, target_user_id: str) -> List[Collaborator]:
        """Idempotent: removing a user who is not a collaborator is a no-op."""
        document = await self._load(document_id)
        require(
            resolve_access(requestor, document).can_manage_collaborators,
            "Only the creator can remove collaborators",
        )
        if document.collaborator(target_user_id) is None:
            return document.collaborators

        expected = document.revision
        document.collaborators = [c for c in document.collaborators if c.user != target_user_id]
        await self._save(document, expected)
        return document.collaborators

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def prepare_for_signing(self, document_id: str, requestor: User, signers: List[SignerInput]) -> SignatureInfo:
        document = await self._load(document_id)
        expected = document.revision
        signing.prepare_for_signing(requestor, document, signers)
        await self._save(document, expected)
        return document.signature_info

    async def signing_status(self, document_id: str, requestor: User) -> SignatureInfo:
        document = await self._load(document_id)
        return signing.signing_status(requestor, document)

    async def complete_signing(self, document_id: str, requestor: User) -> Document:
        document = await self._load(document_id)
        expected = document.revision
        signing.complete_signing_process(requestor, document)
        return await self._save(document, expected)

    async def send_for_esignature(
        self,
        document_id: str,
        requestor: User,
        subject: Optional[str] = None,
        message: Optional[str] = None,
    ) -> SignatureInfo:
        """Hand a prepared document to the e-signature provider."""
        document = await self._load(document_id)
        require(
            resolve_access(requestor, document).can_manage_signing,
            "Only the creator can send this document for signature",
        )
        info = document.signature_info
        if not info.is_signable or not info.signers:
            raise BadRequestError("Document must be prepared for signing first")
        if info.envelope_id:
            raise BadRequestError("Document has already been sent for e-signature")
        if self.esignature is None or not self.esignature.configured:
            raise InternalError("E-signature provider is not configured")

        expected = document.revision
        try:
            created = await self.esignature.create_document(
                document.title,
                document.content,
                [{"name": s.name, "email": s.email} for s in info.signers],
                metadata={"document_id": document.document_id},
            )
            await self.esignature.wait_for_draft(created["id"])
            await self.esignature.send_document(created["id"], subject=subject, message=message)
        except ESignatureError as e:
            raise InternalError("E-signature provider request failed", details=str(e))

        info.envelope_id = created["id"]
        info.signature_status = SignatureStatus.IN_PROGRESS
        await self._save(document, expected)
        logger.info(f"Document {document_id} sent for e-signature as {info.envelope_id}")
        return info

    async def sync_esignature_status(self, document_id: str, requestor: User) -> SignatureInfo:
        """Pull per-recipient status from the provider into the signer list."""
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_view, "You do not have access to this document")
        info = document.signature_info
        if not info.envelope_id:
            raise BadRequestError("Document has not been sent for e-signature")
        if self.esignature is None or not self.esignature.configured:
            raise InternalError("E-signature provider is not configured")

        try:
            details = await self.esignature.get_status(info.envelope_id)
        except ESignatureError as e:
            raise InternalError("E-signature provider request failed", details=str(e))

        expected = document.revision
        changed = False
        for recipient in details.get("recipients", []):
            email = recipient.get("email")
            if not email:
                continue
            if recipient.get("has_completed"):
                new_status = SignerStatus.SIGNED
            elif recipient.get("status") == "declined":
                new_status = SignerStatus.DECLINED
            else:
                continue
            current = next((s for s in info.signers if s.email.lower() == email.lower()), None)
            if current is None or current.status == new_status:
                continue
            signing.record_signer_event(document, email, new_status)
            changed = True

        if changed:
            await self._save(document, expected)
        return document.signature_info

    async def download_signed(self, document_id: str, requestor: User) -> Tuple[bytes, str]:
        """Fetch the provider's PDF for a sent document. Returns (body, filename)."""
        document = await self._load(document_id)
        require(resolve_access(requestor, document).can_view, "You do not have access to this document")
        if not document.signature_info.envelope_id:
            raise BadRequestError("Document has not been sent for e-signature")
        if self.esignature is None or not self.esignature.configured:
            raise InternalError("E-signature provider is not configured")
        try:
            body = await self.esignature.download(document.signature_info.envelope_id)
        except ESignatureError as e:
            raise InternalError("E-signature provider request failed", details=str(e))
        return body, f"{safe_filename(document.title)}_signed.pdf"

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export(self, document_id: str, requestor: User, fmt: ExportFormat) -> Tuple[bytes, str, str]:
        """Return (body, media_type, filename)."""
        document = await self.get(document_id, requestor)
        name = safe_filename(document.title)
        if fmt == ExportFormat.PDF:
            return render_pdf(document), "application/pdf", f"{name}.pdf"
        if fmt == ExportFormat.DOCX:
            return render_docx(document), DOCX_MIME, f"{name}.docx"
        return render_text(document), "text/plain; charset=utf-8", f"{name}.txt"
