"""Document Models

A document is owned by exactly one creator, may be shared with
collaborators (view / edit / sign), keeps an append-only history of
prior content, and optionally carries a signing workflow.
"""

from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, Dict, Any, List
from datetime import datetime, timezone
from enum import Enum
import uuid

from models.user import Language


class DocumentType(str, Enum):
    LEGAL = "legal"
    BUSINESS = "business"
    PERSONAL = "personal"
    OTHER = "other"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    FINAL = "final"
    SIGNED = "signed"
    ARCHIVED = "archived"


class CollaboratorPermission(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    SIGN = "sign"  # edit-equivalent for content changes


class SignatureStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SignerStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"
    DECLINED = "declined"


class ExportFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"


class Party(BaseModel):
    name: str
    role: Optional[str] = None
    contact: Optional[str] = None


class DocumentMetadata(BaseModel):
    language: Language = Language.ES
    jurisdiction: str = "general"
    parties: List[Party] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"extra": "ignore"}


class Collaborator(BaseModel):
    user: str  # user_id
    permission: CollaboratorPermission = CollaboratorPermission.VIEW


class VersionSnapshot(BaseModel):
    """Prior state of a document's content."""
    version: int = Field(ge=1)
    content: str
    modified_by: str
    modified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    change_description: str = ""


class Signer(BaseModel):
    name: str
    email: EmailStr
    status: SignerStatus = SignerStatus.PENDING
    signed_at: Optional[datetime] = None


class SignatureInfo(BaseModel):
    is_signable: bool = False
    signature_status: SignatureStatus = SignatureStatus.NOT_STARTED
    envelope_id: Optional[str] = None  # e-signature provider document id
    signers: List[Signer] = Field(default_factory=list)


class Document(BaseModel):
    """Stored document record."""
    document_id: str = Field(default_factory=lambda: f"DOC-{uuid.uuid4().hex[:12].upper()}")
    title: str
    type: DocumentType
    category: str = "General"
    content: str

    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    file_urls: List[str] = Field(default_factory=list)
    status: DocumentStatus = DocumentStatus.DRAFT

    creator: str  # user_id
    collaborators: List[Collaborator] = Field(default_factory=list)
    version_history: List[VersionSnapshot] = Field(default_factory=list)
    signature_info: SignatureInfo = Field(default_factory=SignatureInfo)

    # Bumped on every write; updates compare-and-swap on it
    revision: int = 0

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {"extra": "ignore"}

    @field_validator("collaborators")
    @classmethod
    def _unique_collaborators(cls, v: List[Collaborator]) -> List[Collaborator]:
        seen = set()
        for collab in v:
            if collab.user in seen:
                raise ValueError(f"User {collab.user} appears more than once in collaborators")
            seen.add(collab.user)
        return v

    @field_validator("version_history")
    @classmethod
    def _contiguous_versions(cls, v: List[VersionSnapshot]) -> List[VersionSnapshot]:
        for expected, snapshot in enumerate(v, start=1):
            if snapshot.version != expected:
                raise ValueError("Version numbers must start at 1 and increase by 1")
        return v

    def collaborator(self, user_id: str) -> Optional[Collaborator]:
        for collab in self.collaborators:
            if collab.user == user_id:
                return collab
        return None


# ============================================================================
# Request models
# ============================================================================

class DocumentCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    type: DocumentType = DocumentType.OTHER
    category: str = "General"
    content: str
    metadata: Optional[DocumentMetadata] = None


class DocumentUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[DocumentStatus] = None
    metadata: Optional[Dict[str, Any]] = None  # merged into existing metadata
    change_description: Optional[str] = None
    expected_revision: Optional[int] = None

    model_config = {"extra": "ignore"}


class NewVersionRequest(BaseModel):
    content: Optional[str] = None
    change_description: Optional[str] = None


class ShareEntry(BaseModel):
    user_id: str
    permission: CollaboratorPermission = CollaboratorPermission.VIEW


class ShareRequest(BaseModel):
    collaborators: List[ShareEntry]


class CollaboratorPermissionRequest(BaseModel):
    permission: CollaboratorPermission


class SignerInput(BaseModel):
    name: str
    email: EmailStr


class PrepareSigningRequest(BaseModel):
    signers: List[SignerInput] = Field(default_factory=list)


class SendForSignatureRequest(BaseModel):
    subject: Optional[str] = None
    message: Optional[str] = None


class GenerateRequest(BaseModel):
    document_type: str  # category key, e.g. "nda" or "lease_agreement"
    user_info: Dict[str, Any]
    jurisdiction: str = "general"
    language: Language = Language.ES
    additional_instructions: Optional[str] = None


class TemplateGenerateRequest(BaseModel):
    template_id: str
    user_info: Dict[str, Any]
    customizations: Optional[str] = None


class ConversationStartRequest(BaseModel):
    document_type: str
    initial_message: str


class ConversationTurn(BaseModel):
    role: str  # "user" or "assistant"
    content: str


class ConversationContinueRequest(BaseModel):
    document_type: str
    message: str
    history: List[ConversationTurn] = Field(default_factory=list)


class EditRequest(BaseModel):
    instructions: str


class TranslateRequest(BaseModel):
    target_language: str


class SimplifyRequest(BaseModel):
    target_audience: str = "general"


class ReformatRequest(BaseModel):
    format_style: str


class SectionsAddRequest(BaseModel):
    sections: List[str] = Field(min_length=1)


class SectionsRemoveRequest(BaseModel):
    sections: List[str] = Field(min_length=1)


class MergeRequest(BaseModel):
    document_ids: List[str]
    title: Optional[str] = None
    instructions: Optional[str] = None


class CompareRequest(BaseModel):
    first_document_id: str
    second_document_id: str
