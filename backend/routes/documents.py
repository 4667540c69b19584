"""
Document routes: AI generation and analysis, CRUD with version history,
export, signing workflow and sharing.
"""
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import Response
from typing import Optional
import logging

from errors import BadRequestError
from middleware import get_current_user, get_services, require_admin
from models.documents import (
    CollaboratorPermissionRequest,
    CompareRequest,
    ConversationContinueRequest,
    ConversationStartRequest,
    DocumentCreateRequest,
    DocumentStatus,
    DocumentType,
    DocumentUpdateRequest,
    EditRequest,
    ExportFormat,
    GenerateRequest,
    MergeRequest,
    NewVersionRequest,
    PrepareSigningRequest,
    ReformatRequest,
    SectionsAddRequest,
    SectionsRemoveRequest,
    SendForSignatureRequest,
    ShareRequest,
    SimplifyRequest,
    TemplateGenerateRequest,
    TranslateRequest,
)
from models.user import User
from services.container import ServiceContainer
from services.document_export import extract_text
from utils.responses import success

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/documents", tags=["documents"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


async def _read_upload(file: UploadFile) -> str:
    data = await file.read()
    if not data:
        raise BadRequestError("No file was uploaded")
    if len(data) > MAX_UPLOAD_BYTES:
        raise BadRequestError("File exceeds the 10MB limit")
    return extract_text(file.filename, file.content_type, data)


# ============================================================================
# Generation
# ============================================================================

@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_document(
    data: GenerateRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.generate_document(user, data)
    return success(document, "Document generated")


@router.post("/generate/template", status_code=status.HTTP_201_CREATED)
async def generate_from_template(
    data: TemplateGenerateRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.generate_from_template(user, data)
    return success(document, "Document generated from template")


@router.post("/generate/conversation")
async def start_conversation(
    data: ConversationStartRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.generation.start_conversation(user, data)
    return success(result)


@router.post("/generate/conversation/{conversation_id}")
async def continue_conversation(
    conversation_id: str,
    data: ConversationContinueRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.generation.continue_conversation(user, conversation_id, data)
    return success(result)


# ============================================================================
# Analysis (uploaded files are analyzed, never stored)
# ============================================================================

@router.post("/analyze")
async def analyze_document(
    document: UploadFile = File(...),
    analysis_type: str = Form("summary"),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    content = await _read_upload(document)
    result = await services.generation.analyze(user, content, analysis_type)
    return success(result)


@router.post("/analyze/summary")
async def summarize_document(
    document: UploadFile = File(...),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    content = await _read_upload(document)
    result = await services.generation.analyze(user, content, "summary")
    return success(result)


@router.post("/analyze/extract")
async def extract_information(
    document: UploadFile = File(...),
    fields_to_extract: Optional[str] = Form(None),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """fields_to_extract is a comma-separated list."""
    content = await _read_upload(document)
    fields = [f.strip() for f in fields_to_extract.split(",") if f.strip()] if fields_to_extract else None
    result = await services.generation.analyze(user, content, "extraction", fields)
    return success(result)


@router.post("/analyze/compare")
async def compare_documents(
    data: CompareRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.generation.compare_documents(user, data.first_document_id, data.second_document_id)
    return success(result)


# ============================================================================
# Listing and creation
# ============================================================================

@router.get("/")
async def list_all_documents(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: User = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.documents.list_all(page, limit)
    return success(result)


@router.get("/user")
async def list_user_documents(
    type: Optional[DocumentType] = None,
    category: Optional[str] = None,
    status: Optional[DocumentStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    result = await services.documents.list_for_user(user, type, category, status, page, limit)
    return success(result)


@router.post("/", status_code=201)
async def create_document(
    data: DocumentCreateRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.documents.create(
        user,
        title=data.title,
        doc_type=data.type,
        content=data.content,
        category=data.category,
        metadata=data.metadata,
    )
    return success(document, "Document created")


@router.post("/merge", status_code=201)
async def merge_documents(
    data: MergeRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.merge_documents(user, data)
    return success(document, "Documents merged")


# ============================================================================
# Single document
# ============================================================================

@router.get("/{document_id}")
async def get_document(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.documents.get(document_id, user)
    return success(document)


@router.put("/{document_id}")
async def update_document(
    document_id: str,
    data: DocumentUpdateRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.documents.update(document_id, user, data)
    return success(document, "Document updated")


@router.delete("/{document_id}")
async def delete_document(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    await services.documents.delete(document_id, user)
    return success(message="Document deleted")


# ----------------------------------------------------------------------------
# Versions
# ----------------------------------------------------------------------------

@router.post("/{document_id}/version", status_code=201)
async def create_version(
    document_id: str,
    data: NewVersionRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.documents.create_version(document_id, user, data.content, data.change_description)
    return success(document, "New version created")


@router.get("/{document_id}/versions")
async def list_versions(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    versions = await services.documents.list_versions(document_id, user)
    return success(versions)


@router.get("/{document_id}/version/{version}")
async def get_version(
    document_id: str,
    version: int,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    snapshot = await services.documents.get_version(document_id, user, version)
    return success(snapshot)


# ----------------------------------------------------------------------------
# AI editing (each result is stored as a new version)
# ----------------------------------------------------------------------------

@router.post("/{document_id}/edit")
async def edit_document(
    document_id: str,
    data: EditRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.edit(user, document_id, data.instructions)
    return success(document, "Document edited")


@router.post("/{document_id}/translate")
async def translate_document(
    document_id: str,
    data: TranslateRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.translate(user, document_id, data.target_language)
    return success(document, "Document translated")


@router.post("/{document_id}/simplify")
async def simplify_document(
    document_id: str,
    data: SimplifyRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.simplify(user, document_id, data.target_audience)
    return success(document, "Document simplified")


@router.post("/{document_id}/reformat")
async def reformat_document(
    document_id: str,
    data: ReformatRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.reformat(user, document_id, data.format_style)
    return success(document, "Document reformatted")


@router.post("/{document_id}/sections/add")
async def add_sections(
    document_id: str,
    data: SectionsAddRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.add_sections(user, document_id, data.sections)
    return success(document, "Sections added")


@router.post("/{document_id}/sections/remove")
async def remove_sections(
    document_id: str,
    data: SectionsRemoveRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.generation.remove_sections(user, document_id, data.sections)
    return success(document, "Sections removed")


# ----------------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------------

@router.get("/{document_id}/export/{fmt}")
async def export_document(
    document_id: str,
    fmt: ExportFormat,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    body, media_type, filename = await services.documents.export(document_id, user, fmt)
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ----------------------------------------------------------------------------
# Signing
# ----------------------------------------------------------------------------

@router.post("/{document_id}/sign/prepare")
async def prepare_for_signing(
    document_id: str,
    data: PrepareSigningRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    info = await services.documents.prepare_for_signing(document_id, user, data.signers)
    return success(info, "Document prepared for signing")


@router.get("/{document_id}/sign/status")
async def signing_status(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    info = await services.documents.signing_status(document_id, user)
    return success(info)


@router.post("/{document_id}/sign/complete")
async def complete_signing(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    document = await services.documents.complete_signing(document_id, user)
    return success(document, "Signing process completed")


@router.post("/{document_id}/sign/send")
async def send_for_signature(
    document_id: str,
    data: SendForSignatureRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    info = await services.documents.send_for_esignature(document_id, user, data.subject, data.message)
    return success(info, "Document sent for signature")


@router.post("/{document_id}/sign/sync")
async def sync_signature_status(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    info = await services.documents.sync_esignature_status(document_id, user)
    return success(info)


@router.get("/{document_id}/sign/download")
async def download_signed_document(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    body, filename = await services.documents.download_signed(document_id, user)
    return Response(
        content=body,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ----------------------------------------------------------------------------
# Sharing
# ----------------------------------------------------------------------------

@router.post("/{document_id}/share")
async def share_document(
    document_id: str,
    data: ShareRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    collaborators = await services.documents.share_with(document_id, user, data.collaborators)
    return success(collaborators, "Document shared")


@router.get("/{document_id}/collaborators")
async def get_collaborators(
    document_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    collaborators = await services.documents.get_collaborators(document_id, user)
    return success(collaborators)


@router.put("/{document_id}/collaborator/{user_id}")
async def update_collaborator(
    document_id: str,
    user_id: str,
    data: CollaboratorPermissionRequest,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    collaborators = await services.documents.update_collaborator_permission(
        document_id, user, user_id, data.permission
    )
    return success(collaborators, "Collaborator permission updated")


@router.delete("/{document_id}/collaborator/{user_id}")
async def remove_collaborator(
    document_id: str,
    user_id: str,
    user: User = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    collaborators = await services.documents.remove_collaborator(document_id, user, user_id)
    return success(collaborators, "Collaborator removed")
