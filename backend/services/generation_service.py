"""
Generation Service

AI-backed drafting, analysis and editing of documents.

- Drafting builds a category-specific system prompt and stores the result
  as a new draft document (version 1 = generated text).
- Analysis never touches storage; it returns the model's text.
- Editor operations rewrite a stored document and append the result as a
  new version, so the previous text stays in the history.
- The guided conversation asks the model for a fixed JSON reply and
  validates it with pydantic before anything is stored.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import ApiError, BadRequestError, ForbiddenError, InternalError
from models.documents import (
    ConversationContinueRequest,
    ConversationStartRequest,
    ConversationTurn,
    Document,
    DocumentMetadata,
    DocumentType,
    GenerateRequest,
    MergeRequest,
    Party,
    TemplateGenerateRequest,
)
from models.subscriptions import PLANS, PlanGatingError
from models.user import Language, User
from services.document_service import DocumentService
from services.user_service import UserService
from utils.llm_chat import LLMClient

logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.2
ANALYSIS_TEMPERATURE = 0.3
EDIT_TEMPERATURE = 0.3
SIMPLIFY_TEMPERATURE = 0.4
CONVERSATION_TEMPERATURE = 0.7

AI_GENERATED_DESCRIPTION = "Initial version generated by AI"
TEMPLATE_DESCRIPTION = "Initial version generated from template"
CONVERSATION_DESCRIPTION = "Initial version generated from AI conversation"


# ============================================================================
# Prompts
# ============================================================================

BASE_DRAFTING_PROMPT = (
    "You are a legal assistant specialized in drafting professional documents. "
    "Produce a complete, precise and professional document based only on the "
    "information supplied by the user. Return the document text only."
)

CATEGORY_PROMPTS = {
    "lease_agreement": (
        "Specialization: lease agreements. Include every standard clause and the "
        "usual protections for both landlord and tenant."
    ),
    "services_contract": (
        "Specialization: professional services contracts. Define scope of work, fees, "
        "deadlines, deliverables and the responsibilities of each party."
    ),
    "nda": (
        "Specialization: non-disclosure agreements. Define what counts as confidential "
        "information, the obligations of the receiving party and the consequences of a breach."
    ),
    "resignation_letter": (
        "Specialization: resignation letters. Communicate the intent to leave clearly "
        "and keep a positive, professional tone."
    ),
    "civil_claim": (
        "Specialization: civil claims. Present facts, legal grounds, requested relief "
        "and evidence following the formal structure of a civil claim."
    ),
    "power_of_attorney": (
        "Specialization: powers of attorney. State the powers granted to the agent, "
        "their limits, duration and the conditions for revocation."
    ),
}

# Spanish category keys used by older clients
CATEGORY_ALIASES = {
    "contrato_arrendamiento": "lease_agreement",
    "contrato_servicios": "services_contract",
    "acuerdo_confidencialidad": "nda",
    "carta_renuncia": "resignation_letter",
    "demanda_civil": "civil_claim",
    "poder_notarial": "power_of_attorney",
}

ADVANCED_CATEGORIES = {"civil_claim", "power_of_attorney"}

BASE_ANALYSIS_PROMPT = (
    "You are a legal assistant specialized in document analysis. Analyze the "
    "document supplied and report the information the requested analysis asks for."
)

ANALYSIS_PROMPTS = {
    "summary": (
        "Write a concise but complete summary covering: document type, parties, main "
        "purpose, key terms, main obligations, important dates and notable clauses."
    ),
    "extraction": (
        "Extract the requested information and present it in a structured, easy to "
        "read form, using tables where appropriate."
    ),
    "risks": (
        "Identify risks: ambiguous clauses, unfavourable terms, excessive obligations, "
        "missing standard protections, likely conflicts with applicable law and internal "
        "inconsistencies. For each give location, description, level (High, Medium, Low) "
        "and a mitigation."
    ),
    "legal_analysis": (
        "Assess legal validity, compliance with applicable law, structure and format, "
        "clarity of language and legal vulnerabilities, and recommend improvements."
    ),
}

DEFAULT_EXTRACTION_FIELDS = [
    "Names of the parties",
    "Dates mentioned",
    "Monetary amounts",
    "Deadlines and terms",
    "Obligations of each party",
    "Special conditions",
    "Contact information",
]

COMPARE_PROMPT = (
    "You are a legal assistant specialized in comparing documents. Identify key "
    "differences in terms and conditions, clauses present in only one document, "
    "changes in obligations, and differences in dates, amounts or deadlines. "
    "State clearly where each difference is located."
)

EDIT_PROMPT = (
    "You are a legal assistant specialized in editing documents. Apply the user's "
    "instructions, keep the professional structure of the document and return the "
    "complete edited document only."
)

TRANSLATE_PROMPT = (
    "You are a legal translator. Translate the document keeping its structure, format "
    "and legal meaning, using the correct legal terminology of the target language. "
    "Return the translated document only."
)

SIMPLIFY_PROMPT = (
    "You make legal documents accessible. Replace legal jargon with plain language for "
    "the stated audience while keeping the essential legal meaning. Return the "
    "simplified document only."
)

REFORMAT_PROMPT = (
    "You improve the structure and presentation of documents without changing their "
    "content or legal meaning. Return the reformatted document only."
)

ADD_SECTIONS_PROMPT = (
    "You add new sections to an existing document where they fit best, merging with "
    "similar existing sections instead of repeating them. Return the complete document only."
)

REMOVE_SECTIONS_PROMPT = (
    "You remove the listed sections from a document and adjust numbering and cross "
    "references so the rest stays coherent. Return the complete document only."
)

MERGE_PROMPT = (
    "You merge several documents into one coherent, well structured document, removing "
    "redundancy and keeping every important clause. Return the merged document only."
)

CONVERSATION_PROMPT = """You are a legal assistant that drafts a {document_type} document through a conversation.
Ask clear, specific questions to collect what the document needs, one topic at a time,
and explain briefly why each piece of information matters.

Always answer with a single JSON object and nothing else:
{{
  "message": "<what you say to the user>",
  "is_complete": <true when you have everything and have drafted the document, else false>,
  "document": null or {{
    "title": "<document title>",
    "type": "legal" | "business" | "personal" | "other",
    "category": "<category, e.g. nda>",
    "language": "es" | "en",
    "jurisdiction": "<jurisdiction or general>",
    "parties": [{{"name": "...", "role": "...", "contact": "..."}}],
    "keywords": ["..."],
    "content": "<full document text>"
  }}
}}
"document" must be filled in when "is_complete" is true."""


# ============================================================================
# Helpers
# ============================================================================

TYPE_KEYWORDS = {
    DocumentType.LEGAL: [
        "contract", "contrato", "claim", "demanda", "affidavit", "afidavit",
        "agreement", "acuerdo", "will", "testamento", "nda", "lease",
        "power_of_attorney", "poder",
    ],
    DocumentType.BUSINESS: [
        "invoice", "factura", "quote", "presupuesto", "proposal", "propuesta",
        "business_plan", "plan_negocio",
    ],
    DocumentType.PERSONAL: [
        "letter", "carta", "resume", "curriculum", "application", "solicitud",
    ],
}

TYPE_KEYWORD_TAGS = {
    DocumentType.LEGAL: ["legal", "contract"],
    DocumentType.BUSINESS: ["business", "commercial"],
    DocumentType.PERSONAL: ["personal"],
}


def normalize_category(document_type: str) -> str:
    key = (document_type or "").strip().lower().replace(" ", "_").replace("-", "_")
    return CATEGORY_ALIASES.get(key, key)


def classify_document_type(document_type: str) -> DocumentType:
    """Map a free-form category name onto the coarse document type."""
    lowered = (document_type or "").lower()
    for doc_type, keywords in TYPE_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return doc_type
    return DocumentType.OTHER


def extract_parties(user_info: Dict[str, Any]) -> List[Party]:
    parties = user_info.get("parties")
    if isinstance(parties, list):
        result = []
        for p in parties:
            if isinstance(p, dict) and p.get("name"):
                result.append(Party(**{k: p.get(k) for k in ("name", "role", "contact")}))
        return result

    result = []
    if user_info.get("name"):
        result.append(Party(
            name=str(user_info["name"]),
            role="principal",
            contact=user_info.get("email") or user_info.get("phone") or None,
        ))
    other = user_info.get("other_party")
    if isinstance(other, dict):
        result.append(Party(
            name=other.get("name") or "Other party",
            role=other.get("role") or "counterparty",
            contact=other.get("contact") or None,
        ))
    return result


def extract_keywords(document_type: str, user_info: Dict[str, Any]) -> List[str]:
    keywords = [document_type]
    keywords.extend(TYPE_KEYWORD_TAGS.get(classify_document_type(document_type), []))
    extra = user_info.get("keywords")
    if isinstance(extra, list):
        keywords.extend(str(k) for k in extra)
    # dedupe, keep order
    return list(dict.fromkeys(k for k in keywords if k))


def format_fields(data: Dict[str, Any]) -> str:
    if not data:
        return "No data provided."
    lines = []
    for key, value in data.items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, ensure_ascii=False)
        lines.append(f"- {key}: {value}")
    return "\n".join(lines)


def _fenced(text: str) -> str:
    return f"```\n{text}\n```"


# ============================================================================
# Conversation reply contract
# ============================================================================

class ConversationDraft(BaseModel):
    title: str = Field(min_length=1)
    type: DocumentType = DocumentType.OTHER
    category: str = "General"
    language: Language = Language.ES
    jurisdiction: str = "general"
    parties: List[Party] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    content: str = Field(min_length=1)

    model_config = {"extra": "ignore"}

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, v):
        if isinstance(v, str) and v.lower() in {t.value for t in DocumentType}:
            return v.lower()
        return classify_document_type(str(v or ""))

    @field_validator("language", mode="before")
    @classmethod
    def _coerce_language(cls, v):
        code = str(v or "").strip().lower()[:2]
        return code if code in {lang.value for lang in Language} else Language.ES


class ConversationReply(BaseModel):
    message: str
    is_complete: bool = False
    document: Optional[ConversationDraft] = None

    model_config = {"extra": "ignore"}


def parse_conversation_reply(raw: str) -> ConversationReply:
    """Parse the model's JSON answer; a completed reply must carry a document."""
    text = (raw or "").strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    try:
        reply = ConversationReply(**json.loads(text))
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        logger.error(f"Failed to parse conversation reply: {e}")
        raise InternalError("AI response could not be parsed")

    if reply.is_complete and reply.document is None:
        logger.error("Conversation reply marked complete without a document")
        raise InternalError("AI response could not be parsed")
    return reply


# ============================================================================
# Service
# ============================================================================

class GenerationService:
    def __init__(self, llm: LLMClient, documents: DocumentService, users: UserService):
        self.llm = llm
        self.documents = documents
        self.users = users

    async def _complete(
        self,
        system_prompt: str,
        user_text: str,
        temperature: float,
        json_output: bool = False,
    ) -> str:
        try:
            return await self.llm.generate(
                system_prompt,
                user_text,
                temperature=temperature,
                json_output=json_output,
            )
        except ApiError:
            raise
        except Exception as e:
            logger.error(f"LLM request failed: {e}", exc_info=True)
            raise InternalError("AI service request failed")

    @staticmethod
    def _require_feature(user: User, feature: str) -> None:
        if user.is_admin:
            return
        if not user.can_access(feature):
            raise PlanGatingError(feature, user.effective_plan().value)

    async def _check_monthly_quota(self, user: User) -> None:
        if user.is_admin:
            return
        limit = PLANS[user.effective_plan()].limits.documents_per_month
        if limit is None:
            return
        now = datetime.now(timezone.utc)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        created = await self.documents.count_created_since(user.user_id, month_start)
        if created >= limit:
            raise ForbiddenError(
                f"Monthly limit of {limit} documents reached for the {user.effective_plan().value} plan"
            )

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    async def generate_document(self, user: User, request: GenerateRequest) -> Document:
        category = normalize_category(request.document_type)
        if not category:
            raise BadRequestError("Document type is required")
        if not request.user_info:
            raise BadRequestError("User information is required")

        feature = "generate_advanced_documents" if category in ADVANCED_CATEGORIES else "generate_basic_documents"
        self._require_feature(user, feature)
        await self._check_monthly_quota(user)

        system_prompt = BASE_DRAFTING_PROMPT
        if category in CATEGORY_PROMPTS:
            system_prompt = f"{BASE_DRAFTING_PROMPT}\n\n{CATEGORY_PROMPTS[category]}"

        prompt = (
            f"# Document request: {category}\n\n"
            f"## Document data\n{format_fields(request.user_info)}\n\n"
            f"## Instructions\n"
            f"Write a complete, professional \"{category}\" document for the "
            f"{request.jurisdiction} jurisdiction in language '{request.language.value}', "
            f"following the legal and formal conventions for this type of document."
        )
        if request.additional_instructions:
            prompt += f"\n\nAdditional instructions: {request.additional_instructions}"

        content = await self._complete(system_prompt, prompt, GENERATION_TEMPERATURE)

        metadata = DocumentMetadata(
            language=request.language,
            jurisdiction=request.jurisdiction,
            parties=extract_parties(request.user_info),
            keywords=extract_keywords(category, request.user_info),
        )
        document = await self.documents.create(
            user,
            title=f"{category} - {datetime.now(timezone.utc).strftime('%Y-%m-%d')}",
            doc_type=classify_document_type(category),
            content=content,
            category=category,
            metadata=metadata,
            change_description=AI_GENERATED_DESCRIPTION,
        )
        await self.users.record_usage(user.user_id, "documents_generated")
        logger.info(f"Generated {category} document {document.document_id} for user {user.user_id}")
        return document

    async def generate_from_template(self, user: User, request: TemplateGenerateRequest) -> Document:
        if not request.user_info:
            raise BadRequestError("User information is required")
        self._require_feature(user, "save_templates")
        template = await self.documents.get(request.template_id, user)
        if normalize_category(template.category) in ADVANCED_CATEGORIES:
            self._require_feature(user, "generate_advanced_documents")
        await self._check_monthly_quota(user)

        instructions = (
            f"Customize this document with the following information:\n"
            f"{format_fields(request.user_info)}"
        )
        if request.customizations:
            instructions += f"\n\n{request.customizations}"
        content = await self._complete(
            EDIT_PROMPT,
            f"## Original document\n{_fenced(template.content)}\n\n## Edit instructions\n{instructions}",
            EDIT_TEMPERATURE,
        )

        metadata = template.metadata.model_copy(deep=True)
        parties = extract_parties(request.user_info)
        if parties:
            metadata.parties = parties

        document = await self.documents.create(
            user,
            title=f"{template.title} - Customized",
            doc_type=template.type,
            content=content,
            category=template.category,
            metadata=metadata,
            change_description=TEMPLATE_DESCRIPTION,
        )
        await self.users.record_usage(user.user_id, "documents_generated")
        return document

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    async def analyze(
        self,
        user: User,
        content: str,
        analysis_type: str = "summary",
        fields_to_extract: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        self._require_feature(user, "analyze_documents")
        if not content or not content.strip():
            raise BadRequestError("Document content is empty")

        specialization = ANALYSIS_PROMPTS.get(analysis_type)
        system_prompt = BASE_ANALYSIS_PROMPT
        if specialization:
            system_prompt = f"{BASE_ANALYSIS_PROMPT}\n\n{specialization}"

        if analysis_type == "extraction":
            fields = fields_to_extract or DEFAULT_EXTRACTION_FIELDS
            instructions = "Extract:\n" + "\n".join(f"- {f}" for f in fields)
        else:
            instructions = specialization or "Analyze this document and report the relevant information."

        prompt = (
            f"## Document to analyze\n{_fenced(content)}\n\n"
            f"## Analysis type\n{analysis_type}\n\n"
            f"## Instructions\n{instructions}"
        )
        result = await self._complete(system_prompt, prompt, ANALYSIS_TEMPERATURE)
        await self.users.record_usage(user.user_id, "documents_analyzed")
        return {"type": analysis_type, "result": result}

    async def compare_documents(self, user: User, first_id: str, second_id: str) -> Dict[str, Any]:
        self._require_feature(user, "analyze_documents")
        first = await self.documents.get(first_id, user)
        second = await self.documents.get(second_id, user)

        prompt = (
            f"## Document 1: {first.title}\n{_fenced(first.content)}\n\n"
            f"## Document 2: {second.title}\n{_fenced(second.content)}\n\n"
            "Compare these documents and list every significant difference."
        )
        result = await self._complete(COMPARE_PROMPT, prompt, ANALYSIS_TEMPERATURE)
        await self.users.record_usage(user.user_id, "documents_analyzed")
        return {
            "type": "comparison",
            "documents": [first.document_id, second.document_id],
            "result": result,
        }

    # ------------------------------------------------------------------
    # Editor operations (each appends a version)
    # ------------------------------------------------------------------

    async def _load_for_edit(self, user: User, document_id: str) -> Document:
        self._require_feature(user, "edit_documents")
        return await self.documents.get_for_edit(document_id, user)

    async def _apply(
        self,
        user: User,
        document: Document,
        system_prompt: str,
        task: str,
        change_description: str,
        temperature: float = EDIT_TEMPERATURE,
    ) -> Document:
        prompt = f"## Original document\n{_fenced(document.content)}\n\n{task}"
        content = await self._complete(system_prompt, prompt, temperature)
        updated = await self.documents.replace_content(document, user, content, change_description)
        await self.users.record_usage(user.user_id, "documents_edited")
        logger.info(f"{change_description} applied to {document.document_id} by {user.user_id}")
        return updated

    async def edit(self, user: User, document_id: str, instructions: str) -> Document:
        if not instructions or not instructions.strip():
            raise BadRequestError("Edit instructions are required")
        document = await self._load_for_edit(user, document_id)
        return await self._apply(
            user, document, EDIT_PROMPT,
            f"## Edit instructions\n{instructions}",
            "AI edit",
        )

    async def translate(self, user: User, document_id: str, target_language: str) -> Document:
        if not target_language or not target_language.strip():
            raise BadRequestError("Target language is required")
        document = await self._load_for_edit(user, document_id)
        return await self._apply(
            user, document, TRANSLATE_PROMPT,
            f"## Target language\n{target_language}",
            f"Translated to {target_language}",
        )

    async def simplify(self, user: User, document_id: str, target_audience: str = "general") -> Document:
        document = await self._load_for_edit(user, document_id)
        return await self._apply(
            user, document, SIMPLIFY_PROMPT,
            f"## Target audience\n{target_audience}",
            f"Simplified for {target_audience} audience",
            temperature=SIMPLIFY_TEMPERATURE,
        )

    async def reformat(self, user: User, document_id: str, format_style: str) -> Document:
        document = await self._load_for_edit(user, document_id)
        return await self._apply(
            user, document, REFORMAT_PROMPT,
            f"## Format style\n{format_style or 'Professional'}",
            "Reformatted",
        )

    async def add_sections(self, user: User, document_id: str, sections: List[str]) -> Document:
        if not sections:
            raise BadRequestError("At least one section is required")
        document = await self._load_for_edit(user, document_id)
        listing = "\n\n".join(f"### New section\n{s}" for s in sections)
        return await self._apply(
            user, document, ADD_SECTIONS_PROMPT,
            f"## Sections to add\n{listing}",
            f"Added {len(sections)} section(s)",
        )

    async def remove_sections(self, user: User, document_id: str, sections: List[str]) -> Document:
        if not sections:
            raise BadRequestError("At least one section is required")
        document = await self._load_for_edit(user, document_id)
        listing = "\n".join(f"- {s}" for s in sections)
        return await self._apply(
            user, document, REMOVE_SECTIONS_PROMPT,
            f"## Sections to remove\n{listing}",
            f"Removed {len(sections)} section(s)",
        )

    async def merge_documents(self, user: User, request: MergeRequest) -> Document:
        ids = list(dict.fromkeys(request.document_ids))
        if len(ids) < 2:
            raise BadRequestError("At least two documents are required to merge")
        self._require_feature(user, "edit_documents")
        await self._check_monthly_quota(user)

        sources = [await self.documents.get(doc_id, user) for doc_id in ids]
        listing = "\n\n".join(
            f"### Document {i}: {doc.title}\n{_fenced(doc.content)}"
            for i, doc in enumerate(sources, start=1)
        )
        prompt = (
            f"## Documents to merge\n{listing}\n\n"
            f"## Merge instructions\n"
            f"{request.instructions or 'Merge these documents coherently, removing redundancy.'}"
        )
        content = await self._complete(MERGE_PROMPT, prompt, EDIT_TEMPERATURE)

        first = sources[0]
        document = await self.documents.create(
            user,
            title=request.title or f"{first.title} (merged)",
            doc_type=first.type,
            content=content,
            category=first.category,
            metadata=first.metadata.model_copy(deep=True),
            change_description=f"Initial version merged from {len(sources)} documents",
        )
        await self.users.record_usage(user.user_id, "documents_edited")
        return document

    # ------------------------------------------------------------------
    # Guided conversation
    # ------------------------------------------------------------------

    async def start_conversation(self, user: User, request: ConversationStartRequest) -> Dict[str, Any]:
        if not request.document_type or not request.initial_message:
            raise BadRequestError("Document type and initial message are required")
        conversation_id = f"conv-{uuid.uuid4().hex}"
        history = [ConversationTurn(role="user", content=request.initial_message)]
        return await self._conversation_turn(user, conversation_id, request.document_type, history)

    async def continue_conversation(
        self,
        user: User,
        conversation_id: str,
        request: ConversationContinueRequest,
    ) -> Dict[str, Any]:
        if not request.document_type or not request.message:
            raise BadRequestError("Document type and message are required")
        history = list(request.history) + [ConversationTurn(role="user", content=request.message)]
        return await self._conversation_turn(user, conversation_id, request.document_type, history)

    async def _conversation_turn(
        self,
        user: User,
        conversation_id: str,
        document_type: str,
        history: List[ConversationTurn],
    ) -> Dict[str, Any]:
        transcript = "\n\n".join(f"{turn.role.upper()}: {turn.content}" for turn in history)
        system_prompt = CONVERSATION_PROMPT.format(document_type=document_type)
        raw = await self._complete(
            system_prompt,
            f"## Conversation so far\n{transcript}\n\nReply with the JSON object.",
            CONVERSATION_TEMPERATURE,
            json_output=True,
        )
        reply = parse_conversation_reply(raw)

        response: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "document_type": document_type,
            "message": reply.message,
            "is_complete": reply.is_complete,
            "history": [t.model_dump() for t in history]
            + [{"role": "assistant", "content": reply.message}],
        }

        if reply.is_complete:
            draft = reply.document
            await self._check_monthly_quota(user)
            document = await self.documents.create(
                user,
                title=draft.title,
                doc_type=draft.type,
                content=draft.content,
                category=draft.category,
                metadata=DocumentMetadata(
                    language=draft.language,
                    jurisdiction=draft.jurisdiction,
                    parties=draft.parties,
                    keywords=draft.keywords,
                ),
                change_description=CONVERSATION_DESCRIPTION,
            )
            await self.users.record_usage(user.user_id, "documents_generated")
            response["document"] = document.model_dump(mode="json")
            logger.info(f"Conversation {conversation_id} produced document {document.document_id}")

        return response
