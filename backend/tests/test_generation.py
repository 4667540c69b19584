"""
GenerationService with a mocked LLM: drafting, plan gating, editor
operations appending versions, and the JSON conversation contract.
"""
import json

import pytest

from conftest import make_user
from errors import BadRequestError, ForbiddenError, InternalError
from models.documents import (
    CollaboratorPermission,
    ConversationContinueRequest,
    ConversationStartRequest,
    DocumentType,
    GenerateRequest,
    MergeRequest,
    ShareEntry,
    TemplateGenerateRequest,
)
from models.subscriptions import PlanGatingError, SubscriptionPlan
from models.user import UserRole
from services.generation_service import (
    AI_GENERATED_DESCRIPTION,
    CONVERSATION_DESCRIPTION,
    classify_document_type,
    extract_keywords,
    extract_parties,
    normalize_category,
    parse_conversation_reply,
)


class TestHelpers:
    @pytest.mark.parametrize("category,expected", [
        ("lease_agreement", DocumentType.LEGAL),
        ("contrato_arrendamiento", DocumentType.LEGAL),
        ("invoice", DocumentType.BUSINESS),
        ("presupuesto", DocumentType.BUSINESS),
        ("resignation_letter", DocumentType.PERSONAL),
        ("birthday_card", DocumentType.OTHER),
    ])
    def test_classify(self, category, expected):
        assert classify_document_type(category) == expected

    def test_spanish_aliases_normalize(self):
        assert normalize_category("Acuerdo Confidencialidad") == "nda"
        assert normalize_category("poder-notarial") == "power_of_attorney"

    def test_parties_from_name_and_other_party(self):
        parties = extract_parties({
            "name": "Ana Ruiz",
            "email": "ana@example.com",
            "other_party": {"name": "Acme SL"},
        })
        assert [(p.name, p.role) for p in parties] == [("Ana Ruiz", "principal"), ("Acme SL", "counterparty")]
        assert parties[0].contact == "ana@example.com"

    def test_explicit_parties_win(self):
        parties = extract_parties({"name": "ignored", "parties": [{"name": "X", "role": "lessor"}]})
        assert [p.name for p in parties] == ["X"]

    def test_keywords(self):
        assert extract_keywords("nda", {"keywords": ["secret", "nda"]}) == ["nda", "legal", "contract", "secret"]


class TestConversationContract:
    def test_parses_fenced_json(self):
        raw = "```json\n" + json.dumps({"message": "What is the rent?", "is_complete": False}) + "\n```"
        reply = parse_conversation_reply(raw)
        assert reply.message == "What is the rent?"
        assert reply.document is None

    def test_complete_reply_requires_document(self):
        with pytest.raises(InternalError):
            parse_conversation_reply(json.dumps({"message": "Done", "is_complete": True}))

    def test_garbage_is_internal_error(self):
        with pytest.raises(InternalError):
            parse_conversation_reply("Sure! Here is your document: ...")

    def test_draft_fields_are_coerced(self):
        reply = parse_conversation_reply(json.dumps({
            "message": "Ready",
            "is_complete": True,
            "document": {
                "title": "Lease",
                "type": "contract",
                "language": "English",
                "content": "LEASE AGREEMENT ...",
            },
        }))
        assert reply.document.type == DocumentType.LEGAL
        assert reply.document.language.value == "en"


class TestGenerateDocument:
    @pytest.mark.asyncio
    async def test_generates_and_stores_draft(self, db, llm, services):
        user = make_user(db, "Ana")
        llm.generate.return_value = "NON-DISCLOSURE AGREEMENT ..."

        doc = await services.generation.generate_document(user, GenerateRequest(
            document_type="nda",
            user_info={"name": "Ana", "other_party": {"name": "Acme"}},
        ))

        assert doc.content == "NON-DISCLOSURE AGREEMENT ..."
        assert doc.type == DocumentType.LEGAL
        assert doc.category == "nda"
        assert [p.name for p in doc.metadata.parties] == ["Ana", "Acme"]
        assert doc.version_history[0].change_description == AI_GENERATED_DESCRIPTION

        _, kwargs = llm.generate.call_args
        assert kwargs["temperature"] == 0.2
        system_prompt = llm.generate.call_args.args[0]
        assert "non-disclosure" in system_prompt

        stored_user = await db.users.find_one({"user_id": user.user_id})
        assert stored_user["usage_stats"]["documents_generated"] == 1

    @pytest.mark.asyncio
    async def test_advanced_category_needs_paid_plan(self, db, llm, services):
        user = make_user(db, "Ana")
        with pytest.raises(PlanGatingError) as exc:
            await services.generation.generate_document(user, GenerateRequest(
                document_type="demanda_civil", user_info={"name": "Ana"},
            ))
        assert exc.value.required_plan == "premium"
        llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_free_plan_monthly_quota(self, db, services):
        user = make_user(db, "Ana")
        for i in range(5):
            await services.documents.create(user, f"Doc {i}", DocumentType.OTHER, "x")
        with pytest.raises(ForbiddenError):
            await services.generation.generate_document(user, GenerateRequest(
                document_type="nda", user_info={"name": "Ana"},
            ))

    @pytest.mark.asyncio
    async def test_llm_failure_is_internal_error(self, db, llm, services):
        user = make_user(db, "Ana")
        llm.generate.side_effect = RuntimeError("quota exceeded")
        with pytest.raises(InternalError):
            await services.generation.generate_document(user, GenerateRequest(
                document_type="nda", user_info={"name": "Ana"},
            ))
        assert await db.documents.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_from_template(self, db, llm, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        template = await services.documents.create(user, "Lease template", DocumentType.LEGAL, "LEASE [TENANT]")
        llm.generate.return_value = "LEASE Ben"

        doc = await services.generation.generate_from_template(user, TemplateGenerateRequest(
            template_id=template.document_id, user_info={"name": "Ben"},
        ))
        assert doc.title == "Lease template - Customized"
        assert doc.content == "LEASE Ben"
        assert doc.document_id != template.document_id

    @pytest.mark.asyncio
    async def test_free_plan_cannot_use_templates(self, db, llm, services):
        user = make_user(db, "Ana")
        template = await services.documents.create(user, "Lease template", DocumentType.LEGAL, "LEASE [TENANT]")

        with pytest.raises(PlanGatingError) as exc:
            await services.generation.generate_from_template(user, TemplateGenerateRequest(
                template_id=template.document_id, user_info={"name": "Ben"},
            ))
        assert exc.value.required_plan == "premium"
        llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_admin_bypasses_template_gating(self, db, llm, services):
        admin = make_user(db, "Root", role=UserRole.ADMIN)
        template = await services.documents.create(admin, "Claim template", DocumentType.LEGAL, "CLAIM", category="demanda_civil")
        llm.generate.return_value = "CLAIM Ben"

        doc = await services.generation.generate_from_template(admin, TemplateGenerateRequest(
            template_id=template.document_id, user_info={"name": "Ben"},
        ))
        assert doc.content == "CLAIM Ben"


class TestAnalysis:
    @pytest.mark.asyncio
    async def test_free_plan_cannot_analyze(self, db, services):
        user = make_user(db, "Ana")
        with pytest.raises(PlanGatingError):
            await services.generation.analyze(user, "some text", "summary")

    @pytest.mark.asyncio
    async def test_premium_analysis(self, db, llm, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        llm.generate.return_value = "Summary: ..."
        result = await services.generation.analyze(user, "contract text", "risks")
        assert result == {"type": "risks", "result": "Summary: ..."}
        assert llm.generate.call_args.kwargs["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_extraction_lists_requested_fields(self, db, llm, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        await services.generation.analyze(user, "contract text", "extraction", ["Rent amount"])
        prompt = llm.generate.call_args.args[1]
        assert "- Rent amount" in prompt

    @pytest.mark.asyncio
    async def test_empty_content(self, db, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        with pytest.raises(BadRequestError):
            await services.generation.analyze(user, "   ")


class TestEditorOperations:
    @pytest.mark.asyncio
    async def test_translate_appends_version(self, db, llm, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        doc = await services.documents.create(user, "NDA", DocumentType.LEGAL, "Acuerdo ...")
        llm.generate.return_value = "Agreement ..."

        updated = await services.generation.translate(user, doc.document_id, "English")
        assert updated.content == "Agreement ..."
        assert len(updated.version_history) == 2
        assert updated.version_history[-1].content == "Acuerdo ..."
        assert updated.version_history[-1].change_description == "Translated to English"

    @pytest.mark.asyncio
    async def test_view_collaborator_cannot_edit(self, db, llm, services):
        owner = make_user(db, "Ana")
        viewer = make_user(db, "Ben", plan=SubscriptionPlan.PREMIUM)
        doc = await services.documents.create(owner, "NDA", DocumentType.LEGAL, "text")
        await services.documents.share_with(
            doc.document_id, owner, [ShareEntry(user_id=viewer.user_id, permission=CollaboratorPermission.VIEW)]
        )
        with pytest.raises(ForbiddenError):
            await services.generation.edit(viewer, doc.document_id, "shorter")
        llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_free_plan_cannot_edit(self, db, services):
        user = make_user(db, "Ana")
        doc = await services.documents.create(user, "NDA", DocumentType.LEGAL, "text")
        with pytest.raises(PlanGatingError):
            await services.generation.simplify(user, doc.document_id)

    @pytest.mark.asyncio
    async def test_merge_needs_two_documents(self, db, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        doc = await services.documents.create(user, "A", DocumentType.LEGAL, "a")
        with pytest.raises(BadRequestError):
            await services.generation.merge_documents(user, MergeRequest(document_ids=[doc.document_id, doc.document_id]))

    @pytest.mark.asyncio
    async def test_merge_creates_new_document(self, db, llm, services):
        user = make_user(db, "Ana", plan=SubscriptionPlan.PREMIUM)
        a = await services.documents.create(user, "A", DocumentType.LEGAL, "a")
        b = await services.documents.create(user, "B", DocumentType.LEGAL, "b")
        llm.generate.return_value = "a + b"

        merged = await services.generation.merge_documents(
            user, MergeRequest(document_ids=[a.document_id, b.document_id], title="Combined")
        )
        assert merged.title == "Combined"
        assert merged.content == "a + b"
        assert await db.documents.count_documents({}) == 3


class TestConversation:
    @pytest.mark.asyncio
    async def test_incomplete_turn_creates_nothing(self, db, llm, services):
        user = make_user(db, "Ana")
        llm.generate.return_value = json.dumps({"message": "Who is the tenant?", "is_complete": False})

        result = await services.generation.start_conversation(
            user, ConversationStartRequest(document_type="lease_agreement", initial_message="I need a lease")
        )
        assert result["conversation_id"].startswith("conv-")
        assert result["is_complete"] is False
        assert "document" not in result
        assert result["history"][-1] == {"role": "assistant", "content": "Who is the tenant?"}
        assert result["document_type"] == "lease_agreement"
        assert llm.generate.call_args.kwargs["json_output"] is True

    @pytest.mark.asyncio
    async def test_follow_up_turn_keeps_document_type(self, db, llm, services):
        user = make_user(db, "Ana")
        llm.generate.return_value = json.dumps({"message": "What is the monthly rent?", "is_complete": False})

        result = await services.generation.continue_conversation(
            user, "conv-abc", ConversationContinueRequest(document_type="lease_agreement", message="Ben is the tenant")
        )

        system_prompt = llm.generate.call_args.args[0]
        assert "drafts a lease_agreement document" in system_prompt
        assert result["document_type"] == "lease_agreement"

    @pytest.mark.asyncio
    async def test_follow_up_turn_needs_document_type(self, db, services):
        user = make_user(db, "Ana")
        with pytest.raises(BadRequestError):
            await services.generation.continue_conversation(
                user, "conv-abc", ConversationContinueRequest(document_type="", message="Ben is the tenant")
            )

    @pytest.mark.asyncio
    async def test_complete_turn_creates_document(self, db, llm, services):
        user = make_user(db, "Ana")
        llm.generate.return_value = json.dumps({
            "message": "Your lease is ready.",
            "is_complete": True,
            "document": {
                "title": "Lease Calle Mayor 1",
                "type": "legal",
                "category": "lease_agreement",
                "language": "es",
                "jurisdiction": "ES",
                "parties": [{"name": "Ana", "role": "landlord"}, {"name": "Ben", "role": "tenant"}],
                "keywords": ["lease"],
                "content": "CONTRATO DE ARRENDAMIENTO ...",
            },
        })

        result = await services.generation.continue_conversation(
            user, "conv-abc", ConversationContinueRequest(document_type="lease_agreement", message="Ben is the tenant", history=[
                {"role": "user", "content": "I need a lease"},
                {"role": "assistant", "content": "Who is the tenant?"},
            ])
        )
        assert result["is_complete"] is True
        document = result["document"]
        assert document["title"] == "Lease Calle Mayor 1"
        assert document["metadata"]["jurisdiction"] == "ES"
        assert document["version_history"][0]["change_description"] == CONVERSATION_DESCRIPTION
        assert len(result["history"]) == 4
