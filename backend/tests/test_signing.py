"""
Signing workflow: prepare, complete, signer events.
"""
import pytest

from errors import BadRequestError, ForbiddenError, NotFoundError
from models.documents import (
    Collaborator,
    CollaboratorPermission,
    Document,
    DocumentStatus,
    DocumentType,
    SignatureStatus,
    SignerInput,
    SignerStatus,
)
from models.user import User, UserRole
from services import signing


def _user(user_id, role=UserRole.USER):
    return User(user_id=user_id, name=user_id, email=f"{user_id.lower()}@example.com", password_hash="h", role=role)


CREATOR = _user("USR-A")
ADMIN = _user("USR-ADMIN", role=UserRole.ADMIN)
SIGNER = SignerInput(name="Bea", email="bea@example.com")


def _doc():
    return Document(
        title="Services contract",
        type=DocumentType.LEGAL,
        content="terms",
        creator="USR-A",
        collaborators=[Collaborator(user="USR-B", permission=CollaboratorPermission.SIGN)],
    )


class TestPrepare:
    def test_prepare_sets_signers(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        info = doc.signature_info
        assert info.is_signable is True
        assert info.signature_status == SignatureStatus.NOT_STARTED
        assert [s.email for s in info.signers] == ["bea@example.com"]
        assert info.signers[0].status == SignerStatus.PENDING

    def test_empty_signers_is_bad_request_and_state_unchanged(self):
        doc = _doc()
        with pytest.raises(BadRequestError):
            signing.prepare_for_signing(CREATOR, doc, [])
        assert doc.signature_info.is_signable is False
        assert doc.signature_info.signers == []

    def test_admin_cannot_prepare(self):
        with pytest.raises(ForbiddenError):
            signing.prepare_for_signing(ADMIN, _doc(), [SIGNER])

    def test_sign_collaborator_cannot_prepare(self):
        with pytest.raises(ForbiddenError):
            signing.prepare_for_signing(_user("USR-B"), _doc(), [SIGNER])


class TestComplete:
    def test_creator_completes(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        signing.complete_signing_process(CREATOR, doc)
        assert doc.signature_info.signature_status == SignatureStatus.COMPLETED
        assert doc.status == DocumentStatus.SIGNED

    def test_creator_may_force_complete_with_pending_signers(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        signing.complete_signing_process(CREATOR, doc)
        assert doc.signature_info.signers[0].status == SignerStatus.PENDING
        assert doc.status == DocumentStatus.SIGNED

    def test_admin_who_is_not_creator_is_forbidden(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        with pytest.raises(ForbiddenError):
            signing.complete_signing_process(ADMIN, doc)
        assert doc.signature_info.signature_status == SignatureStatus.NOT_STARTED
        assert doc.status == DocumentStatus.DRAFT


class TestSignerEvents:
    def test_first_event_moves_to_in_progress(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        signing.record_signer_event(doc, "BEA@example.com", SignerStatus.SIGNED)
        assert doc.signature_info.signature_status == SignatureStatus.IN_PROGRESS
        assert doc.signature_info.signers[0].status == SignerStatus.SIGNED
        assert doc.signature_info.signers[0].signed_at is not None

    def test_unknown_signer(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        with pytest.raises(NotFoundError):
            signing.record_signer_event(doc, "nobody@example.com", SignerStatus.SIGNED)

    def test_status_visible_to_collaborator_not_stranger(self):
        doc = signing.prepare_for_signing(CREATOR, _doc(), [SIGNER])
        assert signing.signing_status(_user("USR-B"), doc).is_signable
        with pytest.raises(ForbiddenError):
            signing.signing_status(_user("USR-Z"), doc)
