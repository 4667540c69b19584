"""
Version history: seeding, archival of prior content, lookup and ordering.
"""
import pytest

from errors import NotFoundError
from models.documents import Document, DocumentType
from services import version_history


def _seeded(content="v1 text"):
    doc = Document(title="Lease", type=DocumentType.LEGAL, content=content, creator="USR-A")
    version_history.seed_initial_version(doc, "USR-A", "Initial version")
    return doc


class TestSeeding:
    def test_seed_records_initial_content_as_version_one(self):
        doc = _seeded()
        assert len(doc.version_history) == 1
        first = doc.version_history[0]
        assert first.version == 1
        assert first.content == "v1 text"
        assert first.modified_by == "USR-A"
        assert first.change_description == "Initial version"

    def test_seed_twice_is_rejected(self):
        doc = _seeded()
        with pytest.raises(ValueError):
            version_history.seed_initial_version(doc, "USR-A", "again")


class TestAppend:
    def test_append_archives_old_content_and_replaces_it(self):
        doc = _seeded()
        version_history.append_version(doc, "v2 text", "USR-B", "Clause 4 rewritten")

        assert doc.content == "v2 text"
        assert [s.version for s in doc.version_history] == [1, 2]
        archived = doc.version_history[1]
        assert archived.content == "v1 text"
        assert archived.modified_by == "USR-B"
        assert archived.change_description == "Clause 4 rewritten"

    def test_default_change_description(self):
        doc = _seeded()
        version_history.append_version(doc, "v2", "USR-A")
        assert doc.version_history[-1].change_description == version_history.DEFAULT_CHANGE_DESCRIPTION

    def test_n_updates_give_n_plus_one_entries(self):
        doc = _seeded()
        for i in range(2, 6):
            version_history.append_version(doc, f"v{i}", "USR-A")
        assert len(doc.version_history) == 5
        assert version_history.next_version_number(doc) == 6
        assert doc.version_history[0].content == "v1 text"


class TestLookup:
    def test_get_version(self):
        doc = _seeded()
        version_history.append_version(doc, "v2", "USR-A")
        assert version_history.get_version(doc, 2).content == "v1 text"

    def test_missing_version_is_not_found(self):
        with pytest.raises(NotFoundError):
            version_history.get_version(_seeded(), 7)

    def test_listing_is_newest_first_without_content(self):
        doc = _seeded()
        version_history.append_version(doc, "v2", "USR-A")
        version_history.append_version(doc, "v3", "USR-A")

        listing = version_history.list_versions(doc)
        assert [v["version"] for v in listing] == [3, 2, 1]
        assert all("content" not in v for v in listing)


class TestDocumentValidation:
    def test_non_contiguous_history_is_rejected(self):
        with pytest.raises(ValueError):
            Document(
                title="Bad",
                type=DocumentType.OTHER,
                content="x",
                creator="USR-A",
                version_history=[
                    {"version": 1, "content": "a", "modified_by": "USR-A"},
                    {"version": 3, "content": "b", "modified_by": "USR-A"},
                ],
            )
