"""
Version ledger through the lifecycle service: numbering, changelogs,
restore and comparison.
"""

from uuid import uuid4

import pytest

from contract_kernel.domain.diff import NO_CHANGES_SUMMARY, ChangeKind
from contract_kernel.domain.status import ContractStatus
from contract_kernel.exceptions import (
    InvalidTransitionError,
    UnauthorizedError,
    VersionNotFoundError,
)
from contract_kernel.utils.hashing import hash_snapshot
from tests.conftest import AUTHOR_ID, OUTSIDER_ID, SAMPLE_CONTENT

REVISED_CONTENT = SAMPLE_CONTENT.replace("thirty days", "forty five days")


class TestCreateVersion:

    def test_contract_starts_at_version_one(self, lifecycle, create_contract):
        contract = create_contract()

        versions = lifecycle.get_versions(contract.id)

        assert [v.version_number for v in versions] == [1]
        assert versions[0].content_snapshot == SAMPLE_CONTENT
        assert versions[0].change_log is None
        assert versions[0].snapshot_hash == hash_snapshot(SAMPLE_CONTENT)
        assert contract.latest_version_number == 1

    def test_new_version_carries_changelog(self, lifecycle, create_contract):
        contract = create_contract()

        version = lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)

        assert version.version_number == 2
        assert version.content_snapshot == REVISED_CONTENT
        assert version.change_log["summary"] == "Content updated: 1 clause modified"
        [entry] = version.change_log["entries"]
        assert entry["kind"] == ChangeKind.MODIFIED.value
        assert entry["block_index"] == 2
        assert lifecycle.get_contract(contract.id).latest_version_number == 2

    def test_unchanged_snapshot_still_appends(self, lifecycle, create_contract):
        contract = create_contract()

        version = lifecycle.create_version(contract.id, AUTHOR_ID, SAMPLE_CONTENT)

        assert version.version_number == 2
        assert version.change_log["summary"] == NO_CHANGES_SUMMARY

    def test_numbers_are_contiguous(self, lifecycle, create_contract):
        contract = create_contract()
        for n in range(4):
            lifecycle.create_version(contract.id, AUTHOR_ID, f"<p>Draft {n}</p>")

        assert [v.version_number for v in lifecycle.get_versions(contract.id)] == [1, 2, 3, 4, 5]

    def test_numbering_is_per_contract(self, lifecycle, create_contract):
        first = create_contract(title="First")
        second = create_contract(title="Second")
        lifecycle.create_version(first.id, AUTHOR_ID, REVISED_CONTENT)

        assert lifecycle.create_version(second.id, AUTHOR_ID, REVISED_CONTENT).version_number == 2

    def test_allowed_during_review(self, lifecycle, create_contract):
        contract = create_contract()
        lifecycle.submit(contract.id, AUTHOR_ID)

        version = lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)

        assert version.version_number == 2
        assert lifecycle.get_contract(contract.id).status == ContractStatus.IN_REVIEW

    def test_rejected_on_terminal_contract(self, lifecycle, create_contract):
        contract = create_contract()
        lifecycle.cancel(contract.id, AUTHOR_ID, "no longer needed at all")

        with pytest.raises(InvalidTransitionError):
            lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)

        assert len(lifecycle.get_versions(contract.id)) == 1

    def test_requires_permission(self, lifecycle, create_contract):
        contract = create_contract()
        with pytest.raises(UnauthorizedError):
            lifecycle.create_version(contract.id, OUTSIDER_ID, REVISED_CONTENT)

    def test_audited_without_status_change(self, lifecycle, create_contract):
        contract = create_contract()
        version = lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)

        entry = lifecycle.get_audit_trail(contract.id)[-1]

        assert entry.action == "VERSION_CREATED"
        assert entry.from_status == entry.to_status == ContractStatus.DRAFT
        assert entry.payload["version_id"] == str(version.id)
        assert entry.payload["version_number"] == 2
        assert entry.payload["summary"] == "Content updated: 1 clause modified"


class TestRestoreVersion:

    def test_restore_appends_byte_equal_copy(self, lifecycle, create_contract):
        contract = create_contract()
        v1, = lifecycle.get_versions(contract.id)
        v2 = lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)

        v3 = lifecycle.restore_version(contract.id, AUTHOR_ID, v1.id)

        assert v3.version_number == 3
        assert v3.content_snapshot == v1.content_snapshot
        assert v3.snapshot_hash == v1.snapshot_hash
        assert v3.restored_from_version == 1
        assert v3.change_log["notes"] == ["Restored from version 1"]

        stored = {v.version_number: v for v in lifecycle.get_versions(contract.id)}
        assert stored[1] == v1
        assert stored[2] == v2

    def test_restore_is_audited(self, lifecycle, create_contract):
        contract = create_contract()
        v1, = lifecycle.get_versions(contract.id)
        lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)
        lifecycle.restore_version(contract.id, AUTHOR_ID, v1.id)

        entry = lifecycle.get_audit_trail(contract.id)[-1]

        assert entry.action == "VERSION_RESTORED"
        assert entry.payload["restored_from_version"] == 1
        assert entry.payload["version_number"] == 3

    def test_unknown_version(self, lifecycle, create_contract):
        contract = create_contract()
        with pytest.raises(VersionNotFoundError):
            lifecycle.restore_version(contract.id, AUTHOR_ID, uuid4())

    def test_version_of_another_contract(self, lifecycle, create_contract):
        contract = create_contract(title="Mine")
        other = create_contract(title="Theirs")
        foreign, = lifecycle.get_versions(other.id)

        with pytest.raises(VersionNotFoundError):
            lifecycle.restore_version(contract.id, AUTHOR_ID, foreign.id)

        assert len(lifecycle.get_versions(contract.id)) == 1


class TestReadAndCompare:

    def test_get_version(self, lifecycle, create_contract):
        contract = create_contract()
        v2 = lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)

        assert lifecycle.get_version(contract.id, v2.id) == v2
        with pytest.raises(VersionNotFoundError):
            lifecycle.get_version(contract.id, uuid4())

    def test_compare_any_two_versions(self, lifecycle, create_contract):
        contract = create_contract()
        v1, = lifecycle.get_versions(contract.id)
        lifecycle.create_version(contract.id, AUTHOR_ID, REVISED_CONTENT)
        v3 = lifecycle.create_version(
            contract.id, AUTHOR_ID, REVISED_CONTENT + "<p>4. Notices must be in writing.</p>",
        )

        comparison = lifecycle.compare_versions(contract.id, v1.id, v3.id)

        assert (comparison.from_version, comparison.to_version) == (1, 3)
        assert comparison.change_log.summary == (
            "Content updated: 1 clause added, 1 clause modified"
        )
        assert '<span class="diff-removed">thirty</span>' in comparison.html_diff
        assert '<span class="diff-added">forty five</span>' in comparison.html_diff

    def test_compare_same_version(self, lifecycle, create_contract):
        contract = create_contract()
        v1, = lifecycle.get_versions(contract.id)

        comparison = lifecycle.compare_versions(contract.id, v1.id, v1.id)

        assert not comparison.change_log.has_changes
