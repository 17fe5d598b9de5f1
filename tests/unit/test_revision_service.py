import asyncio
from dataclasses import replace

import pytest

from app.document_control.domain.errors import InvalidRequest, InvalidTransition, NotFound


def run(coro):
    return asyncio.run(coro)


def test_two_revisions_supersede_and_stay_uncurrent_until_approved(revisions, users):
    async def scenario():
        first = await revisions.create_revision("DOC-1", "s3://docs/a.pdf", 1024, users["site"])
        second = await revisions.create_revision(
            "DOC-1", "s3://docs/b.pdf", 2048, users["site"], changes="Updated grid lines"
        )
        current_before = await revisions.get_current_revision("DOC-1")
        await revisions.approve_revision(second.id, users["pm"])
        current_after = await revisions.get_current_revision("DOC-1")
        history = await revisions.get_revision_history("DOC-1")
        return first, second, current_before, current_after, history

    first, second, current_before, current_after, history = run(scenario())

    assert (first.revision_letter, first.version) == ("A", 1)
    assert (second.revision_letter, second.version, second.status) == ("B", 2, "draft")
    assert second.title == "Revision B"
    assert current_before is None
    assert current_after.id == second.id
    assert current_after.approved_by == "u-pm"
    assert [(r.revision_letter, r.status) for r in history] == [
        ("B", "approved"),
        ("A", "superseded"),
    ]


def test_at_most_one_revision_is_live(revisions, revision_repository, users):
    async def scenario():
        for index in range(4):
            revision = await revisions.create_revision("DOC-2", f"ref-{index}", 10, users["site"])
            if index == 1:
                await revisions.approve_revision(revision.id, users["pm"])

    run(scenario())

    stored = sorted(revision_repository.revisions.values(), key=lambda r: r.version)
    assert [r.version for r in stored] == [1, 2, 3, 4]
    assert [r.revision_letter for r in stored] == ["A", "B", "C", "D"]
    assert [r.status for r in stored if r.status != "superseded"] == ["draft"]


def test_concurrent_creator_forces_retry(revisions, revision_repository, users):
    def other_writer_takes_version(repo):
        original = next(iter(repo.revisions.values()))
        repo.revisions[original.id] = replace(original, status="superseded")
        repo.revisions["rev-other"] = replace(
            original, id="rev-other", revision_letter="B", version=2, status="draft"
        )

    async def scenario():
        await revisions.create_revision("DOC-3", "ref-a", 1, users["site"])
        revision_repository.before_add = other_writer_takes_version
        return await revisions.create_revision("DOC-3", "ref-c", 1, users["pm"])

    revision = run(scenario())

    assert (revision.revision_letter, revision.version) == ("C", 3)
    assert revision_repository.rollbacks == 1
    assert revision_repository.revisions["rev-other"].status == "superseded"


def test_approval_racing_a_new_revision_loses(revisions, revision_repository, users):
    async def scenario():
        first = await revisions.create_revision("DOC-4", "ref-a", 1, users["site"])
        await revisions.submit_for_review(first.id, users["site"])
        results = await asyncio.gather(
            revisions.approve_revision(first.id, users["pm"]),
            revisions.create_revision("DOC-4", "ref-b", 1, users["site"]),
            return_exceptions=True,
        )
        return first, results

    first, (approved, created) = run(scenario())

    assert isinstance(approved, InvalidTransition)
    assert created.revision_letter == "B"
    live = [r for r in revision_repository.revisions.values() if r.status != "superseded"]
    assert [(r.revision_letter, r.status) for r in live] == [("B", "draft")]
    assert revision_repository.revisions[first.id].approved_by is None
    assert revision_repository.rollbacks == 1


def test_supersede_keeps_approval_committed_meanwhile(revisions, revision_repository, users, clock):
    def approver_commits_first(repo):
        original = next(iter(repo.revisions.values()))
        repo.revisions[original.id] = replace(
            original, status="approved", approved_by="u-qa", approved_at=clock.now
        )

    async def scenario():
        first = await revisions.create_revision("DOC-5", "ref-a", 1, users["site"])
        revision_repository.before_add = approver_commits_first
        second = await revisions.create_revision("DOC-5", "ref-b", 1, users["site"])
        return first, second

    first, second = run(scenario())

    stored = revision_repository.revisions[first.id]
    assert stored.status == "superseded"
    assert stored.approved_by == "u-qa"
    assert stored.approved_at == clock.now
    assert revision_repository.revisions[second.id].status == "draft"


def test_submit_then_approve(revisions, audit_repository, users):
    async def scenario():
        revision = await revisions.create_revision("DOC-4", "ref", 1, users["site"])
        submitted = await revisions.submit_for_review(revision.id, users["site"])
        approved = await revisions.approve_revision(revision.id, users["pm"])
        return submitted, approved

    submitted, approved = run(scenario())

    assert submitted.status == "review"
    assert approved.status == "approved"
    assert audit_repository.actions() == ["CREATE", "UPDATE", "APPROVE"]


def test_only_drafts_can_be_submitted(revisions, users):
    async def scenario():
        revision = await revisions.create_revision("DOC-5", "ref", 1, users["site"])
        await revisions.approve_revision(revision.id, users["pm"])
        await revisions.submit_for_review(revision.id, users["site"])

    with pytest.raises(InvalidTransition):
        run(scenario())


def test_superseded_revision_cannot_be_approved(revisions, users):
    async def scenario():
        first = await revisions.create_revision("DOC-6", "ref-a", 1, users["site"])
        await revisions.create_revision("DOC-6", "ref-b", 1, users["site"])
        await revisions.approve_revision(first.id, users["pm"])

    with pytest.raises(InvalidTransition):
        run(scenario())


def test_approved_revision_cannot_be_approved_again(revisions, users):
    async def scenario():
        revision = await revisions.create_revision("DOC-7", "ref", 1, users["site"])
        await revisions.approve_revision(revision.id, users["pm"])
        await revisions.approve_revision(revision.id, users["admin"])

    with pytest.raises(InvalidTransition):
        run(scenario())


def test_negative_size_is_rejected(revisions, users):
    with pytest.raises(InvalidRequest):
        run(revisions.create_revision("DOC-8", "ref", -1, users["site"]))


def test_approve_missing_revision(revisions, users):
    with pytest.raises(NotFound):
        run(revisions.approve_revision("missing", users["pm"]))


def test_compare_revisions(revisions, users):
    async def scenario():
        await revisions.create_revision("DOC-9", "ref-a", 1, users["site"])
        await revisions.create_revision("DOC-9", "ref-b", 1, users["site"], changes="Added notes")
        await revisions.create_revision("DOC-9", "ref-c", 1, users["site"])
        return (
            await revisions.compare_revisions("DOC-9", "a", "b"),
            await revisions.compare_revisions("DOC-9", "B", "C"),
        )

    with_changes, without_changes = run(scenario())

    assert with_changes.old_revision.revision_letter == "A"
    assert with_changes.new_revision.revision_letter == "B"
    assert with_changes.changes == ["Revision A → B", "Added notes"]
    assert without_changes.changes == ["Revision B → C", "No changes documented"]


def test_compare_with_missing_revision(revisions, users):
    async def scenario():
        await revisions.create_revision("DOC-10", "ref-a", 1, users["site"])
        await revisions.compare_revisions("DOC-10", "A", "B")

    with pytest.raises(NotFound):
        run(scenario())


def test_get_revision_by_letter(revisions, users):
    async def scenario():
        await revisions.create_revision("DOC-11", "ref-a", 1, users["site"])
        return await revisions.get_revision("DOC-11", "a"), await revisions.get_revision("DOC-11", "Z")

    found, missing = run(scenario())

    assert found.artifact_ref == "ref-a"
    assert missing is None


def test_next_revision_letter_is_exposed():
    from app.document_control.application.revisions import RevisionService

    assert RevisionService.next_revision_letter("AZ") == "BA"
