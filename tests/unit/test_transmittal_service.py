import asyncio
from dataclasses import replace

import pytest

from app.document_control.application.transmittals import (
    CreateTransmittalCommand,
    TransmittalDocumentInput,
)
from app.document_control.domain.errors import InvalidRequest, InvalidTransition, NotFound


def run(coro):
    return asyncio.run(coro)


def make_command(**overrides):
    values = dict(
        project_id="P-100",
        subject="Structural drawings for level 2",
        sender="Sam Site",
        sender_organization="Main Contractor",
        recipient="u-site",
        recipient_organization="Consultant",
        documents=[
            TransmittalDocumentInput(
                document_id="DOC-1", document_number="STR-001", title="Slab plan", revision="B"
            ),
            TransmittalDocumentInput(
                document_id="DOC-2",
                document_number="STR-002",
                title="Beam schedule",
                revision="A",
                copies=2,
                format="dwg",
                action="for_approval",
            ),
        ],
    )
    values.update(overrides)
    return CreateTransmittalCommand(**values)


def test_create_numbers_transmittal_in_draft(transmittals, transmittal_repository, audit_repository, users):
    transmittal = run(transmittals.create(make_command(), users["site"]))

    assert transmittal.transmittal_number == "IEMS-TRN-2601-001"
    assert transmittal.status == "draft"
    assert transmittal.transmittal_date is None
    assert [d.item_index for d in transmittal.documents] == [0, 1]
    assert transmittal.documents[1].format == "dwg"
    assert [e.action for e in transmittal_repository.history] == ["created"]
    assert audit_repository.actions() == ["CREATE"]
    assert audit_repository.entries[0].entity_name == "IEMS-TRN-2601-001"


def test_numbers_are_sequential_and_use_project_code(transmittals, users):
    async def scenario():
        first = await transmittals.create(make_command(), users["site"])
        second = await transmittals.create(make_command(), users["site"])
        scoped = await transmittals.create(make_command(project_code="P01"), users["site"])
        return first, second, scoped

    first, second, scoped = run(scenario())

    assert first.transmittal_number == "IEMS-TRN-2601-001"
    assert second.transmittal_number == "IEMS-TRN-2601-002"
    assert scoped.transmittal_number == "P01-TRN-2601-001"


def test_taken_number_is_retried(transmittals, transmittal_repository, serial_repository, users):
    squatter = replace(
        run(transmittals.create(make_command(), users["site"])), id="other", documents=[]
    )
    transmittal_repository.transmittals = {"other": squatter}
    transmittal_repository.history.clear()
    # counter lost: the next number handed out collides with the squatter
    serial_repository.counters.clear()

    transmittal = run(transmittals.create(make_command(), users["site"]))

    assert transmittal.transmittal_number == "IEMS-TRN-2601-002"
    assert transmittal_repository.rollbacks == 1


@pytest.mark.parametrize(
    "overrides",
    [
        {"subject": "  "},
        {"recipient": ""},
        {"transmittal_type": "letter"},
        {"documents": [TransmittalDocumentInput("DOC-1", "STR-001", "Plan", "A", copies=0)]},
        {"documents": [TransmittalDocumentInput("DOC-1", "STR-001", "Plan", "A", format="tiff")]},
        {"documents": [TransmittalDocumentInput("DOC-1", "STR-001", "Plan", "A", action="for_fun")]},
        {"documents": [TransmittalDocumentInput("", "STR-001", "Plan", "A")]},
    ],
)
def test_invalid_create_requests(transmittals, transmittal_repository, users, overrides):
    with pytest.raises(InvalidRequest):
        run(transmittals.create(make_command(**overrides), users["site"]))
    assert transmittal_repository.transmittals == {}


def test_add_documents_continues_item_index(transmittals, transmittal_repository, users):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        return await transmittals.add_documents(
            transmittal.id,
            [TransmittalDocumentInput("DOC-3", "STR-003", "Column details", "C")],
            users["site"],
        )

    updated = run(scenario())

    assert [d.item_index for d in updated.documents] == [0, 1, 2]
    stored = transmittal_repository.transmittals[updated.id]
    assert [d.document_number for d in stored.documents] == ["STR-001", "STR-002", "STR-003"]
    assert transmittal_repository.history[-1].action == "updated"
    assert transmittal_repository.history[-1].comment == "Added 1 document(s)"


def test_add_documents_requires_draft(transmittals, users):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        await transmittals.send(transmittal.id, users["site"])
        await transmittals.add_documents(
            transmittal.id,
            [TransmittalDocumentInput("DOC-3", "STR-003", "Column details", "C")],
            users["site"],
        )

    with pytest.raises(InvalidTransition):
        run(scenario())


def test_add_no_documents_is_rejected(transmittals, users):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        await transmittals.add_documents(transmittal.id, [], users["site"])

    with pytest.raises(InvalidRequest):
        run(scenario())


def test_full_lifecycle(transmittals, transmittal_repository, audit_repository, users, clock):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        clock.advance(hours=1)
        sent = await transmittals.send(transmittal.id, users["site"])
        clock.advance(days=1)
        received = await transmittals.mark_received(transmittal.id, users["pm"])
        clock.advance(hours=2)
        acknowledged = await transmittals.acknowledge(transmittal.id, users["pm"], "All good")
        history = await transmittals.get_history(transmittal.id)
        return sent, received, acknowledged, history

    sent, received, acknowledged, history = run(scenario())

    assert sent.status == "sent"
    assert sent.transmittal_date == sent.updated_at
    assert received.status == "received"
    assert received.transmittal_date == sent.transmittal_date
    assert acknowledged.status == "acknowledged"
    assert [e.action for e in history] == ["acknowledged", "received", "sent", "created"]
    assert history[0].comment == "All good"
    assert audit_repository.actions() == ["CREATE", "UPDATE", "UPDATE", "UPDATE"]
    assert audit_repository.entries[-1].metadata["changed_fields"] == ["status"]


def test_concurrent_acknowledge_and_reject_only_one_wins(
    transmittals, transmittal_repository, users
):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        await transmittals.send(transmittal.id, users["site"])
        results = await asyncio.gather(
            transmittals.acknowledge(transmittal.id, users["pm"], "Received in full"),
            transmittals.reject(transmittal.id, users["qa"], "Wrong revision"),
            return_exceptions=True,
        )
        return transmittal, results

    transmittal, (acknowledged, rejected) = run(scenario())

    assert acknowledged.status == "acknowledged"
    assert isinstance(rejected, InvalidTransition)
    assert transmittal_repository.transmittals[transmittal.id].status == "acknowledged"
    outcomes = [
        e.action for e in transmittal_repository.history
        if e.action in ("acknowledged", "rejected")
    ]
    assert outcomes == ["acknowledged"]
    assert transmittal_repository.rollbacks == 1


def test_documents_added_while_sending_are_refused(transmittals, transmittal_repository, users):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        results = await asyncio.gather(
            transmittals.send(transmittal.id, users["site"]),
            transmittals.add_documents(
                transmittal.id,
                [TransmittalDocumentInput("DOC-3", "STR-003", "Column details", "C")],
                users["site"],
            ),
            return_exceptions=True,
        )
        return transmittal, results

    transmittal, (sent, added) = run(scenario())

    assert sent.status == "sent"
    assert isinstance(added, InvalidTransition)
    stored = transmittal_repository.transmittals[transmittal.id]
    assert [d.document_number for d in stored.documents] == ["STR-001", "STR-002"]


def test_reject_straight_from_sent(transmittals, users):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        await transmittals.send(transmittal.id, users["site"])
        return await transmittals.reject(transmittal.id, users["pm"], "Wrong revision")

    rejected = run(scenario())

    assert rejected.status == "rejected"


@pytest.mark.parametrize(
    "steps, final",
    [
        ([], "mark_received"),
        ([], "acknowledge"),
        (["send"], "send"),
        (["send", "acknowledge"], "reject"),
        (["send", "reject"], "mark_received"),
    ],
)
def test_illegal_status_changes(transmittals, users, steps, final):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        for step in steps:
            await getattr(transmittals, step)(transmittal.id, users["site"])
        await getattr(transmittals, final)(transmittal.id, users["site"])

    with pytest.raises(InvalidTransition):
        run(scenario())


def test_missing_transmittal(transmittals, users):
    with pytest.raises(NotFound):
        run(transmittals.get("missing"))
    with pytest.raises(NotFound):
        run(transmittals.send("missing", users["site"]))
    with pytest.raises(NotFound):
        run(transmittals.get_history("missing"))


def test_pending_for_matches_id_or_email(transmittals, users):
    async def scenario():
        by_id = await transmittals.create(make_command(), users["site"])
        by_email = await transmittals.create(make_command(recipient="site@example.com"), users["pm"])
        draft = await transmittals.create(make_command(), users["pm"])
        other = await transmittals.create(make_command(recipient="u-qa"), users["pm"])
        for transmittal in (by_id, by_email, other):
            await transmittals.send(transmittal.id, users["pm"])
        await transmittals.mark_received(by_email.id, users["site"])
        pending = await transmittals.list_pending_for("u-site")
        unknown = await transmittals.list_pending_for("u-nobody")
        return {by_id.id, by_email.id}, draft, pending, unknown

    expected, draft, pending, unknown = run(scenario())

    assert {t.id for t in pending} == expected
    assert draft.id not in {t.id for t in pending}
    assert unknown == []


def test_list_for_project(transmittals, users):
    async def scenario():
        await transmittals.create(make_command(), users["site"])
        await transmittals.create(make_command(project_id="P-200"), users["site"])
        return await transmittals.list_for_project("P-100")

    listed = run(scenario())

    assert [t.project_id for t in listed] == ["P-100"]


def test_generate_cover_sheet(transmittals, renderer, users):
    async def scenario():
        transmittal = await transmittals.create(make_command(), users["site"])
        return transmittal, await transmittals.generate_cover_sheet(transmittal.id)

    transmittal, pdf = run(scenario())

    assert pdf.startswith(b"%PDF")
    assert renderer.rendered == [transmittal.id]
