import asyncio
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from app.document_control.application.approvals import ApprovalService
from app.document_control.application.audit import AuditLogger
from app.document_control.application.notifications import NotificationDispatcher
from app.document_control.application.revisions import RevisionService
from app.document_control.application.serial_numbers import SerialNumberService
from app.document_control.application.transmittals import TransmittalService
from app.document_control.domain.engine import WorkflowEngine
from app.document_control.domain.errors import SequenceConflict, StaleWorkflowInstance
from app.document_control.domain.models import ApprovalStatus, UserSummary
from app.document_control.domain.workflows import WorkflowRegistry


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class SequentialIds:
    def __init__(self, prefix: str = "id") -> None:
        self.prefix = prefix
        self.count = 0

    def __call__(self) -> str:
        self.count += 1
        return f"{self.prefix}-{self.count}"


class FakeUnitOfWork:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    async def commit(self):
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


class FakeWorkflowRepository(FakeUnitOfWork):
    def __init__(self) -> None:
        super().__init__()
        self.instances = {}
        self.requests = {}
        # called once before the next save; lets a test play the concurrent writer
        self.before_save = None

    async def get_instance(self, instance_id):
        return self.instances.get(instance_id)

    async def add_instance(self, instance):
        self.instances[instance.id] = instance

    async def save_instance(self, instance, expected_version):
        if self.before_save is not None:
            hook, self.before_save = self.before_save, None
            hook(self)
        stored = self.instances[instance.id]
        if stored.version != expected_version:
            raise StaleWorkflowInstance("stale", instance_id=instance.id)
        self.instances[instance.id] = instance

    async def get_approval_request(self, request_id):
        return self.requests.get(request_id)

    def _pending_for(self, entity_type, entity_id):
        for request in self.requests.values():
            if (
                request.entity_type == entity_type
                and request.entity_id == entity_id
                and request.status == ApprovalStatus.PENDING
            ):
                return request
        return None

    async def find_live_request(self, entity_type, entity_id):
        found = self._pending_for(entity_type, entity_id)
        # yield after reading so gathered callers interleave
        await asyncio.sleep(0)
        return found

    async def add_approval_request(self, request):
        if self._pending_for(request.entity_type, request.entity_id) is not None:
            raise SequenceConflict("pending request exists", entity_id=request.entity_id)
        self.requests[request.id] = request

    async def update_approval_request(self, request):
        self.requests[request.id] = request

    async def list_pending_requests(self):
        pending = [r for r in self.requests.values() if r.status == ApprovalStatus.PENDING]
        return sorted(pending, key=lambda r: r.created_at)

    async def list_requests_for_user(self, user_id, limit):
        mine = [
            r for r in self.requests.values()
            if r.requester_id == user_id or r.approver_id == user_id
        ]
        return sorted(mine, key=lambda r: r.updated_at, reverse=True)[:limit]


class FakeUserDirectory:
    def __init__(self, users=()) -> None:
        self.users = {user.id: user for user in users}
        self.fail = False

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def list_users_with_roles(self, roles):
        if self.fail:
            raise RuntimeError("directory unavailable")
        wanted = set(roles)
        return [user for user in self.users.values() if user.role in wanted]


class FakeAuditLogRepository:
    def __init__(self) -> None:
        self.entries = []
        self.last_filters = None

    async def add_audit_entry(self, entry):
        self.entries.append(entry)

    async def query_audit_entries(self, filters):
        self.last_filters = filters
        matches = [
            entry for entry in self.entries
            if (not filters.user_id or entry.user_id == filters.user_id)
            and (not filters.entity_type or entry.entity_type == filters.entity_type)
            and (not filters.entity_id or entry.entity_id == filters.entity_id)
            and (not filters.action or entry.action == filters.action)
            and (not filters.start or entry.timestamp >= filters.start)
            and (not filters.end or entry.timestamp <= filters.end)
        ]
        matches.sort(key=lambda entry: entry.timestamp, reverse=True)
        return matches[: filters.limit]

    def actions(self):
        return [entry.action for entry in self.entries]


class FakeNotificationSink:
    def __init__(self) -> None:
        self.sent = []
        self.fail_for = set()

    async def send(self, notification):
        await asyncio.sleep(0)
        if notification.user_id in self.fail_for:
            raise RuntimeError("push gateway down")
        self.sent.append(notification)


class FakeSerialNumberRepository(FakeUnitOfWork):
    def __init__(self) -> None:
        super().__init__()
        self.counters = {}
        self.ledger = []
        self.reservations = {}
        # ledger inserts that should lose a race before succeeding
        self.conflicts_to_inject = 0

    async def max_sequence_number(self, category):
        numbers = [e.sequence_number for e in self.ledger if e.category == category]
        return max(numbers) if numbers else None

    async def increment_counter(self, scope, floor):
        value = max(self.counters.get(scope, floor - 1), floor - 1) + 1
        self.counters[scope] = value
        return value

    async def peek_counter(self, scope):
        return self.counters.get(scope)

    async def add_ledger_entry(self, entry):
        if self.conflicts_to_inject:
            self.conflicts_to_inject -= 1
            raise SequenceConflict("taken", serial_number=entry.serial_number)
        for existing in self.ledger:
            if existing.serial_number == entry.serial_number or (
                existing.category == entry.category
                and existing.sequence_number == entry.sequence_number
            ):
                raise SequenceConflict("taken", serial_number=entry.serial_number)
        self.ledger.append(entry)

    async def add_reservation(self, reservation):
        self.reservations[reservation.id] = reservation

    async def get_reservation(self, reservation_id):
        found = self.reservations.get(reservation_id)
        await asyncio.sleep(0)
        return found

    async def mark_reservation_consumed(self, reservation_id, consumed_at):
        stored = self.reservations[reservation_id]
        if stored.consumed_at is not None:
            return False
        self.reservations[reservation_id] = replace(stored, consumed_at=consumed_at)
        return True


class FakeRevisionRepository(FakeUnitOfWork):
    def __init__(self) -> None:
        super().__init__()
        self.revisions = {}
        # called once before the next insert; lets a test play the concurrent writer
        self.before_add = None

    async def get_latest_revision(self, document_id):
        revisions = [r for r in self.revisions.values() if r.document_id == document_id]
        return max(revisions, key=lambda r: r.version) if revisions else None

    async def get_latest_approved_revision(self, document_id):
        revisions = [
            r for r in self.revisions.values()
            if r.document_id == document_id and r.status == "approved"
        ]
        return max(revisions, key=lambda r: r.version) if revisions else None

    async def get_revision_by_id(self, revision_id):
        found = self.revisions.get(revision_id)
        await asyncio.sleep(0)
        return found

    async def get_revision(self, document_id, revision_letter):
        for revision in self.revisions.values():
            if revision.document_id == document_id and revision.revision_letter == revision_letter:
                return revision
        return None

    async def list_revisions(self, document_id):
        revisions = [r for r in self.revisions.values() if r.document_id == document_id]
        return sorted(revisions, key=lambda r: r.version, reverse=True)

    async def add_revision(self, revision):
        if self.before_add is not None:
            hook, self.before_add = self.before_add, None
            hook(self)
        for existing in self.revisions.values():
            if existing.document_id == revision.document_id and existing.version == revision.version:
                raise SequenceConflict("version taken", document_id=revision.document_id)
        self.revisions[revision.id] = revision

    async def update_revision(self, revision, expected_status):
        if self.revisions[revision.id].status != expected_status:
            raise SequenceConflict("status moved", revision_id=revision.id)
        self.revisions[revision.id] = revision

    async def supersede_revision(self, revision_id):
        stored = self.revisions[revision_id]
        if stored.status != "superseded":
            self.revisions[revision_id] = replace(stored, status="superseded")


class FakeTransmittalRepository(FakeUnitOfWork):
    def __init__(self) -> None:
        super().__init__()
        self.transmittals = {}
        self.history = []

    async def add_transmittal(self, transmittal):
        for existing in self.transmittals.values():
            if existing.transmittal_number == transmittal.transmittal_number:
                raise SequenceConflict("number taken")
        self.transmittals[transmittal.id] = transmittal

    async def get_transmittal(self, transmittal_id):
        found = self.transmittals.get(transmittal_id)
        await asyncio.sleep(0)
        return found

    async def update_transmittal(self, transmittal, expected_status):
        stored = self.transmittals[transmittal.id]
        if stored.status != expected_status:
            raise SequenceConflict("status moved", transmittal_id=transmittal.id)
        self.transmittals[transmittal.id] = replace(transmittal, documents=stored.documents)

    async def add_documents(self, transmittal_id, documents):
        stored = self.transmittals[transmittal_id]
        self.transmittals[transmittal_id] = replace(
            stored, documents=list(stored.documents) + list(documents)
        )

    async def add_history_entry(self, entry):
        self.history.append(entry)

    async def list_history(self, transmittal_id):
        entries = [e for e in self.history if e.transmittal_id == transmittal_id]
        return sorted(entries, key=lambda e: e.performed_at, reverse=True)

    async def list_for_project(self, project_id):
        return [t for t in self.transmittals.values() if t.project_id == project_id]

    async def list_for_recipient(self, recipients, statuses):
        recipients, statuses = set(recipients), set(statuses)
        return [
            t for t in self.transmittals.values()
            if t.recipient in recipients and t.status in statuses
        ]


class FakeCoverSheetRenderer:
    def __init__(self) -> None:
        self.rendered = []

    def render(self, transmittal):
        self.rendered.append(transmittal.id)
        return b"%PDF-1.4 " + transmittal.transmittal_number.encode()


# ==================== FIXTURES ====================

@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 17, 10, 0, 0))


@pytest.fixture
def ids():
    return SequentialIds()


@pytest.fixture
def users():
    return {
        "site": UserSummary(id="u-site", name="Sam Site", role="site_engineer", email="site@example.com"),
        "qa": UserSummary(id="u-qa", name="Quinn QA", role="qa_manager"),
        "pm": UserSummary(id="u-pm", name="Pat PM", role="project_manager"),
        "admin": UserSummary(id="u-admin", name="Ada Admin", role="admin"),
        "accountant": UserSummary(id="u-acc", name="Alex Accounts", role="accountant"),
    }


@pytest.fixture
def user_directory(users):
    return FakeUserDirectory(users.values())


@pytest.fixture
def audit_repository():
    return FakeAuditLogRepository()


@pytest.fixture
def audit(audit_repository, ids, clock):
    return AuditLogger(repository=audit_repository, id_generator=ids, clock=clock)


@pytest.fixture
def sink():
    return FakeNotificationSink()


@pytest.fixture
def dispatcher(sink):
    return NotificationDispatcher(sink)


@pytest.fixture
def registry():
    return WorkflowRegistry.with_builtins()


@pytest.fixture
def engine(registry, clock):
    return WorkflowEngine(registry, clock=clock)


@pytest.fixture
def workflow_repository():
    return FakeWorkflowRepository()


@pytest.fixture
def approvals(workflow_repository, user_directory, engine, audit, dispatcher, ids, clock):
    return ApprovalService(
        repository=workflow_repository,
        users=user_directory,
        engine=engine,
        audit=audit,
        notifications=dispatcher,
        id_generator=ids,
        clock=clock,
    )


@pytest.fixture
def serial_repository():
    return FakeSerialNumberRepository()


@pytest.fixture
def serial_numbers(serial_repository, ids, clock):
    return SerialNumberService(repository=serial_repository, id_generator=ids, clock=clock)


@pytest.fixture
def revision_repository():
    return FakeRevisionRepository()


@pytest.fixture
def revisions(revision_repository, audit, ids, clock):
    return RevisionService(
        repository=revision_repository, audit=audit, id_generator=ids, clock=clock
    )


@pytest.fixture
def transmittal_repository():
    return FakeTransmittalRepository()


@pytest.fixture
def renderer():
    return FakeCoverSheetRenderer()


@pytest.fixture
def transmittals(
    transmittal_repository, serial_numbers, user_directory, audit, renderer, ids, clock
):
    return TransmittalService(
        repository=transmittal_repository,
        serial_numbers=serial_numbers,
        users=user_directory,
        audit=audit,
        renderer=renderer,
        id_generator=ids,
        clock=clock,
    )
