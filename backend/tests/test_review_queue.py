"""Review queue: enqueue, listing, manual decisions, tenancy and audit log."""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from casemail.exceptions import AlreadyResolvedError, AuthorizationError, NotFoundError
from casemail.models import ClassificationLog, Email, PendingClassification
from casemail.repositories import ClassificationLogStore
from casemail.services.review_queue import DISMISS_REASON, QueueFilter, ReviewQueueManager
from casemail.services.types import (
    AlternativeCase,
    ClassificationAction,
    ClassificationResult,
    ExtractedReference,
    LogMatchType,
    MatchType,
    ReviewReason,
)

from tests.factories import case_row, email_row, seed


def review_result(
    email_id: str,
    category: ReviewReason = ReviewReason.LOW_CONFIDENCE,
    suggested: str = "case-a",
    alternatives: tuple = (),
    references: tuple = (),
) -> ClassificationResult:
    return ClassificationResult(
        email_id=email_id,
        suggested_case_id=suggested,
        confidence=0.4,
        match_type=MatchType.ACTOR,
        reasons=("Sender matches case actor: ion@client.ro",),
        alternative_cases=alternatives,
        needs_human_review=True,
        review_reason="Low confidence classification",
        review_category=category,
        extracted_references=references,
    )


@pytest_asyncio.fixture
async def seeded(session_factory):
    await seed(
        session_factory,
        case_row("case-a"),
        case_row("case-b"),
        case_row("case-x", client_id="client-9", firm_id="firm-9"),
        *[email_row(f"e{i}") for i in range(1, 6)],
        email_row("e9", firm_id="firm-9"),
    )
    return session_factory


async def _count(session_factory, model, *criteria) -> int:
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model).where(*criteria))).scalar()


async def _email_case(session_factory, email_id):
    async with session_factory() as db:
        return (await db.get(Email, email_id)).case_id


# ── Enqueue ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_enqueue_ignores_confident_results(seeded, review_queue, caller):
    result = ClassificationResult(email_id="e1", suggested_case_id="case-a", confidence=0.95)
    assert await review_queue.enqueue(result, "firm-1") is None
    assert await review_queue.pending_count(caller) == 0


@pytest.mark.asyncio
async def test_enqueue_stores_suggestions_and_references(seeded, review_queue):
    result = review_result(
        "e1",
        category=ReviewReason.MULTI_CASE_CONFLICT,
        alternatives=(AlternativeCase(case_id="case-b", confidence=0.38, reason="Keyword matches: chirie"),),
        references=(ExtractedReference("court_file", "dosar 12/3/2024", "12/3/2024", 4),),
    )

    pending = await review_queue.enqueue(result, "firm-1")

    assert pending.reason == "MultiCaseConflict"
    assert pending.review_note == "Low confidence classification"
    assert [s["caseId"] for s in pending.suggested_cases] == ["case-a", "case-b"]
    assert pending.suggested_cases[0]["matchType"] == "ACTOR"
    assert pending.detected_references == [
        {"type": "court_file", "rawValue": "dosar 12/3/2024", "normalizedValue": "12/3/2024", "position": 4}
    ]
    assert not pending.is_resolved


@pytest.mark.asyncio
async def test_enqueue_twice_updates_single_entry(seeded, review_queue, caller):
    first = await review_queue.enqueue(review_result("e1"), "firm-1")
    second = await review_queue.enqueue(
        review_result("e1", category=ReviewReason.UNKNOWN_CONTACT, suggested=None), "firm-1"
    )

    assert second.id == first.id
    assert await review_queue.pending_count(caller) == 1
    assert await _count(seeded, PendingClassification) == 1
    page = await review_queue.list_pending(caller)
    assert page.items[0].reason == "UnknownContact"
    assert page.items[0].suggested_cases == []


# ── Listing ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_pending_is_firm_scoped_and_paginated(seeded, review_queue, caller, other_firm_caller):
    for email_id in ("e1", "e2", "e3"):
        await review_queue.enqueue(review_result(email_id), "firm-1")
    await review_queue.enqueue(review_result("e9"), "firm-9")

    page = await review_queue.list_pending(caller, limit=2)
    assert page.total == 3
    assert len(page.items) == 2
    assert page.has_more

    rest = await review_queue.list_pending(caller, limit=2, offset=2)
    assert len(rest.items) == 1
    assert not rest.has_more

    other = await review_queue.list_pending(other_firm_caller)
    assert [p.email_id for p in other.items] == ["e9"]


@pytest.mark.asyncio
async def test_list_pending_filters(seeded, review_queue, caller):
    async with seeded() as db:
        (await db.get(Email, "e1")).case_id = "case-a"
        await db.commit()

    await review_queue.enqueue(review_result("e1"), "firm-1")
    await review_queue.enqueue(review_result("e2", category=ReviewReason.UNKNOWN_CONTACT), "firm-1")

    by_reason = await review_queue.list_pending(caller, QueueFilter(reason=ReviewReason.UNKNOWN_CONTACT))
    assert [p.email_id for p in by_reason.items] == ["e2"]

    by_client = await review_queue.list_pending(caller, QueueFilter(client_id="client-1"))
    assert [p.email_id for p in by_client.items] == ["e1"]
    assert by_client.items[0].email.id == "e1"


# ── Assign ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_assign_updates_email_logs_and_resolves(seeded, review_queue, caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")

    entry = await review_queue.assign(pending.id, "case-b", caller, reason="Client confirmed")

    assert entry.action == ClassificationAction.ASSIGNED.value
    assert entry.match_type == LogMatchType.MANUAL.value
    assert entry.was_automatic is False
    assert entry.from_case_id is None
    assert entry.to_case_id == "case-b"
    assert entry.correction_reason == "Client confirmed"
    assert entry.performed_by == "user-1"
    assert await _email_case(seeded, "e1") == "case-b"
    assert await review_queue.pending_count(caller) == 0

    async with seeded() as db:
        resolved = await db.get(PendingClassification, pending.id)
        assert resolved.is_resolved
        assert resolved.resolved_by == "user-1"


@pytest.mark.asyncio
async def test_assign_twice_is_rejected(seeded, review_queue, caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")
    await review_queue.assign(pending.id, "case-a", caller)

    with pytest.raises(AlreadyResolvedError):
        await review_queue.assign(pending.id, "case-b", caller)
    assert await _email_case(seeded, "e1") == "case-a"


@pytest.mark.asyncio
async def test_concurrent_assigns_apply_once(seeded, review_queue, caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")

    outcomes = await asyncio.gather(
        review_queue.assign(pending.id, "case-a", caller),
        review_queue.assign(pending.id, "case-b", caller),
        return_exceptions=True,
    )

    assert sum(isinstance(o, AlreadyResolvedError) for o in outcomes) == 1
    assert await _count(seeded, ClassificationLog) == 1


@pytest.mark.asyncio
async def test_failed_assign_leaves_no_trace(seeded, review_queue, caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")

    with pytest.raises(NotFoundError):
        await review_queue.assign(pending.id, "no-such-case", caller)

    assert await _count(seeded, ClassificationLog) == 0
    assert await _email_case(seeded, "e1") is None
    assert await review_queue.pending_count(caller) == 1


@pytest.mark.asyncio
async def test_assign_unknown_pending(seeded, review_queue, caller):
    with pytest.raises(NotFoundError):
        await review_queue.assign("missing", "case-a", caller)


@pytest.mark.asyncio
async def test_assign_rejects_other_firms(seeded, review_queue, caller, other_firm_caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")

    with pytest.raises(AuthorizationError):
        await review_queue.assign(pending.id, "case-x", other_firm_caller)
    with pytest.raises(AuthorizationError):
        await review_queue.assign(pending.id, "case-x", caller)

    assert await _count(seeded, ClassificationLog) == 0
    assert await _email_case(seeded, "e1") is None


# ── Bulk assign ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_bulk_assign_collects_per_item_errors(seeded, review_queue, caller):
    ids = [(await review_queue.enqueue(review_result(f"e{i}"), "firm-1")).id for i in range(1, 5)]

    result = await review_queue.bulk_assign(ids[:2] + ["bogus"] + ids[2:], "case-a", caller)

    assert result.assigned_count == 4
    assert result.errors == ["bogus: Pending classification bogus not found"]
    assert await _count(seeded, ClassificationLog) == 4
    assert await review_queue.pending_count(caller) == 0


@pytest.mark.asyncio
async def test_bulk_assign_checks_target_case_first(seeded, review_queue, caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")

    with pytest.raises(AuthorizationError):
        await review_queue.bulk_assign([pending.id], "case-x", caller)
    with pytest.raises(NotFoundError):
        await review_queue.bulk_assign([pending.id], "no-such-case", caller)

    assert await review_queue.pending_count(caller) == 1


# ── Dismiss ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dismiss_logs_unassignment(seeded, review_queue, caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")

    entry = await review_queue.dismiss(pending.id, caller)

    assert entry.action == ClassificationAction.UNASSIGNED.value
    assert entry.to_case_id is None
    assert entry.correction_reason == DISMISS_REASON
    assert await _email_case(seeded, "e1") is None
    assert await review_queue.pending_count(caller) == 0

    with pytest.raises(AlreadyResolvedError):
        await review_queue.dismiss(pending.id, caller)


@pytest.mark.asyncio
async def test_dismiss_rejects_other_firms(seeded, review_queue, other_firm_caller):
    pending = await review_queue.enqueue(review_result("e1"), "firm-1")
    with pytest.raises(AuthorizationError):
        await review_queue.dismiss(pending.id, other_firm_caller, reason="spam")


# ── History and stats ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_email_history_is_append_only(seeded, review_queue, caller, other_firm_caller):
    first = await review_queue.enqueue(review_result("e1"), "firm-1")
    await review_queue.assign(first.id, "case-a", caller)
    again = await review_queue.enqueue(review_result("e1"), "firm-1")
    await review_queue.dismiss(again.id, caller, reason="Not case related")

    assert again.id != first.id
    history = await review_queue.email_history("e1", caller)
    assert [e.action for e in history] == ["Unassigned", "Assigned"]
    assert history[0].from_case_id == "case-a"

    with pytest.raises(AuthorizationError):
        await review_queue.email_history("e1", other_firm_caller)
    with pytest.raises(NotFoundError):
        await review_queue.email_history("missing", caller)


@pytest.mark.asyncio
async def test_classification_stats(seeded, review_queue, caller):
    async with seeded() as db:
        logs = ClassificationLogStore(db)
        for email_id in ("e1", "e2"):
            await logs.append(
                email_id=email_id,
                firm_id="firm-1",
                action=ClassificationAction.ASSIGNED.value,
                to_case_id="case-a",
                was_automatic=True,
            )
        await logs.append(
            email_id="e1",
            firm_id="firm-1",
            action=ClassificationAction.MOVED.value,
            from_case_id="case-a",
            to_case_id="case-b",
        )
        await db.commit()

    pending = await review_queue.enqueue(review_result("e3"), "firm-1")
    await review_queue.assign(pending.id, "case-b", caller)
    await review_queue.enqueue(review_result("e4"), "firm-1")

    stats = await review_queue.classification_stats(caller, "week")

    assert stats.auto_classified == 2
    assert stats.manually_reviewed == 1
    assert stats.moved_after_import == 1
    assert stats.pending_review == 1
    assert stats.ai_accuracy == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_stats_without_auto_assignments(seeded, review_queue, caller):
    stats = await review_queue.classification_stats(caller)
    assert stats.ai_accuracy is None
    with pytest.raises(ValueError):
        await review_queue.classification_stats(caller, "YEAR")


# ── Several workers on one database ───────────────────────────


@pytest.mark.asyncio
async def test_enqueue_from_two_managers_keeps_one_open_item(seeded):
    first, second = ReviewQueueManager(seeded), ReviewQueueManager(seeded)

    await asyncio.gather(
        first.enqueue(review_result("e1"), "firm-1"),
        second.enqueue(review_result("e1", category=ReviewReason.UNKNOWN_CONTACT), "firm-1"),
    )

    criteria = (PendingClassification.email_id == "e1", PendingClassification.is_resolved.is_(False))
    assert await _count(seeded, PendingClassification, *criteria) == 1


@pytest.mark.asyncio
async def test_assigns_from_two_managers_apply_once(seeded, caller):
    first, second = ReviewQueueManager(seeded), ReviewQueueManager(seeded)
    pending = await first.enqueue(review_result("e2"), "firm-1")

    outcomes = await asyncio.gather(
        first.assign(pending.id, "case-a", caller),
        second.assign(pending.id, "case-b", caller),
        return_exceptions=True,
    )

    assert sum(isinstance(o, ClassificationLog) for o in outcomes) == 1
    assert sum(isinstance(o, AlreadyResolvedError) for o in outcomes) == 1
    assert await _count(seeded, ClassificationLog, ClassificationLog.email_id == "e2") == 1
    winner = next(o for o in outcomes if isinstance(o, ClassificationLog))
    assert await _email_case(seeded, "e2") == winner.to_case_id


@pytest.mark.asyncio
async def test_database_allows_one_open_item_per_email(seeded):
    async with seeded() as db:
        db.add_all([
            PendingClassification(email_id="e1", firm_id="firm-1", reason="LowConfidence"),
            PendingClassification(email_id="e1", firm_id="firm-1", reason="UnknownContact"),
        ])
        with pytest.raises(IntegrityError):
            await db.commit()


@pytest.mark.asyncio
async def test_resolved_items_do_not_block_a_new_one(seeded):
    async with seeded() as db:
        db.add_all([
            PendingClassification(email_id="e1", firm_id="firm-1", reason="LowConfidence", is_resolved=True),
            PendingClassification(email_id="e1", firm_id="firm-1", reason="LowConfidence", is_resolved=True),
            PendingClassification(email_id="e1", firm_id="firm-1", reason="UnknownContact"),
        ])
        await db.commit()

    assert await _count(seeded, PendingClassification, PendingClassification.email_id == "e1") == 3


# ── Corrections after import ──────────────────────────────────


async def _auto_assign(session_factory, email_id, case_id):
    async with session_factory() as db:
        (await db.get(Email, email_id)).case_id = case_id
        await ClassificationLogStore(db).append(
            email_id=email_id,
            firm_id="firm-1",
            action=ClassificationAction.ASSIGNED.value,
            to_case_id=case_id,
            was_automatic=True,
        )
        await db.commit()


@pytest.mark.asyncio
async def test_move_email_is_logged_and_lowers_accuracy(seeded, review_queue, caller):
    await _auto_assign(seeded, "e1", "case-a")
    await _auto_assign(seeded, "e2", "case-a")

    entry = await review_queue.move_email("e1", "case-b", caller, reason="Wrong lease")

    assert entry.action == ClassificationAction.MOVED.value
    assert (entry.from_case_id, entry.to_case_id) == ("case-a", "case-b")
    assert entry.match_type == LogMatchType.MANUAL.value
    assert entry.was_automatic is False
    assert entry.correction_reason == "Wrong lease"
    assert entry.performed_by == "user-1"
    assert await _email_case(seeded, "e1") == "case-b"

    stats = await review_queue.classification_stats(caller, "DAY")
    assert stats.auto_classified == 2
    assert stats.moved_after_import == 1
    assert stats.ai_accuracy == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_move_email_resolves_open_review_item(seeded, review_queue, caller):
    await review_queue.enqueue(review_result("e1"), "firm-1")

    await review_queue.move_email("e1", "case-b", caller)

    assert await review_queue.pending_count(caller) == 0
    assert [e.action for e in await review_queue.email_history("e1", caller)] == ["Moved"]


@pytest.mark.asyncio
async def test_move_email_checks_access(seeded, review_queue, caller, other_firm_caller):
    with pytest.raises(NotFoundError):
        await review_queue.move_email("missing", "case-a", caller)
    with pytest.raises(NotFoundError):
        await review_queue.move_email("e1", "no-such-case", caller)
    with pytest.raises(AuthorizationError):
        await review_queue.move_email("e1", "case-x", caller)
    with pytest.raises(AuthorizationError):
        await review_queue.move_email("e9", "case-a", caller)
    with pytest.raises(AuthorizationError):
        await review_queue.move_email("e1", "case-a", other_firm_caller)

    assert await _count(seeded, ClassificationLog) == 0
    assert await _email_case(seeded, "e1") is None


@pytest.mark.asyncio
async def test_ignore_email(seeded, review_queue, caller):
    await _auto_assign(seeded, "e1", "case-a")
    await review_queue.enqueue(review_result("e1"), "firm-1")

    entry = await review_queue.ignore_email("e1", caller, reason="Newsletter")

    assert entry.action == ClassificationAction.IGNORED.value
    assert (entry.from_case_id, entry.to_case_id) == ("case-a", None)
    assert entry.correction_reason == "Newsletter"
    assert await review_queue.pending_count(caller) == 0

    async with seeded() as db:
        email = await db.get(Email, "e1")
        assert email.is_ignored
        assert email.ignored_at is not None
        assert email.case_id is None


@pytest.mark.asyncio
async def test_ignore_email_rejects_other_firms(seeded, review_queue, other_firm_caller):
    with pytest.raises(AuthorizationError):
        await review_queue.ignore_email("e1", other_firm_caller)
    assert await _count(seeded, ClassificationLog) == 0
