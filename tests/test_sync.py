import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from echo.core.database import utcnow
from echo.integrations.base import IssueTrackerError
from echo.models import Feedback, StatusHistory
from echo.services.sync import SyncOrchestrator

from conftest import ORG


async def change_status(db, orchestrator, feedback, new_status):
    """What the status route does: persist locally, then propagate"""
    old_status = feedback.status
    feedback.status = new_status
    await db.commit()
    await orchestrator.handle_status_change(feedback.feedback_id, old_status, new_status)


# ==========================
# sync_to_external
# ==========================

async def test_first_sync_creates_issue_with_labels_and_link(db, registry, github, make_integration, make_feedback):
    integration = await make_integration()
    feedback = await make_feedback(type="bug", priority="urgent")

    issue = await SyncOrchestrator(db, registry).sync_to_external(feedback.feedback_id)

    assert issue.number == 1
    assert feedback.external_issue_id == "100001"
    assert feedback.external_issue_number == 1
    assert feedback.external_issue_url.endswith("/issues/1")
    assert feedback.external_status == "open"
    assert feedback.external_synced_at is not None
    assert integration.last_sync_at is not None

    created = github.issues[1]
    assert created["title"] == "Export to CSV"
    assert created["labels"] == ["bug", "priority: urgent"]
    assert f"https://echo.test/feedback/{feedback.feedback_id}" in created["body"]
    assert [body["name"] for _, _, body in github.calls("POST", "/labels")] == ["priority: urgent"]


async def test_first_sync_is_idempotent(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()
    orchestrator = SyncOrchestrator(db, registry)

    first = await orchestrator.sync_to_external(feedback.feedback_id)
    second = await orchestrator.sync_to_external(feedback.feedback_id)

    assert first is not None
    assert second is None
    assert len(github.calls("POST", "/issues")) == 1


async def test_labels_skipped_when_auto_labels_off(db, registry, github, make_integration, make_feedback):
    await make_integration(auto_add_labels=False)
    feedback = await make_feedback()

    await SyncOrchestrator(db, registry).sync_to_external(feedback.feedback_id)

    assert github.issues[1]["labels"] == []
    assert github.calls("GET", "/labels") == []


async def test_label_failure_does_not_block_issue(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()
    github.fail("GET", "/labels", status=403)

    issue = await SyncOrchestrator(db, registry).sync_to_external(feedback.feedback_id)

    assert issue is not None
    assert feedback.external_issue_number == 1


@pytest.mark.parametrize(
    "integration_overrides",
    [None, {"enabled": False}, {"auto_sync": False}],
    ids=["missing", "disabled", "auto-sync-off"],
)
async def test_sync_disabled_is_a_silent_no_op(
    db, registry, github, make_integration, make_feedback, integration_overrides
):
    if integration_overrides is not None:
        await make_integration(**integration_overrides)
    feedback = await make_feedback()

    assert await SyncOrchestrator(db, registry).sync_to_external(feedback.feedback_id) is None
    assert github.requests == []


async def test_missing_or_deleted_feedback_is_a_no_op(db, registry, github, make_integration, make_feedback):
    await make_integration()
    deleted = await make_feedback(deleted_at=utcnow())
    orchestrator = SyncOrchestrator(db, registry)

    assert await orchestrator.sync_to_external(9999) is None
    assert await orchestrator.sync_to_external(deleted.feedback_id) is None
    assert github.requests == []


async def test_tracker_failure_propagates_and_releases_claim(db, registry, github, make_integration, make_feedback):
    await make_integration(auto_add_labels=False)
    feedback = await make_feedback()
    github.fail("POST", "/issues", status=502)
    orchestrator = SyncOrchestrator(db, registry)

    with pytest.raises(IssueTrackerError) as exc_info:
        await orchestrator.sync_to_external(feedback.feedback_id)
    assert exc_info.value.status_code == 502

    await db.refresh(feedback)
    assert feedback.external_issue_id is None
    assert feedback.external_sync_claimed_at is None

    github.failures.clear()
    assert await orchestrator.sync_to_external(feedback.feedback_id) is not None


async def test_fresh_claim_blocks_second_caller(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback(external_sync_claimed_at=utcnow())

    assert await SyncOrchestrator(db, registry).sync_to_external(feedback.feedback_id) is None
    assert github.calls("POST", "/issues") == []


async def test_stale_claim_can_be_taken_over(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback(external_sync_claimed_at=utcnow() - timedelta(hours=1))

    assert await SyncOrchestrator(db, registry).sync_to_external(feedback.feedback_id) is not None
    assert len(github.calls("POST", "/issues")) == 1


async def test_concurrent_first_syncs_create_one_issue(session_factory, registry, github, make_integration, make_feedback):
    await make_integration(auto_add_labels=False)
    feedback = await make_feedback()
    github.delay = 0.05

    async def attempt():
        async with session_factory() as session:
            return await SyncOrchestrator(session, registry).sync_to_external(feedback.feedback_id)

    results = await asyncio.gather(attempt(), attempt())

    assert sum(result is not None for result in results) == 1
    assert len(github.calls("POST", "/issues")) == 1


async def test_push_feedback_update_edits_linked_issue(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()
    orchestrator = SyncOrchestrator(db, registry)
    await orchestrator.sync_to_external(feedback.feedback_id)

    feedback.title = "Export to CSV and XLSX"
    await db.commit()
    await orchestrator.push_feedback_update(feedback.feedback_id)

    assert github.issues[1]["title"] == "Export to CSV and XLSX"


# ==========================
# handle_status_change
# ==========================

async def test_trigger_status_creates_issue_once(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()
    orchestrator = SyncOrchestrator(db, registry)

    await change_status(db, orchestrator, feedback, "planned")
    await change_status(db, orchestrator, feedback, "in-progress")
    await change_status(db, orchestrator, feedback, "planned")

    assert len(github.calls("POST", "/issues")) == 1
    assert feedback.is_linked


async def test_non_trigger_status_leaves_feedback_unlinked(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()

    await change_status(db, SyncOrchestrator(db, registry), feedback, "completed")

    assert github.requests == []
    assert not feedback.is_linked


async def test_custom_trigger_statuses(db, registry, github, make_integration, make_feedback):
    await make_integration(trigger_statuses=["new"])
    feedback = await make_feedback(status="planned")

    await change_status(db, SyncOrchestrator(db, registry), feedback, "new")

    assert len(github.calls("POST", "/issues")) == 1


async def test_close_and_reopen_only_on_state_change(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()
    orchestrator = SyncOrchestrator(db, registry)
    await change_status(db, orchestrator, feedback, "planned")

    await change_status(db, orchestrator, feedback, "completed")
    assert github.issues[1]["state"] == "closed"
    assert feedback.external_status == "closed"

    # completed -> closed maps to the same tracker state
    await change_status(db, orchestrator, feedback, "closed")
    assert len(github.calls("PATCH", "/issues/1")) == 1

    await change_status(db, orchestrator, feedback, "in-progress")
    assert github.issues[1]["state"] == "open"
    assert feedback.external_status == "open"

    await change_status(db, orchestrator, feedback, "new")
    assert len(github.calls("PATCH", "/issues/1")) == 2


async def test_status_mapping_override(db, registry, github, make_integration, make_feedback):
    await make_integration(status_mapping={"planned": "closed"})
    feedback = await make_feedback(
        status="in-progress",
        external_issue_id="100001",
        external_issue_number=1,
        external_status="open",
    )
    github.add_issue()

    await change_status(db, SyncOrchestrator(db, registry), feedback, "planned")

    assert github.issues[1]["state"] == "closed"


async def test_status_sync_disabled(db, registry, github, make_integration, make_feedback):
    await make_integration(sync_status_changes=False)
    feedback = await make_feedback()

    await change_status(db, SyncOrchestrator(db, registry), feedback, "planned")

    assert github.requests == []


async def test_status_change_sync_never_raises(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback(external_issue_id="100001", external_issue_number=1, external_status="open")
    github.fail("PATCH", "/issues/1", status=500)

    await change_status(db, SyncOrchestrator(db, registry), feedback, "completed")

    await db.refresh(feedback)
    assert feedback.status == "completed"
    assert feedback.external_status == "open"


# ==========================
# Inbound
# ==========================

async def test_sync_from_external_applies_closed_issue(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback(status="in-progress")
    orchestrator = SyncOrchestrator(db, registry)
    await orchestrator.sync_to_external(feedback.feedback_id)
    github.issues[1]["state"] = "closed"

    change = await orchestrator.sync_from_external(feedback.feedback_id)

    assert (change.old_status, change.new_status) == ("in-progress", "completed")
    assert feedback.status == "completed"
    assert feedback.external_status == "closed"

    history = (await db.execute(select(StatusHistory).where(StatusHistory.feedback_id == feedback.feedback_id))).scalars().all()
    assert [(h.old_status, h.new_status, h.changed_by) for h in history] == [("in-progress", "completed", "github")]

    assert await orchestrator.sync_from_external(feedback.feedback_id) is None


async def test_sync_from_external_unlinked_is_no_op(db, registry, github, make_integration, make_feedback):
    await make_integration()
    feedback = await make_feedback()

    assert await SyncOrchestrator(db, registry).sync_from_external(feedback.feedback_id) is None
    assert github.requests == []


async def test_apply_external_state_by_issue_id(db, registry, make_integration, make_feedback):
    integration = await make_integration()
    feedback = await make_feedback(status="completed", external_issue_id="555", external_issue_number=3)
    await make_feedback(organization_id="other-org", status="completed", external_issue_id="555")
    orchestrator = SyncOrchestrator(db, registry)

    change = await orchestrator.apply_external_state(integration, "555", "open")

    assert change.feedback_id == feedback.feedback_id
    assert change.new_status == "in-progress"
    assert await orchestrator.apply_external_state(integration, "unknown", "closed") is None

    others = (await db.execute(select(Feedback).where(Feedback.organization_id != ORG))).scalars().all()
    assert [f.status for f in others] == ["completed"]


async def test_feedback_lifecycle(db, registry, github, make_integration, make_feedback):
    """new -> planned creates the issue, completed closes it, a reopen on GitHub comes back"""
    integration = await make_integration()
    feedback = await make_feedback(type="feature", priority="high")
    orchestrator = SyncOrchestrator(db, registry)

    await change_status(db, orchestrator, feedback, "planned")
    assert github.issues[1]["labels"] == ["enhancement", "priority: high"]

    await change_status(db, orchestrator, feedback, "completed")
    assert github.issues[1]["state"] == "closed"

    github.issues[1]["state"] = "open"
    change = await orchestrator.apply_external_state(integration, "100001", "open")
    assert change.new_status == "in-progress"
    assert feedback.external_status == "open"
    assert len(github.calls("POST", "/issues")) == 1
