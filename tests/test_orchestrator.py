from datetime import timedelta

import pytest

from callsheet_reconciler.config import PipelineConfig
from callsheet_reconciler.errors import PersistenceError, SchemaError, SubmissionReplayError
from callsheet_reconciler.models import MasterContact, UploadStatus
from callsheet_reconciler.orchestrator import CallListResult, OutcomeStatus, Stage, StageEvent
from callsheet_reconciler.validation import DUPLICATE_IN_FILE, INVALID_PHONE

PIPELINE_STAGES = [
    Stage.PREPARING,
    Stage.CHECKING_DUPLICATE_SUBMISSION,
    Stage.PERSISTING_UPLOAD_RECORD,
    Stage.PROCESSING_CONTACTS,
    Stage.CREATING_CALL_LIST,
    Stage.RECORDING_REJECTIONS,
    Stage.COMPLETE,
]


async def _validated(orchestrator, make_sheet, rows, file_name="calls.xlsx"):
    sheet = make_sheet(rows, file_name=file_name)
    return sheet, await orchestrator.validate(sheet)


@pytest.mark.asyncio
async def test_clean_upload_commits_contacts_and_builds_call_list(orchestrator, stores, clock, make_sheet, row) -> None:
    sheet, result = await _validated(
        orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321"), row("Gamma", "0501112222")]
    )
    events = []
    orchestrator.subscribe(events.append)

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert not outcome.needs_follow_up
    assert (outcome.new_contacts, outcome.existing_contacts) == (3, 0)
    assert outcome.call_list_result is CallListResult.CREATED
    assert outcome.call_list_inserted == 3

    entries = await stores.call_list.entries_for("agent-a", clock.now.date())
    assert [entry.call_order for entry in entries] == [1, 2, 3]
    assert all(entry.upload_id == outcome.upload.id for entry in entries)

    upload = outcome.upload
    assert upload.status is UploadStatus.APPROVED
    assert upload.approved_count == 3
    assert upload.template_version == "v3"
    assert (upload.file_name, upload.file_size) == ("calls.xlsx", 1024)
    assert upload.list_date == clock.now.date()

    contact = stores.contacts.contacts[0]
    assert contact.first_uploaded_by == contact.current_owner_agent_id == "agent-a"
    assert contact.contact_person == contact.company == "Acme"
    assert contact.trade_license == "PENDING"
    assert contact.created_at == clock.now

    percentages = [event.percentage for event in events]
    assert percentages == sorted(percentages)
    assert (percentages[0], percentages[-1]) == (0, 100)
    assert list(dict.fromkeys(event.stage for event in events)) == PIPELINE_STAGES
    assert outcome.events == events


@pytest.mark.asyncio
async def test_existing_contact_is_listed_for_submitter_without_new_insert(orchestrator, stores, clock, make_sheet, row) -> None:
    existing = await stores.contacts.insert(
        MasterContact(phone="+971501234567", company="Acme", first_uploaded_by="agent-b", current_owner_agent_id="agent-b")
    )
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme LLC", "0501234567"), row("Beta", "0507654321")])
    assert result.duplicate_entries == 1

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert (outcome.new_contacts, outcome.existing_contacts) == (1, 1)
    assert len(stores.contacts.contacts) == 2
    entries = await stores.call_list.entries_for("agent-a", clock.now.date())
    assert existing.id in {entry.contact_id for entry in entries}
    assert len(entries) == 2
    assert outcome.duplicate_owners == {2: "Bob"}
    assert outcome.rejections_recorded == 0
    assert outcome.status is OutcomeStatus.SUCCESS
    assert (await stores.contacts.get(existing.id)).current_owner_agent_id == "agent-b"


@pytest.mark.asyncio
async def test_replayed_submission_is_refused_before_any_write(orchestrator, stores, clock, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321")])
    await orchestrator.submit("agent-a", sheet, result)
    clock.advance(60)

    with pytest.raises(SubmissionReplayError) as excinfo:
        await orchestrator.submit("agent-a", sheet, result)

    assert excinfo.value.previous_upload_id == stores.uploads.uploads[0].id
    assert len(stores.uploads.uploads) == 1
    assert len(stores.contacts.contacts) == 2
    assert len(stores.call_list.entries) == 2
    assert stores.rejections.records == []


@pytest.mark.asyncio
async def test_resubmission_after_window_only_reuses_listed_contacts(orchestrator, stores, clock, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321")])
    await orchestrator.submit("agent-a", sheet, result)
    clock.advance(301)

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert outcome.status is OutcomeStatus.SUCCESS
    assert (outcome.new_contacts, outcome.existing_contacts) == (0, 2)
    assert outcome.call_list_result is CallListResult.ALREADY_LISTED
    assert outcome.already_listed == 2
    assert outcome.upload.approved_count == 0
    assert len(stores.call_list.entries) == 2


@pytest.mark.asyncio
async def test_zero_replay_window_disables_the_check(orchestrator, stores, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567")])
    config = PipelineConfig(replay_window_seconds=0)

    await orchestrator.submit("agent-a", sheet, result, config=config)
    await orchestrator.submit("agent-a", sheet, result, config=config)

    assert len(stores.uploads.uploads) == 2


@pytest.mark.asyncio
async def test_rejected_rows_are_recorded_for_drill_down(orchestrator, make_sheet, row) -> None:
    sheet, result = await _validated(
        orchestrator,
        make_sheet,
        [row("Acme", "0501234567"), row("Beta", "12ab"), row("", "0507654321"), row("Dup", "050 123 4567")],
    )

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert outcome.rejections_recorded == 3
    details = await orchestrator.rejection_details(outcome.upload.id)
    assert [record.row_number for record in details] == [3, 4, 5]
    assert details[0].reason == INVALID_PHONE
    assert details[1].reason == "Name of the Company is required"
    assert details[1].company is None
    assert details[1].phone == "+971507654321"
    assert details[2].reason == DUPLICATE_IN_FILE
    upload = outcome.upload
    assert (upload.valid_entries, upload.invalid_entries, upload.duplicate_entries) == (1, 2, 1)
    assert upload.approved_count == 1


@pytest.mark.asyncio
async def test_insert_conflict_resolves_to_the_existing_contact(orchestrator, stores, clock, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567")])
    racing = await stores.contacts.insert(MasterContact(phone="+971501234567", current_owner_agent_id="agent-b"))

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert (outcome.new_contacts, outcome.existing_contacts) == (0, 1)
    entries = await stores.call_list.entries_for("agent-a", clock.now.date())
    assert [entry.contact_id for entry in entries] == [racing.id]
    assert outcome.status is OutcomeStatus.SUCCESS


@pytest.mark.asyncio
async def test_unresolvable_conflict_is_skipped_and_reported(orchestrator, stores, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567")])
    await stores.contacts.insert(MasterContact(phone="+971501234567", current_owner_agent_id="agent-b"))
    stores.contacts.batch_lookup_available = False
    stores.contacts.point_lookup_available = False

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert outcome.status is OutcomeStatus.DEGRADED
    assert outcome.unresolved_contacts == 1
    assert outcome.skipped[0].row_number == 2
    assert outcome.call_list_result is CallListResult.NO_CONTACTS
    assert outcome.upload.approved_count == 0
    details = await orchestrator.rejection_details(outcome.upload.id)
    assert details[0].reason.startswith("Not committed:")


@pytest.mark.asyncio
async def test_failed_insert_does_not_stop_later_rows(orchestrator, stores, make_sheet, row) -> None:
    sheet, result = await _validated(
        orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321"), row("Gamma", "0501112222")]
    )
    stores.contacts.failing_phones = {"+971507654321"}

    outcome = await orchestrator.submit("agent-a", sheet, result)

    assert outcome.status is OutcomeStatus.DEGRADED
    assert outcome.new_contacts == 2
    assert [skipped.row_number for skipped in outcome.skipped] == [3]
    assert "Insert rejected" in outcome.skipped[0].reason
    assert outcome.call_list_inserted == 2


@pytest.mark.asyncio
async def test_upload_record_failure_aborts_and_emits_failed(orchestrator, stores, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567")])
    stores.uploads.fail_create = True
    events = []
    orchestrator.subscribe(events.append)

    with pytest.raises(PersistenceError):
        await orchestrator.submit("agent-a", sheet, result)

    assert events[-1].stage is Stage.FAILED
    assert stores.contacts.contacts == []
    assert stores.call_list.entries == []
    assert any(event["stage"] == "failed" for event in stores.audit.for_upload(None))


@pytest.mark.asyncio
async def test_schema_mismatch_blocks_submission(orchestrator, stores, make_sheet, row) -> None:
    headers = ["Contact Number", "Name of the Company", "Industry", "Address", "Area", "Emirate"]
    sheet = make_sheet([row("0501234567", "Acme")], headers=headers)
    result = await orchestrator.validate(sheet)

    with pytest.raises(SchemaError):
        await orchestrator.submit("agent-a", sheet, result)

    assert stores.uploads.uploads == []


@pytest.mark.asyncio
async def test_failed_call_list_batch_is_logged_and_later_batches_continue(orchestrator, stores, clock, make_sheet, row) -> None:
    phones = ["0501000001", "0501000002", "0501000003", "0501000004", "0501000005"]
    sheet, result = await _validated(orchestrator, make_sheet, [row(f"Company {i}", phone) for i, phone in enumerate(phones)])
    stores.call_list.failing_batches = {2}

    outcome = await orchestrator.submit("agent-a", sheet, result, config=PipelineConfig(batch_size=2))

    entries = await stores.call_list.entries_for("agent-a", clock.now.date())
    assert [entry.call_order for entry in entries] == [1, 2, 5]
    assert outcome.call_list_inserted == 3
    assert outcome.upload.approved_count == 3
    assert outcome.status is OutcomeStatus.DEGRADED
    assert "2 call-list entries failed to insert" in outcome.failures


@pytest.mark.asyncio
async def test_order_continues_across_uploads_on_the_same_day(orchestrator, stores, clock, make_sheet, row) -> None:
    morning, morning_result = await _validated(
        orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321")], file_name="morning.xlsx"
    )
    await orchestrator.submit("agent-a", morning, morning_result)
    afternoon, afternoon_result = await _validated(
        orchestrator, make_sheet, [row("Gamma", "0501112222"), row("Delta", "0503334444")], file_name="afternoon.xlsx"
    )

    await orchestrator.submit("agent-a", afternoon, afternoon_result)

    entries = await stores.call_list.entries_for("agent-a", clock.now.date())
    assert [entry.call_order for entry in entries] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_lost_call_list_can_be_found_and_recovered(orchestrator, stores, clock, make_sheet, row) -> None:
    sheet, result = await _validated(
        orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321"), row("Gamma", "0501112222")]
    )
    outcome = await orchestrator.submit("agent-a", sheet, result)
    assert await stores.call_list.delete_by_upload(outcome.upload.id) == 3

    incomplete = await orchestrator.find_incomplete_uploads(clock.now.date())
    assert [item.upload.id for item in incomplete] == [outcome.upload.id]
    assert incomplete[0].actual_entries == 0

    recovered = await orchestrator.recover_call_list(outcome.upload.id)

    assert (recovered.created, recovered.total_contacts, recovered.already_listed) == (3, 3, 0)
    entries = await stores.call_list.entries_for("agent-a", clock.now.date())
    assert [entry.call_order for entry in entries] == [1, 2, 3]
    assert (await stores.uploads.get(outcome.upload.id)).approved_count == 3
    assert await orchestrator.find_incomplete_uploads(clock.now.date()) == []

    again = await orchestrator.recover_call_list(outcome.upload.id)
    assert (again.created, again.already_listed) == (0, 3)


@pytest.mark.asyncio
async def test_recovery_uses_submission_day_for_a_future_list_date(orchestrator, stores, clock, make_sheet, row) -> None:
    tomorrow = clock.now.date() + timedelta(days=1)
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "0507654321")])
    outcome = await orchestrator.submit("agent-a", sheet, result, list_date=tomorrow)
    assert outcome.upload.list_date == tomorrow
    assert await stores.call_list.delete_by_upload(outcome.upload.id) == 2

    recovered = await orchestrator.recover_call_list(outcome.upload.id)

    assert (recovered.created, recovered.total_contacts) == (2, 2)
    assert len(await stores.call_list.entries_for("agent-a", tomorrow)) == 2
    assert await stores.call_list.entries_for("agent-a", clock.now.date()) == []


@pytest.mark.asyncio
async def test_recovering_an_unknown_upload_fails(orchestrator) -> None:
    with pytest.raises(PersistenceError):
        await orchestrator.recover_call_list("missing")


@pytest.mark.asyncio
async def test_audit_trail_is_flushed_with_masked_phones(orchestrator, stores, make_sheet, row) -> None:
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567"), row("Beta", "12ab")])

    outcome = await orchestrator.submit("agent-a", sheet, result)

    events = stores.audit.for_upload(outcome.upload.id)
    stages = {event["stage"] for event in events}
    assert {"session_start", "upload_record", "contact_processing", "complete", "session_end"} <= stages
    processed = [event for event in events if event["stage"] == "contact_processing"]
    assert processed[0]["metadata"]["phone"] == "****4567"
    assert processed[0]["metadata"]["result"] == "inserted"
    assert "+971501234567" not in repr(events)


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_the_pipeline(orchestrator, make_sheet, row) -> None:
    def broken(event):
        raise RuntimeError("display went away")

    seen = []
    orchestrator.subscribe(broken)
    unsubscribe = orchestrator.subscribe(seen.append)
    sheet, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567")])

    outcome = await orchestrator.submit("agent-a", sheet, result)
    assert outcome.status is OutcomeStatus.SUCCESS
    assert seen

    unsubscribe()
    count = len(seen)
    other, other_result = await _validated(orchestrator, make_sheet, [row("Beta", "0507654321")], file_name="other.xlsx")
    await orchestrator.submit("agent-a", other, other_result)
    assert len(seen) == count


@pytest.mark.asyncio
async def test_submit_accepts_a_plain_file_name(orchestrator, make_sheet, row) -> None:
    _, result = await _validated(orchestrator, make_sheet, [row("Acme", "0501234567")])

    outcome = await orchestrator.submit("agent-a", "named.csv", result, file_size=10)

    assert (outcome.upload.file_name, outcome.upload.file_size) == ("named.csv", 10)


def test_stage_event_eta() -> None:
    event = StageEvent(Stage.PROCESSING_CONTACTS, 40, "", processed=5, total=10, elapsed_seconds=10.0)

    assert event.eta_seconds == pytest.approx(10.0)
    assert StageEvent(Stage.PREPARING, 0, "").eta_seconds is None
