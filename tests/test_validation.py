import pytest

from callsheet_reconciler.config import PipelineConfig
from callsheet_reconciler.errors import EmptySheetError
from callsheet_reconciler.factory import build_orchestrator, build_stores
from callsheet_reconciler.models import IssueCode, MasterContact
from callsheet_reconciler.templates import CALL_SHEET_V3
from callsheet_reconciler.validation import (
    ALREADY_EXISTS,
    DO_NOT_CALL,
    DUPLICATE_IN_FILE,
    INVALID_PHONE,
    RowValidator,
    UNRESOLVED_DUPLICATE,
    validate_upload,
)


def _assert_buckets_add_up(result) -> None:
    assert result.valid_entries + result.invalid_entries + result.duplicate_entries == result.total_entries


@pytest.mark.asyncio
async def test_same_number_in_two_formats_is_an_in_file_duplicate(orchestrator, make_sheet, row) -> None:
    sheet = make_sheet([row("Acme", "050-123-4567"), row("Acme Branch", "0501234567")])

    result = await orchestrator.validate(sheet)

    first, second = result.contacts
    assert first.phone == second.phone == "+971501234567"
    assert first.is_valid
    assert second.errors == [DUPLICATE_IN_FILE]
    assert second.is_duplicate
    assert (result.valid_entries, result.invalid_entries, result.duplicate_entries) == (1, 0, 1)
    assert [contact.row_number for contact in result.contacts] == [2, 3]


@pytest.mark.asyncio
async def test_required_fields_and_phone_format(orchestrator, make_sheet, row) -> None:
    sheet = make_sheet([row("Acme", "0501234567", industry=""), row("", "12ab"), row("Gamma", "0507654321")])

    result = await orchestrator.validate(sheet)

    missing_industry, broken, valid = result.contacts
    assert missing_industry.errors == ["Industry is required"]
    assert broken.errors == ["Name of the Company is required", INVALID_PHONE]
    assert broken.is_invalid
    assert valid.is_valid
    assert result.invalid_entries == 2
    _assert_buckets_add_up(result)


@pytest.mark.asyncio
async def test_existing_contact_is_a_committable_duplicate_with_owner(orchestrator, stores, make_sheet, row) -> None:
    existing = await stores.contacts.insert(
        MasterContact(phone="+971501234567", company="Acme", current_owner_agent_id="agent-b")
    )

    result = await orchestrator.validate(make_sheet([row("Acme LLC", "050 123 4567")]))

    contact = result.contacts[0]
    assert contact.errors == [f"{ALREADY_EXISTS} (owned by Bob)"]
    assert contact.is_duplicate
    assert contact.is_committable
    assert contact.existing_contact_id == existing.id
    assert result.duplicate_owners() == {2: "Bob"}
    assert result.duplicate_entries == 1


@pytest.mark.asyncio
async def test_do_not_call_numbers_are_invalid_not_duplicates(make_sheet, row) -> None:
    stores = build_stores({"stores": {"dnc": {"options": {"phones": ["050 999 8888"]}}}})
    orchestrator = build_orchestrator(stores)

    result = await orchestrator.validate(make_sheet([row("Acme", "0509998888")]))

    contact = result.contacts[0]
    assert contact.errors == [DO_NOT_CALL]
    assert contact.on_dnc
    assert not contact.is_committable
    assert result.invalid_entries == 1


@pytest.mark.asyncio
async def test_do_not_call_numbers_follow_configured_mobile_prefixes(make_sheet, row) -> None:
    stores = build_stores({"stores": {"dnc": {"options": {"phones": ["412345678"]}}}})
    orchestrator = build_orchestrator(stores, PipelineConfig(mobile_prefixes=("5", "4")))

    result = await orchestrator.validate(make_sheet([row("Acme", "412345678")]))

    contact = result.contacts[0]
    assert contact.phone == "+971412345678"
    assert contact.has_issue(IssueCode.DO_NOT_CALL)
    assert not contact.is_committable


@pytest.mark.asyncio
async def test_do_not_call_numbers_follow_per_call_country_code(make_sheet, row) -> None:
    stores = build_stores({"stores": {"dnc": {"options": {"phones": ["0712345678"]}}}})
    orchestrator = build_orchestrator(stores)

    result = await orchestrator.validate(
        make_sheet([row("Acme", "0712345678")]), config=PipelineConfig(country_code="44")
    )

    contact = result.contacts[0]
    assert contact.phone == "+44712345678"
    assert contact.errors == [DO_NOT_CALL]


@pytest.mark.asyncio
async def test_unavailable_dnc_registry_aborts_validation(make_sheet, row) -> None:
    stores = build_stores({"stores": {"dnc": {"options": {"available": False}}}})
    orchestrator = build_orchestrator(stores)

    with pytest.raises(RuntimeError):
        await orchestrator.validate(make_sheet([row("Acme", "0501234567")]))


@pytest.mark.asyncio
async def test_batch_lookup_failure_falls_back_to_point_lookups(orchestrator, stores, make_sheet, row) -> None:
    await stores.contacts.insert(MasterContact(phone="+971501234567", current_owner_agent_id="agent-b"))
    stores.contacts.batch_lookup_available = False

    result = await orchestrator.validate(make_sheet([row("Acme", "0501234567"), row("Beta", "0507654321")]))

    assert stores.contacts.batch_calls == 1
    assert stores.contacts.point_calls == 2
    assert result.contacts[0].has_issue(IssueCode.ALREADY_EXISTS)
    assert result.contacts[1].is_valid


@pytest.mark.asyncio
async def test_unresolved_lookup_is_never_treated_as_new(orchestrator, stores, make_sheet, row) -> None:
    stores.contacts.batch_lookup_available = False
    stores.contacts.point_lookup_available = False

    result = await orchestrator.validate(make_sheet([row("Acme", "0501234567")]))

    contact = result.contacts[0]
    assert contact.errors == [UNRESOLVED_DUPLICATE]
    assert contact.is_duplicate
    assert not contact.is_committable


@pytest.mark.asyncio
async def test_empty_sheet_is_rejected(orchestrator, make_sheet) -> None:
    with pytest.raises(EmptySheetError, match="empty"):
        await orchestrator.validate(make_sheet([]))


@pytest.mark.asyncio
async def test_too_few_columns_yields_an_empty_result(orchestrator, make_sheet) -> None:
    sheet = make_sheet([["Acme", "0501234567"]], headers=["Name of the Company", "Contact Number"])

    result = await orchestrator.validate(sheet)

    assert not result.schema_ok
    assert result.total_entries == 0
    assert result.contacts == []


@pytest.mark.asyncio
async def test_mismatched_layout_counts_every_row_invalid(orchestrator, make_sheet, row) -> None:
    headers = ["Contact Number", "Name of the Company", "Industry", "Address", "Area", "Emirate"]
    sheet = make_sheet([row("0501234567", "Acme"), row("0507654321", "Beta")], headers=headers)

    result = await orchestrator.validate(sheet)

    assert result.column_analysis.can_auto_fix
    assert (result.total_entries, result.invalid_entries) == (2, 2)
    assert result.contacts == []


@pytest.mark.asyncio
async def test_older_template_versions_can_be_selected(orchestrator, make_sheet) -> None:
    headers = ["Company Name", "Phone Number", "Contact Person Name", "Trade License Number"]
    sheet = make_sheet([["Acme", "0501234567", "Sam", "TL-42"]], headers=headers)

    result = await orchestrator.validate(sheet, template_version="v1")

    contact = result.contacts[0]
    assert result.template_version == "v1"
    assert contact.is_valid
    assert (contact.contact_person, contact.trade_license) == ("Sam", "TL-42")


@pytest.mark.asyncio
async def test_update_contact_revalidates_one_row(orchestrator, make_sheet, row) -> None:
    sheet = make_sheet([row("Acme", "0501234567"), row("Beta", "12ab")])
    result = await orchestrator.validate(sheet)
    validator = RowValidator(CALL_SHEET_V3, PipelineConfig())
    snapshot = await orchestrator.resolver.snapshot(validator.candidate_phones(sheet))

    fixed = validator.update_contact(result, 3, "phone", "0507654321", snapshot)
    assert fixed.is_valid
    assert result.valid_entries == 2

    clash = validator.update_contact(result, 3, "phone", "050 123 4567", snapshot)
    assert clash.errors == [DUPLICATE_IN_FILE]
    assert result.contacts[0].is_valid
    _assert_buckets_add_up(result)

    with pytest.raises(KeyError):
        validator.update_contact(result, 99, "phone", "0501111111", snapshot)
    with pytest.raises(ValueError):
        validator.update_contact(result, 2, "owner", "x", snapshot)


@pytest.mark.asyncio
async def test_auto_fix_cleans_rows_without_touching_duplicates(orchestrator, make_sheet, row) -> None:
    sheet = make_sheet(
        [
            row("  acme   trading ", "tel 0501234567"),
            row("Beta", "0507654321"),
            row("Beta again", "0507654321"),
        ]
    )
    result = await orchestrator.validate(sheet)
    validator = RowValidator(CALL_SHEET_V3, PipelineConfig())
    snapshot = await orchestrator.resolver.snapshot(validator.candidate_phones(sheet))

    fixed = validator.auto_fix_contacts(result, snapshot)

    first = result.contacts[0]
    assert fixed == 1
    assert first.is_valid
    assert first.company == "Acme Trading"
    assert first.phone == "+971501234567"
    assert result.contacts[2].errors == [DUPLICATE_IN_FILE]
    _assert_buckets_add_up(result)


@pytest.mark.asyncio
async def test_delete_contact_only_removes_failing_rows(orchestrator, make_sheet, row) -> None:
    result = await orchestrator.validate(make_sheet([row("Acme", "0501234567"), row("Beta", "12ab")]))
    validator = RowValidator(CALL_SHEET_V3)

    assert validator.delete_contact(result, 2) is False
    assert validator.delete_contact(result, 3) is True
    assert validator.delete_contact(result, 3) is False
    assert result.total_entries == result.valid_entries == 1


@pytest.mark.asyncio
async def test_no_two_valid_rows_share_a_phone(orchestrator, make_sheet, row) -> None:
    phones = ["0501234567", "501234567", "+971 50 123 4567", "0507654321", "00971507654321", "0501112222"]
    result = await validate_upload(
        make_sheet([row(f"Company {index}", phone) for index, phone in enumerate(phones)]),
        orchestrator.resolver,
    )

    valid_phones = [contact.phone for contact in result.contacts if contact.is_valid]
    assert len(valid_phones) == len(set(valid_phones)) == 3
    _assert_buckets_add_up(result)
