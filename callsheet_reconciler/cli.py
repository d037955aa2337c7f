"""Command line interface for validating and submitting call sheets."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict

from .config import PipelineConfig, load_configuration, pipeline_config_from_mapping
from .errors import ReconcilerError, RowValidationError
from .factory import StoreBundle, build_orchestrator, build_stores
from .ingestion import export_call_list, export_validation_report, read_sheet
from .models import ColumnAnalysis, UploadValidationResult
from .orchestrator import OutcomeStatus, UploadOrchestrator, UploadOutcome
from .schema import apply_suggested_order
from .validation import RowValidator


def build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Validate and commit telesales call sheets")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the pipeline configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate = subparsers.add_parser("validate", help="Check a sheet's columns and rows without writing anything")
    _add_sheet_arguments(validate)

    submit = subparsers.add_parser("submit", help="Validate a sheet and commit it for an agent")
    _add_sheet_arguments(submit)
    submit.add_argument("--agent", required=True, help="Identifier of the submitting agent")
    submit.add_argument("--list-date", type=date.fromisoformat, default=None, help="Call-list date (YYYY-MM-DD)")
    submit.add_argument("--call-list", default=None, help="Where to write the agent's resulting call list")
    submit.add_argument("--strict", action="store_true", help="Refuse to submit when any row would be rejected")
    return parser


def _add_sheet_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("input", help="Path to the call sheet (CSV or XLSX)")
    parser.add_argument("--template", default=None, help="Template version to validate against")
    parser.add_argument("--report", default=None, help="Where to write the per-row validation report")
    parser.add_argument(
        "--auto-fix",
        action="store_true",
        help="Reorder misplaced columns and clean up whitespace, casing and phones of failing rows",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    try:
        config: Dict[str, Any] = load_configuration(args.config) if args.config else {}
        pipeline_config = pipeline_config_from_mapping(config)
        if args.template:
            pipeline_config = pipeline_config.with_overrides(template_version=args.template)
        stores = build_stores(config)
        orchestrator = build_orchestrator(stores, pipeline_config)
        if args.command == "validate":
            return asyncio.run(_validate(args, orchestrator, pipeline_config))
        return asyncio.run(_submit(args, orchestrator, stores, pipeline_config))
    except ReconcilerError as exc:
        logging.error("%s", exc)
        return 1


async def _validate(args: argparse.Namespace, orchestrator: UploadOrchestrator, config: PipelineConfig) -> int:
    result = await _load_and_validate(args, orchestrator, config)
    _print_validation(result)
    _write_report(args, result)
    return 0 if result.schema_ok else 1


async def _submit(
    args: argparse.Namespace, orchestrator: UploadOrchestrator, stores: StoreBundle, config: PipelineConfig
) -> int:
    result = await _load_and_validate(args, orchestrator, config)
    _print_validation(result)
    _write_report(args, result)
    if not result.schema_ok:
        return 1
    if args.strict and result.rejected:
        first = result.rejected[0]
        raise RowValidationError(first.row_number, first.errors)

    sheet_name = Path(args.input).name
    outcome = await orchestrator.submit(
        args.agent,
        sheet_name,
        result,
        file_size=Path(args.input).stat().st_size,
        config=config,
        list_date=args.list_date,
    )
    _print_outcome(outcome)
    if args.call_list:
        entries = await stores.call_list.entries_for(args.agent, outcome.upload.list_date)
        destination = export_call_list(entries, args.call_list)
        logging.info("Call list written to %s", destination.resolve())
    return 0


async def _load_and_validate(
    args: argparse.Namespace, orchestrator: UploadOrchestrator, config: PipelineConfig
) -> UploadValidationResult:
    sheet = read_sheet(args.input)
    logging.info("Loaded %s data row(s) from %s", len(sheet.rows), sheet.file_name)
    result = await orchestrator.validate(sheet, config=config)
    if not args.auto_fix:
        return result

    analysis = result.column_analysis
    if analysis is not None and not analysis.is_valid and analysis.can_auto_fix:
        sheet = apply_suggested_order(sheet, analysis)
        print("Columns reordered to match the template")
        result = await orchestrator.validate(sheet, config=config)
    if result.schema_ok:
        validator = RowValidator(config.template(result.template_version), config)
        snapshot = await orchestrator.resolver.snapshot(
            (contact.phone for contact in result.contacts if contact.phone),
            canonicalize=validator.canonical_phone,
        )
        fixed = validator.auto_fix_contacts(result, snapshot)
        print(f"Auto-fix repaired {fixed} row(s)")
    return result


def _write_report(args: argparse.Namespace, result: UploadValidationResult) -> None:
    if args.report and result.contacts:
        destination = export_validation_report(result, args.report)
        logging.info("Validation report written to %s", destination.resolve())


def _print_validation(result: UploadValidationResult) -> None:
    if result.column_analysis is not None and not result.column_analysis.is_valid:
        _print_analysis(result.column_analysis)
        return
    print(
        f"Rows: {result.total_entries}  valid: {result.valid_entries}  "
        f"invalid: {result.invalid_entries}  duplicate: {result.duplicate_entries}"
    )
    for contact in result.rejected:
        print(f"  row {contact.row_number}: {'; '.join(contact.errors)}")


def _print_analysis(analysis: ColumnAnalysis) -> None:
    print(f"Columns do not match template {analysis.template_version}:")
    for mismatch in analysis.mismatches:
        print(f"  column {mismatch.position}: expected '{mismatch.expected}', found '{mismatch.found}' ({mismatch.suggested_fix.value})")
    if analysis.can_auto_fix:
        print(f"Suggested order: {', '.join(analysis.suggested_order)}")


def _print_outcome(outcome: UploadOutcome) -> None:
    print(
        f"Upload {outcome.upload.id}: {outcome.new_contacts} new, {outcome.existing_contacts} existing, "
        f"{outcome.call_list_inserted} added to call list ({outcome.call_list_result.value})"
    )
    if outcome.status is OutcomeStatus.DEGRADED:
        logging.warning("Upload needs follow-up: %s", "; ".join(outcome.failures) or f"{outcome.unresolved_contacts} contact(s) skipped")
        for skipped in outcome.skipped:
            print(f"  row {skipped.row_number} not committed: {skipped.reason}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
