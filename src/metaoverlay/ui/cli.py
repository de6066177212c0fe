# ruff: noqa: T201

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from signal import SIGINT, signal
from threading import Event
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv
from pydantic import ValidationError as PayloadValidationError

from metaoverlay.adapters.schema import (
    MergeResultPayload,
    OverlayPayload,
    UpgradeItemListAdapter,
)
from metaoverlay.app import build_service, run_package_upgrade
from metaoverlay.config import configure_logging
from metaoverlay.config.policies import load_policies
from metaoverlay.domain.model import OverlayScope

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from metaoverlay.domain.customization import MetadataOverlayService
    from metaoverlay.domain.upgrade import UpgradeReport

log = logging.getLogger(__name__)

EXIT_USAGE = 2
EXIT_FAILURE = 1
EXIT_CONFLICTS = 3

_UPGRADE_RUNNING = Event()
_CANCEL_UPGRADE = Event()


def _add_key_arguments(parser: argparse.ArgumentParser, *, scoped: bool = True) -> None:
    parser.add_argument("base_type", help="Metadata type, e.g. entity")
    parser.add_argument("base_name", help="Metadata item name, e.g. Account")
    if scoped:
        parser.add_argument(
            "--scope",
            choices=[scope.value for scope in OverlayScope],
            default=OverlayScope.PLATFORM.value,
            help="Overlay layer (default: %(default)s)",
        )
    parser.add_argument("--owner", type=str, help="Owner of a user-scope overlay")
    parser.add_argument("--tenant", type=str, help="Tenant id for multi-tenant stores")


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Customize and upgrade system metadata")
    parser.add_argument(
        "--policies",
        type=Path,
        help="JSON file with customization policies (defaults to METAOVERLAY_POLICY_FILE)",
    )
    parser.add_argument("--actor", type=str, help="User recorded on audit entries and events")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Register a package-delivered document")
    register.add_argument("base_type")
    register.add_argument("base_name")
    register.add_argument("document", type=Path, help="JSON file with the system document")
    register.add_argument("--package-id", type=str)
    register.add_argument("--package-version", type=str)

    effective = subparsers.add_parser("effective", help="Print the effective document")
    _add_key_arguments(effective, scoped=False)

    overlay = subparsers.add_parser("overlay", help="Overlay management commands")
    overlay_sub = overlay.add_subparsers(dest="overlay_command", required=True)
    overlay_show = overlay_sub.add_parser("show", help="Print the active overlay")
    _add_key_arguments(overlay_show)
    overlay_save = overlay_sub.add_parser("save", help="Validate and save an overlay")
    overlay_save.add_argument("overlay", type=Path, help="JSON file with the overlay payload")
    overlay_save.add_argument(
        "--expected-version",
        type=int,
        help="Fail with a conflict unless the stored overlay has this version",
    )
    overlay_remove = overlay_sub.add_parser("remove", help="Soft-delete the active overlay")
    _add_key_arguments(overlay_remove)

    upgrade = subparsers.add_parser("upgrade", help="Merge a package upgrade into overlays")
    upgrade.add_argument("items", type=Path, help="JSON list of upgrade items")
    upgrade.add_argument(
        "--commit",
        action="store_true",
        help="Persist clean merges (default is a dry run)",
    )

    return parser.parse_args(list(argv))


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ValueError(f"File not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}: {exc}") from exc


def _emit(payload: object) -> None:
    print(json.dumps(payload, indent=2, sort_keys=False))


def _report_payload(report: UpgradeReport) -> dict[str, Any]:
    return {
        "cancelled": report.cancelled,
        "applied": report.applied,
        "conflicted": report.conflicted,
        "failed": report.failed,
        "items": [
            {
                "baseType": outcome.item.base_type,
                "baseName": outcome.item.base_name,
                "status": outcome.status.value,
                "error": outcome.error,
                "result": (
                    MergeResultPayload.from_domain(outcome.result).to_payload()
                    if outcome.result is not None
                    else None
                ),
                "overlays": [
                    {
                        "scope": merge.overlay.scope.value,
                        "tenantId": merge.overlay.tenant_id,
                        "owner": merge.overlay.owner,
                        "success": merge.success,
                        "conflicts": len(merge.result.conflicts),
                    }
                    for merge in outcome.merges
                ],
            }
            for outcome in report.outcomes
        ],
    }


def _run_command(args: argparse.Namespace, service: MetadataOverlayService) -> int:
    if args.command == "register":
        document = _read_json(args.document)
        if not isinstance(document, dict):
            raise ValueError(f"{args.document} must contain a JSON object")
        item = service.register(
            args.base_type,
            args.base_name,
            document,
            package_id=args.package_id,
            package_version=args.package_version,
        )
        log.info("Registered %s:%s", item.base_type, item.base_name)
        return 0

    if args.command == "effective":
        _emit(
            service.get_effective(
                args.base_type, args.base_name, owner=args.owner, tenant_id=args.tenant
            )
        )
        return 0

    if args.command == "overlay":
        return _run_overlay_command(args, service)

    if args.command == "upgrade":
        payloads = UpgradeItemListAdapter.validate_python(_read_json(args.items))
        items = [payload.to_domain() for payload in payloads]
        _UPGRADE_RUNNING.set()
        try:
            report = run_package_upgrade(
                items,
                service=service,
                commit=args.commit,
                cancel=_CANCEL_UPGRADE,
                actor=args.actor,
            )
        finally:
            _UPGRADE_RUNNING.clear()
        _emit(_report_payload(report))
        return EXIT_CONFLICTS if report.conflicted else 0

    raise ValueError(f"Unsupported command: {args.command}")


def _run_overlay_command(args: argparse.Namespace, service: MetadataOverlayService) -> int:
    if args.overlay_command == "show":
        overlay = service.get_overlay(
            args.base_type, args.base_name, args.scope, owner=args.owner, tenant_id=args.tenant
        )
        if overlay is None:
            log.error("No active %s overlay for %s:%s", args.scope, args.base_type, args.base_name)
            return EXIT_FAILURE
        _emit(OverlayPayload.from_domain(overlay).to_payload())
        return 0

    if args.overlay_command == "save":
        payload = OverlayPayload.model_validate(_read_json(args.overlay))
        stored = service.save_overlay(
            payload.to_domain(), expected_version=args.expected_version, actor=args.actor
        )
        _emit(OverlayPayload.from_domain(stored).to_payload())
        return 0

    if args.overlay_command == "remove":
        service.remove_overlay(
            args.base_type,
            args.base_name,
            args.scope,
            owner=args.owner,
            tenant_id=args.tenant,
            actor=args.actor,
        )
        return 0

    raise ValueError(f"Unsupported overlay command: {args.overlay_command}")


def main(
    argv: Sequence[str] | None = None,
    *,
    service: MetadataOverlayService | None = None,
) -> None:
    """Main application entry point."""
    configure_logging()
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(EXIT_USAGE)

    try:
        effective_service = service or build_service(policies=load_policies(parsed_args.policies))
        exit_code = _run_command(parsed_args, effective_service)
    except (ValueError, PayloadValidationError):
        log.exception("Invalid input")
        sys.exit(EXIT_USAGE)
    except Exception:
        log.exception("Fatal error")
        sys.exit(EXIT_FAILURE)

    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C): finish the current upgrade item first, otherwise exit."""
    if _UPGRADE_RUNNING.is_set() and not _CANCEL_UPGRADE.is_set():
        log.info("Cancelling upgrade after the current item (Ctrl+C again to abort)")
        _CANCEL_UPGRADE.set()
        return
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
