"""Command line front end for the assetsync inspection engine."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from assetsync.credentials import CredentialProvider
from assetsync.engine import InspectionController
from assetsync.google_client import GoogleWorkspaceClient
from assetsync.local_store import open_store
from assetsync.logging_config import configure_logging
from assetsync.models import RemoteFile
from settings import SyncSettings, load_sync_settings

logger = logging.getLogger(__name__)


def _print_notice(level: str, message: str) -> None:
    stream = sys.stderr if level in ("error", "warning") else sys.stdout
    print(f"[{level}] {message}", file=stream)


def build_controller(settings: SyncSettings) -> InspectionController:
    store = open_store(settings.store_path)
    credentials = CredentialProvider(store, settings.client_secret_path)
    client = GoogleWorkspaceClient.from_settings(settings, credentials)
    return InspectionController(
        client,
        store,
        credentials,
        settings=settings,
        notify=_print_notice,
    )


def _print_files(files: List[RemoteFile]) -> None:
    if not files:
        print("No spreadsheets found.")
        return
    for item in files:
        print(f"{item.id}  {item.modified_time or '-':<24}  {item.name}")


def _find_file(files: List[RemoteFile], key: str) -> Optional[RemoteFile]:
    for item in files:
        if key in (item.id, item.name):
            return item
    return None


def _require_session(controller: InspectionController) -> bool:
    if controller.session is None:
        print("Error: no session loaded. Run 'start' first.", file=sys.stderr)
        return False
    return True


def command_login(controller: InspectionController, args: argparse.Namespace) -> int:
    if not controller.sign_in():
        return 1
    print("Signed in.")
    return 0


def command_masters(controller: InspectionController, args: argparse.Namespace) -> int:
    if not controller.initialize():
        return 1
    _print_files(controller.master_files)
    return 0


def command_sessions(controller: InspectionController, args: argparse.Namespace) -> int:
    if not controller.initialize():
        return 1
    _print_files(controller.session_files)
    return 0


def command_start(controller: InspectionController, args: argparse.Namespace) -> int:
    if not controller.initialize():
        return 1
    master = _find_file(controller.master_files, args.master)
    if master is None:
        print(f"Error: master {args.master!r} not found.", file=sys.stderr)
        return 1
    remote = controller.start_session(master, args.name)
    if remote is None:
        return 1
    print(f"Session {remote.name} created ({remote.id}).")
    return 0


def command_open(controller: InspectionController, args: argparse.Namespace) -> int:
    if not controller.initialize():
        return 1
    target = _find_file(controller.session_files, args.session)
    if target is None:
        print(f"Error: session {args.session!r} not found.", file=sys.stderr)
        return 1
    controller.load_session(target, background=False)
    print(f"Session {target.name} loaded with {len(controller.session.assets)} assets.")
    return 0


def command_scan(controller: InspectionController, args: argparse.Namespace) -> int:
    if not _require_session(controller):
        return 1
    changes = {"note": args.note} if args.note is not None else {}
    asset = controller.scan_asset(args.asset, **changes)
    if asset is None:
        print(f"Error: asset {args.asset!r} is not part of this session.", file=sys.stderr)
        return 1
    print(f"{asset.asset_number} checked at {asset.inspection_time} ({asset.holder_name or '-'})")
    return 0 if controller.save() else 1


def command_note(controller: InspectionController, args: argparse.Namespace) -> int:
    if not _require_session(controller):
        return 1
    if controller.update_note(args.asset, args.text) is None:
        print(f"Error: asset {args.asset!r} is not part of this session.", file=sys.stderr)
        return 1
    return 0 if controller.save() else 1


def command_refresh(controller: InspectionController, args: argparse.Namespace) -> int:
    if args.force:
        result = controller.refresh_master()
        if result is not None:
            print(f"Merged master: {len(result.added)} added, {len(result.updated)} updated.")
        return 0 if controller.last_error is None else 1
    if not controller.check_and_sync_master():
        print("Master data is up to date.")
    return 0


def command_save(controller: InspectionController, args: argparse.Namespace) -> int:
    if not _require_session(controller):
        return 1
    if args.backup:
        backup = controller.backup_and_save()
        if backup is None:
            return 1
        print(f"Backup created: {backup.name}")
        return 0
    if not controller.save():
        return 1
    print("Saved.")
    return 0


def command_status(controller: InspectionController, args: argparse.Namespace) -> int:
    session = controller.session
    if session is None:
        print("No session loaded.")
        return 0
    progress = controller.progress()
    print(f"Session      : {session.file.name} ({session.file.id})")
    print(f"Progress     : {progress.done}/{progress.total} ({progress.percent}%)")
    print(f"Pending sync : {'yes' if controller.has_pending_sync else 'no'}")
    print(f"Last master  : {controller.last_master_sync or 'never'}")
    recent = controller.scanned_assets()[: args.recent]
    for asset in recent:
        print(f"  {asset.asset_number:<16} {asset.inspection_time or '':<20} {asset.holder_name}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Asset inspection sync tool")
    parser.add_argument("--settings", help="Path to sync_settings.json")
    parser.add_argument("--verbose", action="store_true", help="Log debug output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Sign in with a Google account")
    login_parser.set_defaults(func=command_login)

    masters_parser = subparsers.add_parser("masters", help="List master spreadsheets")
    masters_parser.set_defaults(func=command_masters)

    sessions_parser = subparsers.add_parser("sessions", help="List inspection sessions")
    sessions_parser.set_defaults(func=command_sessions)

    start_parser = subparsers.add_parser("start", help="Create a session from a master")
    start_parser.add_argument("master", help="Master spreadsheet id or name")
    start_parser.add_argument("name", help="Name of the new session spreadsheet")
    start_parser.set_defaults(func=command_start)

    open_parser = subparsers.add_parser("open", help="Load an existing session")
    open_parser.add_argument("session", help="Session spreadsheet id or name")
    open_parser.set_defaults(func=command_open)

    scan_parser = subparsers.add_parser("scan", help="Mark an asset as checked")
    scan_parser.add_argument("asset", help="Asset number")
    scan_parser.add_argument("--note", help="Note to store with the check")
    scan_parser.set_defaults(func=command_scan)

    note_parser = subparsers.add_parser("note", help="Set the note of an asset")
    note_parser.add_argument("asset", help="Asset number")
    note_parser.add_argument("text", help="Note text")
    note_parser.set_defaults(func=command_note)

    refresh_parser = subparsers.add_parser("refresh", help="Merge the newest master data")
    refresh_parser.add_argument("--force", action="store_true", help="Refresh even if not due")
    refresh_parser.set_defaults(func=command_refresh)

    save_parser = subparsers.add_parser("save", help="Write the session to the remote store")
    save_parser.add_argument("--backup", action="store_true", help="Also create a timestamped backup")
    save_parser.set_defaults(func=command_save)

    status_parser = subparsers.add_parser("status", help="Show session progress")
    status_parser.add_argument("--recent", type=int, default=10, help="Recently scanned assets to list")
    status_parser.set_defaults(func=command_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = load_sync_settings(args.settings)
    controller = build_controller(settings)
    try:
        return args.func(controller, args)
    finally:
        controller.scheduler.cancel()


if __name__ == "__main__":
    sys.exit(main())
