#!/usr/bin/env python3
"""Entry point for the mcpshelf CLI."""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from textwrap import dedent
from typing import Any, Callable, Dict, List, Sequence

from mcpshelf import __version__
from mcpshelf.app.mcp import transfer
from mcpshelf.app.mcp.store import EntityStore
from mcpshelf.domain.mcp import MCPDraft, MCPEntity, MCPStoreError, NotFoundError, Profile, ProfileNotFoundError
from mcpshelf.domain.mcp.value_objects import TRANSPORTS
from mcpshelf.settings import SETTINGS
from mcpshelf.utils.telemetry import clear as telemetry_clear
from mcpshelf.utils.telemetry import iter_events as telemetry_iter
from mcpshelf.utils.telemetry import record_store_health, record_structured_event
from mcpshelf.utils.telemetry import summarize as telemetry_summarize

HELP_OVERVIEW = dedent(
    """
    Manage a local catalogue of MCP servers, group them into profiles and
    keep a ring of backups.

    Examples:
      mcpshelf add --name filesystem --command npx --arg=-y --arg @modelcontextprotocol/server-filesystem
      mcpshelf profile create Work --member filesystem
      mcpshelf export --style servers --output claude_desktop_config.json
      mcpshelf backup list
    """
)


def _build_store() -> EntityStore:
    return EntityStore.open(SETTINGS)


def _emit(args: argparse.Namespace, payload: Any, text: str | Callable[[], None]) -> None:
    if getattr(args, "json", False):
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    elif callable(text):
        text()
    else:
        print(text)


def _resolve_mcp(store: EntityStore, ref: str) -> MCPEntity:
    try:
        return store.get(ref)
    except NotFoundError:
        entity = store.find_by_name(ref)
        if entity is None:
            raise
        return entity


def _resolve_profile(store: EntityStore, ref: str) -> Profile:
    try:
        return store.get_profile(ref)
    except ProfileNotFoundError:
        profile = store.find_profile(ref)
        if profile is None:
            raise
        return profile


def _read_input(path_arg: str) -> str:
    if path_arg == "-":
        return sys.stdin.read()
    return Path(path_arg).expanduser().read_text(encoding="utf-8")


def _write_output(text: str, output: str | None) -> None:
    if output:
        target = Path(output).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
    else:
        sys.stdout.write(text)


def _format_for(args: argparse.Namespace, path_arg: str | None) -> str:
    explicit = getattr(args, "format", None)
    if explicit:
        return explicit
    if path_arg and path_arg != "-":
        return transfer.detect_format(Path(path_arg))
    return "json"


def _warn_if_degraded(store: EntityStore) -> None:
    status = store.status
    if status.last_backup_error:
        print(f"warning: auto-backup failed: {status.last_backup_error}", file=sys.stderr)
    if status.last_save_error:
        print(f"warning: last save failed: {status.last_save_error}", file=sys.stderr)


def _print_entity(entity: MCPEntity) -> None:
    state = "enabled" if entity.enabled else "disabled"
    command = " ".join([entity.command, *entity.args]).strip() or f"{entity.transport} {entity.url}"
    print(f"  - {entity.name} [{state}] {command}")
    print(f"      id: {entity.mcp_id}  uses: {entity.usage_count}")
    if entity.description:
        print(f"      description: {entity.description}")


# ----------------------------------------------------------------------
# MCP server commands
# ----------------------------------------------------------------------


def _list_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    entities = store.list()
    if getattr(args, "profile", None):
        members = set(_resolve_profile(store, args.profile).member_ids)
        entities = [entity for entity in entities if entity.mcp_id in members]

    def text() -> None:
        if not entities:
            print("mcp list: no servers registered")
            return
        print("mcp list:")
        for entity in entities:
            _print_entity(entity)

    _emit(args, {"servers": [entity.to_dict() for entity in entities]}, text)
    return 0


def _parse_env(pairs: Sequence[str] | None) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for pair in pairs or ():
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"--env expects KEY=VALUE, got '{pair}'")
        env[key.strip()] = value
    return env


def _add_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    if not args.server_command and not args.url:
        raise ValueError("add needs --command or --url")
    draft = MCPDraft(
        name=args.name,
        command=args.server_command or "",
        args=tuple(args.args or ()),
        description=args.description,
        enabled=not args.disabled,
        transport=args.transport,
        url=args.url,
        env=_parse_env(args.env),
    )
    profile_ids = [_resolve_profile(store, ref).profile_id for ref in args.profiles or ()]
    entity = store.add(draft, allow_duplicate=args.allow_duplicate, profile_ids=profile_ids)
    _warn_if_degraded(store)
    _emit(args, {"status": "ok", "server": entity.to_dict()}, f"mcp add: registered {entity.name} ({entity.mcp_id})")
    return 0


def _update_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    entity = _resolve_mcp(store, args.ref)
    patch: Dict[str, Any] = {}
    if args.name is not None:
        patch["name"] = args.name
    if args.server_command is not None:
        patch["command"] = args.server_command
    if args.clear_args:
        patch["args"] = []
    elif args.args:
        patch["args"] = list(args.args)
    if args.description is not None:
        patch["description"] = args.description
    if args.enabled is not None:
        patch["enabled"] = args.enabled
    updated = store.update(entity.mcp_id, patch, auto_rename=not args.no_auto_rename)
    _emit(args, {"status": "ok", "server": updated.to_dict()}, f"mcp update: {updated.name} updated")
    return 0


def _remove_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    ids = [_resolve_mcp(store, ref).mcp_id for ref in args.refs]
    removed = store.remove_many(ids) if len(ids) > 1 else [store.remove(ids[0])]
    _warn_if_degraded(store)
    names = [entity.name for entity in removed]
    _emit(args, {"status": "removed", "names": names}, f"mcp remove: {', '.join(names)} removed")
    return 0


def _duplicate_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    source = _resolve_mcp(store, args.ref)
    copy = store.duplicate(source.mcp_id)
    _warn_if_degraded(store)
    _emit(args, {"status": "ok", "server": copy.to_dict()}, f"mcp duplicate: {source.name} -> {copy.name}")
    return 0


def _toggle_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    entity = store.toggle(_resolve_mcp(store, args.ref).mcp_id)
    state = "enabled" if entity.enabled else "disabled"
    _emit(args, {"status": "ok", "server": entity.to_dict()}, f"mcp toggle: {entity.name} {state}")
    return 0


def _usage_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    entity = store.record_usage(_resolve_mcp(store, args.ref).mcp_id)
    _emit(args, {"status": "ok", "server": entity.to_dict()}, f"mcp usage: {entity.name} used {entity.usage_count} times")
    return 0


def _search_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    matches = store.search(args.query)

    def text() -> None:
        if not matches:
            print(f"mcp search: no match for '{args.query}'")
            return
        for entity in matches:
            _print_entity(entity)

    _emit(args, {"servers": [entity.to_dict() for entity in matches]}, text)
    return 0


def _import_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    fmt = _format_for(args, args.file)
    report = store.import_payload(_read_input(args.file), fmt, allow_duplicate=args.allow_duplicate)
    _warn_if_degraded(store)

    def text() -> None:
        print(f"mcp import: {len(report.added)} added, {len(report.failed)} failed")
        for item in report.failed:
            print(f"  - item {item.index}: {item.error}")

    _emit(args, report.to_dict(), text)
    return 0 if not report.failed else 1


def _export_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    ids = [_resolve_mcp(store, ref).mcp_id for ref in args.refs] or None
    if args.style == "servers":
        payload: Any = store.export_servers(ids)
    else:
        payload = store.export_records(ids)
    _write_output(transfer.dump_text(payload, _format_for(args, args.output)), args.output)
    return 0


def _status_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    status = store.status

    def text() -> None:
        print(f"mcp status: {status.mcp_count} servers, {status.profile_count} profiles, {status.backup_count} backups")
        if status.last_save_error:
            print(f"  last save failed: {status.last_save_error}")
        if status.last_backup_error:
            print(f"  last backup failed: {status.last_backup_error}")

    _emit(args, status.to_dict(), text)
    return 0


# ----------------------------------------------------------------------
# Profile commands
# ----------------------------------------------------------------------


def _profile_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    command = args.profile_command
    if command == "list":
        profiles = store.list_profiles()

        def text() -> None:
            if not profiles:
                print("profile list: no profiles")
                return
            for profile in profiles:
                marker = " (default)" if profile.is_default else ""
                print(f"  - {profile.name}{marker}: {len(profile.member_ids)} servers [{profile.profile_id}]")

        _emit(args, {"profiles": [profile.to_dict() for profile in profiles]}, text)
        return 0
    if command == "create":
        member_ids = [_resolve_mcp(store, ref).mcp_id for ref in args.members or ()]
        profile = store.create_profile(
            args.name,
            description=args.description or "",
            member_ids=member_ids,
            is_default=args.default,
        )
        _emit(args, {"status": "ok", "profile": profile.to_dict()}, f"profile create: {profile.name} ({profile.profile_id})")
        return 0
    if command == "import":
        payload = transfer.parse_text(_read_input(args.file), _format_for(args, args.file))
        profile, report = store.import_profile(payload, allow_duplicate=args.allow_duplicate)
        _warn_if_degraded(store)
        _emit(
            args,
            {"status": "ok", "profile": profile.to_dict(), "import": report.to_dict()},
            f"profile import: {profile.name} with {len(profile.member_ids)} servers",
        )
        return 0

    profile = _resolve_profile(store, args.profile)
    if command == "remove":
        removed = store.remove_profile(profile.profile_id)
        _emit(args, {"status": "removed", "name": removed.name}, f"profile remove: {removed.name} removed")
    elif command in {"add", "drop"}:
        entity = _resolve_mcp(store, args.mcp)
        if command == "add":
            changed = store.add_to_profile(profile.profile_id, entity.mcp_id)
        else:
            changed = store.remove_from_profile(profile.profile_id, entity.mcp_id)
        outcome = "updated" if changed else "unchanged"
        _emit(args, {"status": outcome, "members": store.members_of(profile.profile_id)}, f"profile {command}: {profile.name} {outcome}")
    elif command == "activate":
        changed = store.activate_profile(profile.profile_id)
        _emit(
            args,
            {"status": "ok", "changed": [entity.name for entity in changed]},
            f"profile activate: {profile.name} ({len(changed)} servers switched)",
        )
    elif command == "capture":
        captured = store.capture_profile(profile.profile_id)
        _emit(args, {"status": "ok", "profile": captured.to_dict()}, f"profile capture: {captured.name} now has {len(captured.member_ids)} servers")
    elif command == "export":
        bundle = store.export_profile(profile.profile_id)
        _write_output(transfer.dump_text(bundle, _format_for(args, args.output)), args.output)
    else:
        print("Unsupported profile command", file=sys.stderr)
        return 2
    return 0


# ----------------------------------------------------------------------
# Backup commands
# ----------------------------------------------------------------------


def _backup_cmd(args: argparse.Namespace, store: EntityStore) -> int:
    command = args.backup_command
    if command == "list":
        backups = store.list_backups()

        def text() -> None:
            if not backups:
                print("backup list: no backups")
                return
            for summary in backups:
                print(f"  - {summary.backup_id} {summary.created_at.isoformat()} {summary.label} ({summary.mcp_count} servers)")

        _emit(args, {"backups": [summary.to_dict() for summary in backups]}, text)
    elif command == "create":
        summary = store.create_backup(args.label)
        _emit(args, {"status": "ok", "backup": summary.to_dict()}, f"backup create: {summary.backup_id}")
    elif command == "restore":
        summary = store.restore_backup(args.backup_id)
        _emit(args, {"status": "restored", "backup": summary.to_dict()}, f"backup restore: {summary.label} restored")
    elif command == "remove":
        summary = store.remove_backup(args.backup_id)
        _emit(args, {"status": "removed", "backup": summary.to_dict()}, f"backup remove: {summary.backup_id} removed")
    else:
        print("Unsupported backup command", file=sys.stderr)
        return 2
    return 0


def _telemetry_cmd(args: argparse.Namespace) -> int:
    if args.telemetry_command == "clear":
        telemetry_clear(SETTINGS)
        print("telemetry: cleared")
        return 0
    summary = telemetry_summarize(telemetry_iter(SETTINGS))
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0


def _tracked(
    component: str,
    handler: Callable[[argparse.Namespace, EntityStore], int],
    name: str | None = None,
) -> Callable[[argparse.Namespace], int]:
    """Wrap a store command with start/success/error telemetry and error reporting."""

    def run(args: argparse.Namespace) -> int:
        command = name or getattr(args, f"{component}_command")
        event = f"{component}.{command}"
        record_structured_event(SETTINGS, event, status="start", component=component, payload={"command": command})
        start = time.perf_counter()
        store: EntityStore | None = None
        try:
            store = _build_store()
            exit_code = handler(args, store)
        except (MCPStoreError, ValueError, OSError) as exc:
            if store is not None:
                record_store_health(SETTINGS, component, store.status)
            duration = (time.perf_counter() - start) * 1000
            record_structured_event(
                SETTINGS,
                event,
                status="error",
                level="error",
                component=component,
                duration_ms=duration,
                payload={"command": command, "error": str(exc), "type": exc.__class__.__name__},
            )
            print(f"{component} {command} failed: {exc}", file=sys.stderr)
            return 1
        record_store_health(SETTINGS, component, store.status)
        duration = (time.perf_counter() - start) * 1000
        record_structured_event(
            SETTINGS,
            event,
            status="success",
            component=component,
            duration_ms=duration,
            payload={"command": command, "exit_code": exit_code},
        )
        return exit_code

    return run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcpshelf",
        description=HELP_OVERVIEW,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"mcpshelf {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    list_cmd = sub.add_parser("list", help="List registered MCP servers")
    list_cmd.add_argument("--profile", help="Only servers in this profile (name or id)")
    list_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    list_cmd.set_defaults(func=_tracked("mcp", _list_cmd, "list"))

    add_cmd = sub.add_parser("add", help="Register a new MCP server")
    add_cmd.add_argument("--name", required=True, help="Display name (renamed with a ' (n)' suffix on clash)")
    add_cmd.add_argument("--command", dest="server_command", metavar="COMMAND", help="Executable to launch (stdio servers)")
    add_cmd.add_argument("--arg", dest="args", action="append", help="Argument (repeatable; use --arg=-x for dashes)")
    add_cmd.add_argument("--url", help="Endpoint of a remote server")
    add_cmd.add_argument("--type", dest="transport", choices=TRANSPORTS, help="Transport (default: stdio, or http with --url)")
    add_cmd.add_argument("--env", action="append", metavar="KEY=VALUE", help="Environment variable (repeatable)")
    add_cmd.add_argument("--description", help="Free-form description")
    add_cmd.add_argument("--disabled", action="store_true", help="Register the server disabled")
    add_cmd.add_argument("--allow-duplicate", action="store_true", help="Insert even if an identical server exists")
    add_cmd.add_argument("--profile", dest="profiles", action="append", help="Also add to this profile (repeatable)")
    add_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    add_cmd.set_defaults(func=_tracked("mcp", _add_cmd, "add"))

    update_cmd = sub.add_parser("update", help="Edit a registered MCP server")
    update_cmd.add_argument("ref", help="Server name or id")
    update_cmd.add_argument("--name", help="New name")
    update_cmd.add_argument("--command", dest="server_command", metavar="COMMAND", help="New executable")
    update_cmd.add_argument("--arg", dest="args", action="append", help="Replace arguments (repeatable)")
    update_cmd.add_argument("--clear-args", action="store_true", help="Remove all arguments")
    update_cmd.add_argument("--description", help="New description (empty string clears it)")
    toggle_group = update_cmd.add_mutually_exclusive_group()
    toggle_group.add_argument("--enable", dest="enabled", action="store_const", const=True, help="Enable the server")
    toggle_group.add_argument("--disable", dest="enabled", action="store_const", const=False, help="Disable the server")
    update_cmd.add_argument("--no-auto-rename", action="store_true", help="Fail instead of renaming on name clash")
    update_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    update_cmd.set_defaults(func=_tracked("mcp", _update_cmd, "update"), enabled=None)

    remove_cmd = sub.add_parser("remove", help="Remove MCP servers (and their profile memberships)")
    remove_cmd.add_argument("refs", nargs="+", help="Server names or ids")
    remove_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    remove_cmd.set_defaults(func=_tracked("mcp", _remove_cmd, "remove"))

    duplicate_cmd = sub.add_parser("duplicate", help="Copy a server under a fresh unique name")
    duplicate_cmd.add_argument("ref", help="Server name or id")
    duplicate_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    duplicate_cmd.set_defaults(func=_tracked("mcp", _duplicate_cmd, "duplicate"))

    toggle_cmd = sub.add_parser("toggle", help="Flip a server between enabled and disabled")
    toggle_cmd.add_argument("ref", help="Server name or id")
    toggle_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    toggle_cmd.set_defaults(func=_tracked("mcp", _toggle_cmd, "toggle"))

    usage_cmd = sub.add_parser("usage", help="Record one invocation of a server")
    usage_cmd.add_argument("ref", help="Server name or id")
    usage_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    usage_cmd.set_defaults(func=_tracked("mcp", _usage_cmd, "usage"))

    search_cmd = sub.add_parser("search", help="Search servers by name, description or command")
    search_cmd.add_argument("query")
    search_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    search_cmd.set_defaults(func=_tracked("mcp", _search_cmd, "search"))

    import_cmd = sub.add_parser("import", help="Import servers from a JSON/YAML file ('-' for stdin)")
    import_cmd.add_argument("file")
    import_cmd.add_argument("--format", choices=transfer.FORMATS, help="Payload format (default: from extension)")
    import_cmd.add_argument("--allow-duplicate", action="store_true", help="Keep exact duplicates under a new name")
    import_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    import_cmd.set_defaults(func=_tracked("mcp", _import_cmd, "import"))

    export_cmd = sub.add_parser("export", help="Export servers as records or an mcpServers map")
    export_cmd.add_argument("refs", nargs="*", help="Servers to export (default: all, or enabled for --style servers)")
    export_cmd.add_argument("--style", choices=("records", "servers"), default="records")
    export_cmd.add_argument("--format", choices=transfer.FORMATS, help="Output format (default: from extension)")
    export_cmd.add_argument("--output", help="Write to file instead of stdout")
    export_cmd.set_defaults(func=_tracked("mcp", _export_cmd, "export"))

    status_cmd = sub.add_parser("status", help="Show store counters and last save/backup errors")
    status_cmd.add_argument("--json", action="store_true", help="Emit machine-readable JSON output")
    status_cmd.set_defaults(func=_tracked("mcp", _status_cmd, "status"))

    profile_cmd = sub.add_parser("profile", help="Manage profiles")
    profile_sub = profile_cmd.add_subparsers(dest="profile_command", required=True)
    profile_list = profile_sub.add_parser("list", help="List profiles")
    profile_list.add_argument("--json", action="store_true")
    profile_create = profile_sub.add_parser("create", help="Create a profile")
    profile_create.add_argument("name")
    profile_create.add_argument("--description")
    profile_create.add_argument("--member", dest="members", action="append", help="Server name or id (repeatable)")
    profile_create.add_argument("--default", action="store_true", help="Mark as the default profile")
    profile_create.add_argument("--json", action="store_true")
    profile_import = profile_sub.add_parser("import", help="Import a profile bundle")
    profile_import.add_argument("file")
    profile_import.add_argument("--format", choices=transfer.FORMATS)
    profile_import.add_argument("--allow-duplicate", action="store_true")
    profile_import.add_argument("--json", action="store_true")
    for name, help_text in (
        ("remove", "Delete a profile (servers are kept)"),
        ("activate", "Enable exactly the profile's servers"),
        ("capture", "Store currently enabled servers in the profile"),
    ):
        parser_ = profile_sub.add_parser(name, help=help_text)
        parser_.add_argument("profile", help="Profile name or id")
        parser_.add_argument("--json", action="store_true")
    for name, help_text in (("add", "Add a server to a profile"), ("drop", "Remove a server from a profile")):
        parser_ = profile_sub.add_parser(name, help=help_text)
        parser_.add_argument("profile", help="Profile name or id")
        parser_.add_argument("mcp", help="Server name or id")
        parser_.add_argument("--json", action="store_true")
    profile_export = profile_sub.add_parser("export", help="Export a profile bundle")
    profile_export.add_argument("profile", help="Profile name or id")
    profile_export.add_argument("--format", choices=transfer.FORMATS)
    profile_export.add_argument("--output")
    profile_cmd.set_defaults(func=_tracked("profile", _profile_cmd))

    backup_cmd = sub.add_parser("backup", help="Manage backups")
    backup_sub = backup_cmd.add_subparsers(dest="backup_command", required=True)
    backup_list = backup_sub.add_parser("list", help="List backups, newest first")
    backup_list.add_argument("--json", action="store_true")
    backup_create = backup_sub.add_parser("create", help="Snapshot the current store")
    backup_create.add_argument("--label", default="Manual backup")
    backup_create.add_argument("--json", action="store_true")
    for name, help_text in (("restore", "Replace the store with a backup"), ("remove", "Delete a backup")):
        parser_ = backup_sub.add_parser(name, help=help_text)
        parser_.add_argument("backup_id")
        parser_.add_argument("--json", action="store_true")
    backup_cmd.set_defaults(func=_tracked("backup", _backup_cmd))

    telemetry_cmd = sub.add_parser("telemetry", help="Inspect the local event log")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("summary", help="Summarise recorded events")
    telemetry_sub.add_parser("clear", help="Delete recorded events")
    telemetry_cmd.set_defaults(func=_telemetry_cmd)

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
