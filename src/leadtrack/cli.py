from __future__ import annotations

import json
import shutil
from dataclasses import asdict
from pathlib import Path
from uuid import uuid4

import typer

from leadtrack import __version__
from leadtrack.config import (
    WorkspaceConfig,
    WorkspaceError,
    ensure_workspaces_dir,
    load_workspace,
    set_current_workspace,
    workspace_config_path,
    write_workspace_config,
)
from leadtrack.domain import rules
from leadtrack.domain.access import AccessDeniedError
from leadtrack.domain.lifecycle import InteractionRequest, LifecycleResult
from leadtrack.domain.models import Profile
from leadtrack.domain.rules import ValidationError
from leadtrack.domain.session import AuthEvent, SessionError, apply_auth_event, require_authenticated
from leadtrack.domain.stages import ClientStatus, FollowUpResolution, InteractionType, Role
from leadtrack.services import analytics, clients, exports, interactions, profiles
from leadtrack.services.clients import ClientNotFoundError
from leadtrack.services.events import EventLogger
from leadtrack.services.profiles import ProfileNotFoundError
from leadtrack.services.session_state import load_session, save_session
from leadtrack.services.utils import utc_now
from leadtrack.store.migrations import SchemaError
from leadtrack.store.sqlite import SqliteStore

app = typer.Typer(help="Leadtrack CLI")
workspace_app = typer.Typer(help="Workspace management")
schema_app = typer.Typer(help="Schema operations")
user_app = typer.Typer(help="User profiles")
client_app = typer.Typer(help="Client operations")
interaction_app = typer.Typer(help="Client interactions and follow-ups")
dashboard_app = typer.Typer(help="Dashboards and analytics")
export_app = typer.Typer(help="Exports")

app.add_typer(workspace_app, name="workspace")
app.add_typer(schema_app, name="schema")
app.add_typer(user_app, name="user")
app.add_typer(client_app, name="client")
app.add_typer(interaction_app, name="interaction")
app.add_typer(dashboard_app, name="dashboard")
app.add_typer(export_app, name="export")

SCHEMA_PATH = Path("resources/schema/canonical.yaml")

KNOWN_ERRORS = (
    ValidationError,
    AccessDeniedError,
    ClientNotFoundError,
    ProfileNotFoundError,
    SessionError,
)


@app.callback()
def version_callback(version: bool = typer.Option(False, "--version", help="Show version and exit.")):
    if version:
        typer.echo(__version__)
        raise typer.Exit()


@app.command("init")
def init() -> None:
    """Initialize directories for workspaces and outputs."""
    ensure_workspaces_dir()
    Path("data").mkdir(exist_ok=True)
    Path("exports").mkdir(exist_ok=True)
    typer.echo("Initialized leadtrack directories.")


@workspace_app.command("add")
def workspace_add(
    name: str = typer.Argument(...),
    use: bool = typer.Option(True, "--use/--no-use", help="Set as current workspace."),
    force: bool = typer.Option(
        False, "--force", help="Overwrite existing workspace config if it exists."
    ),
) -> None:
    config_path = workspace_config_path(name)
    if config_path.exists() and not force:
        raise typer.BadParameter(
            f"Workspace already exists: {config_path}. Use --force to overwrite."
        )
    config_path = write_workspace_config(name)
    if use:
        set_current_workspace(name)
    typer.echo(f"Workspace created: {config_path}")


@workspace_app.command("use")
def workspace_use(name: str = typer.Argument(...)) -> None:
    if not workspace_config_path(name).exists():
        raise typer.BadParameter(f"Workspace config not found: {workspace_config_path(name)}")
    set_current_workspace(name)
    typer.echo(f"Active workspace: {name}")


@schema_app.command("apply")
def schema_apply() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        store.apply_schema(SCHEMA_PATH)
    except (SchemaError, FileNotFoundError) as exc:
        _exit_with_error(str(exc))
    typer.echo("Applied schema to local SQLite.")


@user_app.command("add")
def user_add(
    name: str = typer.Argument(...),
    email: str | None = typer.Option(None, "--email"),
    role: str = typer.Option(Role.BROKER.value, "--role", help="broker, manager or admin"),
) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        profile = profiles.create_profile(
            store, name=name, email=email, role=role, events=_event_logger(ws)
        )
    except ValidationError as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created {profile.role.value}: {profile.user_id}")


@user_app.command("list")
def user_list(role: str | None = typer.Option(None, "--role")) -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        rows = profiles.list_profiles(store, role)
    except ValidationError as exc:
        _exit_with_error(str(exc))
    for profile in rows:
        typer.echo(f"{profile.user_id} | {profile.name} | {profile.email or '-'} | {profile.role.value}")


@app.command("login")
def login(
    user: str = typer.Argument(..., help="User id or email."),
    create: bool = typer.Option(
        False, "--create", help="Create a broker profile on first sign-in."
    ),
    name: str | None = typer.Option(None, "--name", help="Name for a created profile."),
) -> None:
    """Sign in as an existing profile."""
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    session = load_session(ws.path, store)
    profile = profiles.find_profile(store, user)
    if profile is None and create:
        if "@" not in user:
            _exit_with_error("--create needs an email address.")
        try:
            profile = profiles.ensure_profile(
                store, str(uuid4()), email=user, name=name, events=_event_logger(ws)
            )
        except ValidationError as exc:
            _exit_with_error(str(exc))
    session = apply_auth_event(session, AuthEvent.SIGNED_IN, profile)
    save_session(ws.path, session)
    if profile is None:
        _exit_with_error(f"Profile not found: {user}")
    typer.echo(f"Signed in as {profile.name} ({profile.role.value}).")


@app.command("logout")
def logout() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    session = apply_auth_event(load_session(ws.path, store), AuthEvent.SIGNED_OUT)
    save_session(ws.path, session)
    typer.echo("Signed out.")


@app.command("whoami")
def whoami() -> None:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    session = load_session(ws.path, store)
    if session.profile is None:
        typer.echo(session.status.value)
        return
    typer.echo(f"{session.profile.name} | {session.profile.role.value} | {session.profile.user_id}")


@client_app.command("add")
def client_add(
    name: str = typer.Argument(...),
    phone: str = typer.Option(..., "--phone"),
    source: str = typer.Option(..., "--source"),
    email: str | None = typer.Option(None, "--email"),
    status: str = typer.Option(ClientStatus.FIRST_CONTACT.value, "--status"),
    product: str | None = typer.Option(None, "--product"),
    value: str | None = typer.Option(None, "--value", help="Property value, e.g. 'R$ 450.000,00'."),
    observations: str | None = typer.Option(None, "--observations"),
    owner: str | None = typer.Option(None, "--owner", help="Owner user id (managers only)."),
) -> None:
    ws, store, actor = _context()
    try:
        client = clients.create_client(
            store,
            actor,
            name=name,
            phone=phone,
            source=source,
            email=email,
            status=status,
            observations=observations,
            product=product,
            property_value=value,
            owner_id=owner,
            events=_event_logger(ws),
        )
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Created client: {client.client_id}")


@client_app.command("list")
def client_list(
    q: str | None = typer.Option(None, "--q", help="Search name, phone or source."),
    status: str | None = typer.Option(None, "--status"),
    broker: str | None = typer.Option(None, "--broker", help="Owner filter (managers only)."),
) -> None:
    _, store, actor = _context()
    try:
        rows = clients.list_clients(store, actor, q=q, status=status, broker_id=broker)
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    if not rows:
        typer.echo("No clients found.")
        return
    for row in rows:
        due = row.follow_up_due.isoformat() if row.follow_up_due else "-"
        typer.echo(
            f"{row.client.client_id} | {row.client.name} | {row.client.phone} | {row.client.source} | "
            f"{row.client.status.value} | {row.follow_up_state.value} | {due}"
        )


@client_app.command("show")
def client_show(client_id: str = typer.Argument(...)) -> None:
    _, store, actor = _context()
    try:
        overview = clients.get_overview(store, actor, client_id)
        timeline = interactions.list_interactions(store, actor, client_id)
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    client = overview.client
    owner = clients.resolve_owner(store, client.owner_id)
    typer.echo(f"{client.name} ({client.client_id})")
    typer.echo(f"Phone: {client.phone} | Email: {client.email or '-'} | Source: {client.source}")
    typer.echo(f"Owner: {owner.name if owner else client.owner_id or '-'}")
    typer.echo(f"Status: {client.status.value} | Follow-up: {overview.follow_up_state.value}")
    if overview.follow_up_due:
        typer.echo(f"Next follow-up: {overview.follow_up_due.isoformat()}")
    typer.echo(f"Product: {client.product or '-'} | Value: {client.property_value or '-'}")
    if client.observations:
        typer.echo(f"Observations: {client.observations}")
    typer.echo(f"Interactions: {len(timeline)}")


@client_app.command("update")
def client_update(
    client_id: str = typer.Argument(...),
    name: str | None = typer.Option(None, "--name"),
    phone: str | None = typer.Option(None, "--phone"),
    email: str | None = typer.Option(None, "--email"),
    source: str | None = typer.Option(None, "--source"),
    product: str | None = typer.Option(None, "--product"),
    value: str | None = typer.Option(None, "--value"),
    observations: str | None = typer.Option(None, "--observations"),
    owner: str | None = typer.Option(None, "--owner", help="Reassign owner (managers only)."),
    status: str | None = typer.Option(None, "--status", help="Direct status edit (managers only)."),
) -> None:
    ws, store, actor = _context()
    fields = {
        "name": name,
        "phone": phone,
        "email": email,
        "source": source,
        "product": product,
        "property_value": value,
        "observations": observations,
        "owner_id": owner,
        "status": status,
    }
    fields = {key: val for key, val in fields.items() if val is not None}
    if not fields:
        raise typer.BadParameter("Nothing to update.")
    try:
        clients.update_client(store, actor, client_id, fields, events=_event_logger(ws))
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Updated client: {client_id}")


@client_app.command("archive")
def client_archive(
    client_id: str = typer.Argument(...),
    text: str = typer.Option("", "--text"),
) -> None:
    ws, store, actor = _context()
    try:
        clients.archive_client(store, actor, client_id, observation=text, events=_event_logger(ws))
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Archived client: {client_id}")


@client_app.command("delete")
def client_delete(
    client_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation."),
) -> None:
    ws, store, actor = _context()
    if not yes:
        typer.confirm(f"Delete client {client_id} and all its interactions?", abort=True)
    try:
        clients.delete_client(store, actor, client_id, events=_event_logger(ws))
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    typer.echo(f"Deleted client: {client_id}")


@interaction_app.command("note")
def interaction_note(
    client_id: str = typer.Argument(...),
    text: str = typer.Option(..., "--text"),
    complete_follow_up: bool = typer.Option(
        False, "--complete-follow-up", help="Also complete the pending follow-up."
    ),
) -> None:
    _record(
        client_id,
        InteractionRequest(
            type=InteractionType.NOTE, observation=text, complete_follow_up=complete_follow_up
        ),
    )


@interaction_app.command("call")
def interaction_call(
    client_id: str = typer.Argument(...),
    outcome: str = typer.Option(..., "--outcome", help="connected or not_connected"),
    text: str = typer.Option("", "--text"),
    complete_follow_up: bool = typer.Option(
        False, "--complete-follow-up", help="Also complete the pending follow-up."
    ),
) -> None:
    _record(
        client_id,
        InteractionRequest(
            type=InteractionType.LOGGED_CALL,
            observation=text,
            call_outcome=outcome,
            complete_follow_up=complete_follow_up,
        ),
    )


@interaction_app.command("status")
def interaction_status(
    client_id: str = typer.Argument(...),
    target: str = typer.Argument(..., help="New pipeline status."),
    text: str = typer.Option("", "--text"),
    complete_follow_up: bool = typer.Option(
        False, "--complete-follow-up", help="Also complete the pending follow-up."
    ),
) -> None:
    _record(
        client_id,
        InteractionRequest(
            type=InteractionType.STATUS_CHANGE,
            observation=text,
            target_status=target,
            complete_follow_up=complete_follow_up,
        ),
    )


@interaction_app.command("schedule")
def interaction_schedule(
    client_id: str = typer.Argument(...),
    at: str = typer.Option(..., "--at", help="ISO 8601 date and time, e.g. 2026-11-03T14:30:00Z."),
) -> None:
    _record(client_id, InteractionRequest(type=InteractionType.FOLLOW_UP_SCHEDULED, observation=at))


@interaction_app.command("complete")
def interaction_complete(
    client_id: str = typer.Argument(...), text: str = typer.Option("", "--text")
) -> None:
    _record(client_id, InteractionRequest(type=InteractionType.FOLLOW_UP_COMPLETED, observation=text))


@interaction_app.command("cancel")
def interaction_cancel(
    client_id: str = typer.Argument(...), text: str = typer.Option("", "--text")
) -> None:
    _record(client_id, InteractionRequest(type=InteractionType.FOLLOW_UP_CANCELED, observation=text))


@interaction_app.command("lost")
def interaction_lost(
    client_id: str = typer.Argument(...), text: str = typer.Option("", "--text")
) -> None:
    _record(client_id, InteractionRequest(type=InteractionType.FOLLOW_UP_LOST, observation=text))


@interaction_app.command("reschedule")
def interaction_reschedule(
    client_id: str = typer.Argument(...),
    at: str = typer.Option(..., "--at", help="ISO 8601 date and time of the new follow-up."),
    resolution: str = typer.Option(
        FollowUpResolution.COMPLETE.value,
        "--resolution",
        help="How to resolve the pending follow-up: complete, cancel or lost.",
    ),
) -> None:
    ws, store, actor = _context()
    try:
        result = interactions.reschedule_follow_up(
            store, actor, client_id, resolution, at, events=_event_logger(ws)
        )
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    _echo_result(result)


@interaction_app.command("timeline")
def interaction_timeline(client_id: str = typer.Argument(...)) -> None:
    _, store, actor = _context()
    try:
        rows = interactions.list_interactions(store, actor, client_id)
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    if not rows:
        typer.echo("No interactions yet.")
        return
    for item in rows:
        flag = " (substituted)" if item.substituted else ""
        typer.echo(
            f"{item.created_at.isoformat()} | {item.type.value}{flag} | {item.observation}"
        )


@dashboard_app.command("kpis")
def dashboard_kpis(
    broker: str | None = typer.Option(None, "--broker"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
) -> None:
    _, store, actor = _context()
    kpis = analytics.broker_kpis(store, actor, broker_id=broker)
    if json_output:
        typer.echo(json.dumps(asdict(kpis), indent=2))
        return
    typer.echo(f"In progress: {kpis.in_progress}")
    typer.echo(f"First contact: {kpis.first_contact}")
    typer.echo(f"Total leads: {kpis.total}")
    typer.echo(f"Delayed follow-ups: {kpis.delayed}")


@dashboard_app.command("funnel")
def dashboard_funnel(
    start: str = typer.Option(..., "--start", help="YYYY-MM-DD"),
    end: str = typer.Option(..., "--end", help="YYYY-MM-DD"),
    broker: str | None = typer.Option(None, "--broker"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
) -> None:
    _, store, actor = _context()
    try:
        report = analytics.funnel(
            store,
            actor,
            rules.parse_date(start, "start"),
            rules.parse_date(end, "end"),
            broker_id=broker,
        )
    except ValidationError as exc:
        _exit_with_error(str(exc))
    if json_output:
        typer.echo(json.dumps(asdict(report), indent=2))
        return
    for stage in report.stages:
        typer.echo(f"{stage.stage}: {stage.count}")
    for key, rate in report.conversion_rates.items():
        typer.echo(f"{key}: {'-' if rate is None else f'{rate:.1%}'}")


@dashboard_app.command("productivity")
def dashboard_productivity(
    start: str = typer.Option(..., "--start", help="YYYY-MM-DD"),
    end: str = typer.Option(..., "--end", help="YYYY-MM-DD"),
    broker: str | None = typer.Option(None, "--broker"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON output."),
) -> None:
    _, store, actor = _context()
    try:
        report = analytics.productivity(
            store,
            actor,
            rules.parse_date(start, "start"),
            rules.parse_date(end, "end"),
            broker_id=broker,
        )
    except ValidationError as exc:
        _exit_with_error(str(exc))
    if json_output:
        typer.echo(json.dumps(asdict(report), indent=2))
        return
    kpis = report.kpis
    typer.echo(
        f"Calls: {kpis.calls} (connected {kpis.connected_calls}) | In progress: {kpis.in_progress} | "
        f"Docs: {kpis.docs} | Sales: {kpis.sales}"
    )
    if report.manager:
        typer.echo(f"VGV: {report.manager.vgv:.2f} | Opportunity: {report.manager.opportunity:.2f}")
    for point in report.daily:
        typer.echo(f"{point.day} | calls {point.calls} | notes {point.notes}")
    for title, rows in (("By broker", report.by_broker), ("By source", report.by_source)):
        typer.echo(title)
        for row in rows:
            typer.echo(f"  {row.label} | calls {row.calls} | sales {row.sales}")


@dashboard_app.command("activity")
def dashboard_activity(limit: int = typer.Option(20, "--limit", min=1)) -> None:
    _, store, actor = _context()
    items = analytics.recent_activity(store, actor, limit=limit)
    if not items:
        typer.echo("No activity yet.")
        return
    for item in items:
        typer.echo(f"{item.created_at} | {item.description}")


@export_app.command("excel")
def export_excel(out: str = typer.Option(..., "--out")) -> None:
    _, store, actor = _context()
    counts = exports.export_excel(store, actor, Path(out))
    typer.echo(
        f"Exported {counts['clients']} clients and {counts['interactions']} interactions to {out}"
    )


@app.command("snapshot")
def snapshot() -> None:
    ws, store, actor = _context()
    snapshot_dir = Path("data") / "snapshots" / utc_now().strftime("%Y%m%d%H%M%S")
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    if ws.store.sqlite_path.exists():
        shutil.copy2(ws.store.sqlite_path, snapshot_dir / "local.sqlite")
    exports.export_excel(store, actor, snapshot_dir / "leadtrack.xlsx")
    typer.echo(f"Snapshot created at {snapshot_dir}")


def _record(client_id: str, request: InteractionRequest) -> None:
    ws, store, actor = _context()
    try:
        result = interactions.record_interaction(
            store, actor, client_id, request, events=_event_logger(ws)
        )
    except KNOWN_ERRORS as exc:
        _exit_with_error(str(exc))
    _echo_result(result)


def _echo_result(result: LifecycleResult) -> None:
    for item in result.interactions:
        typer.echo(f"Logged {item.type.value}: {item.interaction_id}")
    typer.echo(
        f"Status: {result.client.status.value} | Follow-up: {result.client.follow_up_state.value}"
    )


def _context() -> tuple[WorkspaceConfig, SqliteStore, Profile]:
    ws = _load_workspace()
    store = SqliteStore(ws.store.sqlite_path)
    try:
        actor = require_authenticated(load_session(ws.path, store))
    except SessionError as exc:
        _exit_with_error(str(exc))
    return ws, store, actor


def _load_workspace() -> WorkspaceConfig:
    try:
        return load_workspace()
    except WorkspaceError as exc:
        typer.echo(str(exc))
        raise typer.Exit(code=1) from exc


def _exit_with_error(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code=1)


def _event_logger(ws: WorkspaceConfig) -> EventLogger:
    return EventLogger(path=ws.events.path, workspace=ws.name, enabled=ws.events.enabled)


if __name__ == "__main__":
    app()
