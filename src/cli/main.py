"""Chat router CLI.

Operator entry point for the database, the HTTP server, offline
classification and routing, and the periodic maintenance jobs.

Usage:
    chatrouter init-db                    Create database tables
    chatrouter serve                      Start the HTTP API
    chatrouter classify "restart nginx"   Show the intent for a message
    chatrouter route --tenant t1 ...      Route one message in-process
    chatrouter expire-confirmations       Expire overdue confirmations
    chatrouter relay-outbox               Deliver pending dispatch messages
    chatrouter batch create ...           Manage script batches
    chatrouter policy add ...             Manage command policies
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from src.cli.output import format_classification, format_relay_stats, format_router_result
from src.config import ChatRouterConfig, load_config
from src.errors import DomainError, RouterError

app = typer.Typer(
    name="chatrouter",
    help="Conversational command router for managed agents",
    no_args_is_help=True,
)
batch_app = typer.Typer(help="Manage script batches")
policy_app = typer.Typer(help="Manage command policies")

app.add_typer(batch_app, name="batch")
app.add_typer(policy_app, name="policy")

console = Console()

# --- Global state ---
_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to chatrouter.yaml config file"
    ),
):
    """Chat router: classify, gate and dispatch chat commands."""
    global _config_path
    _config_path = config


def _load() -> ChatRouterConfig:
    try:
        return load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e


def _fail(error: Exception) -> None:
    if isinstance(error, RouterError):
        console.print(f"[red]{error.code}: {error.message}[/red]")
        console.print(f"[dim]{error.remediation}[/dim]")
    else:
        console.print(f"[red]{error}[/red]")
    raise typer.Exit(1) from error


def _parse_json_option(value: str | None, name: str) -> dict | list | None:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        console.print(f"[red]--{name} is not valid JSON: {e}[/red]")
        raise typer.Exit(1) from e


# --- Database / server ---


@app.command("init-db")
def init_db_cmd():
    """Create all database tables."""
    from src.db.connection import get_database_url, init_db

    init_db()
    console.print(f"[green]Database ready:[/green] {get_database_url()}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the HTTP API with uvicorn."""
    import uvicorn

    cfg = _load()
    final_host = host or cfg.daemon.host
    final_port = port or cfg.daemon.port
    console.print(f"Starting chat router on {final_host}:{final_port}")
    uvicorn.run(
        "src.api.main:app",
        host=final_host,
        port=final_port,
        log_level=cfg.daemon.log_level,
        workers=1,
    )


# --- Routing ---


@app.command()
def classify(text: str = typer.Argument(..., help="User message")):
    """Show the intent and extracted inputs for a message."""
    from src.orchestrator import classify as classify_text
    from src.orchestrator import extract_inputs
    from src.orchestrator.intent_catalog import build_intent_catalog

    cfg = _load()
    try:
        catalog = build_intent_catalog(cfg.router.intent_catalog_path)
    except RouterError as e:
        _fail(e)
    intent = classify_text(text, catalog)
    inputs = extract_inputs(text, intent, catalog) if intent else {}
    console.print(format_classification(text, intent, inputs))


@app.command()
def route(
    text: str = typer.Argument(..., help="User message"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant ID"),
    user: str = typer.Option(..., "--user", help="User ID"),
    agent: str = typer.Option(..., "--agent", help="Target agent ID"),
    conversation: str = typer.Option(..., "--conversation", help="Conversation ID"),
    inputs: Optional[str] = typer.Option(None, "--inputs", help="Inputs as a JSON object"),
    request_id: Optional[str] = typer.Option(None, "--request-id", help="Idempotency ID"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Route one message through the pipeline in-process."""
    from src.db.connection import get_db_context
    from src.orchestrator.intent_catalog import build_intent_catalog
    from src.services.chat_router import ChatRouter

    cfg = _load()
    supplied = _parse_json_option(inputs, "inputs")
    try:
        catalog = build_intent_catalog(cfg.router.intent_catalog_path)
        with get_db_context() as db:
            result = ChatRouter(db, catalog, cfg.router).route(
                tenant_id=tenant,
                user_id=user,
                agent_id=agent,
                conversation_id=conversation,
                text=text,
                inputs=supplied,
                request_id=request_id,
            )
    except (RouterError, DomainError) as e:
        _fail(e)
    console.print(format_router_result(result, as_json=as_json), soft_wrap=as_json)
    if result.http_status >= 500:
        raise typer.Exit(1)


@app.command()
def approve(
    confirmation_id: str = typer.Argument(..., help="Confirmation ID"),
    user: str = typer.Option(..., "--user", help="Approving user ID"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Approve a pending confirmation and run the command."""
    from src.db.connection import get_db_context
    from src.orchestrator.intent_catalog import build_intent_catalog
    from src.services.chat_router import ChatRouter

    cfg = _load()
    try:
        catalog = build_intent_catalog(cfg.router.intent_catalog_path)
        with get_db_context() as db:
            result = ChatRouter(db, catalog, cfg.router).resume(confirmation_id, user)
    except (RouterError, DomainError) as e:
        _fail(e)
    console.print(format_router_result(result, as_json=as_json), soft_wrap=as_json)


@app.command()
def deny(
    confirmation_id: str = typer.Argument(..., help="Confirmation ID"),
    user: str = typer.Option(..., "--user", help="Denying user ID"),
    reason: Optional[str] = typer.Option(None, "--reason", help="Rejection reason"),
):
    """Deny a pending confirmation."""
    from src.db.connection import get_db_context
    from src.orchestrator.intent_catalog import build_intent_catalog
    from src.services.chat_router import ChatRouter

    cfg = _load()
    try:
        catalog = build_intent_catalog(cfg.router.intent_catalog_path)
        with get_db_context() as db:
            result = ChatRouter(db, catalog, cfg.router).reject(confirmation_id, user, reason)
    except (RouterError, DomainError) as e:
        _fail(e)
    console.print(format_router_result(result))


# --- Maintenance ---


@app.command("expire-confirmations")
def expire_confirmations():
    """Mark overdue pending confirmations expired."""
    from src.db.connection import get_db_context
    from src.services.confirmation_service import ConfirmationService

    cfg = _load()
    with get_db_context() as db:
        count = ConfirmationService(db, cfg.router.confirmation_ttl_hours).expire_pending()
    console.print(f"Expired {count} confirmation(s).")


@app.command("relay-outbox")
def relay_outbox(
    limit: Optional[int] = typer.Option(None, "--limit", help="Max messages to deliver"),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Deliver pending dispatch messages to the agent channel."""
    from src.db.connection import get_db_context
    from src.services.dispatch_publisher import build_publisher
    from src.services.outbox_relay import OutboxRelay

    cfg = _load()
    publisher = build_publisher(cfg.dispatch)
    try:
        with get_db_context() as db:
            stats = OutboxRelay(db, publisher).drain(limit or cfg.dispatch.relay_batch_size)
    finally:
        close = getattr(publisher, "close", None)
        if close is not None:
            close()
    console.print(format_relay_stats(stats, as_json=as_json), soft_wrap=as_json)


# --- Batch commands ---


@batch_app.command("create")
def batch_create(
    name: str = typer.Argument(..., help="Batch name (matches an intent's batch_name)"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant ID"),
    os_targets: str = typer.Option(..., "--os", help="Comma-separated OS labels"),
    schema: Optional[str] = typer.Option(None, "--schema", help="Inputs JSON Schema"),
    defaults: Optional[str] = typer.Option(None, "--defaults", help="Input defaults JSON"),
    preflight: Optional[str] = typer.Option(None, "--preflight", help="Preflight thresholds JSON"),
    per_agent: int = typer.Option(1, "--per-agent", help="Max active runs per agent"),
    per_tenant: int = typer.Option(10, "--per-tenant", help="Max active runs per tenant"),
):
    """Create a script batch (inactive until a version is activated)."""
    from src.db.connection import get_db_context
    from src.services.batch_service import BatchService

    try:
        with get_db_context() as db:
            batch = BatchService(db).create_batch(
                tenant_id=tenant,
                name=name,
                os_targets=[o.strip() for o in os_targets.split(",") if o.strip()],
                inputs_schema=_parse_json_option(schema, "schema"),
                inputs_defaults=_parse_json_option(defaults, "defaults"),
                preflight=_parse_json_option(preflight, "preflight"),
                per_agent_concurrency=per_agent,
                per_tenant_concurrency=per_tenant,
            )
            console.print(f"[green]Created batch[/green] {batch.id} ({name})")
    except DomainError as e:
        _fail(e)


@batch_app.command("upload")
def batch_upload(
    batch_id: str = typer.Argument(..., help="Batch ID"),
    script: Path = typer.Argument(..., exists=True, dir_okay=False, help="Script file"),
    notes: Optional[str] = typer.Option(None, "--notes", help="Version notes"),
    activate: bool = typer.Option(False, "--activate", help="Activate the new version"),
):
    """Upload a script as a new draft version."""
    from src.db.connection import get_db_context
    from src.services.batch_service import BatchService

    try:
        with get_db_context() as db:
            service = BatchService(db)
            version = service.add_version(
                batch_id, script.read_text(encoding="utf-8"), notes=notes, created_by="cli"
            )
            console.print(
                f"Uploaded version {version.version} (sha256 {version.sha256[:12]})"
            )
            if activate:
                service.activate_version(batch_id, version.version, actor="cli")
                console.print(f"[green]Activated version {version.version}[/green]")
    except DomainError as e:
        _fail(e)


@batch_app.command("activate")
def batch_activate(
    batch_id: str = typer.Argument(..., help="Batch ID"),
    version: int = typer.Argument(..., help="Version number"),
):
    """Activate a draft version, superseding the current one."""
    from src.db.connection import get_db_context
    from src.services.batch_service import BatchService

    try:
        with get_db_context() as db:
            BatchService(db).activate_version(batch_id, version, actor="cli")
    except DomainError as e:
        _fail(e)
    console.print(f"[green]Batch {batch_id} now at version {version}[/green]")


# --- Policy commands ---


@policy_app.command("add")
def policy_add(
    name: str = typer.Argument(..., help="Policy name"),
    tenant: str = typer.Option(..., "--tenant", help="Tenant ID"),
    mode: str = typer.Option(..., "--mode", help="auto, confirm or forbid"),
    match_type: str = typer.Option("exact", "--match-type", help="exact, regex or wildcard"),
    match_value: str = typer.Option(..., "--match", help="Intent label or text pattern"),
    os_whitelist: Optional[str] = typer.Option(None, "--os", help="Comma-separated OS labels"),
    message: Optional[str] = typer.Option(None, "--message", help="Confirmation prompt"),
):
    """Add a command policy for a tenant."""
    from src.db.connection import get_db_context
    from src.services.policy_gate import create_policy

    try:
        with get_db_context() as db:
            policy = create_policy(
                db,
                tenant_id=tenant,
                policy_name=name,
                mode=mode,
                match_type=match_type,
                match_value=match_value,
                os_whitelist=(
                    [o.strip() for o in os_whitelist.split(",") if o.strip()]
                    if os_whitelist
                    else None
                ),
                confirm_message=message,
            )
            console.print(f"[green]Created policy[/green] {policy.id} ({name})")
    except (ValueError, RouterError) as e:
        _fail(e)


if __name__ == "__main__":
    app()
