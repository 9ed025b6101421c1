"""
Operator CLI for the LLM provider layer.

Usage:
    memoai providers
    memoai complete "Write a haiku about notes"
    memoai tags "Meeting notes for project Alpha" -t meeting
    memoai config show
"""

import atexit
import json
import os
import sys
from pathlib import Path
from typing import Optional

import tomli_w
import typer
from typing_extensions import Annotated

from .config import (
    ConfigManager,
    default_config_path,
    detect_default_setting,
    load_setting,
    memoai_home,
    redact_setting,
    setting_to_dict,
)
from .context import Context
from .crypto import generate_key_id, mask_api_key, validate_api_key_format
from .errors import InvalidAPIKeyFormatError, LLMError, error_kind, user_message
from .logging_config import configure_ops_log, configure_quiet_mode, enable_debug_mode
from .providers.ollama import OllamaProvider
from .service import LLMService
from .tag_service import TagService, TagServiceConfig
from .types import CompletionRequest, Message, ProviderType, Role, SummarizeRequest

# Overall bound for a single CLI command's backend calls
COMMAND_TIMEOUT = 120.0

if os.environ.get("MEMOAI_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


app = typer.Typer(
    name="memoai",
    help="LLM providers for memo tagging and summarization.",
    no_args_is_help=True,
    rich_markup_mode=None,
)

config_app = typer.Typer(
    name="config",
    help="Inspect LLM settings.",
    rich_markup_mode=None,
)
app.add_typer(config_app)


# Global state for CLI options
_json_output = False
_config_override: Optional[Path] = None
_ops_log_handler = None


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _config_callback(value: Optional[Path]):
    global _config_override
    _config_override = value


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    config: Annotated[Optional[Path], typer.Option(
        "--config", "-c",
        envvar="MEMOAI_CONFIG",
        help="Path to the settings TOML file",
        callback=_config_callback,
        is_eager=True,
    )] = None,
):
    """LLM providers for memo tagging and summarization."""


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def _config_path() -> Path:
    return _config_override if _config_override is not None else default_config_path()


def _load_setting():
    """Settings from the config file, or detected from the environment."""
    try:
        setting = load_setting(_config_path())
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    return setting if setting is not None else detect_default_setting()


def _get_service(ctx: Context) -> LLMService:
    global _ops_log_handler
    if _ops_log_handler is None:
        _ops_log_handler = configure_ops_log(memoai_home())
    service = LLMService()
    atexit.register(service.close)
    ConfigManager(service).load_from_setting(ctx, _load_setting())
    return service


def _fail(e: LLMError):
    """Print guidance for an LLM failure and exit."""
    typer.echo(f"Error: {user_message(e)}", err=True)
    if error_kind(e) == "error" or _json_output:
        typer.echo(f"  {e}", err=True)
    raise typer.Exit(1)


def _read_content(content: str) -> str:
    """Treat "-" as "read from stdin"."""
    if content == "-":
        return sys.stdin.read()
    return content


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

@app.command()
def providers():
    """List registered providers and which one is active."""
    ctx = Context(timeout=COMMAND_TIMEOUT)
    statuses = _get_service(ctx).list_providers()

    if _json_output:
        typer.echo(json.dumps([
            {
                "type": str(s.type),
                "name": s.name,
                "configured": s.configured,
                "active": s.active,
                "default_model": s.default_model,
            }
            for s in statuses
        ], indent=2))
        return

    if not statuses:
        typer.echo("No providers registered.")
        return
    for s in statuses:
        marker = "*" if s.active else " "
        state = "configured" if s.configured else "not configured"
        typer.echo(f"{marker} {s.type:<10} {s.name:<15} {s.default_model:<28} {state}")


@app.command()
def models(
    provider: Annotated[Optional[ProviderType], typer.Option(
        "--provider", "-p",
        help="Provider to query (default: the active one)",
    )] = None,
):
    """List models available from a provider."""
    ctx = Context(timeout=COMMAND_TIMEOUT)
    service = _get_service(ctx)
    try:
        target = service.get_provider_by_type(provider) if provider else service.get_provider()
        if target is None:
            typer.echo("Error: No active provider. Configure one in settings.", err=True)
            raise typer.Exit(1)
        names = target.get_available_models(ctx)
    except LLMError as e:
        _fail(e)

    if _json_output:
        typer.echo(json.dumps(names))
    else:
        for name in names:
            typer.echo(name)


@app.command()
def health():
    """Check that each configured provider answers."""
    ctx = Context(timeout=COMMAND_TIMEOUT)
    service = _get_service(ctx)
    failed = False

    for status in service.list_providers():
        if not status.configured:
            typer.echo(f"{status.type}: not configured")
            continue
        provider = service.get_provider_by_type(status.type)
        try:
            if isinstance(provider, OllamaProvider):
                version = provider.check_health(ctx)
                typer.echo(f"{status.type}: ok (version {version})")
            else:
                count = len(provider.get_available_models(ctx))
                typer.echo(f"{status.type}: ok ({count} models)")
        except LLMError as e:
            failed = True
            typer.echo(f"{status.type}: {error_kind(e)} ({e})")

    if failed:
        raise typer.Exit(1)


@app.command()
def complete(
    prompt: Annotated[str, typer.Argument(help="Prompt text, or - for stdin")],
    system: Annotated[Optional[str], typer.Option(
        "--system", "-s",
        help="System prompt",
    )] = None,
    model: Annotated[str, typer.Option(
        "--model", "-m",
        help="Model override",
    )] = "",
    max_tokens: Annotated[int, typer.Option(
        "--max-tokens",
        help="Maximum tokens to generate",
    )] = 0,
):
    """Run a single chat completion on the active provider."""
    ctx = Context(timeout=COMMAND_TIMEOUT)
    service = _get_service(ctx)

    messages = []
    if system:
        messages.append(Message(Role.SYSTEM, system))
    messages.append(Message(Role.USER, _read_content(prompt)))

    try:
        resp = service.complete(ctx, CompletionRequest(messages=messages, model=model,
                                                       max_tokens=max_tokens))
    except LLMError as e:
        _fail(e)

    if _json_output:
        usage = resp.usage
        typer.echo(json.dumps({
            "content": resp.content,
            "model": resp.model,
            "finish_reason": resp.finish_reason,
            "usage": usage.__dict__ if usage else None,
        }, indent=2))
    else:
        typer.echo(resp.content)


@app.command()
def tags(
    content: Annotated[str, typer.Argument(help="Memo content, or - for stdin")],
    existing: Annotated[Optional[list[str]], typer.Option(
        "--tag", "-t",
        help="Existing tag to prefer (repeatable)",
    )] = None,
    max_tags: Annotated[int, typer.Option(
        "--max", "-n",
        help="Maximum tags to suggest",
    )] = 5,
):
    """Suggest tags for memo content."""
    ctx = Context(timeout=COMMAND_TIMEOUT)
    tag_service = TagService(
        _get_service(ctx),
        TagServiceConfig(max_tags_per_request=max_tags, enable_async=False),
    )
    try:
        resp = tag_service.suggest_tags(ctx, 0, _read_content(content), existing or [])
    except LLMError as e:
        _fail(e)
    finally:
        tag_service.stop()

    if _json_output:
        typer.echo(json.dumps(resp.tags))
    else:
        typer.echo(" ".join(f"#{t}" for t in resp.tags))


@app.command()
def summarize(
    content: Annotated[str, typer.Argument(help="Memo content, or - for stdin")],
    style: Annotated[str, typer.Option(
        "--style",
        help="Summary style: brief, detailed or bullet",
    )] = "brief",
    max_length: Annotated[int, typer.Option(
        "--max-length",
        help="Character budget for the summary",
    )] = 200,
):
    """Summarize memo content."""
    ctx = Context(timeout=COMMAND_TIMEOUT)
    service = _get_service(ctx)
    try:
        resp = service.summarize(ctx, SummarizeRequest(
            content=_read_content(content), max_length=max_length, style=style,
        ))
    except LLMError as e:
        _fail(e)

    if _json_output:
        typer.echo(json.dumps({"summary": resp.summary, "key_points": resp.key_points}, indent=2))
    else:
        typer.echo(resp.summary)


@app.command()
def mask(
    key: Annotated[str, typer.Argument(help="API key to mask")],
    provider: Annotated[Optional[ProviderType], typer.Option(
        "--provider", "-p",
        help="Also check the key format for this provider",
    )] = None,
):
    """Show the masked form and id of an API key."""
    if provider is not None:
        try:
            validate_api_key_format(provider, key)
        except InvalidAPIKeyFormatError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
    typer.echo(f"{mask_api_key(key)}  (id {generate_key_id(key)})")


@config_app.command("show")
def config_show():
    """Print the current settings with API keys masked."""
    path = _config_path()
    setting = _load_setting()
    if _json_output:
        typer.echo(json.dumps(setting_to_dict(redact_setting(setting)), indent=2))
        return
    source = str(path) if path.exists() else "(detected from environment)"
    typer.echo(f"# {source}")
    typer.echo(tomli_w.dumps(setting_to_dict(redact_setting(setting))), nl=False)


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="memoai CLI")
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
