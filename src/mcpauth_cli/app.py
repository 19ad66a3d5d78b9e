from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable

import click
import typer
from typer.core import TyperGroup

from . import auth as auth_mod
from .util.logging import configure_logging, parse_log_specs

APP_LOGGER = logging.getLogger("mcpauth.app")

GLOBAL_BOOL_FLAGS = {"--log-stderr"}
GLOBAL_OPTS_WITH_VALUE = {"--log", "--log-file", "--config"}
KNOWN_OPTS_WITH_VALUE = {
    *GLOBAL_OPTS_WITH_VALUE,
    "-o",
    "--out-key-ref",
    "--timeout",
}

ROOT_COMMAND_ORDER = {
    "auth": 0,
    "server": 1,
}


@dataclass(slots=True)
class Runtime:
    enabled_logs: dict[str, int]
    log_stderr: bool
    log_file: str | None
    config_path: str | None


class RootHelpOrderGroup(TyperGroup):
    def list_commands(self, ctx: click.Context) -> list[str]:
        names = list(super().list_commands(ctx))
        return sorted(
            names, key=lambda name: (ROOT_COMMAND_ORDER.get(name, 1000), name)
        )


def _json_dump(value: dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def emit_success(result: Any | None = None) -> None:
    payload: dict[str, Any] = {"ok": True}
    if result is not None:
        payload["result"] = result
    typer.echo(_json_dump(payload))


def emit_error(message: str, *, exit_code: int = 1) -> None:
    typer.echo(_json_dump({"ok": False, "error": str(message)}))
    raise typer.Exit(code=exit_code)


def _run_json_command(fn: Callable[[], Any]) -> None:
    try:
        result = fn()
    except typer.Exit:
        raise
    except ValueError as exc:
        APP_LOGGER.info("command failed: %s: %s", type(exc).__name__, exc)
        emit_error(str(exc) or "invalid input")
    except Exception:
        APP_LOGGER.exception("Unhandled exception")
        emit_error("internal error")
    emit_success(result)


def _runtime(ctx: typer.Context) -> Runtime:
    runtime = ctx.find_root().obj
    if not isinstance(runtime, Runtime):
        raise RuntimeError("runtime not initialized")
    return runtime


def normalize_cli_argv(argv: list[str]) -> list[str]:
    """Allow global options (`--log`, `--log-stderr`, `--log-file`, `--config`)
    after the subcommand.

    Click only accepts root options before the first subcommand, so the known
    globals are hoisted to the front, keeping the relative order of both the
    hoisted and the remaining tokens. Scanning stops at `--`.
    """

    if not argv:
        return argv

    hoisted: list[str] = []
    rest: list[str] = []
    i = 0
    while i < len(argv):
        token = argv[i]
        if token == "--":
            rest.extend(argv[i:])
            break

        name, sep, _value = token.partition("=")

        if name in GLOBAL_BOOL_FLAGS and sep == "":
            hoisted.append(token)
            i += 1
            continue

        if name in GLOBAL_OPTS_WITH_VALUE and sep == "=":
            hoisted.append(token)
            i += 1
            continue

        if token in GLOBAL_OPTS_WITH_VALUE:
            if i + 1 < len(argv):
                hoisted.extend([token, argv[i + 1]])
                i += 2
                continue
            # Leave the usage error to Click.
            rest.append(token)
            i += 1
            continue

        if token in KNOWN_OPTS_WITH_VALUE and i + 1 < len(argv):
            rest.extend([token, argv[i + 1]])
            i += 2
            continue

        rest.append(token)
        i += 1

    if not hoisted:
        return argv
    return [*hoisted, *rest]


app = typer.Typer(
    cls=RootHelpOrderGroup,
    no_args_is_help=True,
    add_completion=False,
    pretty_exceptions_enable=False,
    help="OAuth browser login for remote MCP servers.",
)
auth_app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    pretty_exceptions_enable=False,
    help="Authorization commands.",
)
server_app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    pretty_exceptions_enable=False,
    help="Configured MCP servers.",
)
app.add_typer(auth_app, name="auth")
app.add_typer(server_app, name="server")


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_specs: list[str] | None = typer.Option(
        None,
        "--log",
        help="Enable logs by domain (`app`, `auth`, `all`) optionally with `:LEVEL`.",
    ),
    log_stderr: bool = typer.Option(
        False,
        "--log-stderr",
        help="Emit enabled logs to stderr.",
    ),
    log_file: str | None = typer.Option(
        None,
        "--log-file",
        help="Write enabled logs to this file.",
        metavar="PATH",
    ),
    config_path: str | None = typer.Option(
        None,
        "--config",
        help="Server config file (default: $MCPAUTH_MCP_JSON, ./mcp.json, app dir).",
        metavar="PATH",
    ),
) -> None:
    try:
        enabled_logs = parse_log_specs(log_specs or [])
        configure_logging(
            enabled=enabled_logs, log_stderr=log_stderr, log_file=log_file
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    ctx.obj = Runtime(
        enabled_logs=enabled_logs,
        log_stderr=log_stderr,
        log_file=log_file,
        config_path=config_path,
    )
    APP_LOGGER.debug("runtime initialized")


@server_app.command("list", help="List configured servers and their auth status.")
def server_list(ctx: typer.Context) -> None:
    runtime = _runtime(ctx)
    _run_json_command(lambda: auth_mod.list_servers(config_path=runtime.config_path))


@auth_app.command("start", help="Start a browser login and wait for the redirect.")
def auth_start(
    ctx: typer.Context,
    server: str = typer.Argument(..., metavar="SERVER"),
    timeout_s: float = typer.Option(
        auth_mod.DEFAULT_CALLBACK_TIMEOUT_S,
        "--timeout",
        min=1.0,
        help="Seconds to wait for the browser redirect.",
    ),
    wait: bool = typer.Option(
        True,
        "--wait/--no-wait",
        help="Wait on the loopback listener (default) or return the pending flow.",
    ),
    open_browser: bool = typer.Option(
        False, "--open", help="Open the authorization URL in the browser."
    ),
    out_key_ref: str | None = typer.Option(
        None, "-o", "--out-key-ref", metavar="KEY_REF"
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace KEY_REF."),
) -> None:
    runtime = _runtime(ctx)
    _run_json_command(
        lambda: auth_mod.start_auth(
            server_query=server,
            config_path=runtime.config_path,
            wait=wait,
            timeout_s=timeout_s,
            open_browser=open_browser,
            out_key_ref=out_key_ref,
            overwrite=overwrite,
        )
    )


@auth_app.command("wait", help="Listen again on the pending flow's redirect URI.")
def auth_wait(
    ctx: typer.Context,
    server: str = typer.Argument(..., metavar="SERVER"),
    timeout_s: float = typer.Option(
        auth_mod.DEFAULT_CALLBACK_TIMEOUT_S,
        "--timeout",
        min=1.0,
        help="Seconds to wait for the browser redirect.",
    ),
    out_key_ref: str | None = typer.Option(
        None, "-o", "--out-key-ref", metavar="KEY_REF"
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace KEY_REF."),
) -> None:
    runtime = _runtime(ctx)
    _run_json_command(
        lambda: auth_mod.wait_auth(
            server_query=server,
            config_path=runtime.config_path,
            timeout_s=timeout_s,
            out_key_ref=out_key_ref,
            overwrite=overwrite,
        )
    )


@auth_app.command(
    "code", help="Finish a pending flow with the pasted redirect URL or code."
)
def auth_code(
    ctx: typer.Context,
    server: str = typer.Argument(..., metavar="SERVER"),
    url_or_code: str = typer.Argument(..., metavar="URL_OR_CODE"),
    out_key_ref: str | None = typer.Option(
        None, "-o", "--out-key-ref", metavar="KEY_REF"
    ),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace KEY_REF."),
) -> None:
    runtime = _runtime(ctx)
    _run_json_command(
        lambda: auth_mod.complete_auth_code(
            server_query=server,
            config_path=runtime.config_path,
            url_or_code=url_or_code,
            out_key_ref=out_key_ref,
            overwrite=overwrite,
        )
    )


def main() -> None:
    normalized = normalize_cli_argv(sys.argv[1:])
    if normalized != sys.argv[1:]:
        sys.argv = [sys.argv[0], *normalized]
    app()
