"""CLI entrypoint for panex."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click
from rich.console import Console
from rich.filesize import decimal
from rich.table import Table

from panex.config.store import SettingsStore
from panex.fs.backend import VirtualFilesystem, select_backend
from panex.fs.errors import FsError
from panex.fs.native import serve_stdio
from panex.pane.pipeline import ViewOptions, apply_pipeline
from panex.paths import settings_path
from panex.runtime_logging import configure_runtime_logging
from panex.version import __version__

T = TypeVar("T")

BACKEND_CHOICE = click.Choice(["auto", "bridge", "sandbox"])


@click.group(invoke_without_command=True, context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--log-level", envvar="PANEX_LOG_LEVEL", help="off, error, warning, info or debug")
@click.option("--log-file", envvar="PANEX_LOG_FILE", type=click.Path(dir_okay=False))
@click.pass_context
def main(ctx: click.Context, log_level: str | None, log_file: str | None) -> None:
    """panex: multi-pane terminal file browser."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level
    ctx.obj["log_file"] = log_file
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@main.command()
@click.argument("path", required=False)
@click.option("--backend", type=BACKEND_CHOICE, help="Filesystem backend to use")
@click.option("--sandbox", "sandbox_root", type=click.Path(file_okay=False, path_type=Path), help="Folder granted to the sandbox backend")
@click.pass_context
def run(ctx: click.Context, path: str | None, backend: str | None, sandbox_root: Path | None) -> None:
    """Open the browser with two panes at PATH (default: home)."""
    from panex.app import PanexApp

    if sandbox_root is not None and backend is None:
        backend = "sandbox"
    start_path = None
    if path and backend != "sandbox":
        start_path = str(Path(path).expanduser().resolve())

    obj = ctx.obj or {}
    try:
        app = PanexApp(
            start_path=start_path,
            backend=backend,  # type: ignore[arg-type]
            sandbox_root=sandbox_root.expanduser().resolve() if sandbox_root else None,
            log_level=obj.get("log_level"),
            log_file=obj.get("log_file"),
        )
    except FsError as exc:
        raise click.ClickException(exc.message) from exc
    app.run()


@main.command("bridge-serve")
@click.pass_context
def bridge_serve(ctx: click.Context) -> None:
    """Serve native filesystem operations as JSON-RPC on stdin/stdout."""
    obj = ctx.obj or {}
    configure_runtime_logging(level=obj.get("log_level"), log_file=obj.get("log_file"))
    asyncio.run(serve_stdio())


def _with_backend(ctx: click.Context, backend: str | None, sandbox_root: Path | None, work: Callable[[VirtualFilesystem], Awaitable[T]]) -> T:
    obj = ctx.obj or {}
    configure_runtime_logging(level=obj.get("log_level"), log_file=obj.get("log_file"))
    settings = SettingsStore().load()
    if backend is not None:
        settings.backend.kind = backend  # type: ignore[assignment]
    if sandbox_root is not None:
        settings.backend.kind = "sandbox"
        settings.backend.sandbox_root = str(sandbox_root.expanduser().resolve())

    async def runner() -> T:
        fs = select_backend(settings.backend)
        try:
            return await work(fs)
        finally:
            await fs.close()

    try:
        return asyncio.run(runner())
    except FsError as exc:
        raise click.ClickException(exc.message) from exc


async def _resolve_target(fs: VirtualFilesystem, path: str | None) -> str:
    if not path:
        return await fs.get_home_dir()
    if fs.name == "sandbox":
        return path
    return str(Path(path).expanduser().resolve())


@main.command("ls")
@click.argument("path", required=False)
@click.option("--backend", type=BACKEND_CHOICE)
@click.option("--sandbox", "sandbox_root", type=click.Path(file_okay=False, path_type=Path))
@click.option("-a", "--all", "show_hidden", is_flag=True, help="Include dotfiles")
@click.option("--sort", "sort_field", type=click.Choice(["name", "size", "modified", "type"]), default="name", show_default=True)
@click.option("--desc", is_flag=True, help="Sort descending")
@click.option("--search", default="", help="Only names containing this text")
@click.option("--json", "as_json", is_flag=True)
@click.pass_context
def ls_command(
    ctx: click.Context,
    path: str | None,
    backend: str | None,
    sandbox_root: Path | None,
    show_hidden: bool,
    sort_field: str,
    desc: bool,
    search: str,
    as_json: bool,
) -> None:
    """List a directory the way a pane shows it."""
    view = ViewOptions(
        sort_field=sort_field,  # type: ignore[arg-type]
        sort_direction="desc" if desc else "asc",
        show_hidden=show_hidden,
    )

    async def work(fs: VirtualFilesystem) -> tuple[str, list[Any]]:
        target = await _resolve_target(fs, path)
        return target, list(apply_pipeline(await fs.read_dir(target), view, search))

    target, entries = _with_backend(ctx, backend, sandbox_root, work)
    if as_json:
        click.echo(json.dumps([entry.to_payload() for entry in entries], indent=2))
        return

    table = Table(title=target, show_edge=False)
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Modified")
    for entry in entries:
        table.add_row(
            entry.name + ("/" if entry.is_dir else ""),
            "" if entry.is_dir else decimal(entry.size),
            str(entry.modified),
        )
    Console().print(table)


@main.command("du")
@click.argument("path", required=False)
@click.option("--backend", type=BACKEND_CHOICE)
@click.option("--sandbox", "sandbox_root", type=click.Path(file_okay=False, path_type=Path))
@click.option("--bytes", "raw", is_flag=True, help="Print the byte count only")
@click.pass_context
def du_command(ctx: click.Context, path: str | None, backend: str | None, sandbox_root: Path | None, raw: bool) -> None:
    """Print the recursive size of a directory."""

    async def work(fs: VirtualFilesystem) -> tuple[str, int]:
        target = await _resolve_target(fs, path)
        return target, await fs.get_dir_size(target)

    target, size = _with_backend(ctx, backend, sandbox_root, work)
    click.echo(str(size) if raw else f"{decimal(size)}\t{target}")


@main.command("settings-path")
def settings_path_command() -> None:
    """Print settings file path."""
    click.echo(str(settings_path()))


@main.command("config")
@click.argument("key", required=False)
@click.argument("value", required=False)
def config_command(key: str | None, value: str | None) -> None:
    """Show settings, or set KEY (dotted, e.g. view.show_hidden) to a JSON VALUE."""
    store = SettingsStore()
    if key is None:
        for name, current in store.load().setting_items():
            click.echo(f"{name} = {current}")
        return
    if value is None:
        raise click.UsageError("VALUE is required when KEY is given")
    try:
        parsed: Any = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        store.update(key, parsed)
    except KeyError as exc:
        raise click.ClickException(str(exc.args[0])) from exc
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"{key} = {parsed}")


@main.command()
def about() -> None:
    """Show version and project summary."""
    payload = {
        "name": "panex",
        "version": __version__,
        "description": "Multi-pane terminal file browser",
    }
    click.echo(json.dumps(payload, indent=2))


if __name__ == "__main__":
    main()
