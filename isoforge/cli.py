"""Thin CLI wrapper for isoforge.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from isoforge import __version__
from isoforge.buildconfig.io import CONFIG_FILENAME, load_config_record
from isoforge.buildconfig.prompts import RichPrompter
from isoforge.buildconfig.resolver import resolve
from isoforge.buildconfig.schema import EDITIONS
from isoforge.builds.pipeline import BuildPipeline, default_log_path
from isoforge.builds.runner import check_dependencies
from isoforge.builds.workspace import Workspace
from isoforge.config import Settings, get_settings, print_settings_json
from isoforge.errors import BuildError, ConfigError, DependencyError
from isoforge.overlay.profiles import list_profiles
from isoforge.types import ExitCode

app = typer.Typer(
    name="isoforge",
    help="isoforge - build customized live ISO images",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger(__name__)

# Value of --sign when no key is given: use the first available secret key
SIGN_AUTO = "auto"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def normalize_sign_argument(argv: list[str]) -> list[str]:
    """Give a bare ``--sign`` the value ``auto``.

    ``--sign`` takes an optional key; click options cannot, so a ``--sign``
    that is last or followed by another option gets an explicit value.
    """
    result: list[str] = []
    for index, arg in enumerate(argv):
        result.append(arg)
        if arg == "--sign":
            following = argv[index + 1] if index + 1 < len(argv) else None
            if following is None or following.startswith("-"):
                result.append(SIGN_AUTO)
    return result


def setup_logging(
    level: str,
    log_path: Path | None = None,
) -> list[logging.Handler]:
    """Install the console and build-log handlers on the package logger.

    Args:
        level: Logging level name.
        log_path: Build log file; console only when None.

    Returns:
        The installed handlers.
    """
    package_logger = logging.getLogger("isoforge")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [
        RichHandler(console=console, show_path=False, rich_tracebacks=True)
    ]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    for handler in handlers:
        package_logger.addHandler(handler)
    package_logger.setLevel(level)
    return handlers


def teardown_logging(handlers: list[logging.Handler]) -> None:
    package_logger = logging.getLogger("isoforge")
    for handler in handlers:
        package_logger.removeHandler(handler)
        handler.close()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"isoforge version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """isoforge - build customized live ISO images."""


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    workspace = Workspace(settings.base_dir)
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Base directory:      {settings.base_dir}")
    console.print(f"  Source directory:    {settings.source_dir}")
    console.print(f"  Base template:       {settings.template_dir}")
    console.print(f"  Repository location: {settings.repo_system_dir}")
    console.print(f"  Config record:       {workspace.config_dir / CONFIG_FILENAME}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Brand name:          {settings.brand_name}")
    console.print(f"  Repository name:     {settings.repo_name}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Debug:               {settings.debug}")
    console.print(f"  Require root:        {settings.require_root}")
    console.print(f"  Install prereqs:     {settings.install_prerequisites}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Build timeout:       {settings.build_timeout}")
    console.print(f"  Command timeout:     {settings.command_timeout}")


def _print_profiles(settings: Settings) -> None:
    console.print("[bold]Available Build Profiles:[/bold]")
    console.print()
    for profile in list_profiles(settings.source_dir):
        marker = "" if profile.available else " [dim](not installed)[/dim]"
        console.print(
            f"  [cyan]{profile.name:<14}[/cyan] {profile.description}{marker}"
        )
        if profile.includes:
            console.print(f"    Includes: {', '.join(profile.includes)}")
    console.print()
    console.print("To use a profile: isoforge build --profile <name>")


@app.command()
def profiles() -> None:
    """List available build profiles."""
    _print_profiles(get_settings())


def _collect_cli_args(**options: Any) -> dict[str, Any]:
    """Keep only the options that were actually given."""
    return {key: value for key, value in options.items() if value is not None}


def _fail(error: BuildError, log_path: Path | None = None) -> typer.Exit:
    console.print(f"[red]Error:[/red] {error.message}")
    if log_path is not None:
        console.print(f"Log file: {log_path}")
    return typer.Exit(code=int(error.exit_code))


@app.command()
def build(
    user: Annotated[
        str | None,
        typer.Option("--user", "-u", help="Username of the primary account"),
    ] = None,
    hostname: Annotated[
        str | None,
        typer.Option("--hostname", help="Hostname of the live system"),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="ISO name prefix"),
    ] = None,
    edition: Annotated[
        str | None,
        typer.Option("--edition", "-e", help=f"Edition ({', '.join(EDITIONS)})"),
    ] = None,
    arch: Annotated[
        str | None,
        typer.Option("--arch", "-a", help="Target architecture"),
    ] = None,
    clean: Annotated[
        bool | None,
        typer.Option("--clean/--no-clean", help="Clean the previous build first"),
    ] = None,
    interactive: Annotated[
        bool,
        typer.Option("--interactive", "-i", help="Run the interactive setup"),
    ] = False,
    backup: Annotated[
        bool | None,
        typer.Option("--backup/--no-backup", help="Back up the previous ISO"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Verbose output"),
    ] = False,
    skip_verify: Annotated[
        bool,
        typer.Option("--skip-verify", help="Skip ISO verification"),
    ] = False,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", help="Number of parallel jobs"),
    ] = None,
    compression: Annotated[
        str | None,
        typer.Option("--compression", help="Compression level (1-9)"),
    ] = None,
    testing: Annotated[
        bool,
        typer.Option("--testing", help="Enable the testing repositories"),
    ] = False,
    keep_chroot: Annotated[
        bool,
        typer.Option("--keep-chroot", help="Keep the assembler scratch directory"),
    ] = False,
    sign: Annotated[
        str | None,
        typer.Option(
            "--sign",
            metavar="[KEY]",
            help="Sign the ISO with GPG (first available key when KEY is omitted)",
        ),
    ] = None,
    profile: Annotated[
        str | None,
        typer.Option("--profile", "-p", help="Build profile"),
    ] = None,
    no_custom_repo: Annotated[
        bool,
        typer.Option("--no-custom-repo", help="Disable the custom repository"),
    ] = False,
    list_profiles_flag: Annotated[
        bool,
        typer.Option("--list-profiles", help="List build profiles and exit"),
    ] = False,
) -> None:
    """Build an ISO image."""
    settings = get_settings()

    if list_profiles_flag:
        _print_profiles(settings)
        return

    workspace = Workspace(settings.base_dir)
    log_level = "DEBUG" if verbose or settings.debug else settings.log_level
    handlers = setup_logging(log_level)

    try:
        cli_args = _collect_cli_args(
            username=user,
            hostname=hostname,
            iso_prefix=name,
            edition=edition,
            architecture=arch,
            clean_before_build=clean,
            backup_before_build=backup,
            verbose=verbose or None,
            skip_verify=skip_verify or None,
            parallel_jobs=jobs,
            compression_level=compression,
            enable_testing_repo=testing or None,
            keep_intermediate_tree=keep_chroot or None,
            build_profile=profile,
            enable_custom_repo=False if no_custom_repo else None,
        )
        if sign is not None:
            cli_args["sign_artifact"] = True
            if sign != SIGN_AUTO:
                cli_args["signing_key_id"] = sign

        prompter = RichPrompter(console) if sys.stdin.isatty() else None
        try:
            build_config = resolve(
                persisted=load_config_record(workspace.config_dir / CONFIG_FILENAME),
                environment={
                    "user_password": settings.user_password,
                    "root_password": settings.root_password,
                },
                cli_args=cli_args,
                interactive=interactive,
                prompter=prompter,
                allow_insecure_defaults=settings.allow_insecure_defaults,
            )
        except ConfigError as e:
            raise _fail(e) from None

        if settings.require_root and os.geteuid() != 0:
            console.print("Please run: sudo isoforge build ...")
            raise _fail(DependencyError("This command must be run as root")) from None

        missing = check_dependencies()
        if missing:
            packages = sorted(set(missing.values()))
            error = DependencyError(
                f"Missing dependencies: {', '.join(sorted(missing))} "
                f"(install: pacman -S {' '.join(packages)})",
                missing=list(missing),
            )
            raise _fail(error) from None

        log_path = default_log_path(workspace)
        teardown_logging(handlers)
        handlers = setup_logging(log_path=log_path, level=log_level)

        def on_stage(position: int, total: int, stage: Any) -> None:
            console.print(f"[cyan]▶[/cyan] Step {position}/{total}: {stage.name}")

        pipeline = BuildPipeline(
            build_config,
            settings,
            log_path=log_path,
            on_stage=on_stage,
        )
        try:
            result = pipeline.run()
        except BuildError as e:
            raise _fail(e, log_path) from None

        if not result.succeeded:
            console.print(
                f"[red]Build failed[/red] at stage [bold]{result.failed_stage}[/bold]"
            )
            console.print(f"Cause: {result.message}")
            if result.exit_code is not None:
                console.print(f"Command exit status: {result.exit_code}")
            console.print(f"Log file: {log_path}")
            if result.rescue_path is not None:
                console.print(f"Rescue copy: {result.rescue_path}")
            raise typer.Exit(code=int(result.exit_status))

        artifact = pipeline.artifact
        console.print("[green]Build completed successfully[/green]")
        if artifact is not None:
            console.print(f"  ISO:       {artifact.path}")
            console.print(f"  Size:      {artifact.size_bytes} bytes")
            if artifact.sha256:
                console.print(f"  SHA256:    {artifact.sha256}")
            console.print(f"  Signature: {artifact.signing_status.value}")
            if artifact.report_path is not None:
                console.print(f"  Report:    {artifact.report_path}")
            for warning in artifact.warnings:
                console.print(f"  [yellow]Warning:[/yellow] {warning}")
        console.print(f"  Log:       {log_path}")
    except KeyboardInterrupt:
        console.print("[red]Build interrupted by user[/red]")
        raise typer.Exit(code=int(ExitCode.INTERRUPTED)) from None
    finally:
        teardown_logging(handlers)


def run() -> None:
    """Console script entry point."""
    sys.argv[1:] = normalize_sign_argument(sys.argv[1:])
    app()


__all__ = ["app", "normalize_sign_argument", "run", "setup_logging"]


if __name__ == "__main__":
    run()
