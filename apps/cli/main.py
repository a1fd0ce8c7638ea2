"""CLI application for podfix."""

import asyncio
import difflib
import json
import logging
import sys
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from podfix.config import UpdaterSettings
from podfix.detect import identify
from podfix.errors import PodfixError
from podfix.models import Credential, Dependency, UpdateReport
from podfix.parse_podfile import parse_podfile
from podfix.updater import PodfileUpdater

console = Console()
err_console = Console(stderr=True)


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def parse_credential(value: str) -> Credential:
    """Parse ``host=user:secret`` (or ``host=secret``) into a Credential."""
    host, sep, secret = value.partition("=")
    if not sep or not host or not secret:
        raise typer.BadParameter(f"Expected host=user:secret, got {value.split('=', 1)[0]}=...")
    username = None
    if ":" in secret:
        username, secret = secret.split(":", 1)
    return Credential(kind="git_source", host=host.strip(), username=username or None, secret=secret)


def format_diff_output(original: str, updated: str, file_path: str) -> str:
    """Format unified diff output showing changes."""
    diff = difflib.unified_diff(
        original.splitlines(keepends=True),
        updated.splitlines(keepends=True),
        fromfile=file_path,
        tofile=file_path,
    )
    return "".join(diff)


def format_json_output(report: UpdateReport, pod: str) -> str:
    """Format JSON output."""
    return json.dumps(
        {
            "pod": pod,
            "podfile_changed": report.podfile_changed,
            "lockfile_changed": report.lockfile_changed,
            "versions": report.resolution.versions,
            "changed": sorted(report.resolution.changed),
            "notes": report.notes,
        },
        indent=2,
    )


def current_requirement(podfile: str, pod: str) -> str | None:
    """Requirement currently declared for ``pod``, if declared exactly once."""
    entries = parse_podfile(podfile).find(pod)
    return entries[0].requirement if len(entries) == 1 else None


app = typer.Typer(
    name="podfix",
    help="podfix - Update a pod requirement in a Podfile and its Podfile.lock",
    add_completion=False,
)


@app.command()
def update(
    file_path: str = typer.Argument(help="Path to Podfile (use '-' for stdin)"),
    pod: str = typer.Option(..., "--pod", "-p", help="Pod to update"),
    requirement: str | None = typer.Option(
        None, "--requirement", "-r", help="New requirement, e.g. '~> 4.0.0' (omit for unconstrained)"
    ),
    previous_requirement: str | None = typer.Option(
        None, "--previous-requirement", help="Requirement expected in the Podfile (default: as declared)"
    ),
    lockfile_path: str | None = typer.Option(
        None, "--lockfile", "-l", help="Path to Podfile.lock (default: next to the Podfile)"
    ),
    credential: list[str] | None = typer.Option(
        None, "--credential", help="Credential for a private source as host=user:secret"
    ),
    output: str | None = typer.Option(None, "--out", "-o", help="Output directory (use '-' for stdout)"),
    in_place: bool = typer.Option(False, "--in-place", "-i", help="Update files in place"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show changes without applying"),
    format_type: str = typer.Option("diff", "--format", help="Output format: diff or json"),
    cdn_url: str | None = typer.Option(None, "--cdn-url", help="Spec index URL"),
    timeout: float | None = typer.Option(None, "--timeout", help="Per-request timeout in seconds"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log resolution details"),
) -> None:
    """podfix - Update one pod requirement and re-lock."""
    configure_logging(verbose)

    try:
        # Read input
        if file_path == "-":
            if not lockfile_path:
                console.print("Error: --lockfile is required when reading the Podfile from stdin", style="red")
                raise typer.Exit(1)
            podfile = sys.stdin.read()
            display_path = "<stdin>"
        else:
            path_obj = Path(file_path)
            if not path_obj.exists():
                console.print(f"Error: File {file_path} not found", style="red")
                raise typer.Exit(1)
            podfile = path_obj.read_text()
            display_path = file_path

        lock_path = Path(lockfile_path) if lockfile_path else Path(file_path).with_name("Podfile.lock")
        if not lock_path.exists():
            console.print(f"Error: Lockfile {lock_path} not found", style="red")
            raise typer.Exit(1)
        lockfile = lock_path.read_text()

        kind = identify(podfile, file_path if file_path != "-" else None)
        if kind != "podfile":
            console.print(f"Error: {display_path} does not look like a Podfile ({kind})", style="red")
            raise typer.Exit(1)

        credentials = [parse_credential(value) for value in credential or []]
        settings = UpdaterSettings.from_env(cdn_url=cdn_url, timeout=timeout)

        if previous_requirement is None:
            previous_requirement = current_requirement(podfile, pod)
        dependency = Dependency(
            name=pod,
            requirement=requirement,
            previous_requirement=previous_requirement,
        )

        updater = PodfileUpdater(settings=settings, credentials=credentials)
        report = asyncio.run(updater.update(podfile, lockfile, dependency))

        # Check for changes
        if not report.has_changes:
            if format_type == "json":
                typer.echo(format_json_output(report, pod))
            else:
                console.print("No updates available")
            raise typer.Exit(2)  # No changes exit code

        for note in report.notes:
            err_console.print(f"  {note}")

        # Write output
        if format_type == "json":
            typer.echo(format_json_output(report, pod))
        elif dry_run:
            typer.echo(format_diff_output(podfile, report.podfile, display_path), nl=False)
            typer.echo(format_diff_output(lockfile, report.lockfile, str(lock_path)), nl=False)

        if dry_run:
            return
        if in_place and file_path != "-":
            Path(file_path).write_text(report.podfile)
            lock_path.write_text(report.lockfile)
            console.print(f"Updated {file_path} and {lock_path}")
        elif output == "-":
            typer.echo(report.podfile, nl=False)
            typer.echo(report.lockfile, nl=False)
        elif output:
            out_dir = Path(output)
            out_dir.mkdir(parents=True, exist_ok=True)
            (out_dir / "Podfile").write_text(report.podfile)
            (out_dir / "Podfile.lock").write_text(report.lockfile)
            console.print(f"Wrote updated Podfile and Podfile.lock to {output}")
        elif format_type != "json":
            console.print("Error: Specify --in-place, --out, or --dry-run", style="red")
            raise typer.Exit(1)

    except typer.Exit:
        # Re-raise typer exits (like Exit(2) for no changes)
        raise
    except typer.BadParameter:
        raise
    except PodfixError as e:
        console.print(f"Error [{e.code}]: {e}", style="red", markup=False)
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"Error: {e}", style="red", markup=False)
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
