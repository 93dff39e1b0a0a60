"""Thin CLI wrapper for image_flasher.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
import signal
import threading
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)

from image_flasher import __version__
from image_flasher.config import get_settings, print_settings_json
from image_flasher.errors import FlasherError

app = typer.Typer(
    name="image-flasher",
    help="Image Flasher - write disk images to USB/SD devices with verification",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"image-flasher version {__version__}")
        raise typer.Exit()


def print_json(data: object) -> None:
    """Print data as indented JSON without Rich markup or wrapping."""
    console.print(json.dumps(data, indent=2), markup=False, soft_wrap=True)


def configure_logging(level: str) -> None:
    """Route log records through Rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


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
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override the configured log level"),
    ] = None,
) -> None:
    """Image Flasher - write disk images to USB/SD devices with verification."""
    settings = get_settings()
    configure_logging((log_level or settings.log_level).upper())


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
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Selection:[/bold]")
        console.print(f"  Image:               {settings.image or '(scan directory)'}")
        console.print(f"  Device:              {settings.device or '(choose)'}")
        console.print(f"  Image extensions:    {' '.join(settings.image_extensions)}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Interactive:         {settings.interactive}")
        console.print(f"  Verify:              {settings.verify}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Block size:          {settings.block_size}")


@app.command()
def devices(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List detachable devices that can be flashed."""
    from image_flasher.flash.device import list_detachable_devices

    try:
        found = list_detachable_devices()
    except FlasherError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = [
            {
                "device_path": d.device_path,
                "display_name": d.display_name,
                "mountpoints": list(d.mountpoints),
                "size_bytes": d.size_bytes,
                "transport": d.transport,
            }
            for d in found
        ]
        print_json(output)
        return

    if not found:
        console.print("[yellow]No detachable devices found[/yellow]")
        return

    console.print(f"[bold]Found {len(found)} device(s):[/bold]")
    for d in found:
        size = f"{d.size_bytes:,} bytes" if d.size_bytes is not None else "unknown size"
        console.print(
            f"  [green]{escape(d.device_path)}[/green] ({escape(d.display_name)}), {size}"
        )
        for mp in d.mountpoints:
            console.print(f"    mounted at {mp}", markup=False)


@app.command()
def images(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List image files in the current directory."""
    from image_flasher.flash.source import find_image_files

    settings = get_settings()
    found = find_image_files(extensions=settings.image_extensions)

    if json_output:
        output = [
            {"path": str(p), "size_bytes": p.stat().st_size, "mtime": p.stat().st_mtime}
            for p in found
        ]
        print_json(output)
        return

    if not found:
        console.print("[yellow]No image files found[/yellow]")
        return

    console.print(f"[bold]Found {len(found)} image(s):[/bold]")
    for p in found:
        console.print(f"  {p.name} ({p.stat().st_size:,} bytes)", markup=False)


@app.command()
def flash(
    image: Annotated[
        str | None,
        typer.Option("--image", "-i", help="Image to flash (default: scan directory)"),
    ] = None,
    device: Annotated[
        str | None,
        typer.Option("--device", "-d", help="Device path (e.g., /dev/sdX)"),
    ] = None,
    non_interactive: Annotated[
        bool,
        typer.Option(
            "--non-interactive",
            "-y",
            help="Never prompt; requires a single candidate device",
        ),
    ] = False,
    verify: Annotated[
        bool | None,
        typer.Option("--verify/--no-verify", help="Read back and compare checksums"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output result as JSON"),
    ] = False,
) -> None:
    """Flash an image to a detachable device.

    Without --image, image files in the current directory are offered
    (or the newest one is used with --non-interactive). Without --device,
    the only detachable device is used or you are asked to choose.
    """
    from image_flasher.flash.service import UserCanceledError, run_flash
    from image_flasher.flash.ui import ConsoleUi
    from image_flasher.flash.writer import FlashError, VerificationError

    settings = get_settings()
    flash_config = settings.to_flash_config(
        image=image,
        device=device,
        interactive=False if non_interactive else None,
        verify=verify,
    )

    cancel = threading.Event()
    ui = ConsoleUi(console)

    def _on_sigint(signum: int, frame: object) -> None:
        cancel.set()
        if ui.prompting:
            raise KeyboardInterrupt
        console.print("[yellow]Cancel requested, stopping after current chunk[/yellow]")

    previous_handler = signal.signal(signal.SIGINT, _on_sigint)

    progress_bar = Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
        transient=True,
        disable=json_output,
    )
    tasks: dict[str, TaskID] = {}

    def _report(phase: str, done: int) -> None:
        # Started lazily so prompts are not drawn under a live display
        if not tasks:
            progress_bar.start()
        if phase not in tasks:
            tasks[phase] = progress_bar.add_task(phase.capitalize(), total=None)
        progress_bar.update(tasks[phase], completed=done)

    try:
        outcome = run_flash(
            flash_config,
            ui,
            settings=settings,
            cancel=cancel,
            progress=_report,
        )
    except (UserCanceledError, KeyboardInterrupt):
        console.print("[yellow]Aborted[/yellow]")
        raise typer.Exit(code=1) from None
    except FlasherError as e:
        bytes_written = (
            e.bytes_written if isinstance(e, FlashError | VerificationError) else None
        )
        if json_output:
            output = {
                "success": False,
                "error_code": e.error_code,
                "error_message": e.message,
                "bytes_written": bytes_written,
            }
            print_json(output)
        else:
            console.print(f"[red]✗ Flash failed: {escape(e.message)}[/red]")
            if bytes_written:
                console.print(
                    f"[bold red]WARNING:[/bold red] {bytes_written:,} bytes were "
                    "written; the device contents are now unreliable."
                )
        raise typer.Exit(code=1) from None
    finally:
        progress_bar.stop()
        signal.signal(signal.SIGINT, previous_handler)

    if json_output:
        output = {
            "success": True,
            "image": outcome.image_name,
            "device_path": outcome.device_path,
            "bytes_written": outcome.bytes_written,
            "checksum": outcome.checksum,
            "verification_result": outcome.verification_result.value,
        }
        print_json(output)
    else:
        console.print("[green]✓ Flash succeeded[/green]")
        console.print(f"  Image: {outcome.image_name}", markup=False)
        console.print(f"  Device: {outcome.device_path}", markup=False)
        console.print(f"  Bytes written: {outcome.bytes_written:,}")
        console.print(f"  Verification: {outcome.verification_result.value}")


if __name__ == "__main__":
    app()
