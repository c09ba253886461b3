"""Main CLI application for rolling fetch."""

from typing import Annotated

import typer
from rich.markup import escape

from rolling_fetch import __version__
from rolling_fetch.cli.common import (
    DataOption,
    HeaderOption,
    InputFileOption,
    LimitOption,
    MethodOption,
    OutputFormat,
    OutputFormatOption,
    TimeoutOption,
    console,
    parse_headers,
    read_url_file,
)
from rolling_fetch.config import get_settings
from rolling_fetch.exceptions import FatalTransportError, InvalidArgumentError
from rolling_fetch.logging import setup_logging
from rolling_fetch.options import Option
from rolling_fetch.request import Request
from rolling_fetch.scheduler import ProgressTracker, ProgressUpdate, RollingScheduler
from rolling_fetch.schemas import FetchRecord
from rolling_fetch.transport import HttpxTransport

app = typer.Typer(
    name="rollfetch",
    help="Fetch many URLs with a fixed number of requests in flight.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"rollfetch version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """Rolling fetch - bounded-concurrency bulk HTTP fetching."""
    settings = get_settings()
    setup_logging(settings.log_level, verbose=verbose, quiet=quiet, config=settings.logging)


def _print_record(record: FetchRecord) -> None:
    duration = f"{record.duration_ms:.0f} ms" if record.duration_ms is not None else "-"
    if record.success:
        line = f"[green]{record.status_code}[/green] {escape(record.url)} [dim]({duration})[/dim]"
        if record.title:
            line += f" {escape(record.title)}"
    else:
        line = (
            f"[red]ERR {record.error_code}[/red] {escape(record.url)} "
            f"[dim]({duration})[/dim] {escape(record.error)}"
        )
    console.print(line)


@app.command()
def fetch(
    urls: Annotated[
        list[str] | None,
        typer.Argument(help="URLs to fetch"),
    ] = None,
    input_file: InputFileOption = None,
    limit: LimitOption = None,
    method: MethodOption = "GET",
    header: HeaderOption = None,
    data: DataOption = None,
    timeout: TimeoutOption = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
    titles: Annotated[
        bool,
        typer.Option("--titles", help="Extract the HTML <title> of each page"),
    ] = False,
    low_memory: Annotated[
        bool,
        typer.Option(
            "--low-memory",
            help="Drop completed requests and prune the queue after each response",
        ),
    ] = False,
) -> None:
    """Fetch URLs concurrently and report each response as it completes.

    Examples:
        rollfetch fetch https://example.com https://example.org
        rollfetch fetch -i urls.txt -n 20 --titles
        rollfetch fetch -i urls.txt -f json --low-memory > results.jsonl
    """
    targets = list(urls or [])
    if input_file is not None:
        targets.extend(read_url_file(input_file))
    if not targets:
        console.print("[red]Error:[/red] No URLs given (pass URLs or --input)")
        raise typer.Exit(1)

    headers = parse_headers(header or [])
    overrides = {"simultaneous_limit": limit} if limit is not None else {}

    try:
        scheduler = RollingScheduler.from_settings(
            get_settings(), transport_factory=HttpxTransport, **overrides
        )
    except InvalidArgumentError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if headers:
        scheduler.headers = headers
    if timeout is not None:
        scheduler.options = {**scheduler.options, Option.TIMEOUT: timeout}
    for url in targets:
        scheduler.request(url, method.upper(), data)

    def on_complete(request: Request, scheduler: RollingScheduler) -> None:
        record = FetchRecord.from_request(request, with_title=titles)
        if output_format == OutputFormat.JSON:
            typer.echo(record.model_dump_json())
        else:
            _print_record(record)
        if low_memory:
            scheduler.clear_completed()
            scheduler.prune_pending_queue()

    scheduler.callback = on_complete
    tracker = ProgressTracker(name="fetch")
    tracker.attach(scheduler)

    try:
        if output_format == OutputFormat.TEXT:
            with console.status("Starting...") as status:

                def show(update: ProgressUpdate) -> None:
                    status.update(
                        f"{update.completed}/{update.total} done, "
                        f"{update.active} in flight, {update.failed} failed"
                    )

                tracker.on_progress(show)
                scheduler.run()
        else:
            scheduler.run()
    except FatalTransportError as e:
        console.print(f"[red]Transport failure:[/red] {e}")
        raise typer.Exit(1) from None

    if output_format == OutputFormat.TEXT:
        console.print(
            f"\n[bold]{scheduler.count_completed()}[/bold] fetched, "
            f"[bold]{tracker.failed}[/bold] failed in {tracker.elapsed_seconds:.2f}s"
        )
    if tracker.failed:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
