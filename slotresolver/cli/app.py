"""
Main CLI application using Typer.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Any, List, Optional, Tuple

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ..adapters.booking_store import JsonBookingStore
from ..adapters.http_client import HttpAvailabilityClient
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import InvalidInputError, SchedulingError
from ..domain.models import (
    AvailabilityResult,
    Booking,
    ResolutionPreferences,
    UnavailableReason,
    WEEKDAY_NAMES,
    format_wall_clock,
    parse_wall_clock,
)
from ..domain.ports import AvailabilityPort
from ..services.scheduling import SchedulingService
from ..services.serialization import (
    availability_to_dict,
    bulk_availability_to_dict,
    suggestions_to_dict,
)

app = typer.Typer(
    name="slotresolver",
    help="Check therapist availability and resolve scheduling conflicts",
    add_completion=False
)

console = Console()

REASON_TEXTS = {
    UnavailableReason.NON_WORKING_DAY: "Therapeut arbeitet an diesem Tag nicht",
    UnavailableReason.OUTSIDE_WORKING_HOURS: "Außerhalb der Arbeitszeiten",
    UnavailableReason.BREAK_TIME: "Überschneidung mit der Pause",
    UnavailableReason.BOOKING_CONFLICT: "Überschneidung mit bestehenden Terminen",
    UnavailableReason.INTRA_BATCH_CONFLICT: "Überschneidung mit anderem Slot der Anfrage",
}

ConfigOption = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")]
BookingsOption = Annotated[Optional[Path], typer.Option("--bookings", "-b", help="JSON file with existing bookings")]
ApiUrlOption = Annotated[Optional[str], typer.Option("--api-url", help="Base URL of the clinic sessions API")]
JsonOption = Annotated[bool, typer.Option("--json", help="Ergebnis als JSON ausgeben.")]
TimeoutOption = Annotated[Optional[float], typer.Option("--timeout", help="Deadline in seconds for fetching data")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Debug-Logging aktivieren.")]


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    return AppConfig.load_from_yaml(config_path)


def _build_availability(
    config: AppConfig,
    bookings: Optional[Path],
    api_url: Optional[str],
    timeout: Optional[float] = None
) -> AvailabilityPort:
    """
    Pick the booking source: API URL first, then the bookings file.

    The HTTP request timeout never exceeds the command's deadline, so the
    worker thread running a request ends no later than the deadline does.
    """
    base_url = api_url or config.api_base_url
    if base_url:
        deadline_seconds = timeout if timeout is not None else config.engine.timeout_seconds
        request_timeout = HttpAvailabilityClient.DEFAULT_TIMEOUT
        if deadline_seconds is not None:
            request_timeout = min(request_timeout, deadline_seconds)
        return HttpAvailabilityClient(base_url=base_url, api_token=config.api_token, timeout=request_timeout)

    bookings_file = bookings or config.bookings_file
    if bookings_file:
        return JsonBookingStore(bookings_file)

    raise ValueError(
        "Keine Terminquelle konfiguriert. "
        "Verwenden Sie --bookings, --api-url oder bookings_file in der Config."
    )


def _build_service(
    config_file: Optional[Path],
    bookings: Optional[Path],
    api_url: Optional[str],
    verbose: bool,
    timeout: Optional[float] = None
) -> Tuple[AppConfig, SchedulingService]:
    _configure_logging(verbose)
    config = _load_config(config_file)
    availability = _build_availability(config, bookings, api_url, timeout)
    return config, SchedulingService.from_config(config, availability)


def _parse_slot_spec(spec: str, index: int) -> Tuple[str, str]:
    """Parse '09:00-09:30' into its start and end."""
    parts = spec.split("-")
    if len(parts) != 2:
        raise InvalidInputError(f"slots[{index}]", f"Expected START-END (e.g. 09:00-09:30), got {spec!r}")
    return parts[0].strip(), parts[1].strip()


def _date_heading(date_text: str) -> str:
    day = pendulum.parse(date_text)
    return f"{WEEKDAY_NAMES[day.weekday()]}, {day.format('DD.MM.YYYY')}"


def _print_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _conflict_table(conflicts: Tuple[Booking, ...]) -> Table:
    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Termin", style="bold yellow")
    table.add_column("Zeit")
    table.add_column("Beschreibung", style="dim")
    for booking in conflicts:
        table.add_row(
            booking.id,
            f"{format_wall_clock(booking.start)} – {format_wall_clock(booking.end)}",
            booking.description
        )
    return table


def _print_availability(result: AvailabilityResult, label: str) -> None:
    console.print()
    if result.available:
        console.print(f"[bold green]✓ Verfügbar:[/bold green] {label}")
    else:
        reason = REASON_TEXTS.get(result.reason, "Nicht verfügbar")
        console.print(f"[bold red]✗ Nicht verfügbar:[/bold red] {label}")
        console.print(f"   Grund: {reason}")
        if result.conflicts:
            console.print(_conflict_table(result.conflicts))
        if result.suggestions:
            console.print("\n[bold]Alternativen am selben Tag:[/bold]")
            for suggestion in result.suggestions:
                console.print(f"  {suggestion.format_display()}  [dim]{suggestion.reason}[/dim]")
    console.print()


def _run_guarded(operation):
    """Run an async operation and map scheduling errors onto exit codes."""
    try:
        return asyncio.run(operation)
    except InvalidInputError as e:
        console.print(f"[bold red]Ungültige Eingabe ({e.field}):[/bold red] {e.message}")
        raise typer.Exit(2)
    except SchedulingError as e:
        console.print(f"[bold red]Fehler:[/bold red] {e}")
        raise typer.Exit(1)


def _startup_failure(e: Exception) -> None:
    console.print(f"[bold red]Fehler:[/bold red] {e}")
    raise typer.Exit(1)


@app.command()
def check(
    therapist: Annotated[str, typer.Argument(help="Therapeuten-ID oder Name")],
    date: Annotated[str, typer.Argument(help="Datum (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Beginn (HH:mm)")],
    end: Annotated[str, typer.Argument(help="Ende (HH:mm)")],
    duration: Annotated[Optional[int], typer.Option("--duration", "-d", help="Dauer in Minuten (muss zu Beginn/Ende passen)")] = None,
    exclude: Annotated[Optional[str], typer.Option("--exclude", help="Termin-ID, die ignoriert wird (Umplanung)")] = None,
    config_file: ConfigOption = None,
    bookings: BookingsOption = None,
    api_url: ApiUrlOption = None,
    as_json: JsonOption = False,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = False,
):
    """
    Check whether a single time slot is free.

    Examples:

        slotresolver check anna 2024-11-25 10:30 11:15 --bookings bookings.json
        slotresolver check anna 2024-11-25 10:00 11:00 --exclude b-17
        slotresolver check anna 2024-11-25 10:00 10:45 --duration 45
    """
    try:
        config, service = _build_service(config_file, bookings, api_url, verbose, timeout)
        therapist_id = config.resolve_therapist(therapist)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _startup_failure(e)

    result = _run_guarded(
        service.check_availability(
            therapist_id=therapist_id,
            date=date,
            start=start,
            end=end,
            duration=duration,
            exclude_booking_id=exclude,
            timeout=timeout
        )
    )

    if as_json:
        _print_json(availability_to_dict(result))
        return

    _print_availability(result, f"{_date_heading(date)} | {start} – {end} Uhr")


@app.command("bulk-check")
def bulk_check(
    therapist: Annotated[str, typer.Argument(help="Therapeuten-ID oder Name")],
    date: Annotated[str, typer.Argument(help="Datum (YYYY-MM-DD)")],
    slots: Annotated[List[str], typer.Argument(help="Slots im Format START-END, z. B. 09:00-09:30")],
    exclude: Annotated[Optional[List[str]], typer.Option("--exclude", help="Termin-IDs, die ignoriert werden")] = None,
    config_file: ConfigOption = None,
    bookings: BookingsOption = None,
    api_url: ApiUrlOption = None,
    as_json: JsonOption = False,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = False,
):
    """
    Check several slots on one date, also against each other.

    Examples:

        slotresolver bulk-check anna 2024-11-25 09:00-09:30 09:15-09:45
    """
    try:
        config, service = _build_service(config_file, bookings, api_url, verbose, timeout)
        therapist_id = config.resolve_therapist(therapist)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _startup_failure(e)

    async def run():
        slot_specs = [_parse_slot_spec(spec, index) for index, spec in enumerate(slots)]
        return await service.check_bulk_availability(
            therapist_id=therapist_id,
            date=date,
            slots=slot_specs,
            exclude_booking_ids=exclude,
            timeout=timeout
        )

    result = _run_guarded(run())

    if as_json:
        _print_json(bulk_availability_to_dict(result))
        return

    table = Table(
        title=f"Verfügbarkeit – {_date_heading(date)}",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("#", justify="right")
    table.add_column("Zeit", style="bold")
    table.add_column("Status")
    table.add_column("Konflikte", style="dim")
    table.add_column("Im Batch", style="dim")

    for item in result:
        status = "[green]✓ frei[/green]" if item.available else f"[red]✗ {REASON_TEXTS.get(item.reason, 'belegt')}[/red]"
        table.add_row(
            str(item.index + 1),
            f"{format_wall_clock(item.slot.start)} – {format_wall_clock(item.slot.end)}",
            status,
            ", ".join(booking.id for booking in item.conflicts),
            ", ".join(f"#{other + 1}" for other in item.conflicts_within_batch)
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def resolve(
    therapist: Annotated[str, typer.Argument(help="Therapeuten-ID oder Name")],
    date: Annotated[str, typer.Argument(help="Datum (YYYY-MM-DD)")],
    duration: Annotated[int, typer.Option("--duration", "-d", help="Session duration in minutes")],
    preferred: Annotated[Optional[str], typer.Option("--preferred", help="Bevorzugte Startzeit (HH:mm)")] = None,
    original: Annotated[Optional[str], typer.Option("--original", help="Ursprüngliche, belegte Startzeit (HH:mm)")] = None,
    max_shift: Annotated[Optional[int], typer.Option("--max-shift", help="Maximale Verschiebung in Minuten")] = None,
    different_day: Annotated[bool, typer.Option("--different-day", help="Auch andere Tage vorschlagen.")] = False,
    limit: Annotated[Optional[int], typer.Option("--limit", "-n", help="Maximale Anzahl Vorschläge")] = None,
    exclude: Annotated[Optional[List[str]], typer.Option("--exclude", help="Termin-IDs, die ignoriert werden")] = None,
    config_file: ConfigOption = None,
    bookings: BookingsOption = None,
    api_url: ApiUrlOption = None,
    as_json: JsonOption = False,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = False,
):
    """
    Suggest the nearest free alternatives for a session.

    Examples:

        slotresolver resolve anna 2024-11-25 -d 60 --preferred 10:00 --max-shift 60
        slotresolver resolve anna 2024-11-25 -d 45 --original 14:00 --different-day
    """
    try:
        config, service = _build_service(config_file, bookings, api_url, verbose, timeout)
        therapist_id = config.resolve_therapist(therapist)
    except (FileNotFoundError, ValueError, SchedulingError) as e:
        _startup_failure(e)

    async def run():
        preferences = ResolutionPreferences(
            preferred_start=parse_wall_clock(preferred, "preferred") if preferred else None,
            max_shift_minutes=max_shift if max_shift is not None else config.engine.default_max_shift_minutes,
            allow_different_day=different_day
        )
        return await service.resolve_conflicts(
            therapist_id=therapist_id,
            date=date,
            duration=duration,
            preferences=preferences,
            original_start=original,
            exclude_booking_ids=exclude,
            limit=limit,
            timeout=timeout
        )

    suggestions = _run_guarded(run())

    if as_json:
        _print_json(suggestions_to_dict(suggestions))
        return

    console.print()
    if not suggestions:
        console.print(
            "[yellow]⚠ Keine alternativen Termine gefunden.[/yellow]\n"
            "Versuchen Sie eine größere maximale Verschiebung oder --different-day."
        )
    else:
        console.print(f"[bold green]✓ {len(suggestions)} Vorschlag/Vorschläge gefunden:[/bold green]\n")
        for suggestion in suggestions:
            console.print(f"  {suggestion.format_display()}  [dim]{suggestion.reason}[/dim]")
    console.print()


@app.command()
def list_therapists(
    config_file: ConfigOption = None
):
    """
    List all configured therapists and their working hours.
    """
    try:
        config = _load_config(config_file)
    except (FileNotFoundError, SchedulingError) as e:
        _startup_failure(e)

    if not config.therapists:
        console.print("[yellow]Keine Therapeuten in der Config-Datei definiert.[/yellow]")
        return

    table = Table(
        title="Konfigurierte Therapeuten",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("ID", style="dim")
    table.add_column("Name (Alias)", style="bold yellow")
    table.add_column("Aktiv")
    table.add_column("Neue Termine")
    table.add_column("Arbeitszeiten")

    for therapist in config.therapists:
        if therapist.schedule is None:
            hours = (
                f"Standard: {config.defaults.start_hour}:00 - {config.defaults.end_hour}:00"
            )
        else:
            hours = ", ".join(
                f"{WEEKDAY_NAMES[entry.weekday][:2]} {entry.start}-{entry.end}"
                for entry in sorted(therapist.schedule, key=lambda e: e.weekday)
            )
        table.add_row(
            therapist.id,
            therapist.display_name(),
            "ja" if therapist.active else "nein",
            "ja" if therapist.can_take_consultations else "nein",
            hours
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def test_connection(
    config_file: ConfigOption = None,
    api_url: ApiUrlOption = None,
):
    """
    Test the connection to the clinic sessions API.
    """
    try:
        config = _load_config(config_file)
        base_url = api_url or config.api_base_url
        if not base_url:
            raise ValueError("Keine API-URL konfiguriert (--api-url oder api_base_url).")

        client = HttpAvailabilityClient(base_url=base_url, api_token=config.api_token)
        client.test_connection()
        console.print(f"\n[bold green]✓ Verbindung zu {base_url} erfolgreich[/bold green]\n")

    except (FileNotFoundError, ValueError, SchedulingError) as e:
        console.print(f"\n[bold red]✗ Fehler:[/bold red] {e}\n")
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]slotresolver[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
