"""CLI interface for casa-scout."""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import typer
import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from casa_scout import __version__
from casa_scout.config import ScoutConfig, load_config, merge_crawl_overrides
from casa_scout.database.engine import get_session, init_db
from casa_scout.database.repository import ListingRepository
from casa_scout.errors import FatalError
from casa_scout.export.csv_exporter import export_to_csv
from casa_scout.export.json_exporter import export_to_json, listing_to_dict
from casa_scout.models.pydantic_models import (
    CrawlProgress,
    EnrichmentItem,
    RunState,
    Source,
)
from casa_scout.scheduler import CrawlScheduler
from casa_scout.services.crawl_service import CrawlService
from casa_scout.services.enrichment_service import EnrichmentService

app = typer.Typer(
    name="casa-scout",
    help="Real-estate listing crawler for Mexican property portals",
    add_completion=False,
)
console = Console()


def output_json(data: Any) -> None:
    """Output JSON to stdout (for programmatic consumption)."""
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"casa-scout version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through Rich."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to scout.yaml (default: config/scout.yaml or CASA_SCOUT_CONFIG).",
    ),
    log_level: str = typer.Option(
        "INFO",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Real-estate listing crawler with detail enrichment."""
    configure_logging(log_level)
    ctx.obj = {"config_path": config_path}


def get_config(ctx: typer.Context) -> ScoutConfig:
    """Load configuration for a command, exiting with 1 if it is unusable."""
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValidationError) as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(1) from e


def run_state_to_dict(state: RunState, recent: int = 5) -> dict[str, Any]:
    """Summarize a run state for output."""
    return {
        "last_run": state.last_run.isoformat() if state.last_run else None,
        "last_attempt": state.last_attempt.isoformat() if state.last_attempt else None,
        "total_scraped": state.total_scraped,
        "total_new": state.total_new,
        "total_updated": state.total_updated,
        "success_rate": state.success_rate,
        "recent_runs": [run.model_dump(mode="json") for run in state.runs[-recent:]],
    }


@app.command()
def init_database(
    db_path: Path | None = typer.Option(
        None,
        "--db",
        "-d",
        help="Path to SQLite database file.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Show SQL statements.",
    ),
) -> None:
    """Initialize the database, creating all tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")

    try:
        init_db(db_path, echo=verbose)
        db_location = db_path or "data/casa_scout.db"
        console.print(f"[green]Database initialized at: {db_location}[/green]")
    except Exception as e:
        console.print(f"[red]Error initializing database: {e}[/red]")
        raise typer.Exit(1) from e


@app.command()
def crawl(
    ctx: typer.Context,
    max_searches: int | None = typer.Option(
        None,
        "--max-searches",
        "-n",
        help="Number of searches to run (overrides config).",
    ),
    pages: int | None = typer.Option(
        None,
        "--pages",
        "-p",
        help="Pages per search (overrides config, capped by the source).",
    ),
    shuffle: bool | None = typer.Option(
        None,
        "--shuffle/--no-shuffle",
        help="Shuffle searches before truncating to --max-searches.",
    ),
    source: Source | None = typer.Option(
        None,
        "--source",
        help="Source to crawl (overrides config).",
    ),
    headless: bool | None = typer.Option(
        None,
        "--headless/--no-headless",
        help="Run browser in headless mode.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """Run one crawl: search, deduplicate and upsert listings."""
    config = get_config(ctx)
    settings = merge_crawl_overrides(
        config.crawl,
        {
            "max_searches": max_searches,
            "pages_per_search": pages,
            "shuffle": shuffle,
            "source": source,
            "headless": headless,
        },
    )

    if not json_output:
        console.print(f"[bold blue]Crawling {settings.source.value}[/bold blue]")
        console.print(f"  Searches: {settings.max_searches} ({'shuffled' if settings.shuffle else 'in order'})")
        console.print(f"  Pages per search: {settings.pages_per_search}")

    def on_progress(progress: CrawlProgress) -> None:
        console.print(
            f"[dim][{progress.descriptor_index}/{progress.total_descriptors}] "
            f"{progress.description} ({progress.unique_listings} unique so far)[/dim]"
        )

    init_db()

    try:
        with get_session() as session:
            service = CrawlService(session, config)
            result = asyncio.run(
                service.run_daily_update(
                    settings=settings,
                    progress_callback=None if json_output else on_progress,
                )
            )
    except FatalError as e:
        if json_output:
            output_json({"status": "error", "source": settings.source.value, "error": str(e)})
        else:
            console.print(f"[red]Crawl failed: {e}[/red]")
        raise typer.Exit(1) from e

    if json_output:
        output_json({
            "status": "success",
            "source": settings.source.value,
            "results": result.model_dump(mode="json"),
        })
        return

    console.print()
    console.print("[green]Crawl complete![/green]")
    console.print(f"  Searches run: {result.descriptors_run}")
    console.print(f"  Pages fetched: {result.pages_fetched} ({result.pages_failed} failed, {result.pages_rate_limited} rate limited)")
    console.print(f"  Unique listings: {result.unique_listings}")
    console.print(f"  New listings: {result.inserted}")
    console.print(f"  Updated: {result.updated}")
    if result.errors:
        console.print(f"  [yellow]Persistence errors: {len(result.errors)}[/yellow]")


@app.command()
def enrich(
    ctx: typer.Context,
    limit: int | None = typer.Option(
        None,
        "--limit",
        "-l",
        help="Maximum listings to enrich (overrides config).",
    ),
    include_all: bool = typer.Option(
        False,
        "--all",
        help="Consider all listings, not only recently discovered ones.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Run even if the last cycle was recent or nothing is pending.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """Run one enrichment cycle: fetch detail pages for pending listings."""
    config = get_config(ctx)

    def on_item(item: EnrichmentItem) -> None:
        if item.success:
            console.print(f"[dim]Enriched {item.external_id}[/dim]")
        else:
            console.print(f"[yellow]Failed {item.external_id}: {item.error}[/yellow]")

    init_db()

    try:
        with get_session() as session:
            service = EnrichmentService(session, config)
            result = asyncio.run(
                service.run_cycle(
                    force=force,
                    limit=limit,
                    only_recent=False if include_all else None,
                    progress_callback=None if json_output else on_item,
                )
            )
    except FatalError as e:
        if json_output:
            output_json({"status": "error", "error": str(e)})
        else:
            console.print(f"[red]Enrichment failed: {e}[/red]")
        raise typer.Exit(1) from e

    if result is None:
        if json_output:
            output_json({"status": "skipped"})
        else:
            console.print("[yellow]Enrichment skipped (ran recently or nothing pending). Use --force to run anyway.[/yellow]")
        return

    if json_output:
        output_json({"status": "success", "results": result.model_dump(mode="json")})
        return

    console.print()
    console.print("[green]Enrichment complete![/green]")
    console.print(f"  Processed: {result.processed}")
    console.print(f"  Enriched: {result.success}")
    console.print(f"  Failed: {result.errors}")


@app.command()
def stats(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """Show database, crawl and enrichment statistics."""
    config = get_config(ctx)
    init_db()

    with get_session() as session:
        statistics, crawl_state = CrawlService(session, config).get_stats()
        enrichment, enrichment_state = EnrichmentService(session, config).get_stats()

    if json_output:
        output_json({
            "database": statistics.model_dump(mode="json"),
            "crawl_state": run_state_to_dict(crawl_state),
            "enrichment": enrichment.model_dump(mode="json"),
            "enrichment_state": run_state_to_dict(enrichment_state),
        })
        return

    table = Table(title="Listings")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white", justify="right")
    table.add_row("Total", f"{statistics.total:,}")
    table.add_row("Unique properties", f"{statistics.unique_properties:,}")
    table.add_row("States covered", str(statistics.states_covered))
    table.add_row("Cities covered", str(statistics.cities_covered))
    table.add_row("Houses", f"{statistics.houses:,}")
    table.add_row("Apartments", f"{statistics.apartments:,}")
    table.add_row("Average price", f"{statistics.avg_price:,.0f}" if statistics.avg_price else "-")
    table.add_row("New in last 24h", f"{statistics.recent_new:,}")
    table.add_row("Enriched", f"{enrichment.with_details:,} / {enrichment.total_properties:,}")
    table.add_row("With images", f"{enrichment.with_images:,}")
    table.add_row("With amenities", f"{enrichment.with_amenities:,}")
    console.print(table)

    for title, state in (("Crawl", crawl_state), ("Enrichment", enrichment_state)):
        last_run = state.last_run.strftime("%Y-%m-%d %H:%M") if state.last_run else "never"
        console.print(
            f"[bold]{title}:[/bold] last run {last_run}, "
            f"{len(state.runs)} runs recorded, success rate {state.success_rate}%"
        )


@app.command()
def amenities(
    ctx: typer.Context,
    limit: int = typer.Option(
        20,
        "--limit",
        "-l",
        help="Number of amenities to show.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """Show the most frequent amenities across enriched listings."""
    config = get_config(ctx)
    init_db()

    with get_session() as session:
        top = EnrichmentService(session, config).get_top_amenities(limit)

    if json_output:
        output_json({"amenities": [item.model_dump() for item in top], "count": len(top)})
        return

    if not top:
        console.print("[yellow]No amenities recorded yet.[/yellow]")
        return

    table = Table(title=f"Top {len(top)} Amenities")
    table.add_column("Amenity", style="white")
    table.add_column("Listings", style="green", justify="right")
    for item in top:
        table.add_row(item.amenity, f"{item.count:,}")
    console.print(table)


@app.command()
def health(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """Report whether enrichment is keeping up."""
    config = get_config(ctx)
    init_db()

    with get_session() as session:
        report = EnrichmentService(session, config).check_health()

    if json_output:
        output_json(report.model_dump(mode="json"))
        return

    status = "[red]STUCK[/red]" if report.stuck else "[green]OK[/green]"
    last_run = report.last_run.strftime("%Y-%m-%d %H:%M") if report.last_run else "never"
    console.print(
        Panel(
            "\n".join([
                f"[bold]Status:[/bold] {status}",
                f"[bold]Pending enrichment:[/bold] {report.pending:,}",
                f"[bold]Last enrichment run:[/bold] {last_run}",
                f"[bold]Recently run:[/bold] {'yes' if report.recently_run else 'no'}",
            ]),
            title="[bold blue]Enrichment Health[/bold blue]",
            expand=False,
        )
    )


@app.command(name="list")
def list_listings(
    property_type: str | None = typer.Option(
        None,
        "--type",
        "-t",
        help="Filter by property type (e.g. Casa, Departamento).",
    ),
    state: str | None = typer.Option(
        None,
        "--state",
        help="Filter by state.",
    ),
    enriched: bool | None = typer.Option(
        None,
        "--enriched/--not-enriched",
        help="Filter by enrichment status.",
    ),
    limit: int = typer.Option(
        20,
        "--limit",
        "-l",
        help="Maximum number of listings to show.",
    ),
    source: Source | None = typer.Option(
        None,
        "--source",
        help="Filter by source.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """List persisted listings, most recently discovered first."""
    init_db()

    filters: dict[str, Any] = {
        "source": source,
        "property_type": property_type,
        "state": state,
        "detail_scraped": enriched,
    }

    with get_session() as session:
        repo = ListingRepository(session)
        listings = repo.get_listings(**filters, limit=limit)
        total = repo.count_listings(**filters)

        if json_output:
            output_json({
                "listings": [listing_to_dict(listing) for listing in listings],
                "count": len(listings),
                "total": total,
                "filters": {
                    "source": source.value if source else None,
                    "property_type": property_type,
                    "state": state,
                    "enriched": enriched,
                    "limit": limit,
                },
            })
            return

        if not listings:
            console.print("[yellow]No listings found.[/yellow]")
            return

        table = Table(title=f"Listings ({len(listings)} shown)")
        table.add_column("ID", style="cyan", justify="right")
        table.add_column("Title", style="white", max_width=40)
        table.add_column("Type", style="magenta")
        table.add_column("Price", style="green", justify="right")
        table.add_column("Rec", style="blue", justify="right")
        table.add_column("Location", style="white", max_width=30)
        table.add_column("Det", justify="center")

        for listing in listings:
            price_str = f"{listing.price:,.0f} {listing.currency}" if listing.price else "-"
            location = ", ".join(part for part in (listing.city, listing.state) if part) or "-"
            detail_str = "[green]Y[/green]" if listing.detail_scraped else "[dim]N[/dim]"

            table.add_row(
                str(listing.id),
                listing.title[:40] if listing.title else "-",
                listing.property_type,
                price_str,
                str(listing.bedrooms),
                location,
                detail_str,
            )

        console.print(table)

        if total > limit:
            console.print(f"[dim]Showing {limit} of {total} total listings[/dim]")


@app.command()
def show(
    listing_id: int = typer.Argument(..., help="Listing ID to show."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output as JSON (for programmatic consumption).",
    ),
) -> None:
    """Show detailed information for a specific listing."""
    init_db()

    with get_session() as session:
        repo = ListingRepository(session)
        listing = repo.get_listing_by_id(listing_id)

        if not listing:
            if json_output:
                output_json({"error": f"Listing #{listing_id} not found"})
            else:
                console.print(f"[red]Listing #{listing_id} not found.[/red]")
            raise typer.Exit(1)

        if json_output:
            output_json(listing_to_dict(listing))
            return

        price = f"{listing.price:,.0f} {listing.currency}" if listing.price else "-"
        area = f"{listing.area_sqm} m²" if listing.area_sqm else "-"
        details = [
            f"[bold]Title:[/bold] {listing.title}",
            f"[bold]Source:[/bold] {listing.source.value if listing.source else 'Unknown'}",
            f"[bold]External ID:[/bold] {listing.external_id}",
            f"[bold]URL:[/bold] {listing.link or '-'}",
            "",
            f"[bold]Type:[/bold] {listing.property_type}",
            f"[bold]Price:[/bold] {price}",
            f"[bold]Bedrooms / Bathrooms:[/bold] {listing.bedrooms} / {listing.bathrooms}",
            f"[bold]Area:[/bold] {area}",
            f"[bold]Location:[/bold] {listing.location or '-'}",
        ]

        if listing.detail_scraped:
            details.extend([
                "",
                f"[bold]Address:[/bold] {listing.full_address or '-'}",
                f"[bold]Neighborhood:[/bold] {listing.neighborhood or '-'}",
                f"[bold]Parking:[/bold] {listing.parking_spaces if listing.parking_spaces is not None else '-'}",
                f"[bold]Age:[/bold] {listing.property_age if listing.property_age is not None else '-'}",
                f"[bold]Seller:[/bold] {listing.seller_type or '-'}",
                f"[bold]Images:[/bold] {len(listing.images or [])}",
            ])
            if listing.amenities:
                details.append(f"[bold]Amenities:[/bold] {', '.join(listing.amenities)}")
        else:
            details.extend(["", "[dim]Details not fetched yet[/dim]"])

        details.extend([
            "",
            f"[bold]First Seen:[/bold] {listing.first_seen_at.strftime('%Y-%m-%d %H:%M') if listing.first_seen_at else '-'}",
            f"[bold]Last Seen:[/bold] {listing.last_seen_at.strftime('%Y-%m-%d %H:%M') if listing.last_seen_at else '-'}",
        ])

        panel = Panel(
            "\n".join(details),
            title=f"[bold blue]Listing #{listing.id}[/bold blue]",
            expand=False,
        )
        console.print(panel)


@app.command()
def export(
    format: str = typer.Option(
        "csv",
        "--format",
        "-f",
        help="Export format (csv, json).",
    ),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file path.",
    ),
    include_all: bool = typer.Option(
        False,
        "--all",
        help="Include listings without details.",
    ),
    source: Source | None = typer.Option(
        None,
        "--source",
        help="Filter by source.",
    ),
) -> None:
    """Export enriched listings to a file."""
    if format not in ("csv", "json"):
        console.print(f"[red]Unknown format: {format}. Use 'csv' or 'json'.[/red]")
        raise typer.Exit(1)

    init_db()

    with get_session() as session:
        repo = ListingRepository(session)
        listings = repo.get_listings(
            source=source,
            detail_scraped=None if include_all else True,
        )

        if not listings:
            console.print("[yellow]No listings to export.[/yellow]")
            return

        if output is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            output = Path(f"listings_{timestamp}.{format}")

        console.print(f"[bold blue]Exporting {len(listings)} listings to {output}...[/bold blue]")

        if format == "csv":
            export_to_csv(listings, output)
        else:
            export_to_json(listings, output)

        console.print(f"[green]Export complete: {output}[/green]")


@app.command()
def schedule(ctx: typer.Context) -> None:
    """Run the crawl and enrichment schedule until interrupted."""
    config = get_config(ctx)
    init_db()

    console.print(f"[bold blue]Scheduling crawl '{config.scheduler.crawl_cron}'[/bold blue]")
    console.print(f"  Enrichment every {config.scheduler.enrichment_interval_minutes} minutes")
    console.print("  Press Ctrl+C to stop")

    asyncio.run(CrawlScheduler(config).serve())


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address."),
    port: int = typer.Option(8000, "--port", help="Bind port."),
) -> None:
    """Serve the REST API."""
    init_db()
    uvicorn.run("casa_scout.api.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
