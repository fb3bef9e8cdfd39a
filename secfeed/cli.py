"""
secfeed CLI - Command line interface for the advisory pipeline.

Usage:
    secfeed --help                      Show all commands
    secfeed crawl                       Ingest the configured seeds
    secfeed crawl --seed URL            Ingest specific seeds
    secfeed scrape URL ...              Scrape pages and print the normalized items
    secfeed summarize --limit 5         Summarize the most recently updated incidents
    secfeed summarize-incident ID       Summarize one incident now
    secfeed delete-summary ID           Delete one summary run
    secfeed provider [OPTION]           Show or set the default summarizer
"""

import asyncio

import typer

from secfeed.summarize.options import SUMMARIZER_OPTION_METADATA, SummarizerOption, summarizer_label

app = typer.Typer(
    name="secfeed",
    help="secfeed CLI - security advisory ingestion and summaries",
    no_args_is_help=True,
)


def _print_success(message: str) -> None:
    """Print a success message."""
    typer.echo(f"  ✅ {message}")


def _print_warning(message: str) -> None:
    """Print a warning message."""
    typer.echo(f"  ⚠️ {message}")


def _print_error(message: str) -> None:
    """Print an error message to stderr."""
    typer.echo(f"❌ {message}", err=True)


@app.command()
def crawl(
    seed: list[str] | None = typer.Option(None, "--seed", "-s", help="Seed URL (repeatable)"),
):
    """Run ingestion over the configured (or given) seeds."""
    from secfeed.core.errors import SecfeedError
    from secfeed.jobs.crawl import main

    try:
        result = asyncio.run(main(seeds=seed or None))
    except SecfeedError as e:
        _print_error(str(e))
        raise typer.Exit(1)

    _print_success(
        f"{result.new_documents} new documents, {result.duplicates} duplicates, "
        f"{len(result.changed_incident_ids)} incidents changed"
    )
    if result.errors:
        _print_warning(f"{result.errors} items failed to store")
    for incident_id in result.changed_incident_ids:
        typer.echo(f"  {incident_id}")


@app.command()
def scrape(urls: list[str] = typer.Argument(..., help="Page URLs to scrape")):
    """Scrape pages through the scraping service (no database writes)."""
    from secfeed.config import get_config
    from secfeed.core.logging import setup_logging
    from secfeed.ingest.scraper import create_scraper, scrape_batch

    setup_logging()
    config = get_config()
    items = asyncio.run(scrape_batch(create_scraper(config), urls, config.scrape))

    for item in items:
        typer.echo(item.model_dump_json(indent=2))
    if len(items) < len(urls):
        _print_warning(f"{len(urls) - len(items)} of {len(urls)} pages failed")
        raise typer.Exit(1)


@app.command()
def summarize(
    limit: int | None = typer.Option(None, "--limit", "-l", help="Number of incidents"),
    provider: SummarizerOption | None = typer.Option(
        None, "--provider", "-p", help="Provider override"
    ),
):
    """Summarize the most recently updated incidents."""
    from secfeed.jobs.summarize import main

    result = asyncio.run(main(limit=limit, provider=provider))
    _print_success(
        f"{len(result.changed_incident_ids)} incidents summarized with "
        f"{summarizer_label(result.provider)}"
    )
    if result.failed:
        _print_warning(f"{result.failed} incidents failed")


@app.command("summarize-incident")
def summarize_incident(
    incident_id: str = typer.Argument(..., help="Incident id"),
    provider: SummarizerOption | None = typer.Option(
        None, "--provider", "-p", help="Provider override"
    ),
):
    """Summarize one incident now."""
    from secfeed.core.database import session_scope
    from secfeed.core.errors import SecfeedError
    from secfeed.core.logging import setup_logging
    from secfeed.summarize.runner import summarize_incident_now

    setup_logging()

    async def run():
        async with session_scope() as db:
            return await summarize_incident_now(db, incident_id, provider_override=provider)

    try:
        run_row = asyncio.run(run())
    except SecfeedError as e:
        _print_error(str(e))
        raise typer.Exit(1)

    _print_success(f"{run_row.provider} ({run_row.model or 'no model'}) at {run_row.ran_at.isoformat()}")
    typer.echo(f"\n{run_row.tl_dr}\n\n{run_row.summary_md}")


@app.command("delete-summary")
def delete_summary(summary_id: str = typer.Argument(..., help="Summary run id")):
    """Delete one summary run and show the incident's new latest run."""
    from secfeed.core.database import session_scope
    from secfeed.core.errors import NotFound
    from secfeed.core.logging import setup_logging
    from secfeed.summarize.runner import delete_summary_run

    setup_logging()

    async def run():
        async with session_scope() as db:
            return await delete_summary_run(db, summary_id)

    try:
        latest = asyncio.run(run())
    except NotFound as e:
        _print_error(str(e))
        raise typer.Exit(1)

    _print_success("Summary deleted")
    if latest is None:
        typer.echo("  No summaries remain for this incident")
    else:
        typer.echo(f"  Latest is now {latest.provider} at {latest.ran_at.isoformat()}")


@app.command()
def provider(
    option: SummarizerOption | None = typer.Argument(None, help="Provider to make the default"),
):
    """Show or set the default summarizer provider."""
    from secfeed.config import get_config
    from secfeed.core.database import session_scope
    from secfeed.summarize.preferences import get_default_provider, set_default_provider

    async def run() -> SummarizerOption:
        async with session_scope() as db:
            if option is not None:
                return await set_default_provider(db, option)
            return await get_default_provider(db, get_config().summarizer.default_provider)

    current = asyncio.run(run())
    for candidate, info in SUMMARIZER_OPTION_METADATA.items():
        marker = "*" if candidate is current else " "
        typer.echo(f" {marker} {candidate.value:<12} {info.label}: {info.description}")


if __name__ == "__main__":
    app()
