"""
Adaptive Review CLI.

Usage:
    adaptive-review init-db                      # Create database tables
    adaptive-review session -d DOC -n 10         # Show the next study queue
    adaptive-review review CARD --correct -c 4   # Record an answer
    adaptive-review due                          # List due cards
    adaptive-review recommend -d DOC             # Study recommendations
    adaptive-review analytics                    # Learning dashboard
    adaptive-review generate "prompt"            # Cached content generation
    adaptive-review cache-cleanup                # Drop stale cache entries
    adaptive-review usage --days 7               # Logged generator usage
"""

from __future__ import annotations

import asyncio
import sys
from typing import Annotated

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adaptive_review.analytics import AnalyticsAggregator
from adaptive_review.cache import ResponseCache, usage_totals
from adaptive_review.config import get_settings
from adaptive_review.db import dispose_engine, get_engine, get_session_factory, init_db
from adaptive_review.errors import GenerationError, InvalidReviewError, ReviewNotRecordedError
from adaptive_review.generation import ChatCompletionsGenerator
from adaptive_review.store import SqlCacheStore, SqlProgressStore
from adaptive_review.study import ReviewSubmission, StudyService

# =============================================================================
# CLI Setup
# =============================================================================

app = typer.Typer(
    name="adaptive-review",
    help="Adaptive spaced-repetition scheduler",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

LearnerOption = Annotated[str, typer.Option("--learner", "-l", help="Learner identifier")]
DocumentOption = Annotated[
    str | None, typer.Option("--document", "-d", help="Limit to one document")
]


def _progress_store() -> SqlProgressStore:
    return SqlProgressStore(get_engine(), get_session_factory())


def _trend_marker(value: int) -> str:
    return {1: "[green]▲[/]", -1: "[red]▼[/]"}.get(value, "[dim]–[/]")


def _delta(value: int) -> str:
    if value > 0:
        return f"[green]+{value}[/]"
    if value < 0:
        return f"[red]{value}[/]"
    return "[dim]±0[/]"


# =============================================================================
# Database
# =============================================================================


@app.command("init-db")
def init_db_command() -> None:
    """Create all tables in the configured database."""

    async def _run() -> None:
        try:
            await init_db()
        finally:
            await dispose_engine()

    asyncio.run(_run())
    console.print("[green]Database tables initialized[/]")


# =============================================================================
# Study Commands
# =============================================================================


@app.command()
def session(
    learner: LearnerOption = "default",
    document: DocumentOption = None,
    size: Annotated[int | None, typer.Option("--size", "-n", help="Maximum cards")] = None,
) -> None:
    """Show the next study queue, highest priority first."""

    async def _run():
        try:
            return await StudyService(_progress_store()).build_session(
                learner, document, max_size=size
            )
        finally:
            await dispose_engine()

    ranked = asyncio.run(_run())
    if not ranked:
        console.print("[yellow]No cards available for this session[/]")
        return

    table = Table(title=f"Study session ({len(ranked)} cards)")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Card", style="cyan")
    table.add_column("Topic")
    table.add_column("Priority", justify="right")
    table.add_column("Reason")
    for index, score in enumerate(ranked, start=1):
        table.add_row(
            str(index),
            score.card.question[:60],
            score.card.topic or "-",
            f"{score.priority:.1f}",
            score.reason,
        )
    console.print(table)


@app.command()
def review(
    card_id: Annotated[str, typer.Argument(help="Card that was answered")],
    learner: LearnerOption = "default",
    correct: Annotated[
        bool, typer.Option("--correct/--incorrect", help="Whether the answer was right")
    ] = True,
    confidence: Annotated[
        int, typer.Option("--confidence", "-c", help="Self-reported confidence (1-5)")
    ] = 3,
    time_ms: Annotated[
        int, typer.Option("--time-ms", "-t", help="Response time in milliseconds")
    ] = 0,
    document: DocumentOption = None,
) -> None:
    """Record one answered card and show its new schedule."""
    try:
        submission = ReviewSubmission.parse(
            {
                "card_id": card_id,
                "correct": correct,
                "confidence": confidence,
                "response_time_ms": time_ms,
                "document_id": document,
            }
        )
    except InvalidReviewError as e:
        console.print(f"[red]Invalid review:[/] {e}")
        raise typer.Exit(code=2)

    async def _run():
        try:
            return await StudyService(_progress_store()).record_review(learner, submission)
        finally:
            await dispose_engine()

    try:
        outcome = asyncio.run(_run())
    except InvalidReviewError as e:
        console.print(f"[red]Invalid review:[/] {e}")
        raise typer.Exit(code=2)
    except ReviewNotRecordedError as e:
        console.print(f"[red]Review not recorded, please retry:[/] {e.cause}")
        raise typer.Exit(code=1)

    progress = outcome.progress
    console.print(
        Panel(
            f"Result: {'[green]correct[/]' if correct else '[red]incorrect[/]'}\n"
            f"Ease: {progress.ease_factor:.2f}\n"
            f"Interval: {progress.interval_days} day(s) (box {outcome.box})\n"
            f"Due: {progress.due_at:%Y-%m-%d %H:%M} UTC\n"
            f"Mastered: {'yes' if progress.mastered else 'no'}",
            title=f"Card {card_id}",
            border_style="cyan",
        )
    )


@app.command()
def due(
    learner: LearnerOption = "default",
    document: DocumentOption = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows (1-200)")] = 50,
) -> None:
    """List due, unmastered cards, most overdue first."""

    async def _run():
        try:
            return await StudyService(_progress_store()).due_cards(learner, document, limit=limit)
        finally:
            await dispose_engine()

    records = asyncio.run(_run())
    if not records:
        console.print("[green]Nothing due. Great job![/]")
        return

    table = Table(title=f"Due cards ({len(records)})")
    table.add_column("Card", style="cyan")
    table.add_column("Due", style="yellow")
    table.add_column("Interval", justify="right")
    table.add_column("Ease", justify="right")
    table.add_column("Reviews", justify="right")
    for record in records:
        table.add_row(
            record.card_id,
            f"{record.due_at:%Y-%m-%d %H:%M}",
            f"{record.interval_days}d",
            f"{record.ease_factor:.2f}",
            str(record.review_count),
        )
    console.print(table)


@app.command()
def recommend(
    learner: LearnerOption = "default",
    document: DocumentOption = None,
) -> None:
    """Summarize what to study next."""

    async def _run():
        try:
            return await StudyService(_progress_store()).recommendations(learner, document)
        finally:
            await dispose_engine()

    recs = asyncio.run(_run())
    focus = ", ".join(recs.focus_topics) or "-"
    console.print(
        Panel(
            f"Due: [yellow]{recs.due_count}[/]\n"
            f"New: [cyan]{recs.new_count}[/]\n"
            f"Struggling: [red]{recs.struggling_count}[/]\n"
            f"Recommended session size: [bold]{recs.recommended_session_size}[/]\n"
            f"Focus topics: {focus}",
            title="Study recommendations",
            border_style="green",
        )
    )


@app.command()
def analytics(
    learner: LearnerOption = "default",
    document: DocumentOption = None,
) -> None:
    """Show streaks, accuracy, trends and topic performance."""

    async def _run():
        try:
            return await AnalyticsAggregator(_progress_store()).analyze(learner, document)
        finally:
            await dispose_engine()

    result = asyncio.run(_run())
    trends = result.recent_trends
    activity = result.activity
    console.print(
        Panel(
            f"Due: [yellow]{result.due_cards}[/] card(s) in {result.due_documents} document(s)\n"
            f"Today: {activity.cards_today} card(s) {_delta(activity.cards_delta)}, "
            f"{activity.minutes_today} min {_delta(activity.minutes_delta)}\n"
            f"Streak: [bold]{result.streak}[/] day(s) (best {result.best_streak})\n"
            f"Reviews: {result.total_cards_reviewed}\n"
            f"Accuracy: {result.accuracy_rate:.0%} {_trend_marker(trends.accuracy_trend)}\n"
            f"Confidence: {result.average_confidence:.1f} {_trend_marker(trends.confidence_trend)}\n"
            f"Speed: {_trend_marker(trends.speed_trend)}\n"
            f"Time studied: {result.time_studied_seconds // 60} min\n"
            f"Mastered: [green]{result.mastered_cards}[/]  "
            f"Struggling: [red]{result.struggling_cards}[/]\n"
            f"Strongest topic: {result.strongest_topic or '-'}  "
            f"Weakest topic: {result.weakest_topic or '-'}",
            title="Learning analytics",
            border_style="cyan",
        )
    )

    if result.topic_performance:
        table = Table(title="Topics")
        table.add_column("Topic", style="cyan")
        table.add_column("Accuracy", justify="right")
        table.add_column("Reviews", justify="right")
        for topic in result.topic_performance:
            table.add_row(topic.topic, f"{topic.accuracy:.0%}", str(topic.review_count))
        console.print(table)


# =============================================================================
# Content Generation & Cache
# =============================================================================


@app.command()
def generate(
    prompt: Annotated[str, typer.Argument(help="Prompt to send to the generator")],
    model: Annotated[str | None, typer.Option("--model", "-m", help="Model override")] = None,
    temperature: Annotated[
        float | None, typer.Option("--temperature", help="Sampling temperature")
    ] = None,
) -> None:
    """Generate content, reusing a cached response when one exists."""
    settings = get_settings()
    if not settings.has_generator_configured():
        console.print("[yellow]Set GENERATOR_API_KEY to enable content generation[/]")
        raise typer.Exit(code=1)

    async def _run() -> str:
        generator = ChatCompletionsGenerator.from_settings(settings)
        cache = ResponseCache(
            SqlCacheStore(get_engine(), get_session_factory()),
            ttl_hours=settings.cache_ttl_hours,
            cleanup_hours=settings.cache_cleanup_hours,
        )
        try:
            return await cache.generate(
                generator,
                prompt,
                model or settings.generator_model,
                settings.generator_temperature if temperature is None else temperature,
            )
        finally:
            await cache.drain()
            await generator.close()
            await dispose_engine()

    try:
        text = asyncio.run(_run())
    except GenerationError as e:
        console.print(f"[red]Generation failed:[/] {e}")
        raise typer.Exit(code=1)

    console.print(text)


@app.command("cache-cleanup")
def cache_cleanup(
    hours: Annotated[
        float | None, typer.Option("--hours", help="Remove entries older than this")
    ] = None,
) -> None:
    """Delete cached responses past the cleanup horizon."""
    settings = get_settings()

    async def _run() -> int:
        cache = ResponseCache(
            SqlCacheStore(get_engine(), get_session_factory()),
            ttl_hours=settings.cache_ttl_hours,
            cleanup_hours=settings.cache_cleanup_hours,
        )
        try:
            return await cache.cleanup(older_than_hours=hours)
        finally:
            await dispose_engine()

    removed = asyncio.run(_run())
    console.print(f"[green]Removed {removed} cached response(s)[/]")


@app.command()
def usage(
    days: Annotated[int, typer.Option("--days", help="Look back this many days (0 for all time)")] = 7,
    operation: Annotated[
        str | None, typer.Option("--operation", "-o", help="Only this operation")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows (up to 5000)")] = 1000,
) -> None:
    """List logged generator usage, newest first."""
    settings = get_settings()

    async def _run():
        cache = ResponseCache(
            SqlCacheStore(get_engine(), get_session_factory()),
            ttl_hours=settings.cache_ttl_hours,
            cleanup_hours=settings.cache_cleanup_hours,
        )
        try:
            return await cache.usage(days=days or None, operation=operation, limit=limit)
        finally:
            await dispose_engine()

    records = asyncio.run(_run())
    if not records:
        console.print("[yellow]No usage logged for this window[/]")
        return

    table = Table(title=f"Usage ({len(records)} calls)")
    table.add_column("When", style="dim")
    table.add_column("Operation", style="cyan")
    table.add_column("Model")
    table.add_column("Prompt", justify="right")
    table.add_column("Completion", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Latency", justify="right")
    for record in records:
        table.add_row(
            f"{record.created_at:%Y-%m-%d %H:%M}",
            record.operation,
            record.model,
            str(record.usage.prompt_tokens),
            str(record.usage.completion_tokens),
            str(record.usage.total_tokens),
            f"{record.latency_ms} ms" if record.latency_ms is not None else "-",
        )
    console.print(table)

    totals = usage_totals(records)
    console.print(
        f"Total tokens: [bold]{totals.total_tokens}[/] "
        f"(prompt {totals.prompt_tokens}, completion {totals.completion_tokens})"
    )


# =============================================================================
# Entry Point
# =============================================================================


def run() -> None:
    """CLI entry point."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=get_settings().log_level,
        format="<level>{message}</level>",
    )

    app()


if __name__ == "__main__":
    run()
