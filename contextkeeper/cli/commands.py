"""CLI commands for contextkeeper."""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from contextkeeper import __logo__, __version__

app = typer.Typer(
    name="contextkeeper",
    help=f"{__logo__} contextkeeper - Conversation context budgeting",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} contextkeeper v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """contextkeeper - Conversation context budgeting."""
    pass


# ============================================================================
# Config
# ============================================================================


@app.command()
def init(
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Write a default config file."""
    from contextkeeper.config.loader import get_config_path, save_config
    from contextkeeper.config.schema import Config

    path = get_config_path()
    if path.exists() and not force:
        console.print(f"[yellow]Config already exists at {path}[/yellow]")
        console.print("Use --force to overwrite it.")
        raise typer.Exit(1)

    save_config(Config(), path)
    console.print(f"[green]✓[/green] Created config at {path}")


@app.command()
def status():
    """Show the active configuration."""
    from contextkeeper.config.loader import get_config_path, load_config
    from contextkeeper.config.models import get_context_window

    path = get_config_path()
    config = load_config(path)
    window = get_context_window(config.agent.model, config.budget.default_context_window)

    console.print(f"{__logo__} contextkeeper Status\n")
    console.print(
        f"Config: {path} {'[green]✓[/green]' if path.exists() else '[dim](defaults)[/dim]'}"
    )
    console.print(f"Model: {config.agent.model} ({window:,} token window)")
    console.print(
        f"Budget: reserve {config.budget.reserve_ratio:.0%}, "
        f"{config.budget.subject_count} subjects, {config.budget.message_limit} messages, "
        f"start tier {config.budget.start_tier}"
    )
    console.print(
        f"Restart: at {config.restart.threshold:.0%} of the window, "
        f"carry {config.restart.carry_messages} messages"
    )
    enabled = "[green]enabled[/green]" if config.proposals.enabled else "[dim]disabled[/dim]"
    console.print(f"Proposals: {enabled}, max {config.proposals.max_proposals}")


# ============================================================================
# Models
# ============================================================================


@app.command()
def models():
    """List known models and their context windows."""
    from contextkeeper.config.models import MODELS, is_local_provider

    table = Table(title="Known Models")
    table.add_column("Model", style="cyan")
    table.add_column("Provider")
    table.add_column("Context Window", justify="right", style="green")
    table.add_column("Concurrency", style="yellow")

    for m in MODELS:
        concurrency = "1 (local)" if is_local_provider(m["provider"]) else "unlimited"
        table.add_row(m["id"], m["provider"], f"{m['context_window']:,}", concurrency)

    console.print(table)


# ============================================================================
# Scoring / Compression
# ============================================================================


@app.command()
def score(
    keywords: list[str] = typer.Argument(..., help="Subject keywords"),
    description: str = typer.Option("", "--description", "-d", help="Subject description"),
    messages: int = typer.Option(0, "--messages", "-m", help="Messages discussing the subject"),
):
    """Score the abstraction level of a subject."""
    from contextkeeper.agent.abstraction import analyze, get_level_range

    result = analyze(keywords, description, messages)
    low, high, band = get_level_range(result.level)

    console.print(f"[bold]Level {result.level}[/bold] ({band} band, {low}-{high})")
    console.print(f"Reasoning: {result.reasoning}")
    console.print(f"Confidence: {result.confidence:.0%}")


def _load_subjects(path: Path):
    from contextkeeper.agent.abstraction import score as score_subject
    from contextkeeper.analysis.types import Subject

    data = json.loads(path.read_text(encoding="utf-8"))
    subjects = []
    for item in data:
        subject = Subject(
            keywords=item.get("keywords", []),
            name=item.get("name", ""),
            description=item.get("description", ""),
            message_count=item.get("messageCount", item.get("message_count", 0)),
        )
        subject.abstraction_level = score_subject(
            subject.keywords, subject.description, subject.message_count,
        )
        subjects.append(subject)
    return subjects


@app.command()
def summarize(
    subjects_file: Path = typer.Argument(..., help="JSON list of subjects"),
    budget: int = typer.Option(200, "--budget", "-b", help="Token budget for the digest"),
    tier: str = typer.Option("balanced", "--tier", "-t", help="Starting tier"),
):
    """Render a past-subject digest and compare compression tiers."""
    from contextkeeper.agent.summarizer import Tier, compression_stats, format_past_subjects

    if not subjects_file.exists():
        console.print(f"[red]File not found: {subjects_file}[/red]")
        raise typer.Exit(1)
    try:
        start = Tier(tier)
    except ValueError:
        console.print(f"[red]Unknown tier: {tier}[/red]")
        raise typer.Exit(1)

    subjects = _load_subjects(subjects_file)
    stats = compression_stats(subjects)

    table = Table(title=f"Compression ({len(subjects)} subjects)")
    table.add_column("Tier", style="cyan")
    table.add_column("Tokens", justify="right")
    table.add_column("Fits", justify="center")
    for name, tokens in stats.items():
        fits = "[green]✓[/green]" if tokens <= budget else "[dim]no[/dim]"
        table.add_row(name, str(tokens), fits)
    console.print(table)

    text, used = format_past_subjects(subjects, budget, start)
    console.print(f"\n[bold]Digest[/bold] ({used.value}):")
    if text:
        console.print(text, markup=False)
    else:
        console.print("[dim]No subjects[/dim]")


@app.command()
def budget(
    model: str = typer.Option(None, "--model", help="Model to take the context window from"),
    window: int = typer.Option(None, "--window", "-w", help="Context window in tokens"),
    system_tokens: int = typer.Option(500, "--system-tokens", "-s", help="System prompt tokens"),
):
    """Show how a context window is split between prompt parts."""
    from contextkeeper.agent.budget import budget_stats, create_budget
    from contextkeeper.config.loader import load_config
    from contextkeeper.config.models import get_context_window

    config = load_config()
    if window is None:
        window = get_context_window(
            model or config.agent.model, config.budget.default_context_window,
        )

    try:
        b = create_budget(window, system_tokens, reserve_ratio=config.budget.reserve_ratio)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    stats = budget_stats(b)

    table = Table(title=f"Budget for a {window:,} token window")
    table.add_column("Part", style="cyan")
    table.add_column("Tokens", justify="right")
    table.add_column("Share", justify="right", style="green")
    table.add_row("System prompt", f"{b.system_prompt_tokens:,}", stats["allocation"]["system_prompt"])
    table.add_row("Past subjects", f"{b.past_subjects_budget:,}", stats["allocation"]["past_subjects"])
    table.add_row(
        "Current messages", f"{b.current_messages_budget:,}", stats["allocation"]["current_messages"],
    )
    table.add_row("Response reserve", f"{b.response_reserve:,}", stats["allocation"]["reserved"])
    console.print(table)

    colors = {"healthy": "green", "tight": "yellow", "critical": "red"}
    color = colors[stats["status"]]
    console.print(
        f"Status: [{color}]{stats['status']}[/{color}] "
        f"({stats['utilization_percent']}% used before messages)"
    )
