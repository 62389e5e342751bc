"""
fuzzkit terminal UI theme.
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.theme import Theme
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeElapsedColumn, MofNCompleteColumn
from rich import box

from fuzzkit import __version__

# ── Custom Theme ─────────────────────────────────────────────────────────────

FUZZKIT_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "danger": "red bold",
    "success": "green bold",
    "muted": "dim white",
    "accent": "bold cyan",
    "class.crash": "bold red",
    "class.anomaly": "red",
    "class.timeout": "yellow",
    "class.rate_limited": "blue",
    "class.pass": "dim green",
    "strategy": "bold magenta",
    "value": "green",
})

console = Console(theme=FUZZKIT_THEME)

CLASS_ICONS = {
    "crash": "🔴",
    "anomaly": "🟠",
    "timeout": "🟡",
    "rate_limited": "🔵",
    "pass": "⚪",
}

# ── Banner ───────────────────────────────────────────────────────────────────

BANNER = rf"""[cyan]
   ┌─┐┬ ┬┌─┐┌─┐┬┌─┬┌┬┐
   ├┤ │ │┌─┘┌─┘├┴┐│ │
   └  └─┘└─┘└─┘┴ ┴┴ ┴
[/cyan][dim white]  ──── API Resilience Fuzzer ── v{__version__} ────[/dim white]
[dim cyan]  Malformed JSON, oversized payloads, stale timestamps.[/dim cyan]
"""

SMALL_BANNER = f"[bold cyan]⚡ fuzzkit[/bold cyan] [dim]v{__version__}[/dim]"


def print_banner(small: bool = False):
    """Print the fuzzkit banner."""
    if small:
        console.print(SMALL_BANNER)
    else:
        console.print(BANNER)


def print_target_info(target: str, templates: int, strategies: list[str], budget: str, mode: str = "execution"):
    """Print target and campaign info box."""
    table = Table(box=box.SIMPLE_HEAVY, show_header=False, padding=(0, 2))
    table.add_column("key", style="muted", width=12)
    table.add_column("value", style="value")
    table.add_row("TARGET", escape(target))
    table.add_row("TEMPLATES", str(templates))
    table.add_row("STRATEGIES", ", ".join(strategies))
    table.add_row("BUDGET", budget)
    table.add_row("MODE", mode)
    console.print(Panel(
        table,
        title="[bold cyan]◉ Campaign[/bold cyan]",
        border_style="cyan",
        padding=(1, 2),
    ))


def print_section(title: str, icon: str = "─"):
    """Print a section divider."""
    console.print()
    console.rule(f"[bold cyan] {icon} {title} [/bold cyan]", style="dim cyan")
    console.print()


def print_finding(finding):
    """Print one deduplicated finding."""
    cls = finding.classification.value
    style = f"class.{cls}"
    icon = CLASS_ICONS.get(cls, "⚪")
    console.print(
        f"  {icon} [{style}]{cls.upper().ljust(12)}[/{style}] "
        f"[bold white]{finding.id}[/bold white]  {escape(finding.status_label)}"
    )
    console.print(
        f"           [muted]strategy=[/muted][strategy]{finding.strategy}[/strategy]"
        f"[muted]  mutation={escape(finding.mutation)}  template={escape(finding.template_id)}"
        f"  seed={finding.seed}  seen={finding.observation_count}[/muted]"
    )
    if finding.body_excerpt:
        excerpt = finding.body_excerpt.replace("\n", " ")[:100]
        console.print(f"           [muted]{escape(excerpt)}[/muted]")
    console.print()


def print_case(case):
    """Print a planned fuzz case (dry run)."""
    preview = case.body[:80].decode("utf-8", errors="replace")
    console.print(
        f"  [strategy]{case.strategy}[/strategy] [muted]seed={case.seed}[/muted] "
        f"{escape(case.method)} {escape(case.path)}  [accent]{escape(case.mutation)}[/accent]"
    )
    console.print(f"    [muted]{len(case.body)} bytes: {escape(preview)}[/muted]")


def print_summary(summary):
    """Print campaign summary by classification."""
    console.print()
    table = Table(
        box=box.DOUBLE_EDGE,
        title="[bold white]Campaign Summary[/bold white]",
        border_style="cyan",
        padding=(0, 2),
    )
    table.add_column("Classification", style="bold")
    table.add_column("Responses", justify="right")

    for cls, count in summary.classifications.items():
        if count > 0:
            table.add_row(f"[class.{cls}]{cls.upper()}[/class.{cls}]", f"[class.{cls}]{count}[/class.{cls}]")

    table.add_section()
    table.add_row("[bold white]REQUESTS[/bold white]", f"[bold white]{summary.requests_sent}[/bold white]")
    table.add_row("[bold white]NEW FINDINGS[/bold white]", f"[bold white]{summary.findings_recorded}[/bold white]")

    console.print(table)

    weights = "  ".join(f"{name}={w:.2f}" for name, w in summary.weights.items())
    console.print(f"  [muted]Stopped: {summary.stop_reason or summary.state}  ({summary.elapsed_seconds:.1f}s)[/muted]")
    console.print(f"  [muted]Final strategy weights: {weights}[/muted]")

    if summary.failure_count > 0:
        console.print("\n  [danger]⚠  Crash/Anomaly findings recorded; replay them with --replay <id>.[/danger]")
    elif summary.findings_recorded == 0:
        console.print("\n  [success]✔  No new findings. Target handled every malformed request.[/success]")
    else:
        console.print("\n  [warning]⚡ Timeouts or rate limiting observed; review findings.[/warning]")
    console.print()


def get_progress() -> Progress:
    """Get a styled progress bar."""
    return Progress(
        SpinnerColumn("dots", style="cyan"),
        TextColumn("[bold cyan]{task.description}"),
        BarColumn(bar_width=30, style="dim cyan", complete_style="cyan"),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )
