"""
fuzzkit CLI: the main entry point.

Usage:
    fuzzkit fuzz --url http://127.0.0.1:8080 --templates templates/login.json --max-requests 500
    fuzzkit fuzz --profile profiles/sandbox.toml --sandbox
    fuzzkit fuzz --profile profiles/sandbox.toml --sandbox --replay 3f9a0c12be47
    fuzzkit findings --classification crash
    fuzzkit list-strategies

Exit codes: 0 no crash/anomaly, 1 crash/anomaly observed, 2 usage or
configuration error, 3 internal error.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import typer
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table
from rich import box

from fuzzkit import __version__
from fuzzkit.config import (
    DEFAULT_FINDINGS_FILE,
    CampaignConfig,
    apply_profile,
    build_config,
    enforce_guardrails,
    load_config,
    load_profile,
)
from fuzzkit.errors import ConfigError, InternalError
from fuzzkit.findings import FindingsStore
from fuzzkit.fuzzer.fuzz_engine import FuzzEngine
from fuzzkit.fuzzer.strategies import STRATEGY_REGISTRY, available_strategies
from fuzzkit.models import Classification, RequestTemplate
from fuzzkit.seeds import load_templates, template_from_profile
from fuzzkit.ui import (
    console,
    print_banner,
    print_case,
    print_finding,
    print_section,
    print_summary,
    print_target_info,
)

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_CONFIG = 2
EXIT_INTERNAL = 3

app = typer.Typer(
    name="fuzzkit",
    help="⚡ API resilience fuzzer for malformed JSON, oversized payloads and replayed timestamps.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


def _setup_logging(debug: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _parse_headers(header_list: list[str]) -> dict[str, str]:
    """Parse list of 'Key: Value' strings into a dictionary."""
    headers = {}
    for h in header_list:
        if ":" in h:
            key, value = h.split(":", 1)
            headers[key.strip()] = value.strip()
        else:
            console.print(
                f"[yellow]Warning: Invalid header format '{h}', expected 'Key: Value'[/yellow]"
            )
    return headers


def _fail(message: str, code: int):
    console.print(f"[danger]Error: {escape(message)}[/danger]")
    raise typer.Exit(code)


def _version_callback(value: bool):
    if value:
        console.print(f"fuzzkit v{__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit.", callback=_version_callback, is_eager=True),
):
    """fuzzkit, a resilience fuzzer for JSON HTTP APIs."""
    if ctx.invoked_subcommand is None:
        print_banner()


# ─── CAMPAIGN SETUP ──────────────────────────────────────────────────────────

def prepare_campaign(
    url: Optional[str],
    templates_path: Optional[str],
    profile_path: Optional[str],
    sandbox: bool,
    overrides: dict[str, Any],
) -> tuple[CampaignConfig, list[RequestTemplate]]:
    """
    Resolve settings and templates for one campaign.

    Precedence: command-line options, then the target profile, then the user
    config file and environment, then built-in defaults.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    profile = None

    if profile_path:
        profile = load_profile(profile_path)
        enforce_guardrails(profile, sandbox)
        if url and url.rstrip("/") != profile.base_url.rstrip("/"):
            raise ConfigError("--url conflicts with the profile's base_url; drop one of them")
        values = apply_profile(values, profile)
    elif url:
        values["url"] = url
    else:
        raise ConfigError("specify a target with --url or --profile")

    for key, value in load_config().items():
        values.setdefault(key, value)
    values.setdefault("findings_path", DEFAULT_FINDINGS_FILE)

    if templates_path:
        templates = load_templates(templates_path)
    elif profile is not None:
        templates = [template_from_profile(profile)]
    else:
        raise ConfigError("no request templates: pass --templates or a --profile with an endpoint body")

    if profile is not None:
        allowed = {m.upper() for m in profile.limits.allowed_methods}
        for t in templates:
            if t.method.upper() not in allowed:
                raise ConfigError(f"template {t.id}: HTTP method '{t.method}' not allowed by policy")

    return build_config(**values), templates


# ─── FUZZ COMMAND ────────────────────────────────────────────────────────────

@app.command()
def fuzz(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Target base URL (http/https)"),
    templates: Optional[str] = typer.Option(None, "--templates", "-t", help="JSON file of request templates"),
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Target profile TOML (limits, timeouts, safety)"),
    strategies: Optional[str] = typer.Option(None, "--strategies", "-S", help="Comma-separated strategy names (default: all)"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-c", help="Max in-flight requests"),
    rate_limit: Optional[float] = typer.Option(None, "--rate-limit", help="Max requests per second (0 = unlimited)"),
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop issuing cases after this many seconds"),
    max_requests: Optional[int] = typer.Option(None, "--max-requests", "-n", help="Stop after this many cases"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Campaign base seed"),
    replay: Optional[str] = typer.Option(None, "--replay", help="Re-send the case behind a stored finding id"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Per-request timeout in seconds"),
    connect_timeout: Optional[float] = typer.Option(None, "--connect-timeout", help="Connect timeout in seconds"),
    retries: Optional[int] = typer.Option(None, "--retries", help="Total attempts per case on transport errors"),
    findings_path: Optional[str] = typer.Option(None, "--findings", help=f"Findings store path (default: {DEFAULT_FINDINGS_FILE})"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Save a report to file"),
    format: str = typer.Option("json", "--format", "-f", help="Report format: json, sarif"),
    header: list[str] = typer.Option([], "--header", "-H", help="Forced header in 'Key: Value' format. Can be repeated."),
    slow_ms: Optional[float] = typer.Option(None, "--slow-ms", help="Flag responses slower than this as anomalies"),
    event_log: Optional[str] = typer.Option(None, "--event-log", help="Append transport errors and 5xx responses to this file"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Generate and print cases without sending anything"),
    sandbox: bool = typer.Option(False, "--sandbox/--no-sandbox", help="Confirm the profile target is a sandbox"),
    debug: bool = typer.Option(False, "--debug", "-d", help="Verbose logging"),
):
    """
    🔥 Fuzz a JSON HTTP API with malformed requests.

    Derives malformed variants from known-good request templates (corrupted
    JSON, oversized bodies, stale or replayed timestamps), sends them with
    bounded concurrency and records every crash, anomaly, timeout and
    throttling response as a deduplicated finding.
    """
    _setup_logging(debug)
    format = format.lower()
    if format not in ("json", "sarif"):
        _fail(f"unknown report format '{format}' (expected json or sarif)", EXIT_CONFIG)

    overrides = dict(
        strategies=[s.strip() for s in strategies.split(",") if s.strip()] if strategies else None,
        concurrency=concurrency,
        rate_limit=rate_limit,
        duration=duration,
        max_requests=max_requests,
        seed=seed,
        timeout=timeout,
        connect_timeout=connect_timeout,
        max_attempts=retries,
        findings_path=findings_path,
        forced_headers=_parse_headers(header) or None,
        slow_ms=slow_ms,
        dry_run=dry_run or None,
    )

    try:
        config, template_list = prepare_campaign(url, templates, profile, sandbox, overrides)
        engine = FuzzEngine(config, template_list, event_log_path=event_log)
    except ConfigError as e:
        _fail(str(e), EXIT_CONFIG)

    print_banner()
    mode = "replay" if replay else "dry run" if config.dry_run else "execution"
    budget = " / ".join(
        part for part in (
            f"{config.max_requests} requests" if config.max_requests else "",
            f"{config.duration:g}s" if config.duration else "",
        ) if part
    )
    print_target_info(config.url, len(template_list), [s.name for s in engine.strategies], budget, mode)

    try:
        if replay:
            outcome = engine.replay(replay)
            print_finding(outcome.finding)
            raise typer.Exit(EXIT_FINDINGS if outcome.classification.is_failure else EXIT_OK)

        if config.dry_run:
            print_section("Planned Cases", "📋")
            for case in engine.plan():
                print_case(case)
            console.print()
            raise typer.Exit(EXIT_OK)

        summary = engine.run()
    except ConfigError as e:
        _fail(str(e), EXIT_CONFIG)
    except InternalError as e:
        console.print(f"[danger]Internal error: {escape(str(e))}[/danger]")
        raise typer.Exit(EXIT_INTERNAL)

    if summary.new_findings:
        print_section("New Findings", "🧪")
        for finding in summary.new_findings:
            print_finding(finding)
    print_summary(summary)

    if output:
        _save_report(summary, engine.store.all(), output, format)

    raise typer.Exit(EXIT_FINDINGS if summary.failure_count > 0 else EXIT_OK)


def _save_report(summary, findings, output_path: str, output_format: str):
    if output_format == "sarif":
        from fuzzkit.reporters.sarif_report import save_sarif_report
        if save_sarif_report(summary, findings, output_path):
            console.print(f"  [success]✔ SARIF report saved to {output_path}[/success]")
        else:
            console.print(f"  [danger]✗ Failed to save SARIF report to {output_path}[/danger]")
    else:
        from fuzzkit.reporters.json_report import generate_json_report
        if generate_json_report(summary, findings, output_path):
            console.print(f"  [success]✔ Report saved to {output_path}[/success]")
        else:
            console.print(f"  [danger]✗ Failed to save report to {output_path}[/danger]")


# ─── FINDINGS COMMAND ────────────────────────────────────────────────────────

@app.command()
def findings(
    store_path: Optional[str] = typer.Option(None, "--findings", help=f"Findings store path (default: {DEFAULT_FINDINGS_FILE})"),
    classification: Optional[str] = typer.Option(None, "--classification", "-c", help="crash, anomaly, timeout, rate_limited"),
    strategy: Optional[str] = typer.Option(None, "--strategy", "-s", help="Only findings from this strategy"),
):
    """🧪 List recorded findings."""
    try:
        path = store_path or load_config().get("findings_path") or DEFAULT_FINDINGS_FILE
        store = FindingsStore(path)
        selected = store.query(Classification(classification) if classification else None, strategy)
    except ConfigError as e:
        _fail(str(e), EXIT_CONFIG)
    except ValueError:
        _fail(f"unknown classification '{classification}'", EXIT_CONFIG)

    print_banner(small=True)
    print_section(f"Findings ({len(selected)} of {len(store)})", "🧪")
    if not selected:
        console.print("  [muted]No findings match.[/muted]\n")
        return
    for finding in selected:
        print_finding(finding)


# ─── LIST-STRATEGIES COMMAND ─────────────────────────────────────────────────

@app.command("list-strategies")
def list_strategies():
    """📋 List all available mutation strategies."""
    print_banner(small=True)
    console.print()

    table = Table(
        box=box.SIMPLE_HEAVY,
        title="[bold cyan]Available Strategies[/bold cyan]",
        border_style="dim cyan",
        padding=(0, 2),
    )
    table.add_column("Strategy", style="bold cyan")
    table.add_column("Description", style="muted")
    table.add_column("Defaults", style="value")

    for name in available_strategies():
        strategy = STRATEGY_REGISTRY[name]()
        defaults = ", ".join(f"{k}={v}" for k, v in strategy.params().items())
        table.add_row(name, strategy.description, defaults)

    console.print(table)
    console.print()


if __name__ == "__main__":
    app()
