"""Click CLI: config loading, provider selection, debate run, and transcript output."""

import asyncio
import logging
import os
import sys
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import click
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, load_config, resolve_debate_config
from debate_arena.citations import extract_citations
from debate_arena.errors import (
    ConfigurationError,
    DebateFailedError,
    InsufficientModelsError,
    PersonalityValidationError,
)
from debate_arena.healthcheck import run_health_checks
from debate_arena.models import Debate, DebateConfig, DebateRules, ModeratorStrictness, Round
from debate_arena.orchestrator import DebateOrchestrator, run_debate
from debate_arena.output import (
    ConsoleListener,
    print_moderator_summary,
    print_round_summary,
    save_transcript,
    save_transcript_json,
)
from debate_arena.prompts import TemplatePromptBuilder
from debate_arena.providers.base import ModelProvider
from debate_arena.providers.local import LocalModelProvider
from debate_arena.providers.registry import build_all_providers
from debate_arena.topic_file import parse_topic_file

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def _check_and_filter_providers(
    all_providers: dict[str, ModelProvider], timeout_sec: float
) -> dict[str, ModelProvider]:
    """Run health checks, print results, and ask user what to do on failures.

    Returns the filtered dict of working providers. Exits if the user
    declines to continue or no providers pass.
    """
    console.print("\n[bold]Checking providers...[/bold]")
    results = await run_health_checks(all_providers, timeout_sec)

    failed_names: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return all_providers

    working = {n: p for n, p in all_providers.items() if n not in failed_names}

    if not working:
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed_names)} provider(s) failed:[/yellow] {', '.join(failed_names)}")
    console.print(f"Working providers: {', '.join(sorted(working))}")

    if not click.confirm("Continue with working providers only?", default=True):
        sys.exit(0)

    console.print()
    return working


def _load_personality(value: str | None) -> Any:
    """'default', 'random', or a YAML file holding a personality profile."""
    if value is None or value in ("default", "random"):
        return value
    path = Path(value)
    if path.suffix in (".yaml", ".yml") and path.exists():
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    return value


def _determine_pool(
    config: AppConfig,
    all_providers: dict[str, ModelProvider],
    models_arg: str | None,
) -> list[ModelProvider]:
    """--models (or frontmatter models) overrides the configured debaters."""
    names = [m.strip() for m in models_arg.split(",")] if models_arg else config.defaults.debaters
    missing = [n for n in names if n not in all_providers]
    if missing:
        console.print(f"[yellow]Unavailable models skipped:[/yellow] {', '.join(missing)}")
    return [all_providers[n] for n in names if n in all_providers]


def _build_orchestrator(
    config: AppConfig,
    providers: dict[str, ModelProvider],
    debate_config: DebateConfig,
) -> DebateOrchestrator:
    moderator_provider = None
    moderator_name = config.defaults.moderator_model
    if debate_config.moderator_enabled and moderator_name:
        moderator_provider = providers.get(moderator_name)
        if moderator_provider is None:
            console.print(f"[yellow]Moderator model '{moderator_name}' unavailable; using heuristic summaries[/yellow]")

    rules = config.moderator_rules
    return DebateOrchestrator(
        TemplatePromptBuilder(config.prompts),
        listener=ConsoleListener(live=debate_config.stream_output),
        moderator_provider=moderator_provider,
        citation_extractor=extract_citations,
        base_rules=DebateRules(
            stay_on_topic=rules.stay_on_topic,
            no_personal_attacks=rules.no_personal_attacks,
            cite_sources=rules.cite_sources,
        ),
    )


async def _close_providers(providers: dict[str, ModelProvider]) -> None:
    for provider in providers.values():
        if isinstance(provider, LocalModelProvider):
            await provider.aclose()


async def _run(
    config: AppConfig,
    all_providers: dict[str, ModelProvider],
    topic: str,
    debate_config: DebateConfig,
    models_arg: str | None,
    output_dir: Path,
    skip_health_check: bool,
    save_json: bool = False,
) -> Path:
    """Health-check providers, run a debate and return the saved transcript path.

    Everything runs on one event loop so HTTP clients are never shared across loops.
    """
    try:
        working = all_providers
        if not skip_health_check:
            working = await _check_and_filter_providers(all_providers, config.defaults.health_check_timeout_sec)

        pool = _determine_pool(config, working, models_arg)
        if len(pool) < 2:
            console.print(
                f"[bold red]Error:[/bold red] Need at least 2 debaters, got {len(pool)}. "
                "Check API keys in .env or adjust --models."
            )
            sys.exit(1)

        orchestrator = _build_orchestrator(config, working, debate_config)
        console.print(f"\n[bold cyan]Debate Arena[/bold cyan] -- {len(pool)} candidate models")
        console.print(f"Topic: [italic]{topic[:80]}{'...' if len(topic) > 80 else ''}[/italic]\n")

        # Without live streaming, summarize each round as it lands
        on_round_complete: Callable[[Round], None] | None = None
        if not debate_config.stream_output:
            on_round_complete = print_round_summary

        debate: Debate = await run_debate(orchestrator, topic, debate_config, pool, on_round_complete)
        print_moderator_summary(debate)

        saved_path = save_transcript(debate, output_dir)
        console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
        if save_json:
            json_path = save_transcript_json(debate, output_dir)
            console.print(f"[dim]JSON transcript: {json_path}[/dim]")
        return saved_path
    finally:
        await _close_providers(all_providers)


def _cli_overrides(**values: Any) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


@click.command()
@click.argument("topic", required=False)
@click.option("--file", "topic_file", type=click.Path(exists=True), help="Read topic from .md file (frontmatter overrides)")
@click.option("--models", default=None, help="Comma-separated pool of debaters, overrides config")
@click.option("--time-limit", type=float, default=None, help="Seconds per statement")
@click.option("--word-limit", type=int, default=None, help="Max words per statement")
@click.option("--prep-time", type=float, default=None, help="Seconds for the preparation phase")
@click.option("--cross-exam", type=int, default=None, help="Number of cross-examination exchanges")
@click.option("--moderator/--no-moderator", default=None, help="Enable the moderator")
@click.option("--strictness", type=click.Choice([s.value for s in ModeratorStrictness]), default=None,
              help="Moderator strictness")
@click.option("--affirmative-personality", default=None, help="'default', 'random', or a profile .yaml file")
@click.option("--negative-personality", default=None, help="'default', 'random', or a profile .yaml file")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the connectivity check at startup")
@click.option("--json", "save_json", is_flag=True, default=False, help="Also save a JSON transcript")
def main(
    topic: str | None,
    topic_file: str | None,
    models: str | None,
    time_limit: float | None,
    word_limit: int | None,
    prep_time: float | None,
    cross_exam: int | None,
    moderator: bool | None,
    strictness: str | None,
    affirmative_personality: str | None,
    negative_personality: str | None,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
    save_json: bool,
) -> None:
    """Debate Arena -- two AI models debate a topic under time and word limits.

    \b
    Examples:
      debate-arena "AI development should be regulated"
      debate-arena "Remote work beats office work" --models claude,llama --moderator
      debate-arena --file topic.md --time-limit 60 --strictness strict
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)
    env: Mapping[str, str] = dict(os.environ)

    try:
        config = load_config(env=env)
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    file_overrides: dict[str, Any] = {}
    file_models: str | None = None
    if topic_file:
        topic_text, file_overrides, file_models = parse_topic_file(Path(topic_file))
    elif topic:
        topic_text = topic
    else:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument or --file.")
        sys.exit(1)

    # CLI flags win over frontmatter, which wins over environment and settings
    overrides = {
        **file_overrides,
        **_cli_overrides(
            time_limit=time_limit,
            word_limit=word_limit,
            preparation_time=prep_time,
            num_cross_exam_questions=cross_exam,
            moderator_enabled=moderator,
            moderator_strictness=strictness,
            affirmative_personality=_load_personality(affirmative_personality),
            negative_personality=_load_personality(negative_personality),
        ),
    }
    debate_config = resolve_debate_config(config.defaults, overrides, env, config.moderator_rules)

    all_providers = build_all_providers(config, env)
    if not all_providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    output_dir = Path(output_path) if output_path else config.defaults.output_dir

    try:
        asyncio.run(
            _run(
                config,
                all_providers,
                topic_text,
                debate_config,
                models or file_models,
                output_dir,
                skip_health_check,
                save_json,
            )
        )
    except PersonalityValidationError as exc:
        console.print(f"[bold red]{exc.to_user_friendly_message()}[/bold red]")
        sys.exit(1)
    except (ConfigurationError, InsufficientModelsError) as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)
    except DebateFailedError as exc:
        console.print(f"[bold red]Debate failed:[/bold red] {exc}")
        saved = save_transcript(exc.debate, output_dir)
        console.print(f"[dim]Partial transcript saved to: {saved}[/dim]")
        if save_json:
            save_transcript_json(exc.debate, output_dir)
        sys.exit(1)


if __name__ == "__main__":
    main()
