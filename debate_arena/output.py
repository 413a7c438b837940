"""Rich console output and markdown/JSON transcript save for debates."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

from debate_arena.models import (
    Debate,
    DebateState,
    ModeratorIntervention,
    Position,
    Round,
    RoundType,
    Statement,
    StatementOutcome,
)

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

ROUND_TITLES = {
    RoundType.PREPARATION: "Preparation",
    RoundType.OPENING: "Opening Statements",
    RoundType.REBUTTAL: "Rebuttals",
    RoundType.CROSS_EXAM: "Cross-Examination",
    RoundType.CLOSING: "Closing Statements",
}

_POSITION_STYLE = {Position.AFFIRMATIVE: "green", Position.NEGATIVE: "red"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a statement."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _outcome_note(statement: Statement) -> str:
    note = f"{statement.word_count} words"
    if statement.outcome is StatementOutcome.TIMED_OUT:
        note += " | cut off at time limit"
    elif statement.outcome is StatementOutcome.FAILED:
        note += " | failed"
    return note


class ConsoleListener:
    """Renders orchestrator notifications to the terminal.

    Both positions generate at once, so only the first position to stream in
    a phase is shown live; the other is printed as a panel when it completes.
    With live=False only phase headers, timeouts, errors and interventions
    are printed.
    """

    def __init__(self, out: Console | None = None, *, live: bool = True) -> None:
        self._console = out or console
        self._live = live
        self._streaming: Position | None = None
        self._streamed: set[Position] = set()

    def on_phase_start(self, round_type: RoundType) -> None:
        self._streaming = None
        self._streamed.clear()
        self._console.print(Rule(f"[bold cyan]{ROUND_TITLES[round_type]}[/bold cyan]"))

    def on_chunk(self, model: str, position: Position, chunk: str) -> None:
        if not self._live:
            return
        if self._streaming is None:
            self._streaming = position
            self._console.print(f"[bold {_POSITION_STYLE[position]}]{model}[/] ({position.value})")
        if position is self._streaming:
            self._streamed.add(position)
            self._console.print(chunk, end="", markup=False, highlight=False)

    def on_complete(self, statement: Statement, round_type: RoundType) -> None:
        if not self._live:
            return
        if statement.position in self._streamed:
            self._console.print()
            self._console.print(Text(_outcome_note(statement), style="dim"))
            return
        self._console.print(
            Panel(
                Text(statement.content or "(no content)"),
                title=f"[bold]{statement.model}[/bold] ({statement.position.value})",
                subtitle=_outcome_note(statement),
                border_style=_POSITION_STYLE[statement.position],
            )
        )

    def on_timeout(self, model: str, position: Position, round_type: RoundType, partial: str) -> None:
        self._console.print(
            f"[yellow]{model} ({position.value}) reached the time limit in "
            f"{ROUND_TITLES[round_type].lower()}; keeping {len(partial.split())} words[/yellow]"
        )

    def on_error(self, model: str, position: Position, round_type: RoundType, error: Exception) -> None:
        self._console.print(f"[red]{model} ({position.value}) failed: {error}[/red]")

    def on_intervention(self, intervention: ModeratorIntervention) -> None:
        self._console.print(
            Panel(
                Text(intervention.message),
                title=f"[bold yellow]Moderator {intervention.type.value}[/bold yellow]",
                border_style="yellow",
            )
        )


def print_round_summary(rnd: Round) -> None:
    """Print a brief summary of a round to the console."""
    console.print(Rule(f"[bold cyan]{ROUND_TITLES[rnd.type]} Summary[/bold cyan]"))
    for position in Position:
        statement = rnd.statement_for(position)
        if statement is None:
            continue
        console.print(
            Panel(
                Text(_preview(statement.content) or "(no content)"),
                title=f"[bold]{statement.model}[/bold] ({position.value})",
                subtitle=_outcome_note(statement),
                border_style="dim",
            )
        )


def print_moderator_summary(debate: Debate) -> None:
    """Print round commentary and the violation tally per position."""
    if not debate.moderator_commentary and debate.moderator_context is None:
        return
    console.print(Rule("[bold yellow]Moderator Report[/bold yellow]"))
    for commentary in debate.moderator_commentary:
        console.print(
            Panel(
                Markdown(commentary.round_summary),
                title=ROUND_TITLES[commentary.round_type],
                subtitle=f"by {commentary.generated_by}",
                border_style="yellow",
            )
        )
    violations = debate.rule_violations
    for position in Position:
        count = len(violations[position])
        interventions = sum(1 for i in debate.interventions if i.target is position)
        console.print(
            Text(
                f"{position.value.title()} ({debate.model_name(position)}): "
                f"{count} violation(s), {interventions} intervention(s)",
                style="dim",
            )
        )


def _visible_rounds(debate: Debate) -> list[Round]:
    """Rounds that belong in a transcript; preparation only when it is shown."""
    return [
        rnd for rnd in debate.rounds
        if rnd.type is not RoundType.PREPARATION or debate.config.show_preparation
    ]


def render_transcript(debate: Debate) -> str:
    """Render the debate as markdown."""
    partial = debate.state is not DebateState.COMPLETED
    personalities = debate.personalities
    lines: list[str] = [
        f"# Debate: {debate.topic[:80]}",
        "",
        f"**Date:** {debate.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Debate ID:** {debate.id}",
        f"**Status:** {debate.state.value}" + (" (partial transcript)" if partial else ""),
        f"**Affirmative:** {debate.model_name(Position.AFFIRMATIVE)}",
        f"**Negative:** {debate.model_name(Position.NEGATIVE)}",
        f"**Time limit:** {debate.config.time_limit:g}s per statement",
        f"**Word limit:** {debate.config.word_limit or 'none'}",
    ]
    if debate.completed_at:
        duration = (debate.completed_at - debate.created_at).total_seconds()
        lines.append(f"**Duration:** {duration:.1f}s")
    for position in Position:
        p = personalities[position]
        lines.append(
            f"**{position.value.title()} personality:** "
            f"civility {p.civility:g}, manner {p.manner:g}, research depth {p.research_depth:g}, "
            f"rhetoric {p.rhetoric_usage:g}; tactics: {', '.join(t.value for t in p.tactics) or 'none'}"
        )
    lines += ["", "---", ""]

    commentary_by_round = {c.round_type: c for c in debate.moderator_commentary}
    for rnd in _visible_rounds(debate):
        lines.append(f"## {ROUND_TITLES[rnd.type]}")
        lines.append("")
        for position in Position:
            statement = rnd.statement_for(position)
            if statement is None:
                continue
            lines.append(f"### {position.value.title()} ({statement.model})")
            lines.append("")
            lines.append(statement.content or "*(no content)*")
            lines.append("")
            lines.append(f"*{_outcome_note(statement)}*")
            lines.append("")
        commentary = commentary_by_round.get(rnd.type)
        if commentary:
            lines += [f"> **Moderator ({commentary.generated_by}):** {commentary.round_summary}", ""]

    if debate.interventions:
        lines += ["## Moderator Interventions", ""]
        for intervention in debate.interventions:
            lines.append(
                f"- **{intervention.type.value}** ({intervention.target.value}, "
                f"{intervention.timestamp.strftime('%H:%M:%S')}): {intervention.message}"
            )
        lines.append("")

    if debate.citations:
        lines += ["## Sources Cited", ""]
        for citation in debate.citations:
            link = f" <{citation.url}>" if citation.url and citation.url != citation.text else ""
            lines.append(f"- [{citation.position.value}] {citation.text}{link}")
        lines.append("")

    if debate.errors:
        lines += ["## Errors", ""]
        for error in debate.errors:
            where = error.round_type.value if error.round_type else error.state.value
            who = f" {error.model}" if error.model else ""
            lines.append(f"- {error.timestamp.strftime('%H:%M:%S')} [{where}]{who}: {error.message}")
        lines.append("")

    return "\n".join(lines)


def save_transcript(debate: Debate, output_dir: Path) -> Path:
    """Save the debate transcript as a markdown file.

    Debates that did not complete are saved with a ``PARTIAL_`` prefix.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    prefix = "" if debate.state is DebateState.COMPLETED else "PARTIAL_"
    filepath = output_dir / f"{prefix}{timestamp}_{_slug(debate.topic)}.md"

    filepath.write_text(render_transcript(debate), encoding="utf-8")
    logger.info("Transcript saved to: %s", filepath)
    return filepath


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _statement_data(statement: Statement | None) -> dict[str, Any] | None:
    if statement is None:
        return None
    return {
        "model": statement.model,
        "content": statement.content,
        "word_count": statement.word_count,
        "outcome": statement.outcome.value,
        "error": statement.error,
        "generated_at": _timestamp(statement.generated_at),
    }


def transcript_data(debate: Debate) -> dict[str, Any]:
    """JSON-serializable transcript with the same rounds as the markdown one."""
    config = debate.config
    return {
        "id": debate.id,
        "topic": debate.topic,
        "state": debate.state.value,
        "partial": debate.state is not DebateState.COMPLETED,
        "created_at": _timestamp(debate.created_at),
        "completed_at": _timestamp(debate.completed_at),
        "models": {position.value: debate.model_name(position) for position in Position},
        "config": {
            "time_limit": config.time_limit,
            "word_limit": config.word_limit,
            "preparation_time": config.preparation_time,
            "num_cross_exam_questions": config.num_cross_exam_questions,
            "moderator_enabled": config.moderator_enabled,
            "moderator_strictness": config.moderator_strictness.value,
        },
        "rounds": [
            {
                "type": rnd.type.value,
                "started_at": _timestamp(rnd.started_at),
                "completed_at": _timestamp(rnd.completed_at),
                "affirmative": _statement_data(rnd.affirmative_statement),
                "negative": _statement_data(rnd.negative_statement),
            }
            for rnd in _visible_rounds(debate)
        ],
        "moderator_commentary": [
            {"round_type": c.round_type.value, "summary": c.round_summary, "generated_by": c.generated_by}
            for c in debate.moderator_commentary
        ],
        "interventions": [
            {"type": i.type.value, "target": i.target.value, "message": i.message, "timestamp": _timestamp(i.timestamp)}
            for i in debate.interventions
        ],
        "citations": [
            {
                "text": c.text,
                "type": c.type,
                "model": c.model,
                "position": c.position.value,
                "round_type": c.round_type.value,
                "url": c.url,
                "author": c.author,
                "title": c.title,
                "source": c.source,
                "year": c.year,
            }
            for c in debate.citations
        ],
        "errors": [
            {
                "message": e.message,
                "state": e.state.value,
                "round_type": e.round_type.value if e.round_type else None,
                "model": e.model,
                "timestamp": _timestamp(e.timestamp),
            }
            for e in debate.errors
        ],
    }


def save_transcript_json(debate: Debate, output_dir: Path) -> Path:
    """Save the transcript as ``<debate id>.json`` (``PARTIAL_`` prefix when not completed).

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = "" if debate.state is DebateState.COMPLETED else "PARTIAL_"
    filepath = output_dir / f"{prefix}{debate.id}.json"
    filepath.write_text(json.dumps(transcript_data(debate), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("JSON transcript saved to: %s", filepath)
    return filepath


def load_transcript_json(output_dir: Path, debate_id: str) -> dict[str, Any]:
    """Load a transcript saved by save_transcript_json.

    Raises:
        FileNotFoundError: No complete or partial transcript exists for the id.
        ValueError: The file is not a debate transcript.
    """
    for name in (f"{debate_id}.json", f"PARTIAL_{debate_id}.json"):
        filepath = output_dir / name
        if filepath.exists():
            break
    else:
        raise FileNotFoundError(f"No transcript for debate {debate_id} in {output_dir}")

    data = json.loads(filepath.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or data.get("id") != debate_id or not isinstance(data.get("rounds"), list):
        raise ValueError(f"{filepath} is not a transcript for debate {debate_id}")
    return data
