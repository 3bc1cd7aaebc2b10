# display.py
# All terminal output for the capture engine.
#
# This module owns presentation entirely. The engine never formats strings —
# it calls named functions here. Structured records go to the journal and the
# JSON logs; this is the human-facing view of the same run.
#
# Colour language:
#   cyan    — scaffolding / lifecycle events
#   yellow  — policy checkpoints, overrides, instability
#   green   — success / confirmed
#   red     — failures, halts, integrity breaches
#   magenta — evidence and redaction

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from flow_seal.models import FlowPlan, InteractionLogEntry, PacketSeal, VerificationReport

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _label(tag: str, color: str) -> Text:
    t = Text()
    t.append(f" {tag} ", style=f"bold white on {color}")
    return t


def _mono(value: str, max_len: int = 120) -> str:
    if len(value) > max_len:
        return escape(value[:max_len] + "…")
    return escape(value)


# ---------------------------------------------------------------------------
# Run entry
# ---------------------------------------------------------------------------


def banner(run_id: str, run_dir: str) -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]flow-seal Evidence Capture[/bold cyan]\n"
            "[dim]Strict selector resolution · chained journal · sealed packet[/dim]\n\n"
            f"[dim]Run ID  :[/dim] [white]{run_id}[/white]\n"
            f"[dim]Run dir :[/dim] [white]{run_dir}[/white]",
            border_style="cyan",
            padding=(1, 4),
        )
    )


def plan_loaded(plan: FlowPlan) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="cyan",
        show_header=True,
        header_style="bold cyan",
        padding=(0, 1),
    )
    table.add_column("#", justify="center", width=4)
    table.add_column("Type", style="bold white", width=20)
    table.add_column("Target", style="dim white")

    for i, step in enumerate(plan.steps, start=2):
        target = getattr(step, "selector", None) or getattr(step, "text", None) or getattr(step, "key", "")
        flag = " [yellow](relaxed)[/yellow]" if getattr(step, "allow_multiple", False) else ""
        table.add_row(str(i), step.type, _mono(str(target), 50) + flag)

    goal = "none"
    if plan.goal is not None:
        goal = f"{plan.goal.expect} {plan.goal.selector}"

    console.print(
        Panel(
            table,
            title=_label(f"PLAN LOADED: {plan.flow_id}", "cyan"),
            subtitle=f"[dim]Mode: {plan.capture_mode} · Start: {plan.start_url} · Goal: {escape(goal)}[/dim]",
            border_style="cyan",
            padding=(0, 1),
        )
    )


def mode_gate_pass(mode: str, step_count: int) -> None:
    console.print(
        f"  [bold green]✓ Capture mode gate[/bold green]  [dim]{mode}, {step_count} step(s) permitted[/dim]"
    )


def load_rejected(kind: str, message: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold red]{kind}[/bold red]\n\n[white]{_mono(message, 400)}[/white]\n"
            "[dim]Rejected at load time. No browser was started.[/dim]",
            title=_label("PLAN REJECTED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


# ---------------------------------------------------------------------------
# Execution loop
# ---------------------------------------------------------------------------


def execution_start(total: int) -> None:
    console.print()
    console.print(Rule(f"[cyan]EXECUTION — {total} step(s)[/cyan]", style="cyan"))


def step_start(index: int | str, action: str, detail: str = "") -> None:
    console.print()
    console.print(f"[bold cyan]  STEP \\[{index}][/bold cyan]  [white]{action}[/white]  [dim]{_mono(detail, 80)}[/dim]")


def step_success(index: int | str) -> None:
    console.print(f"  [bold green]✓ Step {index} completed[/bold green]")


def step_failed(index: int | str, kind: str, message: str) -> None:
    console.print(
        Panel(
            f"[bold red]{kind}[/bold red]\n[white]{_mono(message, 300)}[/white]\n"
            "[dim]Run halted. Remaining steps will not execute.[/dim]",
            title=_label(f"STEP {index} FAILED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def selector_unstable(selector: str, first: int, final: int, window_ms: int) -> None:
    console.print(
        f"  [yellow]↳ Unstable selector[/yellow] [dim yellow]{_mono(selector, 60)}[/dim yellow]"
        f"  [dim]{first} → {final} within {window_ms}ms (deciding on final sample)[/dim]"
    )


def policy_override(selector: str, count: int, classification: str) -> None:
    console.print(
        f"  [bold yellow]⚑ Policy override[/bold yellow]  [dim]{_mono(selector, 60)} · "
        f"{count} match(es) · {classification}[/dim]"
    )


def redaction_applied(index: int | str, count: int) -> None:
    console.print(f"  [magenta]Redacted[/magenta]  [dim]{count} term(s) in note for step {index}[/dim]")


def evidence_captured(index: int, screenshot: str) -> None:
    console.print(f"  [magenta]Evidence[/magenta]  [dim]step {index:03d} → {screenshot}[/dim]")


def evidence_error(index: int, artifact: str, message: str) -> None:
    console.print(
        f"  [red]✗ Evidence[/red]  [dim]step {index:03d} {artifact}: {_mono(message, 100)}[/dim]"
    )


def goal_result(expect: str, selector: str, count: int, ok: bool) -> None:
    mark = "[bold green]✓ Goal met[/bold green]" if ok else "[bold red]✗ Goal not met[/bold red]"
    console.print(f"  {mark}  [dim]expect {expect} · {_mono(selector, 60)} · {count} match(es)[/dim]")


# ---------------------------------------------------------------------------
# Teardown and sealing
# ---------------------------------------------------------------------------


def teardown_start() -> None:
    console.print()
    console.print(Rule("[yellow]FORENSIC SHUTDOWN[/yellow]", style="yellow"))


def recording_error(kind: str, message: str) -> None:
    console.print(f"  [red]✗ Recording[/red]  [dim]{kind}: {_mono(message, 100)}[/dim]")


def finalize_error(phase: str, message: str) -> None:
    console.print(f"  [red]✗ Finalize[/red]  [dim]{_mono(phase, 40)}: {_mono(message, 100)}[/dim]")


def gate_failed(missing: list[str]) -> None:
    console.print(
        Panel(
            "[bold red]Required artifacts missing:[/bold red]\n"
            + "\n".join(f"[white]  • {label}[/white]" for label in missing),
            title=_label("ARTIFACT GATE ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def packet_sealed(seal: PacketSeal, deliverable_dir: str) -> None:
    console.print(
        Panel(
            f"[bold yellow]Packet hash:[/bold yellow] [white]{seal.packet_hash}[/white]\n"
            f"[dim]{seal.file_count} file(s) · {deliverable_dir}/{seal.manifest_path}[/dim]",
            title=_label("PACKET SEALED", "yellow"),
            border_style="yellow",
            padding=(0, 2),
        )
    )


def sealing_failed(message: str) -> None:
    console.print(
        Panel(
            f"[bold red]{_mono(message, 300)}[/bold red]\n[dim]The deliverable is NOT sealed.[/dim]",
            title=_label("SEALING FAILED ✗", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )


def run_summary(log: list[InteractionLogEntry], status: str, error_kind: str | None) -> None:
    console.print()
    table = Table(
        box=box.SIMPLE_HEAVY,
        border_style="dim",
        show_header=True,
        header_style="bold dim",
        padding=(0, 1),
    )
    table.add_column("Step", justify="center", width=6)
    table.add_column("Action", width=20)
    table.add_column("Result", justify="center", width=8)
    table.add_column("Detail", style="dim white")

    for entry in log:
        result = "[bold green]✓[/bold green]" if entry.result == "success" else "[bold red]✗[/bold red]"
        table.add_row(str(entry.step_index), entry.action, result, _mono(entry.error_message or entry.url or "", 60))

    color = "green" if status == "success" else "red"
    subtitle = f"[{color}]{status.upper()}[/{color}]" + (f" [dim]· {error_kind}[/dim]" if error_kind else "")
    console.print(
        Panel(
            table,
            title="[dim]RUN SUMMARY[/dim]",
            subtitle=subtitle,
            border_style="dim",
            padding=(0, 1),
        )
    )


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verification_report(root: str, report: VerificationReport) -> None:
    console.print()
    if report.ok:
        console.print(
            Panel(
                f"[bold green]Packet verified.[/bold green]\n[dim]{root}[/dim]\n"
                f"[white]{report.packet_hash}[/white]",
                title=_label("VERIFY: PASS ✓", "green"),
                border_style="green",
                padding=(0, 2),
            )
        )
        return
    console.print(
        Panel(
            "\n".join(f"[white]• {_mono(problem, 200)}[/white]" for problem in report.problems),
            title=_label("VERIFY: FAIL ✗", "red"),
            subtitle=f"[dim]{root}[/dim]",
            border_style="red",
            padding=(0, 2),
        )
    )


def halt(reason: str) -> None:
    console.print()
    console.print(
        Panel(
            f"[bold white]{_mono(reason, 300)}[/bold white]",
            title=_label("HALT", "red"),
            border_style="red",
            padding=(0, 2),
        )
    )
    console.print()
