"""
ConsoleUI - Rich-based console interface.

Provides step progress display and result formatting.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich import box

from .. import __version__
from ..discovery.system import HostFacts
from ..protocol.tuning import NOT_AVAILABLE, Status, StepReport, TuningReport, VerificationReport

STATUS_STYLES = {
    Status.APPLIED: ("green", "✓"),
    Status.SKIPPED: ("yellow", "⚠"),
    Status.FAILED: ("bold red", "✗"),
}


def setup_logging(verbose: int = 0, quiet: bool = False, console: Optional[Console] = None):
    """Route log records through rich on stderr."""
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose >= 2,
        rich_tracebacks=True,
    )
    logging.basicConfig(level=level, format="%(message)s", datefmt="[%X]", handlers=[handler], force=True)


class ConsoleUI:
    """
    Rich console interface for vmhost_tuner.
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        self.quiet = quiet
        self.console = console or Console()

    def print(self, *args, **kwargs):
        """Print to console."""
        if self.quiet:
            return
        self.console.print(*args, **kwargs)

    def print_error(self, message: str):
        """Errors are shown even in quiet mode."""
        self.console.print(f"[bold red]ERROR:[/] {message}")

    def print_header(self, title: str):
        """Print a section header."""
        if self.quiet:
            return
        self.console.print()
        self.console.rule(f"[bold blue]{title}[/]")

    def print_banner(self):
        """Print application banner."""
        if self.quiet:
            return

        banner = f"""
[bold cyan]VM Host Performance Optimization[/] [dim]v{__version__}[/]
[dim]KVM/QEMU hypervisor kernel & device tuning[/]
        """
        self.console.print(Panel(banner.strip(), border_style="cyan"))

    def print_host(self, facts: HostFacts):
        """Display discovered host facts."""
        if self.quiet:
            return

        table = Table(title="Host", show_header=False, box=None)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("OS", facts.os_version)
        table.add_row("Kernel", facts.kernel_version)
        cpu = f"{facts.cpu_count} CPUs ({facts.cpu_model})"
        if facts.virtualization:
            cpu += f" [dim]{facts.virtualization}[/]"
        table.add_row("CPU", cpu)
        table.add_row("RAM", f"{facts.ram_total_gb:.1f} GB")
        table.add_row("Governor", facts.cpu_governor if facts.cpufreq_available else "[yellow]no cpufreq[/]")
        if facts.thp_available:
            table.add_row("THP", f"enabled={facts.thp_enabled} defrag={facts.thp_defrag}")
        else:
            table.add_row("THP", "[yellow]not available[/]")
        for dev in facts.block_devices:
            table.add_row(dev.name, f"{dev.type}, scheduler={dev.scheduler or NOT_AVAILABLE}")

        self.console.print(table)

    def print_step(self, step: StepReport):
        """Display the results of one step."""
        if self.quiet:
            return

        self.print_header(step.title or step.name)

        if step.skipped_entirely and len(step.results) == 1:
            result = step.results[0]
            self.console.print(f"   [yellow]⚠[/] {result.message}")
            return

        table = Table(box=box.SIMPLE, show_edge=False)
        table.add_column("", width=1)
        table.add_column("Target")
        table.add_column("Value")
        table.add_column("Detail", style="dim")

        for result in step.results:
            style, mark = STATUS_STYLES[result.status]
            table.add_row(f"[{style}]{mark}[/]", result.target, result.desired, result.message)

        self.console.print(table)

    def print_verification(self, verification: VerificationReport):
        """Display effective values read back from the host."""
        if self.quiet:
            return

        self.print_header("Verification")

        table = Table(box=box.SIMPLE, show_edge=False)
        table.add_column("Setting")
        table.add_column("Effective", justify="right")
        table.add_column("Target", justify="right", style="dim")

        for value in verification.values:
            if value.actual == NOT_AVAILABLE:
                actual = f"[dim]{NOT_AVAILABLE}[/]"
            elif value.matches:
                actual = f"[green]{value.actual}[/]"
            else:
                actual = f"[yellow]{value.actual}[/]"
            table.add_row(value.target, actual, value.desired or "")

        self.console.print(table)

    def print_summary(self, report: TuningReport):
        """Display the final summary panel."""
        if self.quiet:
            return

        totals = report.totals()
        lines = [
            f"[green]{totals['applied']} applied[/]  "
            f"[yellow]{totals['skipped']} skipped[/]  "
            f"[red]{totals['failed']} failed[/]",
        ]
        if report.verification:
            mismatches = [v for v in report.verification.mismatches() if v.desired is not None]
            if mismatches:
                lines.append(f"[yellow]{len(mismatches)} setting(s) differ from policy v{report.policy_version}[/]")
            else:
                lines.append(f"[green]Host matches policy v{report.policy_version}[/]")
        lines.append("[dim]Settings persist across reboots via sysctl.d, udev and systemd.[/]")

        border = "red" if totals["failed"] else "green"
        self.console.print()
        self.console.print(Panel("\n".join(lines), title="Optimization Complete", border_style=border))

    def print_plan(self, files: Dict[Path, str]):
        """Display the files a run would write."""
        if self.quiet:
            return

        self.print_header("Dry run")
        for path, content in files.items():
            lexer = "ini" if path.suffix in (".service", ".conf") else "text"
            self.console.print(Panel(
                Syntax(content.rstrip("\n"), lexer, theme="ansi_dark", word_wrap=True),
                title=str(path),
                title_align="left",
                border_style="dim",
            ))
