"""Console output for the kernel build.

Usage:
    from fused_layer_norm.console import console

    with console.spinner("Compiling ln_api.cu..."):
        run_nvcc()

    console.success("Kernel ready", detail=str(path))
    console.command(["nvcc", "--lib", "-o", "liblayernorm.a", "ln_api.o"])
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from rich.console import Console as RichConsole
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text

# escaped, rich would read a bare "[fused-ln]" as a style tag
_PREFIX = r"\[fused-ln]"


def _detail(detail: Optional[str]) -> str:
    return f" [dim]{escape(detail)}[/dim]" if detail else ""


class Console:
    """Thin wrapper over a rich console, writing to stderr.

    Build output goes to stderr so `fused-ln-build --print-directives` keeps a
    clean stdout for the enclosing build to consume.
    """

    __slots__ = ("_console",)

    def __init__(self, *, stderr: bool = True) -> None:
        self._console = RichConsole(stderr=stderr, highlight=False)

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Show a spinner while an external tool runs."""
        with self._console.status(f"[bold cyan]{_PREFIX} {message}", spinner="dots"):
            yield

    def command(self, cmd: Sequence[str]) -> None:
        """Echo an external command line (verbose builds only)."""
        self._console.print(f"[dim]{_PREFIX} $ {escape(' '.join(str(c) for c in cmd))}[/dim]")

    def success(self, message: str, *, detail: Optional[str] = None) -> None:
        self._console.print(
            f"[bold green]✓[/bold green] {_PREFIX} {message}" + _detail(detail)
        )

    def warn(self, message: str, *, detail: Optional[str] = None) -> None:
        self._console.print(f"[yellow]⚠[/yellow] {_PREFIX} {message}" + _detail(detail))

    def error(self, message: str, *, detail: Optional[str] = None) -> None:
        self._console.print(f"[bold red]✗[/bold red] {_PREFIX} {message}" + _detail(detail))

    def info(self, message: str, *, detail: Optional[str] = None) -> None:
        self._console.print(f"[blue]•[/blue] {_PREFIX} {message}" + _detail(detail))

    def tool_output(self, label: str, text: str) -> None:
        """Reproduce captured tool output verbatim (no markup, no wrapping)."""
        if not text:
            return
        self._console.print(f"[dim]# {escape(label)}[/dim]")
        self._console.print(Text(text.rstrip("\n")), soft_wrap=True)

    def header(self, title: str, **fields: object) -> None:
        """Show a panel with key-value fields (build summary)."""
        body = Text()
        for i, (k, v) in enumerate(fields.items()):
            if i:
                body.append("\n")
            body.append(f"{k}: ", style="bold")
            body.append(str(v))
        self._console.print(Panel(body, title=f"[cyan]{title}[/cyan]", border_style="blue"))


console = Console()
