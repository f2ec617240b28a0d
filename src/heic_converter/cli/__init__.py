from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from ..batch import BatchCoordinator
from ..config import AppConfig, dump_config, load_config
from ..core import ConversionService
from ..errors import EmptyBatchError, PermissionDeniedError
from ..models import BatchState, OutputPolicy
from ..utils import iter_heic_files

console = Console()

app = typer.Typer(help="Batch HEIC to JPEG converter")


def _load_config(path: Path | None) -> AppConfig:
    return load_config(path)


@app.callback()
def main() -> None:
    """Batch HEIC to JPEG converter."""


@app.command()
def convert(
    path: list[Path],
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Write every JPEG into this folder"),
    same_folder: bool = typer.Option(False, "--same-folder", help="Write each JPEG next to its source file"),
    quality: float | None = typer.Option(None, "--quality", min=0.01, max=1.0, help="JPEG quality in (0, 1]"),
    parallel: int | None = typer.Option(None, "--parallel", min=1, help="Parallel workers"),
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    if same_folder == (output_dir is not None):
        console.print("[red]Choose exactly one of --output-dir or --same-folder[/red]")
        raise typer.Exit(2)
    cfg = _load_config(config)
    if parallel is not None:
        cfg.runtime.parallelism = parallel
    policy = OutputPolicy.same_folder() if same_folder else OutputPolicy.fixed(output_dir)  # type: ignore[arg-type]
    files = list(iter_heic_files(path, cfg.runtime.extensions))
    coordinator = BatchCoordinator(ConversionService(cfg), cfg)

    progress = Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )
    task_id = progress.add_task("Converting", total=len(files))

    def _on_progress(state: BatchState) -> None:
        progress.update(task_id, completed=state.completed)

    try:
        with progress:
            handle = coordinator.start_batch(files, policy, quality, on_progress=_on_progress)
            state = handle.wait()
    except EmptyBatchError as exc:
        console.print(f"[red]Nothing to convert[/red]: {exc.cause}")
        raise typer.Exit(1) from exc
    except PermissionDeniedError as exc:
        console.print(f"[red]Output folder unavailable[/red]: {exc}")
        raise typer.Exit(1) from exc

    _print_summary(state)
    if state.failed:
        raise typer.Exit(1)


@app.command()
def show_config(
    config: Path | None = typer.Option(None, "--config", help="Path to config.toml"),
) -> None:
    console.print_json(dump_config(_load_config(config)))


def _print_summary(state: BatchState) -> None:
    if state.failed:
        table = Table(title="Failed files")
        table.add_column("File")
        table.add_column("Reason")
        for failure in state.failed:
            table.add_row(failure.path.name, failure.reason)
        console.print(table)
    console.print(
        f"Processed {state.total} files: "
        f"[green]{state.succeeded} succeeded[/green], [red]{len(state.failed)} failed[/red]."
    )


if __name__ == "__main__":
    app()
