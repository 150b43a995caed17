import time
import typer
import yaml
from pathlib import Path
from typing import List, Optional
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table
from vcomp.config.loader import load_config
from vcomp.domain.errors import CompressionError, RequestValidationError
from vcomp.domain.models import CompressionRequest, CropRect, JobStatus, VideoSegment
from vcomp.infrastructure.logging import setup_logging
from vcomp.pipeline.orchestrator import CompressionOrchestrator

app = typer.Typer(help="vcomp - video compression to a size or quality target")
console = Console()

POLL_INTERVAL = 0.5


def parse_crop(value: Optional[str]) -> Optional[CropRect]:
    if not value:
        return None
    parts = value.split(":")
    if len(parts) != 4:
        raise typer.BadParameter(f"Crop must be X:Y:WIDTH:HEIGHT, got '{value}'")
    try:
        x, y, width, height = (int(p) for p in parts)
    except ValueError:
        raise typer.BadParameter(f"Crop values must be integers, got '{value}'")
    return CropRect(x=x, y=y, width=width, height=height)


def parse_segment(value: str) -> VideoSegment:
    start, sep, end = value.partition("-")
    if not sep:
        raise typer.BadParameter(f"Segment must be START-END in seconds, got '{value}'")
    try:
        return VideoSegment(start=float(start), end=float(end))
    except ValueError:
        raise typer.BadParameter(f"Segment bounds must be numbers, got '{value}'")


def _format_eta(seconds: Optional[int]) -> str:
    if seconds is None:
        return "--:--"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


@app.command()
def compress(
    input_file: Path = typer.Argument(..., help="Video file to compress"),
    codec: str = typer.Option("h264", "--codec", help="h264, h265 (hevc), vp9 or av1"),
    scale: Optional[int] = typer.Option(None, "--scale", help="Output scale in percent (10-100)"),
    fps: Optional[int] = typer.Option(None, "--fps", help="Output frame rate"),
    target_size_mb: Optional[float] = typer.Option(None, "--target-size-mb", help="Target output size in MB"),
    mute: bool = typer.Option(False, "--mute", help="Drop the audio track"),
    quality: bool = typer.Option(False, "--quality", help="Slower, higher quality encoder tuning"),
    crop: Optional[str] = typer.Option(None, "--crop", help="Crop rectangle X:Y:WIDTH:HEIGHT"),
    segment: Optional[List[str]] = typer.Option(None, "--segment", help="Keep START-END seconds (repeatable)"),
    output_dir: Optional[Path] = typer.Option(None, "--output-dir", "-o", help="Where to write the output"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Compress one video and wait for the result."""
    if not input_file.is_file():
        typer.secho(f"Error: File {input_file} does not exist.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    request = CompressionRequest(
        codec=codec,
        scale_percent=scale,
        target_fps=fps,
        target_size_mb=target_size_mb,
        mute_audio=mute,
        crop=parse_crop(crop),
        segments=[parse_segment(s) for s in segment] if segment else None,
        quality_mode=quality,
    )

    try:
        config = load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.secho(f"Config error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if output_dir is not None:
        config.general.output_dir = output_dir
    if debug:
        config.general.debug = True

    logger = setup_logging(config.general.log_dir or config.general.output_dir, debug=config.general.debug, console=console)
    logger.info(f"vcomp started: input={input_file}, output_dir={config.general.output_dir}")

    orchestrator = CompressionOrchestrator.from_config(config)
    try:
        job_id = orchestrator.submit(input_file, request)
    except RequestValidationError as e:
        typer.secho(f"Invalid request: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2)

    job = orchestrator.get_job(job_id)
    console.print(
        f"Encoder: [bold]{job.encoder_name}[/bold]"
        f"{' (hardware)' if job.encoder_is_hardware else ''}"
        + (f", target {job.target_bitrate_kbps:.0f} kbps" if job.target_bitrate_kbps else "")
    )
    if job.plan is not None and job.plan.bitrate_warning:
        console.print("[yellow]Warning: target size is too small or unusable, output quality may suffer[/yellow]")

    orchestrator.start()
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("ETA {task.fields[eta]}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(input_file.name, total=100, eta="--:--")
            report = orchestrator.status(job_id)
            while not report.status.is_terminal:
                progress.update(task, completed=report.progress, eta=_format_eta(report.eta_seconds))
                time.sleep(POLL_INTERVAL)
                report = orchestrator.status(job_id)
            progress.update(task, completed=report.progress)
    except KeyboardInterrupt:
        orchestrator.cancel(job_id)
        orchestrator.shutdown(wait=True)
        typer.echo("\nCancelled by user")
        raise typer.Exit(code=130)

    orchestrator.shutdown(wait=True)

    if report.status == JobStatus.COMPLETED:
        path, _, _ = orchestrator.download(job_id)
        size_mb = (report.output_size_bytes or 0) / (1024 * 1024)
        typer.secho(f"{report.message} {path} ({size_mb:.2f} MB)", fg=typer.colors.GREEN)
        return
    typer.secho(report.message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command()
def encoders(
    verify: bool = typer.Option(False, "--verify", help="Run a trial encode for each hardware encoder"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML config"),
):
    """Show which encoder each codec would use."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        typer.secho(f"Config error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    setup_logging(config.general.log_dir, debug=config.general.debug, console=console)

    orchestrator = CompressionOrchestrator.from_config(config)
    try:
        reports = orchestrator.list_encoders(verify=verify)
    except CompressionError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    table = Table(title="Encoders" + (" (verified)" if verify else ""))
    table.add_column("Codec", style="bold")
    table.add_column("Selected")
    table.add_column("Hardware")
    table.add_column("Candidates")
    for report in reports:
        candidates = ", ".join(
            f"[green]{c.name}[/green]" if c.is_available else f"[dim]{c.name}[/dim]"
            for c in report.encoders
        )
        table.add_row(
            report.codec,
            report.selected_encoder,
            "yes" if report.hardware_detected else "no",
            candidates,
        )
    console.print(table)


if __name__ == "__main__":
    app()
