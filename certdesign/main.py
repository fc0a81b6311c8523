from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from . import config
from .design.fields import DisplayMode
from .design.scene import Scene
from .design.template import load_template
from .models import reset_engine
from .pipeline.credits import CreditDeniedError, LocalCreditGate
from .pipeline.generate import COMBINED, PER_RECORD
from .pipeline.ingest import load_csv
from .pipeline.render import render, render_thumbnail, to_pdf
from .pipeline.run import run_batch

app = typer.Typer(help="Certificate designer and batch PDF generator")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_scene(template_path: Path) -> Scene:
    return Scene.from_template(load_template(template_path))


def _pick_record(csv: Optional[Path], record: int) -> Optional[dict]:
    if csv is None:
        return None
    dataset = load_csv(csv)
    if not 1 <= record <= len(dataset):
        raise typer.BadParameter(f"Record must be between 1 and {len(dataset)}", param_hint="--record")
    return dataset.records[record - 1]


@app.command("render")
def render_command(
    template: Path = typer.Argument(..., help="Template JSON"),
    out: Path = typer.Option(..., "--out", help="PDF to write"),
    csv: Optional[Path] = typer.Option(None, "--csv", help="CSV with field values"),
    record: int = typer.Option(1, "--record", help="1-based CSV record to fill in"),
    pixel_ratio: float = typer.Option(config.PIXEL_RATIO, "--pixel-ratio", help="Raster density"),
) -> None:
    scene = _load_scene(template)
    png = render(scene, _pick_record(csv, record), pixel_ratio=pixel_ratio)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(to_pdf(png, scene.page_size_mm, scene.orientation))
    typer.echo(f"Wrote {out}")


@app.command()
def preview(
    template: Path = typer.Argument(..., help="Template JSON"),
    out: Path = typer.Option(..., "--out", help="PNG to write"),
    csv: Optional[Path] = typer.Option(None, "--csv", help="CSV with field values"),
    record: int = typer.Option(1, "--record", help="1-based CSV record to show"),
    mode: DisplayMode = typer.Option(DisplayMode.PLACEHOLDER, "--mode", help="placeholder or actual"),
) -> None:
    scene = _load_scene(template)
    if csv is not None:
        dataset = load_csv(csv)
        scene.set_dataset(dataset.headers, dataset.records)
        scene.show_record(record - 1)
    scene.set_display_mode(mode)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(render_thumbnail(scene))
    typer.echo(f"Wrote {out}")


@app.command()
def batch(
    template: Path = typer.Argument(..., help="Template JSON"),
    csv: Path = typer.Argument(..., help="CSV, one certificate per row"),
    out: Optional[Path] = typer.Option(None, "--out", help="Output directory"),
    pattern: str = typer.Option(config.DEFAULT_FILENAME_PATTERN, "--pattern", help="Filename pattern"),
    single_file: bool = typer.Option(False, "--single-file", help="One multi-page PDF"),
    credits: int = typer.Option(100, "--credits", help="Credits available to the local gate"),
) -> None:
    if out:
        config.set_out_dir(out)
        reset_engine()
    scene = _load_scene(template)
    dataset = load_csv(csv)
    gate = LocalCreditGate(credits)
    mode = COMBINED if single_file else PER_RECORD
    try:
        report = asyncio.run(run_batch(scene, dataset, gate, filename_pattern=pattern, mode=mode))
    except CreditDeniedError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2)
    produced = report.result.produced if report.result else 0
    failed = len(report.result.failures) if report.result else len(dataset)
    typer.echo(f"{report.run.status.value}: {report.run.slug}")
    typer.echo(f"Produced: {produced}")
    typer.echo(f"Failed: {failed}")
    typer.echo(f"Charged: {report.charged}")
    typer.echo(f"Balance: {gate.balance}")
    if not report.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
