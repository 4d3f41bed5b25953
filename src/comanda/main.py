"""CLI entrypoint for comanda."""

import logging
import sys
from pathlib import Path

import rich_click as click

from comanda import __version__
from comanda.chunker import SPLIT_MODES
from comanda.controllers import ChunkCommand, CliController, ProcessCommand

click.rich_click.USE_MARKDOWN = True
CONTROLLER = CliController()


@click.group()
@click.version_option(version=__version__, prog_name="comanda")
def comanda() -> None:
    """Run YAML-described LLM workflows."""


@comanda.command("process")
@click.argument(
    "files",
    nargs=-1,
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
)
@click.option(
    "--runtime-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Base directory for relative input and output paths.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Log progress details.")
def process(files: tuple[Path, ...], runtime_dir: Path | None, verbose: bool) -> None:
    """Process one or more workflow files.

    Piped stdin becomes the initial `STDIN` input of every workflow.
    """

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    stdin_data = "" if sys.stdin.isatty() else click.get_text_stream("stdin").read()
    result = CONTROLLER.process(
        ProcessCommand(
            files=files,
            runtime_dir=runtime_dir,
            stdin_data=stdin_data,
            verbose=verbose,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("One or more workflow files failed.")


@comanda.command("chunk")
@click.argument("file", type=click.Path(path_type=Path, dir_okay=False, exists=True))
@click.option(
    "--by",
    type=click.Choice(list(SPLIT_MODES), case_sensitive=False),
    default=None,
    help="Split unit (defaults to COMANDA_CHUNK_BY or lines).",
)
@click.option("--size", type=click.IntRange(min=1), default=None, help="Units per chunk.")
@click.option(
    "--overlap",
    type=click.IntRange(min=0),
    default=None,
    help="Units shared by consecutive chunks.",
)
@click.option(
    "--max-chunks",
    type=click.IntRange(min=1),
    default=None,
    help="Refuse to split into more chunks than this.",
)
def chunk(
    file: Path,
    by: str | None,
    size: int | None,
    overlap: int | None,
    max_chunks: int | None,
) -> None:
    """Split a file into chunk files inside a temporary directory."""

    result = CONTROLLER.chunk(
        ChunkCommand(file=file, by=by, size=size, overlap=overlap, max_chunks=max_chunks),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Chunking failed.")


@comanda.command("models")
@click.option("--provider", default=None, help="Only list one provider.")
def models(provider: str | None) -> None:
    """List registered model names and family prefixes."""

    _emit_lines(CONTROLLER.list_models(provider.lower() if provider else None))


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    comanda()
