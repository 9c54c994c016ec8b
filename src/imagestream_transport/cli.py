"""
Image stream transport CLI

Implements inspection verbs over image stream references:
- resolve: Show the registry reference and image an image stream tag points to
- signatures: Print or save the atomic signatures of an image
- manifest: Show the manifest selected for the running platform
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .manifest import image_manifest
from .mappers import run_and_exit
from .settings import create_settings_from_env
from .transport import ImageStreamTransport

app = typer.Typer(name="imagestream-transport", help="Image stream transport CLI")


def _make_transport() -> ImageStreamTransport:
    """Create the transport from environment settings."""
    return ImageStreamTransport(create_settings_from_env())


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")
) -> None:
    """Read image stream references through the image-stream API."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def resolve(
    reference: str = typer.Argument(..., help="Image stream reference (host/namespace/stream:tag)"),
) -> None:
    """Resolve an image stream tag to a registry reference."""

    def _resolve() -> None:
        transport = _make_transport()
        with transport.new_image_source(reference) as source:
            resolved = source.ensure_resolved()
        typer.echo(f"Reference: {resolved.docker_reference}")
        typer.echo(f"Image: {resolved.image_name}")

    run_and_exit(_resolve)


@app.command()
def signatures(
    reference: str = typer.Argument(..., help="Image stream reference"),
    output_dir: Optional[Path] = typer.Option(
        None, "--output-dir", "-o", help="Write signatures as signature-N files here"
    ),
) -> None:
    """Print or save the atomic signatures of an image."""

    def _signatures() -> None:
        transport = _make_transport()
        with transport.new_image_source(reference) as source:
            sigs = source.get_signatures()

        if output_dir is None:
            typer.echo(f"{len(sigs)} signature(s)")
            return

        output_dir.mkdir(parents=True, exist_ok=True)
        for index, content in enumerate(sigs, start=1):
            (output_dir / f"signature-{index}").write_bytes(content)
        typer.echo(f"Wrote {len(sigs)} signature(s) to {output_dir}")

    run_and_exit(_signatures)


@app.command()
def manifest(
    reference: str = typer.Argument(..., help="Image stream reference"),
    raw: bool = typer.Option(False, "--raw", help="Print the manifest body"),
) -> None:
    """Show the manifest for the running platform."""

    def _manifest() -> None:
        transport = _make_transport()
        with transport.new_image_source(reference) as source:
            parsed = image_manifest(source)
        if raw:
            typer.echo(parsed.raw.decode("utf-8"))
            return
        typer.echo(f"Digest: {parsed.digest}")
        typer.echo(f"Media type: {parsed.mime_type}")

    run_and_exit(_manifest)


if __name__ == "__main__":
    app()
