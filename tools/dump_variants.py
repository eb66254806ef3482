"""
tools/dump_variants.py
----------------------
Headless debug tool: writes every preprocessed variant the decode chain
would try for an image, and whether zxing-cpp reads each one.

Outputs (written to ``data/debug/<image stem>/``):
  * ``optimized.png``
  * ``rotate-90.png``, ``rotate-180.png``, ``rotate-270.png``
  * ``binarized.png``  (Otsu threshold, not part of the chain)
  * ``transport.jpg``  (what the vision model would receive)

Usage:
    python -m tools.dump_variants --image photo.jpg
    python -m tools.dump_variants --image photo.jpg --out-dir /tmp/variants
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

# Bootstrap logging before importing codescan modules
logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
logger = logging.getLogger(__name__)

from codescan.core.config import load_config
from codescan.core.exceptions import ProcessingError
from codescan.processing.decoders import NativeDecoder
from codescan.processing.preprocess import ImagePreprocessor


def build_variants(pre: ImagePreprocessor, data: bytes) -> dict[str, bytes]:
    """Return ``{file name: bytes}`` for every variant that could be produced."""
    variants: dict[str, bytes] = {}
    try:
        optimized = pre.optimize(data)
        variants["optimized.png"] = optimized
    except ProcessingError as exc:
        logger.warning("optimize failed: %s", exc)
        optimized = data

    for degrees in pre.config.rotations:
        try:
            variants[f"rotate-{degrees}.png"] = pre.rotate(optimized, degrees)
        except ProcessingError as exc:
            logger.warning("rotate-%d failed: %s", degrees, exc)

    for name, make in (("binarized.png", pre.binarized), ("transport.jpg", pre.for_transport)):
        try:
            variants[name] = make(data)
        except ProcessingError as exc:
            logger.warning("%s failed: %s", name, exc)
    return variants


@click.command()
@click.option("--image", required=True, type=click.Path(exists=True, dir_okay=False), help="Input photo.")
@click.option("--config", "config_path", default=None, type=click.Path(), help="YAML config.")
@click.option("--out-dir", default=None, type=click.Path(), help="Output directory (default: data/debug/<stem>).")
def main(image, config_path, out_dir):
    cfg = load_config(config_path)
    pre = ImagePreprocessor(cfg.preprocess)
    decoder = NativeDecoder(formats=cfg.decode.formats, try_rotate=cfg.decode.try_rotate)

    src = Path(image)
    out = Path(out_dir) if out_dir else Path("data/debug") / src.stem
    out.mkdir(parents=True, exist_ok=True)

    for name, data in build_variants(pre, src.read_bytes()).items():
        (out / name).write_bytes(data)
        try:
            text = decoder.decode_bytes(data)
        except ProcessingError as exc:
            text = f"<error: {exc}>"
        click.echo(f"{name:<16} {len(data):>9} bytes  {text or '-'}")

    click.echo(f"\nVariants written to {out}")


if __name__ == "__main__":
    main()
