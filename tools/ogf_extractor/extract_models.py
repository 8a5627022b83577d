#!/usr/bin/env python3
"""Extract X-Ray OGF v3 models to glTF format.

Usage:
    python extract_models.py <input> [-o <output>] [--no-skeleton] [--no-animation]
                             [--base-lod] [--alias NAME=PATH ...]

Examples:
    # Extract a single file
    python extract_models.py stalker.ogf -o ./output

    # Extract all OGF files from a directory
    python extract_models.py ./meshes/ -o ./output

    # Extract without skeleton/animation
    python extract_models.py stalker.ogf -o ./output --no-skeleton --no-animation

Child references and motion sidecars (.ltx) are looked up next to each
model file.
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from gltf_exporter import GLTFExporter
from ogf_filesystem import LocalFileSystem, expand_path
from ogf_model import parse_aliases

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(
        description="Extract X-Ray OGF v3 models to glTF format"
    )
    parser.add_argument(
        "input",
        help="Input OGF file or directory containing OGF files",
    )
    parser.add_argument(
        "-o", "--output",
        default="./output",
        help="Output directory for glTF files (default: ./output)",
    )
    parser.add_argument(
        "--no-skeleton",
        action="store_true",
        help="Skip skeleton export",
    )
    parser.add_argument(
        "--no-animation",
        action="store_true",
        help="Skip animation export",
    )
    parser.add_argument(
        "--base-lod",
        action="store_true",
        help="Export the reconstructed base LOD of progressive meshes",
    )
    parser.add_argument(
        "--alias",
        action="append",
        default=[],
        metavar="NAME=PATH",
        help="Path alias for the file system, e.g. $game_meshes$=./meshes (repeatable)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        fs = LocalFileSystem(parse_aliases(args.alias))
        input_path = Path(expand_path(fs, args.input))
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 1

    # Ensure output directory exists
    os.makedirs(args.output, exist_ok=True)

    # Collect input files
    if input_path.is_file():
        files = [input_path]
    elif input_path.is_dir():
        files = sorted(input_path.glob("**/*.ogf"))
        if not files:
            print(f"No OGF files found in {input_path}", file=sys.stderr)
            return 1
    else:
        print(f"Input not found: {args.input}", file=sys.stderr)
        return 1

    # Export options
    include_skeleton = not args.no_skeleton
    include_animations = not args.no_animation

    success_count = 0
    fail_count = 0

    for ogf_file in files:
        output_file = Path(args.output) / f"{ogf_file.stem}.glb"
        logger.info("Exporting %s", ogf_file)

        try:
            exporter = GLTFExporter(str(ogf_file), fs=fs)
            exporter.export(
                str(output_file),
                include_skeleton=include_skeleton,
                include_animations=include_animations,
                use_base_lod=args.base_lod,
            )
            if args.verbose:
                print(f"Exported: {ogf_file} -> {output_file}")
            success_count += 1
        except (OSError, ValueError) as e:
            print(f"Failed: {ogf_file} - {e}", file=sys.stderr)
            fail_count += 1

    # Summary
    total = success_count + fail_count
    print(f"\nExtracted {success_count}/{total} files to {args.output}")

    return 0 if fail_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
