#!/usr/bin/env python3
"""
levelforge CLI - Export models from raw level data.

Usage:
    levelforge export level.bin --descriptor moby.json --output moby.dae
    levelforge info level.bin --descriptor moby.json
    levelforge dump-records level.bin --kind light --offset 0x2000 --count 4
"""

import argparse
import json
import logging
import sys
from pathlib import Path


def _read_model(args):
    from levelforge.descriptor import load_descriptor, load_model

    descriptor = load_descriptor(args.descriptor)
    data = Path(args.level_file).read_bytes()
    return load_model(data, descriptor)


def cmd_export(args):
    """Export a model to COLLADA."""
    from levelforge.collada import ColladaExporter
    from levelforge.settings import AnimationChoice, ExportSettings

    try:
        if args.settings:
            settings = ExportSettings.from_json(Path(args.settings).read_text(encoding="utf-8"))
        else:
            settings = ExportSettings()
        if args.animations:
            settings.animation_choice = AnimationChoice(args.animations)
        if args.animation_index is not None:
            settings.animation_index = args.animation_index
        if args.single_file:
            settings.split_files = False

        errors = settings.validate()
        if errors:
            raise ValueError("; ".join(errors))

        model = _read_model(args)
        written = ColladaExporter(settings).export_model(args.output, model)
        for path in written:
            print(f"Success: {path}")
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_info(args):
    """Show counts, validation result and statistics for a model."""
    from levelforge.validate import mesh_stats, validate_model

    try:
        model = _read_model(args)
        stats = mesh_stats(model)

        print(f"Model: {stats['kind']} #{stats['id']}")
        print(f"Vertices: {stats['vertices']}")
        print(f"Faces: {stats['faces']}")
        print(f"Texture configs: {stats['texture_configs']}")
        if "bones" in stats:
            print(f"Bones: {stats['bones']}")
            print(f"Animations: {stats['animations']}")
        if "bounds" in stats:
            low, high = stats["bounds"]
            print(f"Bounds: {low} .. {high}")
        if "watertight" in stats:
            print(f"Watertight: {stats['watertight']}")

        valid, errors = validate_model(model)
        if valid:
            print("✓ Model valid")
            return 0
        print("✗ Validation failed:")
        for error in errors:
            print(f"  - {error}")
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_dump_records(args):
    """Decode a fixed-size record array and print it as JSON."""
    from levelforge.codec import read_block
    from levelforge.records import RECORD_KINDS, decode_array

    try:
        record_type = RECORD_KINDS[args.kind]
        data = Path(args.level_file).read_bytes()
        block = read_block(data, args.offset, args.count * record_type.ELEMENT_SIZE)
        records = decode_array(record_type, block, args.count)
        print(json.dumps([record.to_dict() for record in records], indent=2))
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def _int(value: str) -> int:
    return int(value, 0)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="levelforge CLI - Export models from raw level data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  levelforge export level.bin --descriptor moby.json --output moby.dae
  levelforge export level.bin -d moby.json -o moby.dae --animations sequential
  levelforge info level.bin --descriptor moby.json
  levelforge dump-records level.bin --kind tuple --offset 0x400 --count 8
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log decode and export stages")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # export
    export_parser = subparsers.add_parser(
        "export",
        help="Export a model to a COLLADA (.dae) file",
    )
    export_parser.add_argument("level_file", help="Raw level data file")
    export_parser.add_argument("--descriptor", "-d", required=True, help="Model descriptor JSON")
    export_parser.add_argument("--output", "-o", required=True, help="Output .dae file")
    export_parser.add_argument("--settings", help="Export settings JSON")
    export_parser.add_argument(
        "--animations",
        choices=["none", "separate", "sequential"],
        help="Animation clips to write (default: separate)",
    )
    export_parser.add_argument("--animation-index", type=int, help="Write only this animation clip")
    export_parser.add_argument("--single-file", action="store_true", help="Write all separate clips into one file")
    export_parser.set_defaults(func=cmd_export)

    # info
    info_parser = subparsers.add_parser(
        "info",
        help="Show information about a model",
    )
    info_parser.add_argument("level_file", help="Raw level data file")
    info_parser.add_argument("--descriptor", "-d", required=True, help="Model descriptor JSON")
    info_parser.set_defaults(func=cmd_info)

    # dump-records
    dump_parser = subparsers.add_parser(
        "dump-records",
        help="Print a fixed-size record array as JSON",
    )
    dump_parser.add_argument("level_file", help="Raw level data file")
    dump_parser.add_argument("--kind", "-k", required=True, choices=["light", "tuple"], help="Record kind")
    dump_parser.add_argument("--offset", type=_int, default=0, help="Byte offset of the first record (default: 0)")
    dump_parser.add_argument("--count", type=_int, default=1, help="Number of records (default: 1)")
    dump_parser.set_defaults(func=cmd_dump_records)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
