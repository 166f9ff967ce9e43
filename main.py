import argparse
import os
import sys
import logging

from m3u_splitter import SplitterError, is_remote, split_playlist


LOG_FORMAT = "%(levelname)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="m3u-splitter",
        description="Split an M3U playlist into one file per group-title.",
    )
    parser.add_argument("-i", "--input", required=True, help="Input M3U file path or http(s) URL")
    parser.add_argument("-o", "--output", required=True, help="Output directory for split M3U files")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only show group statistics without writing files",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # Log only warnings/errors unless --verbose
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    source = args.input if is_remote(args.input) else os.path.abspath(args.input)
    output_dir = os.path.abspath(args.output)

    print(f"Parsing M3U file: {source}")
    try:
        result = split_playlist(source, output_dir, dry_run=args.dry_run)
    except SplitterError as e:
        logging.error("%s [%s]", e, e.kind)
        return 1

    if not result.groups:
        logging.warning("No channels found in the M3U file")
        return 0

    print(f"\nFound {result.total_groups} groups:")
    for g in result.groups:
        print(f"  {g.group_name}: {g.channel_count} channels")

    if result.dry_run:
        print("\nDry-run mode: No files written.")
    else:
        print(f"\nWriting output files to: {output_dir}")
        for g in result.groups:
            print(f"  Created: {os.path.basename(g.output_path)} ({g.channel_count} channels)")
        for path in result.collisions():
            logging.warning("Several groups share %s; the last one overwrote the others", path)
        print("\nDone!")

    print(f"Total: {result.total_channels} channels in {result.total_groups} groups")
    return 0


if __name__ == "__main__":
    sys.exit(main())
