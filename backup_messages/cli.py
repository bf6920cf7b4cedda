"""Command line entry point: backup-messages --input BACKUP --output FOLDER"""

from __future__ import annotations
import argparse
import logging
import sys

from .errors import BackupError
from .export import export_backup

EXIT_PARTIAL = 2


def build_arg_parser():
    ap = argparse.ArgumentParser(
        description="Export the messages of an iTunes iPhone backup to HTML and JSON.")
    ap.add_argument("--input", required=True, help="The path of the iTunes backup")
    ap.add_argument("--output", required=True, help="The output path. Must be empty or non-existent")
    ap.add_argument("--strict", action="store_true",
                    help="Stop at the first conversation that cannot be read instead of skipping it")
    ap.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    ap.add_argument("--no-progress", action="store_true", help="Hide the progress bar")
    return ap


def run_cli(args) -> int:
    print("\nWorking, please wait...")
    try:
        paths, report = export_backup(
            args.input,
            args.output,
            strict=args.strict,
            show_progress=not args.no_progress,
        )
    except BackupError as exc:
        raise SystemExit(f"\n[ERR] {exc}\n") from exc

    if not report.ok:
        print(f"\n[WARN] {len(report.failed_chats)} conversation(s) could not be exported, "
              f"see the log above. Output written to {paths.output_dir}\n")
        return EXIT_PARTIAL
    print(f"\nComplete! Output written to {paths.output_dir}\n")
    return 0


def main(argv=None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    return run_cli(args)


if __name__ == "__main__":
    sys.exit(main())
