import argparse
import logging
import sys

from mp4probe.configs import settings
from mp4probe.inspector import inspect_file
from mp4probe.isobmff.errors import ProbeError

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    arg_parser = argparse.ArgumentParser(
        prog="mp4probe",
        description="Dump the box tree of an H.264 MP4 file and classify the leading NAL unit of every video sample.",
    )
    arg_parser.add_argument("path", help="Path to the ISO-BMFF (MP4) file")
    arg_parser.add_argument(
        "--preview-size",
        type=int,
        default=settings.preview_size,
        help="Bytes of each box header/body shown in the box dump",
    )
    arg_parser.add_argument(
        "--all-nal-units",
        action="store_true",
        default=settings.inspect_all_nal_units,
        help="Classify every NAL unit in a sample, not only the first",
    )
    arg_parser.add_argument(
        "--report-sei", action="store_true", default=settings.report_sei, help="Include SEI units in the report"
    )
    arg_parser.add_argument("--skip-box-dump", action="store_true", help="Only print the sample report")
    arg_parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=settings.log_level,
        help="Logging level (default: %(default)s)",
    )
    return arg_parser


def cli(argv: list[str] | None = None) -> int:
    """
    Command line interface for inspecting an H.264 MP4 file.
    """
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if args.preview_size <= 0:
        logger.error("--preview-size must be positive, got %d", args.preview_size)
        return 2

    try:
        report = inspect_file(
            args.path,
            preview_size=args.preview_size,
            max_depth=settings.max_box_depth,
            hex_columns=settings.hex_columns,
            inspect_all=args.all_nal_units,
            report_sei=args.report_sei,
            skip_box_dump=args.skip_box_dump,
        )
    except ProbeError as e:
        logger.error("Failed to inspect %s: %s", args.path, e)
        return 1
    except OSError as e:
        logger.error("Cannot read %s: %s", args.path, e)
        return 1

    print(report.summary())
    return 0


def main() -> None:
    sys.exit(cli())


if __name__ == "__main__":
    main()
