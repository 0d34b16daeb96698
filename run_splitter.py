import argparse
import logging
import os
import sys
from typing import Callable, List, Optional, Tuple

from glossary_splitter import (
    SplitterConfig,
    run,
    setup_logging,
    load_manifest,
    get_spec_directory,
    to_manifest_path,
    ConfigurationError,
    PreconditionError,
    StorageError,
    ManifestFormatError,
    AnchorNotFoundError,
    MalformedGlossaryError,
    SlugCollisionError,
)

logger = logging.getLogger("glossary_splitter.cli")

EXIT_OK = 0
EXIT_CANCELLED = 1
EXIT_PRECONDITION = 2
EXIT_STORAGE = 3
EXIT_MALFORMED = 4
EXIT_CONFIGURATION = 5

DEFAULT_TERMS_FILE = "terms_and_definitions.md"
DEFAULT_TERMS_DIR = "terms-definitions"

DESCRIPTION = """\
Split a glossary into one file per term.

- A file is created for each [[def: ...]] term, named after the term.
  It holds that one term plus its definition.
- The text before the first term is written to an introduction file next
  to the glossary.
- In specs.json the glossary entry is replaced by the introduction and the
  term files, in glossary order, so they are rendered in its place.
- The glossary file itself is left where it is.
- On the first run specs.json is copied to specs.unsplit.json; every run
  starts from that backup. With many terms specs.json can grow large.
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="glossary-splitter",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("source", nargs="?", help="Glossary file as listed in markdown_paths")
    parser.add_argument("destination", nargs="?", help="Directory for the term files")
    parser.add_argument("--root", default=".", help="Project root containing specs.json (default: .)")
    parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--log-file", help="Also write the log to this file")
    return parser


def default_paths(config: SplitterConfig) -> Tuple[str, str]:
    """Default source and destination below the manifest's spec_directory"""
    spec_directory = "."
    if os.path.isfile(config.manifest_path):
        spec_directory = get_spec_directory(load_manifest(config.manifest_path, config.encoding))
    return (
        to_manifest_path(spec_directory, DEFAULT_TERMS_FILE),
        to_manifest_path(spec_directory, DEFAULT_TERMS_DIR),
    )


def resolve_paths(args: argparse.Namespace, config: SplitterConfig,
                  input_func: Callable[[str], str]) -> Tuple[str, str]:
    """Take paths from the arguments, prompting for any that are missing"""
    source, destination = args.source, args.destination
    if source and destination:
        return source, destination
    default_source, default_destination = default_paths(config)
    if not source:
        answer = input_func(f"Enter the path to the terms file (default: {default_source}): ")
        source = answer.strip() or default_source
    if not destination:
        answer = input_func(f"Enter the directory to save the split files (default: {default_destination}): ")
        destination = answer.strip() or default_destination
    return source, destination


def ask_confirmation(input_func: Callable[[str], str]) -> bool:
    answer = input_func("Are you sure you want to split files? (yes/no) ")
    return answer.strip().lower() in ("yes", "y")


def main(argv: Optional[List[str]] = None, input_func: Callable[[str], str] = input) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = SplitterConfig.from_env(args.root)
        source, destination = resolve_paths(args, config, input_func)
        confirmed = args.yes or ask_confirmation(input_func)
        result = run(config, source, destination, confirmed)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {str(e)}")
        return EXIT_CONFIGURATION
    except PreconditionError as e:
        logger.error(f"Not splitting: {str(e)}")
        return EXIT_PRECONDITION
    except StorageError as e:
        logger.error(f"Storage failure, restore from the backup and re-run: {str(e)}")
        return EXIT_STORAGE
    except (ManifestFormatError, AnchorNotFoundError, MalformedGlossaryError, SlugCollisionError) as e:
        logger.error(f"Malformed input: {str(e)}")
        return EXIT_MALFORMED

    if result is None:
        return EXIT_CANCELLED
    print(f"Split {len(result.term_paths)} terms into {destination}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
