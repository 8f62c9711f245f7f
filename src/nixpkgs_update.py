"""nixpkgs-update: automatic version bumps for nixpkgs.

Entry point dispatching the CLI subcommands to the batch driver.
"""

import logging
import os
import sys

from args import parse_args
from cli_config import ConfigError, build_options
from common.logging_utils import ENV_LOG_LEVEL, configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes
from update import batch

logger = logging.getLogger(__name__)

BATCH_COMMANDS = ("update-batch",)


def read_update_list(path):
    """Read a candidate list from ``path`` or stdin for ``-``.

    Exits with FILE_ERROR when the file cannot be read.
    """
    if path == "-":
        return sys.stdin.read()
    try:
        with open(path, encoding='utf-8') as file:
            return file.read()
    except FileNotFoundError as e:
        logging.error("File not found: %s, aborting", e)
        sys.exit(ExitCodes.FILE_ERROR.value)
    except IOError as e:
        logging.error("IO error: %s, aborting", e)
        sys.exit(ExitCodes.FILE_ERROR.value)


def _setup_logging(args):
    if getattr(args, "LOG_LEVEL", None):
        os.environ[ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging()
    if getattr(args, "LOG_FILE", None):
        handler = logging.FileHandler(args.LOG_FILE, encoding="utf-8")
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    _setup_logging(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main", target=args.COMMAND)
        )

    try:
        options = build_options(args, batch_update=args.COMMAND in BATCH_COMMANDS)
    except (ConfigError, TypeError) as e:
        logging.error("Invalid configuration: %s", e)
        sys.exit(ExitCodes.FILE_ERROR.value)

    if args.COMMAND == "update":
        ok = batch.update_one(options, args.UPDATE_LINE, repo_dir=args.REPO_DIR)
        sys.exit(ExitCodes.SUCCESS.value if ok else ExitCodes.UPDATE_FAILED.value)

    text = read_update_list(args.UPDATE_LIST)
    if args.COMMAND == "update-batch":
        summary = batch.update_all(options, text, repo_dir=args.REPO_DIR)
        logging.info(
            "Batch finished: %d succeeded, %d failed, %d unparsed",
            summary.succeeded, summary.failed, summary.unparsed,
        )
    elif args.COMMAND == "cve-report":
        batch.cve_all(options, text)
    elif args.COMMAND == "check-github":
        batch.source_github_all(options, text, repo_dir=args.REPO_DIR)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI finished",
            extra=extra_context(event="function_exit", component="cli", action="main", outcome="success")
        )
    sys.exit(ExitCodes.SUCCESS.value)


if __name__ == "__main__":
    main()
