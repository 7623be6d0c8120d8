# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for fastenc.

Every operation is a subcommand of ``fastenc``. Global options (--config,
--log-level, --seed) are inherited by each subcommand through argparse's
parent parser mechanism.

Usage:
    fastenc info
    fastenc supported
    fastenc selfcheck --config configs/selfcheck.yaml --seed 7
"""

import argparse
import sys

from fastenc.cli.commands import handle_info, handle_selfcheck, handle_supported
from fastenc.cli.exit_codes import USER_ERROR


def _build_global_parser() -> argparse.ArgumentParser:
    """
    Build the parent parser with global options.

    ``add_help=False`` keeps its help text from colliding with the
    subcommand parsers that inherit it.
    """
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file.",
    )
    parent.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level (overrides the config).",
    )
    parent.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override the random seed (takes precedence over config).",
    )
    return parent


def _register_subcommands(
    subparsers: argparse._SubParsersAction,  # type: ignore[type-arg]
    parent: argparse.ArgumentParser,
) -> None:
    """Register every subcommand with its handler via set_defaults(func=...)."""
    commands = [
        ("info", "Display environment and fused-kernel availability.", handle_info),
        ("supported", "List layer types that can be converted.", handle_supported),
        ("selfcheck", "Compare fused and reference encoder outputs.", handle_selfcheck),
    ]

    for name, help_text, handler in commands:
        parser = subparsers.add_parser(name, parents=[parent], help=help_text)
        parser.set_defaults(func=handler)


def main() -> None:
    """
    Main CLI entrypoint, referenced by pyproject.toml's [project.scripts].

    With no subcommand, prints help and exits with USER_ERROR.
    """
    parent = _build_global_parser()

    root_parser = argparse.ArgumentParser(
        prog="fastenc",
        description="fastenc: fused, padding-free inference for transformer encoders.",
        parents=[parent],
    )
    subparsers = root_parser.add_subparsers(dest="command")
    _register_subcommands(subparsers, parent)

    args = root_parser.parse_args()

    if not hasattr(args, "func") or args.func is None:
        root_parser.print_help()
        sys.exit(USER_ERROR)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
