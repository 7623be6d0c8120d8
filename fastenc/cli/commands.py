# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the fastenc CLI.

Each function corresponds to one subcommand and returns an exit code. Output
goes through the structured logger, never print().
"""

import argparse
import logging
from pathlib import Path

from fastenc.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, VALIDATION_ERROR
from fastenc.config.exceptions import ConfigError
from fastenc.config.loader import load_config
from fastenc.config.schema import FastencConfig, SelfCheckConfig
from fastenc.logging.logger import configure_logging, get_logger
from fastenc.runtime.bootstrap import bootstrap, set_deterministic_seed


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, FastencConfig | None, logging.Logger]:
    """
    Shared setup: load config, bootstrap, apply the seed override.

    Returns ``(exit_code, config, logger)``. If exit_code is not SUCCESS the
    caller returns it immediately.
    """
    log_level = args.log_level or "INFO"
    logger = get_logger(f"fastenc.cli.{command_name}", log_level=log_level)

    config = None
    if args.config is not None:
        try:
            config = load_config(Path(args.config))
        except ConfigError as err:
            logger.error(
                "Configuration error",
                extra={"command": command_name, "error": str(err)},
            )
            return CONFIG_ERROR, None, logger

    if config is not None:
        bootstrap(config.global_config, args.log_level)
        logger.setLevel(args.log_level or config.global_config.log_level)
    else:
        configure_logging(log_level)
        logger.debug("No config provided, running with defaults", extra={"command": command_name})

    if args.seed is not None:
        set_deterministic_seed(args.seed)

    return SUCCESS, config, logger


def handle_info(args: argparse.Namespace) -> int:
    """Display environment and fused-kernel information."""
    exit_code, _, logger = _load_and_bootstrap(args, "info")
    if exit_code != SUCCESS:
        return exit_code

    from fastenc import __version__
    from fastenc.runtime.environment import get_system_info

    system_info = get_system_info()
    logger.info(
        "System information",
        extra={
            "fastenc_version": __version__,
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "torch_version": system_info.torch_version,
            "cuda_available": system_info.cuda_available,
            "fused_kernel_available": system_info.fused_kernel_available,
            "config": args.config,
        },
    )
    return SUCCESS


def handle_supported(args: argparse.Namespace) -> int:
    """List every registered source layer type and its adapter."""
    exit_code, _, logger = _load_and_bootstrap(args, "supported")
    if exit_code != SUCCESS:
        return exit_code

    from fastenc.model.registry import registry_view

    adapters = {layer_type: cls.__name__ for layer_type, cls in sorted(registry_view().items())}
    logger.info(
        "Supported layer types",
        extra={"layer_types": sorted(adapters), "adapters": adapters},
    )
    return SUCCESS


def handle_selfcheck(args: argparse.Namespace) -> int:
    """
    Convert a random encoder stack and compare it with the unconverted one.

    Uses the ``selfcheck`` and ``conversion`` config sections when present,
    defaults otherwise.
    """
    exit_code, config, logger = _load_and_bootstrap(args, "selfcheck")
    if exit_code != SUCCESS:
        return exit_code

    from fastenc.model.exceptions import ConversionError
    from fastenc.runtime.selfcheck import run_selfcheck

    selfcheck = config.selfcheck if config is not None else None
    if selfcheck is None:
        selfcheck = SelfCheckConfig(config_version="1.0.0")
    conversion = config.conversion if config is not None else None

    logger.info(
        "Starting self-check",
        extra={
            "embed_dim": selfcheck.embed_dim,
            "num_heads": selfcheck.num_heads,
            "num_layers": selfcheck.num_layers,
            "sequence_lengths": selfcheck.sequence_lengths,
        },
    )

    try:
        result = run_selfcheck(selfcheck, conversion)
    except ConversionError as err:
        logger.error("Conversion rejected the stack", extra={"error": str(err)})
        return VALIDATION_ERROR
    except Exception as err:
        logger.error("Self-check failed", extra={"error": str(err)}, exc_info=True)
        return RUNTIME_ERROR

    extra = {
        "max_abs_diff": result.max_abs_diff,
        "atol": result.atol,
        "padding_is_zero": result.padding_is_zero,
        "shape_matches": result.shape_matches,
        "converted_layers": result.converted_layers,
    }
    if not result.passed:
        logger.error("Fused output does not match the reference", extra=extra)
        return VALIDATION_ERROR

    logger.info("Self-check passed", extra=extra)
    return SUCCESS
