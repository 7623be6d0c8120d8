# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for fastenc commands.

Runs once before a command does real work:
  1. Validate the interpreter
  2. Route package logs through the JSON formatter
  3. Seed torch and Python's random module
"""

import random
from pathlib import Path

import torch

from fastenc.config.schema import GlobalConfig
from fastenc.logging.logger import configure_logging
from fastenc.runtime.environment import check_minimum_python


def set_deterministic_seed(seed: int) -> None:
    """
    Seed every source of randomness the self-check uses.

    Args:
        seed: Integer seed value. Must be >= 0.
    """
    random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)


def bootstrap(config: GlobalConfig, log_level: str | None = None) -> None:
    """
    Put the process into a known state.

    Args:
        config: The validated global configuration.
        log_level: Overrides ``config.log_level`` when given (CLI flag).
    """
    check_minimum_python()
    log_file = Path(config.log_file) if config.log_file is not None else None
    configure_logging(log_level or config.log_level, log_file)
    set_deterministic_seed(config.seed)
