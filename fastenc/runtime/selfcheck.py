# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Self-check: does the fused path agree with the reference path on this machine?

Builds a random stack of ``nn.TransformerEncoderLayer`` from the ``selfcheck``
config section, runs a right-padded batch through it with PyTorch's own fast
path switched off, converts the stack, runs the same batch again and compares.
Only valid positions are compared; padding positions of the converted output
must be exactly zero.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import torch
import torch.nn as nn

from fastenc.config.schema import ConversionConfig, SelfCheckConfig
from fastenc.model.transform import transform_with_config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelfCheckResult:
    """Outcome of one self-check run."""

    max_abs_diff: float
    padding_is_zero: bool
    shape_matches: bool
    converted_layers: int
    atol: float

    @property
    def passed(self) -> bool:
        return self.shape_matches and self.padding_is_zero and self.max_abs_diff <= self.atol


class EncoderStack(nn.Module):
    """Encoder layers driven one after another with a shared key padding mask."""

    def __init__(self, layers: list[nn.Module]) -> None:
        super().__init__()
        self.layers = nn.ModuleList(layers)

    def forward(
        self,
        hidden_states: torch.Tensor,
        key_padding_mask: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        for layer in self.layers:
            hidden_states = layer(hidden_states, src_key_padding_mask=key_padding_mask)
        return hidden_states


def build_reference_stack(config: SelfCheckConfig) -> EncoderStack:
    """Random, eval-mode encoder stack shaped by ``config``."""
    layers = [
        nn.TransformerEncoderLayer(
            d_model=config.embed_dim,
            nhead=config.num_heads,
            dim_feedforward=config.dim_feedforward,
            dropout=0.0,
            activation=config.activation,
            batch_first=True,
            norm_first=config.norm_first,
        )
        for _ in range(config.num_layers)
    ]
    return EncoderStack(layers).eval()


def make_padded_batch(
    lengths: list[int], embed_dim: int
) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Random right-padded batch.

    Returns:
        ``(hidden_states, padding_mask)`` where ``padding_mask`` is True at
        padding positions and padded activations are zero.
    """
    seq_len = max(lengths)
    positions = torch.arange(seq_len)
    padding = positions.unsqueeze(0) >= torch.tensor(lengths).unsqueeze(1)
    hidden = torch.randn(len(lengths), seq_len, embed_dim)
    hidden = hidden.masked_fill(padding.unsqueeze(-1), 0.0)
    return hidden, padding


def run_selfcheck(
    config: SelfCheckConfig,
    conversion: Optional[ConversionConfig] = None,
) -> SelfCheckResult:
    """
    Compare the converted stack against the unconverted one.

    Args:
        config: Shape of the stack and batch, plus tolerance.
        conversion: Conversion policy; defaults to strict, copy mode.

    Raises:
        LayerValidationError: If the configured stack cannot be converted.
    """
    if conversion is None:
        conversion = ConversionConfig(config_version="1.0.0", keep_original_model=True)

    reference = build_reference_stack(config)
    hidden, padding = make_padded_batch(config.sequence_lengths, config.embed_dim)

    previous = torch.backends.mha.get_fastpath_enabled()
    torch.backends.mha.set_fastpath_enabled(False)
    try:
        with torch.no_grad():
            expected = reference(hidden, padding)
    finally:
        torch.backends.mha.set_fastpath_enabled(previous)

    converted, report = transform_with_config(reference, conversion)
    with torch.no_grad():
        actual = converted(hidden, padding)

    shape_matches = tuple(actual.shape) == tuple(expected.shape)
    if shape_matches:
        valid = ~padding
        max_abs_diff = (actual[valid] - expected[valid]).abs().max().item()
        padding_is_zero = bool((actual[padding] == 0).all())
    else:
        max_abs_diff = float("inf")
        padding_is_zero = False

    result = SelfCheckResult(
        max_abs_diff=max_abs_diff,
        padding_is_zero=padding_is_zero,
        shape_matches=shape_matches,
        converted_layers=len(report.converted),
        atol=config.atol,
    )
    logger.info(
        "Self-check finished",
        extra={
            "passed": result.passed,
            "max_abs_diff": result.max_abs_diff,
            "padding_is_zero": result.padding_is_zero,
            "converted_layers": result.converted_layers,
        },
    )
    return result
