# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Thin wrappers over the PyTorch primitives the adapters depend on.

None of the math lives here. These functions only pin down the argument order
of the private fused encoder-layer op and the nested-tensor conversions, so
the rest of the package (and its tests) have one place to hook into.
"""

from typing import Optional

import torch

MINIMUM_TORCH_VERSION: tuple[int, int] = (2, 4)


def torch_version() -> tuple[int, int]:
    """Major/minor of the installed torch, ignoring local build suffixes."""
    major, minor = torch.__version__.split("+")[0].split(".")[:2]
    return int(major), int(minor)


def has_fused_kernel() -> bool:
    """True when the runtime exposes the fused encoder layer and nested-tensor packing."""
    return hasattr(torch, "_transformer_encoder_layer_fwd") and hasattr(
        torch, "_nested_tensor_from_mask"
    )


def check_runtime_support() -> None:
    """
    Fail early when the installed torch cannot run converted layers.

    Raises:
        RuntimeError: If torch is too old or lacks the fused primitives.
    """
    if torch_version() < MINIMUM_TORCH_VERSION:
        required = ".".join(str(part) for part in MINIMUM_TORCH_VERSION)
        raise RuntimeError(
            f"fastenc requires torch >= {required}, but torch {torch.__version__} is installed."
        )
    if not has_fused_kernel():
        raise RuntimeError(
            f"torch {torch.__version__} does not provide the fused encoder-layer primitives."
        )


def fused_encoder_layer(
    hidden_states: torch.Tensor,
    embed_dim: int,
    num_heads: int,
    in_proj_weight: torch.Tensor,
    in_proj_bias: torch.Tensor,
    out_proj_weight: torch.Tensor,
    out_proj_bias: torch.Tensor,
    use_gelu: bool,
    norm_first: bool,
    eps: float,
    norm1_weight: torch.Tensor,
    norm1_bias: torch.Tensor,
    norm2_weight: torch.Tensor,
    norm2_bias: torch.Tensor,
    linear1_weight: torch.Tensor,
    linear1_bias: torch.Tensor,
    linear2_weight: torch.Tensor,
    linear2_bias: torch.Tensor,
    mask: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """
    One fused forward pass of a standard encoder block.

    Projection, attention, residual adds, both layer norms and the feed-forward
    network run in a single call. Dense input yields dense output and nested
    input yields nested output.
    """
    return torch._transformer_encoder_layer_fwd(
        hidden_states,
        embed_dim,
        num_heads,
        in_proj_weight,
        in_proj_bias,
        out_proj_weight,
        out_proj_bias,
        use_gelu,
        norm_first,
        eps,
        norm1_weight,
        norm1_bias,
        norm2_weight,
        norm2_bias,
        linear1_weight,
        linear1_bias,
        linear2_weight,
        linear2_bias,
        mask,
    )


def pack_ragged(hidden_states: torch.Tensor, keep_mask: torch.Tensor) -> torch.Tensor:
    """
    Pack a padded ``(B, S, E)`` batch into a nested tensor.

    Args:
        hidden_states: Dense, padded activations.
        keep_mask: Boolean ``(B, S)``, True at valid (non-padding) positions.
            Valid positions must come first in every row.
    """
    return torch._nested_tensor_from_mask(hidden_states, keep_mask, mask_check=False)


def unpack_ragged(
    hidden_states: torch.Tensor,
    output_size: Optional[tuple[int, int, int]] = None,
) -> torch.Tensor:
    """
    Convert a nested tensor back to a dense batch, zero-filling padding.

    Without ``output_size`` the batch is padded to its longest sequence.
    """
    if output_size is None:
        return hidden_states.to_padded_tensor(0.0)
    return hidden_states.to_padded_tensor(0.0, output_size)
