# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Adapter for ``torch.nn.TransformerEncoderLayer``.

Useful for hand-built stacks (a ``ModuleList`` or ``Sequential`` of encoder
layers driven by user code). Layers inside ``nn.TransformerEncoder`` are left
alone by the conversion pass: that container already dispatches to the same
fused kernel and inspects its layers' attributes directly.

The replaced layer is called as
``layer(src, src_mask=None, src_key_padding_mask=None, is_causal=False)`` and
returns a tensor; the adapter keeps that convention.
"""

from typing import Any, Optional

import torch
import torch.nn as nn

from fastenc.model.activations import resolve_activation
from fastenc.model.exceptions import LayerValidationError
from fastenc.model.interfaces import EncoderLayerAdapter, LayerSpec, assign_parameter
from fastenc.model.registry import register_adapter


class TorchEncoderLayerAdapter(EncoderLayerAdapter):
    """Fused replacement for ``nn.TransformerEncoderLayer`` with ``batch_first=True``."""

    @classmethod
    def describe(cls, layer: nn.Module, model_config: Any = None) -> LayerSpec:
        layer_type = type(layer).__name__
        attention = getattr(layer, "self_attn", None)
        if not isinstance(attention, nn.MultiheadAttention):
            raise LayerValidationError(
                layer_type, "recognized_structure", "expected a 'self_attn' MultiheadAttention"
            )
        if not attention.batch_first:
            raise LayerValidationError(
                layer_type, "batch_first", "only batch_first=True layers can be converted"
            )
        if attention.kdim != attention.embed_dim or attention.vdim != attention.embed_dim:
            raise LayerValidationError(
                layer_type,
                "recognized_structure",
                "key and value dimensions must equal the embedding dimension",
            )

        return LayerSpec(
            layer_type=layer_type,
            embed_dim=attention.embed_dim,
            num_heads=attention.num_heads,
            activation=resolve_activation(layer.activation),
            norm_first=layer.norm_first,
            norm1_eps=layer.norm1.eps,
            norm2_eps=layer.norm2.eps,
            has_attention_bias=(
                attention.bias_k is not None
                or attention.bias_v is not None
                or attention.add_zero_attn
            ),
        )

    def extract(self, layer: nn.Module) -> dict[str, Optional[torch.Tensor]]:
        attention = layer.self_attn
        if attention._qkv_same_embed_dim:
            in_proj_weight = attention.in_proj_weight
        else:
            in_proj_weight = torch.cat(
                [attention.q_proj_weight, attention.k_proj_weight, attention.v_proj_weight]
            )

        return {
            "in_proj_weight": in_proj_weight,
            "in_proj_bias": attention.in_proj_bias,
            "out_proj_weight": attention.out_proj.weight,
            "out_proj_bias": attention.out_proj.bias,
            "norm1_weight": layer.norm1.weight,
            "norm1_bias": layer.norm1.bias,
            "norm2_weight": layer.norm2.weight,
            "norm2_bias": layer.norm2.bias,
            "linear1_weight": layer.linear1.weight,
            "linear1_bias": layer.linear1.bias,
            "linear2_weight": layer.linear2.weight,
            "linear2_bias": layer.linear2.bias,
        }

    def restore(self, layer: nn.Module) -> None:
        attention = layer.self_attn
        if attention._qkv_same_embed_dim:
            assign_parameter(attention, "in_proj_weight", self.in_proj_weight)
        else:
            for name, weight in zip(
                ("q_proj_weight", "k_proj_weight", "v_proj_weight"),
                self.in_proj_weight.chunk(3, dim=0),
            ):
                assign_parameter(attention, name, weight)
        if attention.in_proj_bias is not None:
            assign_parameter(attention, "in_proj_bias", self.in_proj_bias)

        targets = (
            (attention.out_proj, "out_proj"),
            (layer.linear1, "linear1"),
            (layer.linear2, "linear2"),
            (layer.norm1, "norm1"),
            (layer.norm2, "norm2"),
        )
        for module, prefix in targets:
            if module.weight is not None:
                assign_parameter(module, "weight", getattr(self, f"{prefix}_weight"))
            if module.bias is not None:
                assign_parameter(module, "bias", getattr(self, f"{prefix}_bias"))

    def forward(
        self,
        src: torch.Tensor,
        src_mask: Optional[torch.Tensor] = None,
        src_key_padding_mask: Optional[torch.Tensor] = None,
        is_causal: bool = False,
    ) -> torch.Tensor:
        """
        Args:
            src: ``(B, S, E)`` activations or a nested tensor from the
                previous adapter.
            src_mask: Must be None; only key-padding masks are supported.
            src_key_padding_mask: ``(B, S)``, True (or -inf) at padding.
            is_causal: Must be False.

        Returns:
            The new activations.
        """
        if src_mask is not None or is_causal:
            raise ValueError(
                f"{type(self).__name__} only supports key padding masks, not attention masks."
            )
        return self.run(src, src_key_padding_mask)


register_adapter("TransformerEncoderLayer", TorchEncoderLayerAdapter)
