# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Adapter for BERT-family encoder layers.

Covers the post-norm layer layout shared by BERT, RoBERTa, XLM-R, CamemBERT,
ELECTRA and friends:

  layer.attention.self.{query, key, value}
  layer.attention.output.{dense, LayerNorm}
  layer.intermediate.dense (+ intermediate_act_fn)
  layer.output.{dense, LayerNorm}

Attribute access is structural, so the source library does not have to be
importable here. The replaced layer is called as
``layer(hidden_states, attention_mask, ...)``. Two conventions are in use:

  - additive float mask (0 = keep), tuple output: transformers 4.x
  - boolean mask (True = attend), tensor output: transformers 5.x

The adapter accepts either mask and returns what the source layer returned.
"""

import inspect
from typing import Any, Optional

import torch
import torch.nn as nn

from fastenc.model.activations import resolve_activation
from fastenc.model.exceptions import LayerValidationError
from fastenc.model.interfaces import EncoderLayerAdapter, LayerSpec, assign_parameter
from fastenc.model.registry import register_adapter

BERT_LAYER_TYPES: tuple[str, ...] = (
    "BertLayer",
    "RobertaLayer",
    "XLMRobertaLayer",
    "CamembertLayer",
    "ElectraLayer",
    "Data2VecTextLayer",
    "ErnieLayer",
)


def _submodule(layer: nn.Module, path: str) -> nn.Module:
    module: Any = layer
    for part in path.split("."):
        module = getattr(module, part, None)
        if module is None:
            raise LayerValidationError(
                type(layer).__name__,
                "recognized_structure",
                f"expected a '{path}' submodule; unrecognized layer structure",
            )
    return module


def _returns_tuple(layer: nn.Module) -> bool:
    """False only when the source ``forward`` is annotated to return a bare tensor."""
    try:
        annotation = inspect.signature(type(layer).forward).return_annotation
    except (TypeError, ValueError):
        return True
    if annotation is torch.Tensor:
        return False
    if isinstance(annotation, str):
        return annotation.strip() not in ("torch.Tensor", "Tensor")
    return True


class BertLayerAdapter(EncoderLayerAdapter):
    """
    Fused replacement for a BERT-style encoder layer.

    Head count, activation and relative-position settings are read from the
    model config when one is given, falling back to the layer's own
    attributes.
    """

    def __init__(self, layer: nn.Module, model_config: Any = None) -> None:
        super().__init__(layer, model_config)
        self.returns_tuple = _returns_tuple(layer)

    @classmethod
    def describe(cls, layer: nn.Module, model_config: Any = None) -> LayerSpec:
        layer_type = type(layer).__name__

        if getattr(layer, "is_decoder", False) or getattr(layer, "add_cross_attention", False):
            raise LayerValidationError(
                layer_type,
                "recognized_structure",
                "decoder and cross-attention layers are not plain encoder blocks",
            )

        self_attention = _submodule(layer, "attention.self")
        query = _submodule(layer, "attention.self.query")
        attention_norm = _submodule(layer, "attention.output.LayerNorm")
        output_norm = _submodule(layer, "output.LayerNorm")
        intermediate = _submodule(layer, "intermediate")

        num_heads = getattr(model_config, "num_attention_heads", None)
        if num_heads is None:
            num_heads = getattr(self_attention, "num_attention_heads", None)
        if num_heads is None:
            raise LayerValidationError(
                layer_type, "recognized_structure", "cannot determine the number of attention heads"
            )

        activation = getattr(model_config, "hidden_act", None)
        if activation is None:
            activation = getattr(intermediate, "intermediate_act_fn", None)
        if activation is None:
            raise LayerValidationError(
                layer_type, "recognized_structure", "cannot determine the feed-forward activation"
            )

        position_embedding_type = getattr(
            model_config,
            "position_embedding_type",
            getattr(self_attention, "position_embedding_type", "absolute"),
        )

        return LayerSpec(
            layer_type=layer_type,
            embed_dim=query.in_features,
            num_heads=int(num_heads),
            activation=resolve_activation(activation),
            norm_first=False,
            norm1_eps=attention_norm.eps,
            norm2_eps=output_norm.eps,
            has_attention_bias=position_embedding_type not in (None, "absolute"),
        )

    def extract(self, layer: nn.Module) -> dict[str, Optional[torch.Tensor]]:
        attention = layer.attention.self
        projections = (attention.query, attention.key, attention.value)

        in_proj_bias = None
        if any(proj.bias is not None for proj in projections):
            in_proj_bias = torch.cat(
                [
                    proj.bias if proj.bias is not None else proj.weight.new_zeros(proj.out_features)
                    for proj in projections
                ]
            )

        return {
            "in_proj_weight": torch.cat([proj.weight for proj in projections]),
            "in_proj_bias": in_proj_bias,
            "out_proj_weight": layer.attention.output.dense.weight,
            "out_proj_bias": layer.attention.output.dense.bias,
            "norm1_weight": layer.attention.output.LayerNorm.weight,
            "norm1_bias": layer.attention.output.LayerNorm.bias,
            "norm2_weight": layer.output.LayerNorm.weight,
            "norm2_bias": layer.output.LayerNorm.bias,
            "linear1_weight": layer.intermediate.dense.weight,
            "linear1_bias": layer.intermediate.dense.bias,
            "linear2_weight": layer.output.dense.weight,
            "linear2_bias": layer.output.dense.bias,
        }

    def restore(self, layer: nn.Module) -> None:
        attention = layer.attention.self
        projections = (attention.query, attention.key, attention.value)
        weights = self.in_proj_weight.chunk(3, dim=0)
        biases = self.in_proj_bias.chunk(3, dim=0)
        for proj, weight, bias in zip(projections, weights, biases):
            assign_parameter(proj, "weight", weight)
            if proj.bias is not None:
                assign_parameter(proj, "bias", bias)

        targets = (
            (layer.attention.output.dense, "out_proj"),
            (layer.intermediate.dense, "linear1"),
            (layer.output.dense, "linear2"),
            (layer.attention.output.LayerNorm, "norm1"),
            (layer.output.LayerNorm, "norm2"),
        )
        for module, prefix in targets:
            if module.weight is not None:
                assign_parameter(module, "weight", getattr(self, f"{prefix}_weight"))
            if module.bias is not None:
                assign_parameter(module, "bias", getattr(self, f"{prefix}_bias"))

    def forward(
        self,
        hidden_states: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        head_mask: Optional[torch.Tensor] = None,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Args:
            hidden_states: ``(B, S, E)`` activations or a nested tensor from
                the previous adapter.
            attention_mask: Additive extended mask (0 = keep, large negative
                = padding) or boolean mask (True = attend).
            head_mask: Must be None; per-head masking is not supported.

        Returns:
            The new hidden states, wrapped in a one-element tuple when the
            source layer returned a tuple.
        """
        if head_mask is not None:
            raise ValueError(f"{type(self).__name__} does not support head_mask.")
        if kwargs.get("output_attentions"):
            raise ValueError(f"{type(self).__name__} cannot return attention weights.")
        if attention_mask is not None and attention_mask.dtype == torch.bool:
            attention_mask = ~attention_mask

        output = self.run(hidden_states, attention_mask)
        return (output,) if self.returns_tuple else output


for _layer_type in BERT_LAYER_TYPES:
    register_adapter(_layer_type, BertLayerAdapter)
