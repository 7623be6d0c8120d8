# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Abstract base class for fused encoder-layer adapters.

An adapter replaces one standard encoder block (self-attention + feed-forward
with residuals and two layer norms) and runs it through the fused kernel in
``fastenc.model.kernels``. Construction follows a fixed sequence owned by the
base class:

  1. describe(): the subclass reads the source layer into a LayerSpec
  2. validate_spec(): preconditions the kernel relies on
  3. extract(): the subclass copies weights into the kernel's layout
  4. parameters are frozen and ``is_last_layer`` starts out False

Every adapter exposes ``run(hidden_states, padding_mask)``, the shared
mask → ragged → fused → dense protocol. Concrete adapters implement
``forward`` with the exact calling convention of the layer they replace and
delegate to ``run``, so the surrounding model code needs no changes.
"""

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import torch
import torch.nn as nn

from fastenc.model import kernels
from fastenc.model.activations import SUPPORTED_ACTIVATIONS, uses_gelu
from fastenc.model.exceptions import AdapterIntegrityError, LayerValidationError

logger = logging.getLogger(__name__)

# Order matters: this is the order the fused kernel takes them in.
PARAMETER_NAMES: tuple[str, ...] = (
    "in_proj_weight",
    "in_proj_bias",
    "out_proj_weight",
    "out_proj_bias",
    "norm1_weight",
    "norm1_bias",
    "norm2_weight",
    "norm2_bias",
    "linear1_weight",
    "linear1_bias",
    "linear2_weight",
    "linear2_bias",
)


@dataclass(frozen=True)
class LayerSpec:
    """Architectural facts about a source layer, gathered before any weight is copied."""

    layer_type: str
    embed_dim: int
    num_heads: int
    activation: str
    norm_first: bool
    norm1_eps: float
    norm2_eps: float
    has_attention_bias: bool = False


def validate_spec(spec: LayerSpec) -> None:
    """
    Check the preconditions of the fused kernel.

    Raises:
        LayerValidationError: Naming the first violated condition.
    """
    if spec.has_attention_bias:
        raise LayerValidationError(
            spec.layer_type,
            "no_attention_bias",
            "attention bias terms (additive key/value bias or relative position bias) "
            "are not supported by the fused kernel",
        )
    if spec.num_heads < 2 or spec.num_heads % 2 == 1:
        raise LayerValidationError(
            spec.layer_type,
            "even_num_heads",
            f"the number of attention heads must be even, got {spec.num_heads}",
        )
    if spec.embed_dim % spec.num_heads != 0:
        raise LayerValidationError(
            spec.layer_type,
            "heads_divide_embed_dim",
            f"embed_dim {spec.embed_dim} is not divisible by num_heads {spec.num_heads}",
        )
    if spec.norm1_eps != spec.norm2_eps:
        raise LayerValidationError(
            spec.layer_type,
            "matching_norm_eps",
            f"both layer norms must share one epsilon, got {spec.norm1_eps} and {spec.norm2_eps}",
        )
    if spec.activation not in SUPPORTED_ACTIVATIONS:
        raise LayerValidationError(
            spec.layer_type,
            "supported_activation",
            f"activation '{spec.activation}' is not supported, "
            f"expected one of {list(SUPPORTED_ACTIVATIONS)}",
        )


def expected_shapes(embed_dim: int, ffn_dim: int) -> dict[str, tuple[int, ...]]:
    """Shapes the kernel expects for each parameter."""
    return {
        "in_proj_weight": (3 * embed_dim, embed_dim),
        "in_proj_bias": (3 * embed_dim,),
        "out_proj_weight": (embed_dim, embed_dim),
        "out_proj_bias": (embed_dim,),
        "norm1_weight": (embed_dim,),
        "norm1_bias": (embed_dim,),
        "norm2_weight": (embed_dim,),
        "norm2_bias": (embed_dim,),
        "linear1_weight": (ffn_dim, embed_dim),
        "linear1_bias": (ffn_dim,),
        "linear2_weight": (embed_dim, ffn_dim),
        "linear2_bias": (embed_dim,),
    }


def to_padding_mask(mask: torch.Tensor, batch_size: int, seq_len: int) -> torch.Tensor:
    """
    Normalize an attention mask to a boolean ``(B, S)`` padding mask.

    Accepts additive masks (0 = keep, large negative = masked) and boolean
    masks (True = padding), shaped ``(B, S)``, ``(B, 1, 1, S)`` or
    ``(B, 1, S, S)``. For the square form the first query row is used; a
    padding mask masks the same keys for every query.
    """
    padding = mask.bool()
    padding = padding.reshape(padding.shape[0], -1, padding.shape[-1])[:, 0, :]
    if padding.shape[-1] != seq_len:
        raise ValueError(
            f"attention mask covers {padding.shape[-1]} positions but the input has {seq_len}"
        )
    if padding.shape[0] not in (1, batch_size):
        raise ValueError(
            f"attention mask has batch size {padding.shape[0]} but the input has {batch_size}"
        )
    if padding.shape[0] != batch_size:
        padding = padding.expand(batch_size, -1)
    return padding


def _meta_template(layer: nn.Module) -> nn.Module:
    """Deep copy of ``layer`` whose parameters live on the meta device."""
    memo: dict[int, Any] = {
        id(param): nn.Parameter(
            torch.empty_like(param, device="meta"), requires_grad=param.requires_grad
        )
        for param in layer.parameters()
    }
    return copy.deepcopy(layer, memo)


def assign_parameter(module: nn.Module, name: str, tensor: torch.Tensor) -> None:
    """Replace ``module.<name>`` with a fresh trainable parameter holding ``tensor``."""
    setattr(module, name, nn.Parameter(tensor.detach().clone()))


class EncoderLayerAdapter(nn.Module, ABC):
    """
    Base class for all fused encoder-layer adapters.

    Args:
        layer: The source encoder layer. It is only read; the caller decides
            whether to keep or drop it afterwards.
        model_config: Configuration of the model the layer came from, if the
            adapter needs it (head count, activation, norm epsilon).

    Raises:
        LayerValidationError: If the layer is not a supported encoder block.
    """

    def __init__(self, layer: nn.Module, model_config: Any = None) -> None:
        super().__init__()
        spec = self.describe(layer, model_config)
        validate_spec(spec)

        self.layer_type = spec.layer_type
        self.embed_dim = spec.embed_dim
        self.num_heads = spec.num_heads
        self.activation = spec.activation
        self.norm_first = spec.norm_first
        self.norm_eps = spec.norm1_eps

        tensors = self._materialize(self.extract(layer))
        problem = self._shape_problem(tensors)
        if problem is not None:
            raise LayerValidationError(self.layer_type, "parameter_shapes", problem)
        for name in PARAMETER_NAMES:
            self.register_parameter(
                name, nn.Parameter(tensors[name].detach().clone(), requires_grad=False)
            )

        self.is_last_layer = False
        # Plain attribute, not a submodule: stays out of state_dict and .to().
        self.__dict__["_source_template"] = _meta_template(layer)

    # ── Subclass hooks ──────────────────────────────────────────────────────

    @classmethod
    @abstractmethod
    def describe(cls, layer: nn.Module, model_config: Any = None) -> LayerSpec:
        """
        Read the architectural facts of ``layer``.

        Raises:
            LayerValidationError: If ``layer`` does not have the structure
                this adapter understands.
        """
        ...

    @abstractmethod
    def extract(self, layer: nn.Module) -> dict[str, Optional[torch.Tensor]]:
        """
        Return the kernel tensors keyed by PARAMETER_NAMES.

        Missing biases and norm affine parameters may be None; they are
        replaced by zeros / ones.
        """
        ...

    @abstractmethod
    def restore(self, layer: nn.Module) -> None:
        """Write this adapter's weights back into a copy of the source layer."""
        ...

    @abstractmethod
    def forward(self, *args: Any, **kwargs: Any) -> Any:
        """Same calling convention as the replaced layer; delegates to ``run``."""
        ...

    # ── Construction helpers ────────────────────────────────────────────────

    def _materialize(
        self, tensors: dict[str, Optional[torch.Tensor]]
    ) -> dict[str, torch.Tensor]:
        missing = [name for name in PARAMETER_NAMES if name not in tensors]
        if missing:
            raise LayerValidationError(
                self.layer_type, "parameter_shapes", f"adapter did not extract {missing}"
            )

        reference = tensors["in_proj_weight"]
        if reference is None:
            raise LayerValidationError(
                self.layer_type, "parameter_shapes", "missing input projection weight"
            )

        filled: dict[str, torch.Tensor] = {}
        for name in PARAMETER_NAMES:
            tensor = tensors[name]
            if tensor is None:
                if name.endswith("_weight") and name.startswith("norm"):
                    tensor = reference.new_ones(self.embed_dim)
                elif name.endswith("_bias"):
                    weight = tensors[name.replace("_bias", "_weight")]
                    size = weight.shape[0] if weight is not None else self.embed_dim
                    tensor = reference.new_zeros(size)
                else:
                    raise LayerValidationError(
                        self.layer_type, "parameter_shapes", f"missing {name}"
                    )
            filled[name] = tensor
        return filled

    def _shape_problem(self, tensors: dict[str, torch.Tensor]) -> Optional[str]:
        ffn_dim = tensors["linear1_weight"].shape[0]
        for name, shape in expected_shapes(self.embed_dim, ffn_dim).items():
            actual = tuple(tensors[name].shape)
            if actual != shape:
                return f"{name} has shape {actual}, expected {shape}"
        return None

    # ── Forward protocol ────────────────────────────────────────────────────

    def check_integrity(self) -> None:
        """
        Re-run the construction-time checks against the current state.

        Raises:
            AdapterIntegrityError: If attributes or parameters were changed
                into something the kernel cannot run.
        """
        spec = LayerSpec(
            layer_type=self.layer_type,
            embed_dim=self.embed_dim,
            num_heads=self.num_heads,
            activation=self.activation,
            norm_first=self.norm_first,
            norm1_eps=self.norm_eps,
            norm2_eps=self.norm_eps,
        )
        try:
            validate_spec(spec)
        except LayerValidationError as err:
            raise AdapterIntegrityError(
                f"adapter state violates '{err.condition}' after construction: {err}"
            ) from err

        tensors = {name: getattr(self, name) for name in PARAMETER_NAMES}
        problem = self._shape_problem(tensors)
        if problem is not None:
            raise AdapterIntegrityError(f"{self.layer_type}: {problem}")

    def _check_forward_allowed(self, hidden_states: torch.Tensor) -> None:
        if self.training:
            raise RuntimeError(
                f"{type(self).__name__} only supports inference; call model.eval() first."
            )
        if torch.is_autocast_enabled(hidden_states.device.type):
            raise RuntimeError(f"{type(self).__name__} does not support autocast.")

    def run(
        self,
        hidden_states: torch.Tensor,
        padding_mask: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Run the encoder block.

        Args:
            hidden_states: Dense ``(B, S, E)`` activations, or a nested tensor
                produced by a previous adapter.
            padding_mask: Optional mask (see ``to_padding_mask``). Ignored when
                the input is already nested.

        Returns:
            Activations in the representation they arrived in, except that the
            last adapter of a stack always returns a dense, zero-padded tensor.
        """
        self._check_forward_allowed(hidden_states)
        self.check_integrity()

        output_size: Optional[tuple[int, int, int]] = None

        if hidden_states.is_nested:
            if padding_mask is not None:
                output_size = (hidden_states.size(0), padding_mask.shape[-1], self.embed_dim)
            padding_mask = None

        if padding_mask is not None:
            batch_size, seq_len = hidden_states.shape[0], hidden_states.shape[1]
            padding = to_padding_mask(padding_mask, batch_size, seq_len)
            keep = ~padding
            lengths = keep.sum(dim=1)

            if not bool((lengths == seq_len).all()):
                positions = torch.arange(seq_len, device=keep.device)
                if not torch.equal(keep, positions.unsqueeze(0) < lengths.unsqueeze(1)):
                    raise ValueError(
                        "padding must follow the valid tokens of each sequence (right padding)"
                    )
                hidden_states = kernels.pack_ragged(hidden_states, keep)
                output_size = (batch_size, seq_len, self.embed_dim)

        with torch.no_grad():
            hidden_states = kernels.fused_encoder_layer(
                hidden_states,
                self.embed_dim,
                self.num_heads,
                self.in_proj_weight,
                self.in_proj_bias,
                self.out_proj_weight,
                self.out_proj_bias,
                uses_gelu(self.activation),
                self.norm_first,
                self.norm_eps,
                self.norm1_weight,
                self.norm1_bias,
                self.norm2_weight,
                self.norm2_bias,
                self.linear1_weight,
                self.linear1_bias,
                self.linear2_weight,
                self.linear2_bias,
                None,
            )

        if self.is_last_layer and hidden_states.is_nested:
            hidden_states = kernels.unpack_ragged(hidden_states, output_size)
        return hidden_states

    # ── Reverse conversion ──────────────────────────────────────────────────

    def revert(self) -> nn.Module:
        """
        Rebuild the source layer with this adapter's current weights.

        Raises:
            AdapterIntegrityError: If some source parameter was not restored.
        """
        layer = copy.deepcopy(self.__dict__["_source_template"])
        self.restore(layer)
        unrestored = [name for name, param in layer.named_parameters() if param.is_meta]
        if unrestored:
            raise AdapterIntegrityError(
                f"{self.layer_type}: parameters {unrestored} were not restored"
            )
        layer.train(self.training)
        return layer

    def extra_repr(self) -> str:
        return (
            f"source={self.layer_type}, embed_dim={self.embed_dim}, num_heads={self.num_heads}, "
            f"activation={self.activation}, norm_first={self.norm_first}, "
            f"is_last_layer={self.is_last_layer}"
        )
