# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Reference encoder models for the conversion tests.

The BERT-style modules below reproduce the layer layout and eval-mode math of
the BERT family (post-norm, additive extended attention mask, tuple outputs),
so the adapters can be checked without pulling in a model library. ElectraLayer
follows the newer convention instead: boolean keep-mask, bare tensor output.
Class names matter: the registry keys on them.
"""

import math
from types import SimpleNamespace
from typing import Optional

import pytest
import torch
import torch.nn as nn

from fastenc.runtime.selfcheck import EncoderStack

EMBED_DIM = 32
NUM_HEADS = 4
FFN_DIM = 64


class BertSelfAttention(nn.Module):
    def __init__(self, hidden_size: int, num_heads: int) -> None:
        super().__init__()
        self.num_attention_heads = num_heads
        self.head_dim = hidden_size // num_heads
        self.position_embedding_type = "absolute"
        self.query = nn.Linear(hidden_size, hidden_size)
        self.key = nn.Linear(hidden_size, hidden_size)
        self.value = nn.Linear(hidden_size, hidden_size)

    def _split_heads(self, x: torch.Tensor) -> torch.Tensor:
        batch_size, seq_len, _ = x.shape
        return x.view(batch_size, seq_len, self.num_attention_heads, self.head_dim).transpose(1, 2)

    def forward(
        self, hidden_states: torch.Tensor, attention_mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        query = self._split_heads(self.query(hidden_states))
        key = self._split_heads(self.key(hidden_states))
        value = self._split_heads(self.value(hidden_states))

        scores = query @ key.transpose(-1, -2) / math.sqrt(self.head_dim)
        if attention_mask is not None and attention_mask.dtype == torch.bool:
            scores = scores.masked_fill(~attention_mask, torch.finfo(scores.dtype).min)
        elif attention_mask is not None:
            scores = scores + attention_mask
        context = scores.softmax(dim=-1) @ value

        batch_size, _, seq_len, _ = context.shape
        return context.transpose(1, 2).reshape(batch_size, seq_len, -1)


class BertSelfOutput(nn.Module):
    def __init__(self, hidden_size: int, eps: float) -> None:
        super().__init__()
        self.dense = nn.Linear(hidden_size, hidden_size)
        self.LayerNorm = nn.LayerNorm(hidden_size, eps=eps)

    def forward(self, hidden_states: torch.Tensor, input_tensor: torch.Tensor) -> torch.Tensor:
        return self.LayerNorm(self.dense(hidden_states) + input_tensor)


class BertAttention(nn.Module):
    def __init__(self, hidden_size: int, num_heads: int, eps: float) -> None:
        super().__init__()
        self.self = BertSelfAttention(hidden_size, num_heads)
        self.output = BertSelfOutput(hidden_size, eps)

    def forward(
        self, hidden_states: torch.Tensor, attention_mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        return self.output(self.self(hidden_states, attention_mask), hidden_states)


class BertIntermediate(nn.Module):
    def __init__(self, hidden_size: int, ffn_dim: int, activation: nn.Module) -> None:
        super().__init__()
        self.dense = nn.Linear(hidden_size, ffn_dim)
        self.intermediate_act_fn = activation

    def forward(self, hidden_states: torch.Tensor) -> torch.Tensor:
        return self.intermediate_act_fn(self.dense(hidden_states))


class BertOutput(nn.Module):
    def __init__(self, hidden_size: int, ffn_dim: int, eps: float) -> None:
        super().__init__()
        self.dense = nn.Linear(ffn_dim, hidden_size)
        self.LayerNorm = nn.LayerNorm(hidden_size, eps=eps)

    def forward(self, hidden_states: torch.Tensor, input_tensor: torch.Tensor) -> torch.Tensor:
        return self.LayerNorm(self.dense(hidden_states) + input_tensor)


class BertLayer(nn.Module):
    def __init__(
        self,
        hidden_size: int = EMBED_DIM,
        num_heads: int = NUM_HEADS,
        ffn_dim: int = FFN_DIM,
        eps: float = 1e-12,
        activation: Optional[nn.Module] = None,
    ) -> None:
        super().__init__()
        self.attention = BertAttention(hidden_size, num_heads, eps)
        self.intermediate = BertIntermediate(
            hidden_size, ffn_dim, activation if activation is not None else nn.GELU()
        )
        self.output = BertOutput(hidden_size, ffn_dim, eps)

    def forward(
        self,
        hidden_states: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        head_mask: Optional[torch.Tensor] = None,
        output_attentions: bool = False,
    ) -> tuple[torch.Tensor]:
        attention_output = self.attention(hidden_states, attention_mask)
        layer_output = self.output(self.intermediate(attention_output), attention_output)
        return (layer_output,)


class RobertaLayer(BertLayer):
    """Same layout as BertLayer under another type tag."""


class ElectraLayer(BertLayer):
    """
    Same layout, newer calling convention: a boolean mask where True means
    attend, and a bare tensor as output.
    """

    def forward(  # type: ignore[override]
        self,
        hidden_states: torch.Tensor,
        attention_mask: Optional[torch.Tensor] = None,
        **kwargs,
    ) -> torch.Tensor:
        return super().forward(hidden_states, attention_mask)[0]


class BertEncoder(nn.Module):
    def __init__(self, layers: list[nn.Module]) -> None:
        super().__init__()
        self.layer = nn.ModuleList(layers)


class BertStyleModel(nn.Module):
    """
    Minimal BERT-family model: a pooler-free encoder that turns a ``(B, S)``
    keep-mask (1 = token, 0 = padding) into the extended mask its layers expect.
    """

    def __init__(self, num_layers: int = 2, layer_cls: type = BertLayer, **layer_kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__()
        self.config = SimpleNamespace(
            num_attention_heads=layer_kwargs.get("num_heads", NUM_HEADS),
            hidden_act="gelu",
            position_embedding_type="absolute",
        )
        self.encoder = BertEncoder([layer_cls(**layer_kwargs) for _ in range(num_layers)])
        self.boolean_mask = layer_cls is ElectraLayer
        self.head = nn.Linear(EMBED_DIM, 2)

    def encode(
        self, hidden_states: torch.Tensor, attention_mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        extended = None
        if attention_mask is not None and self.boolean_mask:
            batch_size, seq_len = attention_mask.shape
            extended = attention_mask[:, None, None, :].bool().expand(batch_size, 1, seq_len, seq_len)
        elif attention_mask is not None:
            extended = (1.0 - attention_mask[:, None, None, :].to(hidden_states.dtype)) * torch.finfo(
                hidden_states.dtype
            ).min
        for layer in self.encoder.layer:
            output = layer(hidden_states, extended)
            hidden_states = output[0] if isinstance(output, tuple) else output
        return hidden_states

    def forward(
        self, hidden_states: torch.Tensor, attention_mask: Optional[torch.Tensor] = None
    ) -> torch.Tensor:
        return self.head(self.encode(hidden_states, attention_mask))


def keep_mask_for(lengths: list[int], seq_len: int) -> torch.Tensor:
    """``(B, S)`` mask with 1 at valid positions, right-padded."""
    positions = torch.arange(seq_len)
    return (positions.unsqueeze(0) < torch.tensor(lengths).unsqueeze(1)).long()


def torch_encoder_stack(num_layers: int = 2, **kwargs) -> EncoderStack:  # type: ignore[no-untyped-def]
    """Eval-mode stack of batch-first ``nn.TransformerEncoderLayer`` without dropout."""
    options = dict(
        d_model=EMBED_DIM,
        nhead=NUM_HEADS,
        dim_feedforward=FFN_DIM,
        dropout=0.0,
        batch_first=True,
    )
    options.update(kwargs)
    return EncoderStack([nn.TransformerEncoderLayer(**options) for _ in range(num_layers)]).eval()


@pytest.fixture(autouse=True)
def _seed() -> None:
    torch.manual_seed(0)


@pytest.fixture()
def reference() -> SimpleNamespace:
    """
    The reference classes and helpers above, bundled for tests.

    Type tags come from class names, so tests build their own instances
    from these classes rather than from look-alikes.
    """
    return SimpleNamespace(
        BertLayer=BertLayer,
        RobertaLayer=RobertaLayer,
        ElectraLayer=ElectraLayer,
        BertStyleModel=BertStyleModel,
        keep_mask_for=keep_mask_for,
        torch_encoder_stack=torch_encoder_stack,
        embed_dim=EMBED_DIM,
        num_heads=NUM_HEADS,
    )


@pytest.fixture()
def bert_model() -> BertStyleModel:
    return BertStyleModel(num_layers=2).eval()


@pytest.fixture()
def torch_stack() -> EncoderStack:
    return torch_encoder_stack(num_layers=2)


@pytest.fixture()
def reference_fastpath_off():  # type: ignore[no-untyped-def]
    """Run PyTorch's own encoder layers on their plain, non-fused path."""
    previous = torch.backends.mha.get_fastpath_enabled()
    torch.backends.mha.set_fastpath_enabled(False)
    yield
    torch.backends.mha.set_fastpath_enabled(previous)
