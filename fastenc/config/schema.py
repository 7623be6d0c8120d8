# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for fastenc.

Each config section gets its own frozen pydantic model. Frozen means a loaded
config cannot be mutated afterwards; changing conversion policy at runtime is a
bug.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


class GlobalConfig(BaseModel):
    """
    Cross-cutting settings that apply to every command: identity, seed and
    observability.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        description="Schema version for compatibility tracking, e.g. '1.0.0'"
    )
    project_name: str = Field(
        default="fastenc", description="Human-readable project identifier"
    )
    seed: int = Field(
        default=42,
        ge=0,
        description="Random seed used for self-check weights and inputs",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )


class ConversionConfig(BaseModel):
    """
    Policy for the model-wide layer replacement pass.

    Maps one-to-one onto the keyword arguments of
    ``fastenc.model.transform.transform``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    keep_original_model: bool = Field(
        default=False,
        description="Convert a deep copy and leave the source model untouched",
    )
    strict: bool = Field(
        default=True,
        description="Fail on the first layer that cannot be converted instead of skipping it",
    )
    exclude_layers: list[str] = Field(
        default_factory=list,
        description="Layer type names that must never be replaced",
    )


class SelfCheckConfig(BaseModel):
    """
    Shape of the random encoder stack the ``selfcheck`` command builds to
    confirm the fused path agrees with the reference path on this machine.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(description="Schema version")
    embed_dim: int = Field(default=64, ge=8, description="Model hidden dimension")
    num_heads: int = Field(default=4, ge=1, description="Attention heads per layer")
    num_layers: int = Field(default=2, ge=1, le=48, description="Encoder layers in the stack")
    dim_feedforward: int = Field(default=128, ge=1, description="Feed-forward hidden size")
    activation: Literal["gelu", "relu"] = Field(
        default="relu", description="Feed-forward activation"
    )
    norm_first: bool = Field(default=False, description="Pre-norm (True) or post-norm (False)")
    sequence_lengths: list[PositiveInt] = Field(
        default_factory=lambda: [5, 8, 8],
        min_length=1,
        description="Valid length of each sequence; the batch is padded to the longest",
    )
    atol: float = Field(
        default=1e-4,
        gt=0.0,
        description="Absolute tolerance when comparing fused and reference outputs",
    )


class FastencConfig(BaseModel):
    """
    Top-level config container. Sections not present in the YAML stay None;
    commands validate they have what they need.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    global_config: GlobalConfig = Field(alias="global")
    conversion: Optional[ConversionConfig] = Field(default=None)
    selfcheck: Optional[SelfCheckConfig] = Field(default=None)
