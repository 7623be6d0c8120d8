# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Exceptions raised while converting layers and running converted layers.

Conversion-time failures derive from ConversionError so a caller can wrap a
whole ``transform`` call in one ``except``. A failing forward-time integrity
check is a RuntimeError instead: it means adapter state was corrupted after
construction and nothing the caller passes in can fix it.
"""


class ConversionError(Exception):
    """Base for every failure of the layer replacement pass."""


class UnsupportedArchitectureError(ConversionError):
    """Raised when no adapter is registered for a layer type, or a model has no convertible layers."""

    def __init__(self, layer_type: str, message: str) -> None:
        super().__init__(message)
        self.layer_type = layer_type


class LayerValidationError(ConversionError, ValueError):
    """
    Raised when a candidate layer violates an adapter precondition.

    ``condition`` names the violated precondition (e.g. ``"even_num_heads"``)
    so callers and logs can tell failures apart without parsing messages.
    """

    def __init__(self, layer_type: str, condition: str, message: str) -> None:
        super().__init__(f"{layer_type}: {message}")
        self.layer_type = layer_type
        self.condition = condition


class AdapterIntegrityError(RuntimeError):
    """Raised when an adapter's stored state no longer satisfies its invariants."""
