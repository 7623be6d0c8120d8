# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Activation name resolution.

The fused kernel only knows two feed-forward activations, exact GELU and ReLU,
selected by a boolean. Source layers describe their activation either as a
config string (``"gelu"``, ``"gelu_new"``, ...) or as a callable / module, so
everything is normalized to a lowercase name here and validation decides
whether that name is supported.
"""

from typing import Any, Callable

import torch.nn as nn
import torch.nn.functional as F

SUPPORTED_ACTIVATIONS: tuple[str, ...] = ("gelu", "relu")

# Activation modules from other libraries, matched by class name so they don't
# need to be importable here. Only exact (erf) GELU variants map to "gelu".
_MODULE_NAMES: dict[str, str] = {
    "GELUActivation": "gelu",
    "GELU": "gelu",
    "ReLU": "relu",
}

_FUNCTIONS: dict[Callable[..., Any], str] = {
    F.gelu: "gelu",
    F.relu: "relu",
}


def resolve_activation(activation: Any) -> str:
    """
    Return a normalized name for an activation given as a string or callable.

    Unknown callables resolve to their qualified name, which validation then
    rejects with a readable message.

    Args:
        activation: A config string, a functional (``F.gelu``), or a module
            instance (``nn.ReLU()``).

    Returns:
        Lowercase activation name.
    """
    if isinstance(activation, str):
        return activation.strip().lower()

    if isinstance(activation, nn.GELU):
        # approximate="tanh" is a different function from what the kernel runs
        return "gelu" if activation.approximate == "none" else f"gelu_{activation.approximate}"

    if isinstance(activation, nn.Module):
        name = type(activation).__name__
        return _MODULE_NAMES.get(name, name.lower())

    if activation in _FUNCTIONS:
        return _FUNCTIONS[activation]

    name = getattr(activation, "__qualname__", None) or type(activation).__name__
    return name.lower()


def uses_gelu(activation: str) -> bool:
    """Kernel flag for a validated activation name."""
    return activation == "gelu"
