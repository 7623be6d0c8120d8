# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Adapter factory.

Resolves a source layer's type tag through the registry and builds the
matching adapter. No if/else chains over architectures; the registry does the
dispatch.
"""

import logging
from typing import Any

import torch.nn as nn

from fastenc.model.interfaces import EncoderLayerAdapter
from fastenc.model.registry import get_adapter

logger = logging.getLogger(__name__)


def layer_type_of(module: nn.Module) -> str:
    """Type tag used as the registry key."""
    return type(module).__name__


def build_adapter(layer: nn.Module, model_config: Any = None) -> EncoderLayerAdapter:
    """
    Build the fused adapter for ``layer``.

    Args:
        layer: Source encoder layer.
        model_config: Configuration of the model the layer belongs to.

    Returns:
        A new adapter holding copies of the layer's parameters, on the same
        device and dtype.

    Raises:
        UnsupportedArchitectureError: If the layer type is not registered.
        LayerValidationError: If the layer violates an adapter precondition.
    """
    layer_type = layer_type_of(layer)
    adapter_cls = get_adapter(layer_type)
    adapter = adapter_cls(layer, model_config)
    # Mirror the source mode; a fresh nn.Module starts in training mode.
    adapter.train(layer.training)
    logger.debug(
        "built_adapter", extra={"layer_type": layer_type, "adapter": adapter_cls.__name__}
    )
    return adapter
