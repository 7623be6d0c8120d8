# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Adapter registry for fastenc.

Maps the type tag of a source encoder layer (its class name, e.g.
``"BertLayer"``) to the adapter class that replaces it. The conversion pass
matches tags against this table instead of importing every supported library.

The table is filled once: importing ``fastenc.model.layers`` registers the
built-in adapters, and ``register_adapter`` is the only way to add more.
Readers get a read-only view.
"""

import logging
from types import MappingProxyType
from typing import Mapping

from fastenc.model.exceptions import UnsupportedArchitectureError
from fastenc.model.interfaces import EncoderLayerAdapter

logger = logging.getLogger(__name__)

_ADAPTER_REGISTRY: dict[str, type[EncoderLayerAdapter]] = {}


def register_adapter(layer_type: str, adapter_cls: type[EncoderLayerAdapter]) -> None:
    """
    Register an adapter class for a source layer type.

    Args:
        layer_type: Class name of the source layer (e.g. ``"BertLayer"``).
        adapter_cls: The ``EncoderLayerAdapter`` subclass that replaces it.

    Raises:
        ValueError: If ``layer_type`` is already registered.
        TypeError: If ``adapter_cls`` is not an ``EncoderLayerAdapter`` subclass.
    """
    if not (isinstance(adapter_cls, type) and issubclass(adapter_cls, EncoderLayerAdapter)):
        raise TypeError(
            f"Adapter for '{layer_type}' must subclass EncoderLayerAdapter, got {adapter_cls!r}"
        )
    if layer_type in _ADAPTER_REGISTRY:
        raise ValueError(
            f"Layer type '{layer_type}' is already registered to "
            f"{_ADAPTER_REGISTRY[layer_type].__name__}"
        )
    _ADAPTER_REGISTRY[layer_type] = adapter_cls
    logger.debug(
        "registered_adapter", extra={"layer_type": layer_type, "adapter": adapter_cls.__name__}
    )


def get_adapter(layer_type: str) -> type[EncoderLayerAdapter]:
    """
    Retrieve the adapter class for a source layer type.

    Raises:
        UnsupportedArchitectureError: If no adapter is registered for it.
    """
    _register_builtins()
    if layer_type not in _ADAPTER_REGISTRY:
        available = sorted(_ADAPTER_REGISTRY.keys())
        raise UnsupportedArchitectureError(
            layer_type,
            f"No fused adapter for layer type '{layer_type}'. Supported: {available}",
        )
    return _ADAPTER_REGISTRY[layer_type]


def is_supported(layer_type: str) -> bool:
    """True when an adapter is registered for ``layer_type``."""
    _register_builtins()
    return layer_type in _ADAPTER_REGISTRY


def list_supported() -> list[str]:
    """Return the sorted list of registered layer types."""
    _register_builtins()
    return sorted(_ADAPTER_REGISTRY.keys())


def registry_view() -> Mapping[str, type[EncoderLayerAdapter]]:
    """Read-only view of the whole table."""
    _register_builtins()
    return MappingProxyType(_ADAPTER_REGISTRY)


# ── Builtin Registration ───────────────────────────────────────────────────

_BUILTINS_REGISTERED: bool = False


def _register_builtins() -> None:
    """
    Register the built-in adapters.

    Importing the layers package triggers their ``register_adapter`` calls.
    Runs on first lookup rather than at import so that importing a single
    adapter module first does not recurse into a half-initialized package.
    """
    global _BUILTINS_REGISTERED
    if _BUILTINS_REGISTERED:
        return
    _BUILTINS_REGISTERED = True

    import fastenc.model.layers  # noqa: F401

    logger.debug("builtins_registered", extra={"layer_types": sorted(_ADAPTER_REGISTRY)})
