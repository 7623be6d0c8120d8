# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Model-wide conversion to fused encoder layers, and its reverse.

``transform`` walks the module tree once. Every submodule whose type tag is in
the registry is replaced by its adapter; everything else is recursed into and
left as is. Afterwards the last adapter of every stack is flagged so it hands
dense, zero-padded activations to whatever comes next.

In-place mode mutates the caller's model and must not run concurrently on the
same instance. Copy mode (``keep_original_model=True``) converts a deep copy.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import torch.nn as nn

from fastenc.config.schema import ConversionConfig
from fastenc.model import kernels
from fastenc.model.exceptions import (
    ConversionError,
    LayerValidationError,
    UnsupportedArchitectureError,
)
from fastenc.model.factory import build_adapter, layer_type_of
from fastenc.model.interfaces import EncoderLayerAdapter
from fastenc.model.registry import is_supported, list_supported

logger = logging.getLogger(__name__)


@dataclass
class ConversionReport:
    """What a conversion pass did, keyed by dotted module path."""

    converted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def _contains_adapters(model: nn.Module) -> bool:
    return any(isinstance(module, EncoderLayerAdapter) for module in model.modules())


def _try_build(
    layer: nn.Module,
    path: str,
    model_config: Any,
    strict: bool,
    report: ConversionReport,
) -> Optional[EncoderLayerAdapter]:
    try:
        adapter = build_adapter(layer, model_config)
    except LayerValidationError as err:
        if strict:
            raise
        report.failed[path] = err.condition
        logger.warning(
            "Layer left unconverted",
            extra={"path": path, "condition": err.condition, "error": str(err)},
        )
        return None
    report.converted.append(path)
    logger.debug("Layer converted", extra={"path": path, "layer_type": adapter.layer_type})
    return adapter


def _replace_layers(
    module: nn.Module,
    prefix: str,
    model_config: Any,
    strict: bool,
    exclude: frozenset[str],
    report: ConversionReport,
    replacements: list[tuple[nn.Module, str, EncoderLayerAdapter]],
) -> None:
    """Collect (parent, attribute, adapter) triples; nothing is swapped in yet."""
    for name, child in list(module.named_children()):
        path = f"{prefix}.{name}" if prefix else name
        layer_type = layer_type_of(child)

        if layer_type in exclude:
            report.skipped.append(path)
            logger.debug("Layer excluded", extra={"path": path, "layer_type": layer_type})
            continue

        if isinstance(child, nn.TransformerEncoder):
            # Already on PyTorch's native fused path.
            report.skipped.append(path)
            logger.debug("Native encoder container left as is", extra={"path": path})
            continue

        if is_supported(layer_type):
            adapter = _try_build(child, path, model_config, strict, report)
            if adapter is not None:
                replacements.append((module, name, adapter))
            continue

        _replace_layers(child, path, model_config, strict, exclude, report, replacements)


def mark_last_layers(model: nn.Module) -> None:
    """
    Set ``is_last_layer`` on every adapter in ``model``.

    Inside a ``ModuleList`` / ``Sequential`` the flag goes to the last adapter
    of each run of consecutive adapters, since the module after it expects
    dense input. Adapters attached to any other parent are always flagged.
    """
    for module in model.modules():
        children = list(module.children())
        ordered = isinstance(module, (nn.ModuleList, nn.Sequential))
        for index, child in enumerate(children):
            if not isinstance(child, EncoderLayerAdapter):
                continue
            if not ordered:
                child.is_last_layer = True
                continue
            following = children[index + 1] if index + 1 < len(children) else None
            child.is_last_layer = not isinstance(following, EncoderLayerAdapter)


def transform_with_report(
    model: nn.Module,
    model_config: Any = None,
    *,
    keep_original_model: bool = False,
    strict: bool = True,
    exclude_layers: Iterable[str] = (),
) -> tuple[nn.Module, ConversionReport]:
    """
    Replace every supported encoder layer in ``model`` with its fused adapter.

    Args:
        model: Model to convert.
        model_config: Source model configuration; defaults to ``model.config``.
        keep_original_model: Convert a deep copy and leave ``model`` untouched.
        strict: Raise on the first layer that fails validation, and when
            nothing could be converted. When False, such layers are skipped
            and logged.
        exclude_layers: Layer type names to leave untouched.

    Returns:
        The converted model (``model`` itself unless copying) and a report.

    Raises:
        RuntimeError: If the installed torch cannot run fused layers.
        ConversionError: If ``model`` already contains adapters.
        LayerValidationError: In strict mode, for the first invalid layer.
        UnsupportedArchitectureError: In strict mode, if nothing was converted.
    """
    kernels.check_runtime_support()

    if _contains_adapters(model):
        raise ConversionError(
            f"{type(model).__name__} already contains fused adapters; it was converted before."
        )

    if model_config is None:
        model_config = getattr(model, "config", None)
    exclude = frozenset(exclude_layers)
    report = ConversionReport()

    if model.training:
        logger.warning(
            "Model is in training mode; converted layers only run after model.eval()",
            extra={"model": type(model).__name__},
        )

    root_type = layer_type_of(model)
    if root_type not in exclude and is_supported(root_type):
        adapter = _try_build(model, root_type, model_config, strict, report)
        if adapter is None:
            return model, report
        adapter.is_last_layer = True
        return adapter, report

    target = copy.deepcopy(model) if keep_original_model else model
    replacements: list[tuple[nn.Module, str, EncoderLayerAdapter]] = []
    _replace_layers(target, "", model_config, strict, exclude, report, replacements)
    # A strict failure during the walk must leave the model untouched.
    for parent, name, adapter in replacements:
        setattr(parent, name, adapter)

    if not report.converted:
        message = (
            f"No convertible encoder layers found in {type(model).__name__}. "
            f"Supported layer types: {list_supported()}"
        )
        if strict:
            raise UnsupportedArchitectureError(type(model).__name__, message)
        logger.warning(message, extra={"skipped": report.skipped, "failed": report.failed})
        return target, report

    mark_last_layers(target)
    logger.info(
        "Conversion complete",
        extra={
            "model": type(model).__name__,
            "converted": len(report.converted),
            "skipped": len(report.skipped),
            "failed": len(report.failed),
            "in_place": not keep_original_model,
        },
    )
    return target, report


def transform(
    model: nn.Module,
    model_config: Any = None,
    *,
    keep_original_model: bool = False,
    strict: bool = True,
    exclude_layers: Iterable[str] = (),
) -> nn.Module:
    """Same as ``transform_with_report`` without the report."""
    converted, _ = transform_with_report(
        model,
        model_config,
        keep_original_model=keep_original_model,
        strict=strict,
        exclude_layers=exclude_layers,
    )
    return converted


def transform_with_config(
    model: nn.Module,
    conversion: ConversionConfig,
    model_config: Any = None,
) -> tuple[nn.Module, ConversionReport]:
    """Run ``transform_with_report`` with the policy from a loaded config section."""
    return transform_with_report(
        model,
        model_config,
        keep_original_model=conversion.keep_original_model,
        strict=conversion.strict,
        exclude_layers=conversion.exclude_layers,
    )


def reverse(model: nn.Module) -> nn.Module:
    """
    Put the original layers back in place of every adapter.

    Each restored layer carries the adapter's current weights. Works in place.

    Returns:
        ``model``, or the rebuilt layer when ``model`` itself is an adapter.
    """
    if isinstance(model, EncoderLayerAdapter):
        return model.revert()

    restored = 0
    for module in list(model.modules()):
        for name, child in list(module.named_children()):
            if isinstance(child, EncoderLayerAdapter):
                setattr(module, name, child.revert())
                restored += 1

    logger.info("Reverse conversion complete", extra={"restored": restored})
    return model
