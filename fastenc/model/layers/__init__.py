# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Concrete adapters.

Importing this package registers every built-in adapter with the registry.
"""

from fastenc.model.layers.bert import BERT_LAYER_TYPES, BertLayerAdapter
from fastenc.model.layers.encoder import TorchEncoderLayerAdapter

__all__ = ["BERT_LAYER_TYPES", "BertLayerAdapter", "TorchEncoderLayerAdapter"]
