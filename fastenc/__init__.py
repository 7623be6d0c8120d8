# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
fastenc: fused, padding-free inference for transformer encoder stacks.

Replaces standard encoder layers inside a PyTorch model with adapters that run
the whole block through PyTorch's fused encoder-layer primitive and carry
variable-length batches as nested tensors between layers.
"""

__version__ = "0.1.0"
