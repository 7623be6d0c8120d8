# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Layer replacement machinery.

  - registry:   type tag → adapter class
  - interfaces: adapter base class, validation and the shared forward protocol
  - layers/:    concrete adapters (BERT family, torch.nn.TransformerEncoderLayer)
  - kernels:    thin wrappers over PyTorch's fused and nested-tensor primitives
  - transform:  model-wide conversion and its reverse
"""
