"""Top-level package for the BERT encoder layer forward pass.

This module exposes the core functions and classes used throughout the
project.  Importing from :mod:`bert_layer` makes it easy to access the
configuration, the layer and its building blocks without referencing
deeply nested modules.
"""

from .config import Activation, LayerConfig
from .exceptions import (
  DimensionMismatchError,
  InvalidProbabilityError,
  LayerConfigError,
  UnsupportedActivationError,
)
from .multi_head_attention import attention_forward
from .tensor_ops import LayerNormCache, tensor_layer_norm, tensor_linear
from .transformer_encoder_layer import (
  EncoderLayerParameters,
  IntermediateOutputs,
  LayerForwardOutput,
  LayerNormParameters,
  ProjectionParameters,
  TransformerEncoderLayer,
  layer_forward,
)
from .utils import create_extended_attention_mask, rename_state_dict_keys

__all__ = [
  "Activation",
  "LayerConfig",
  "DimensionMismatchError",
  "InvalidProbabilityError",
  "LayerConfigError",
  "UnsupportedActivationError",
  "attention_forward",
  "LayerNormCache",
  "tensor_layer_norm",
  "tensor_linear",
  "EncoderLayerParameters",
  "IntermediateOutputs",
  "LayerForwardOutput",
  "LayerNormParameters",
  "ProjectionParameters",
  "TransformerEncoderLayer",
  "layer_forward",
  "create_extended_attention_mask",
  "rename_state_dict_keys",
]
