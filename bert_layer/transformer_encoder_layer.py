"""Forward pass of a single BERT encoder layer.

:func:`layer_forward` runs multi‑head self‑attention followed by a
position‑wise feed‑forward network.  Each sublayer output goes through
dropout, is added back to the sublayer input and is then layer
normalised.  Besides the new hidden states the function returns every
intermediate value, dropout mask and normalization statistic a backward
pass needs.

:class:`TransformerEncoderLayer` is a thin ``nn.Module`` that owns the
weights of one layer and calls :func:`layer_forward`.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import torch
from torch import nn

from .config import LayerConfig
from .exceptions import DimensionMismatchError
from .multi_head_attention import attention_forward
from .primitives import activation_forward, dropout_forward, placeholder_mask
from .tensor_ops import LayerNormCache, tensor_layer_norm, tensor_linear

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionParameters:
  """Weights of the six projections, each stored as ``(in, out)``.

  The four attention projections are ``(hidden_size, hidden_size)``;
  ``intermediate_weight`` is ``(hidden_size, intermediate_size)`` and
  ``output_weight`` is ``(intermediate_size, hidden_size)``.  Biases are
  ``(1, out)`` rows.
  """

  query_weight: torch.Tensor
  query_bias: torch.Tensor
  key_weight: torch.Tensor
  key_bias: torch.Tensor
  value_weight: torch.Tensor
  value_bias: torch.Tensor
  attention_output_weight: torch.Tensor
  attention_output_bias: torch.Tensor
  intermediate_weight: torch.Tensor
  intermediate_bias: torch.Tensor
  output_weight: torch.Tensor
  output_bias: torch.Tensor


@dataclass(frozen=True)
class LayerNormParameters:
  """Scale and shift rows of shape ``(1, hidden_size)``."""

  gamma: torch.Tensor
  beta: torch.Tensor


@dataclass(frozen=True)
class EncoderLayerParameters:
  """All parameters of one encoder layer."""

  projections: ProjectionParameters
  norm1: LayerNormParameters
  norm2: LayerNormParameters

  def check_shapes(self, config: LayerConfig) -> None:
    """Raise :class:`DimensionMismatchError` if a weight does not fit ``config``."""
    hidden, inter = config.hidden_size, config.intermediate_size
    p = self.projections
    expected = {
      "query_weight": (p.query_weight, (hidden, hidden)),
      "key_weight": (p.key_weight, (hidden, hidden)),
      "value_weight": (p.value_weight, (hidden, hidden)),
      "attention_output_weight": (p.attention_output_weight, (hidden, hidden)),
      "intermediate_weight": (p.intermediate_weight, (hidden, inter)),
      "output_weight": (p.output_weight, (inter, hidden)),
    }
    for name, (tensor, shape) in expected.items():
      if tuple(tensor.shape) != shape:
        raise DimensionMismatchError(
          f"{name} must have shape {shape}, got {tuple(tensor.shape)}."
        )


@dataclass(frozen=True)
class IntermediateOutputs:
  """Values produced inside the layer and kept for the backward pass.

  Fields are listed in the order the layer produces them.
  """

  query: torch.Tensor
  key: torch.Tensor
  value: torch.Tensor
  context: torch.Tensor
  attention: torch.Tensor
  residual1: torch.Tensor
  layer_norm1: torch.Tensor
  intermediate: torch.Tensor
  activation: torch.Tensor
  residual2: torch.Tensor

  def as_tuple(self) -> Tuple[torch.Tensor, ...]:
    return tuple(getattr(self, f.name) for f in dataclasses.fields(self))


@dataclass(frozen=True)
class LayerForwardOutput:
  """Everything returned by :func:`layer_forward`.

  Attributes
  ----------
  hidden_states:
      New hidden states of shape ``(batch_size, seq_length * hidden_size)``.
  attention:
      Attention probabilities of shape
      ``(batch_size, num_heads * seq_length * seq_length)``.
  intermediates:
      Values computed along the way.
  attention_dropout_mask, output_dropout_mask1, output_dropout_mask2:
      Dropout masks of the three dropout sites, or ``(1, 1)``
      placeholders for disabled sites.
  norm1, norm2:
      Statistics of the two layer normalizations.
  """

  hidden_states: torch.Tensor
  attention: torch.Tensor
  intermediates: IntermediateOutputs
  attention_dropout_mask: torch.Tensor
  output_dropout_mask1: torch.Tensor
  output_dropout_mask2: torch.Tensor
  norm1: LayerNormCache
  norm2: LayerNormCache


def _output_dropout(
  x: torch.Tensor, p: float, generator: Optional[torch.Generator]
) -> Tuple[torch.Tensor, torch.Tensor]:
  if p > 0:
    return dropout_forward(x, p, generator)
  return x, placeholder_mask(x)


def layer_forward(
  states: torch.Tensor,
  params: EncoderLayerParameters,
  config: LayerConfig,
  generator: Optional[torch.Generator] = None,
  attention_mask: Optional[torch.Tensor] = None,
) -> LayerForwardOutput:
  """Apply one encoder layer to flattened hidden states.

  Parameters
  ----------
  states:
      Tensor of shape ``(batch_size, seq_length * hidden_size)``.
  params:
      Weights of the layer.
  config:
      Geometry and hyper‑parameters of the layer.
  generator:
      Random generator for all dropout masks.  With every dropout
      probability at zero the result does not depend on it.
  attention_mask:
      Optional additive mask broadcastable to
      ``(batch_size, 1, 1, seq_length)``, see
      :func:`bert_layer.utils.create_extended_attention_mask`.

  Returns
  -------
  LayerForwardOutput
      The new hidden states together with the attention weights and the
      values a backward pass needs.
  """
  seq_length = config.seq_length
  hidden = config.hidden_size
  inter = config.intermediate_size
  if states.dim() != 2 or states.shape[1] != seq_length * hidden:
    raise DimensionMismatchError(
      f"states must have shape (batch, {seq_length} * {hidden}) for "
      f"{config.num_attention_heads} heads of width {config.head_dim}, "
      f"got {tuple(states.shape)}."
    )
  params.check_shapes(config)
  p = params.projections
  logger.debug(
    "layer_forward: batch=%d seq_length=%d hidden=%d heads=%d intermediate=%d "
    "hidden_dropout=%s attention_dropout=%s",
    states.shape[0],
    seq_length,
    hidden,
    config.num_attention_heads,
    inter,
    config.hidden_dropout_prob,
    config.attention_probs_dropout_prob,
  )

  # Self‑attention
  query = tensor_linear(states, p.query_weight, p.query_bias, seq_length, hidden)
  key = tensor_linear(states, p.key_weight, p.key_bias, seq_length, hidden)
  value = tensor_linear(states, p.value_weight, p.value_bias, seq_length, hidden)
  context, attention, attention_dropout_mask = attention_forward(
    query,
    key,
    value,
    config.num_attention_heads,
    seq_length,
    config.head_dim,
    config.attention_probs_dropout_prob,
    generator=generator,
    attention_mask=attention_mask,
  )
  out_states = tensor_linear(
    context, p.attention_output_weight, p.attention_output_bias, seq_length, hidden
  )
  out_states, output_dropout_mask1 = _output_dropout(
    out_states, config.hidden_dropout_prob, generator
  )
  residual1 = out_states + states
  out_states, norm1 = tensor_layer_norm(
    residual1,
    params.norm1.gamma,
    params.norm1.beta,
    config.layer_norm_eps,
    seq_length,
    hidden,
  )
  layer_norm1 = out_states

  # Feed‑forward network
  intermediate = tensor_linear(
    out_states, p.intermediate_weight, p.intermediate_bias, seq_length, hidden
  )
  activation = activation_forward(intermediate, config.hidden_act)
  out_states = tensor_linear(activation, p.output_weight, p.output_bias, seq_length, inter)
  out_states, output_dropout_mask2 = _output_dropout(
    out_states, config.hidden_dropout_prob, generator
  )
  residual2 = out_states + layer_norm1
  out_states, norm2 = tensor_layer_norm(
    residual2,
    params.norm2.gamma,
    params.norm2.beta,
    config.layer_norm_eps,
    seq_length,
    hidden,
  )

  intermediates = IntermediateOutputs(
    query=query,
    key=key,
    value=value,
    context=context,
    attention=attention,
    residual1=residual1,
    layer_norm1=layer_norm1,
    intermediate=intermediate,
    activation=activation,
    residual2=residual2,
  )
  return LayerForwardOutput(
    hidden_states=out_states,
    attention=attention,
    intermediates=intermediates,
    attention_dropout_mask=attention_dropout_mask,
    output_dropout_mask1=output_dropout_mask1,
    output_dropout_mask2=output_dropout_mask2,
    norm1=norm1,
    norm2=norm2,
  )


class TransformerEncoderLayer(nn.Module):
  """Module holding the weights of one encoder layer.

  The weights live in ``nn.Linear`` and ``nn.LayerNorm`` submodules so the
  usual torch initialisation and state dict handling apply.  In eval mode
  all dropout is disabled.

  Parameters
  ----------
  config:
      Configuration containing the layer's hyper‑parameters.
  dtype:
      Floating point type of the weights.  Double precision by default;
      inputs must use the same dtype.
  """

  def __init__(self, config: LayerConfig, dtype: torch.dtype = torch.float64) -> None:
    super().__init__()
    self.config = config
    hidden = config.hidden_size
    factory_kwargs = {"dtype": dtype}
    self.query = nn.Linear(hidden, hidden, **factory_kwargs)
    self.key = nn.Linear(hidden, hidden, **factory_kwargs)
    self.value = nn.Linear(hidden, hidden, **factory_kwargs)
    self.attention_output = nn.Linear(hidden, hidden, **factory_kwargs)
    self.norm1 = nn.LayerNorm(hidden, eps=config.layer_norm_eps, **factory_kwargs)

    # Feed‑forward network
    self.intermediate = nn.Linear(hidden, config.intermediate_size, **factory_kwargs)
    self.output = nn.Linear(config.intermediate_size, hidden, **factory_kwargs)
    self.norm2 = nn.LayerNorm(hidden, eps=config.layer_norm_eps, **factory_kwargs)

  def layer_parameters(self) -> EncoderLayerParameters:
    """Export the weights in the ``(in, out)`` orientation used by :func:`layer_forward`."""

    def linear(module: nn.Linear) -> Tuple[torch.Tensor, torch.Tensor]:
      return module.weight.t(), module.bias.unsqueeze(0)

    def norm(module: nn.LayerNorm) -> LayerNormParameters:
      return LayerNormParameters(
        gamma=module.weight.unsqueeze(0), beta=module.bias.unsqueeze(0)
      )

    query_weight, query_bias = linear(self.query)
    key_weight, key_bias = linear(self.key)
    value_weight, value_bias = linear(self.value)
    attention_output_weight, attention_output_bias = linear(self.attention_output)
    intermediate_weight, intermediate_bias = linear(self.intermediate)
    output_weight, output_bias = linear(self.output)
    return EncoderLayerParameters(
      projections=ProjectionParameters(
        query_weight=query_weight,
        query_bias=query_bias,
        key_weight=key_weight,
        key_bias=key_bias,
        value_weight=value_weight,
        value_bias=value_bias,
        attention_output_weight=attention_output_weight,
        attention_output_bias=attention_output_bias,
        intermediate_weight=intermediate_weight,
        intermediate_bias=intermediate_bias,
        output_weight=output_weight,
        output_bias=output_bias,
      ),
      norm1=norm(self.norm1),
      norm2=norm(self.norm2),
    )

  def forward(
    self,
    hidden_states: torch.Tensor,
    attention_mask: Optional[torch.Tensor] = None,
    generator: Optional[torch.Generator] = None,
  ) -> LayerForwardOutput:
    """Apply the layer to hidden states of shape ``(batch_size, seq_length * hidden_size)``."""
    config = self.config
    if not self.training:
      config = dataclasses.replace(
        config, hidden_dropout_prob=0.0, attention_probs_dropout_prob=0.0
      )
    return layer_forward(
      hidden_states,
      self.layer_parameters(),
      config,
      generator=generator,
      attention_mask=attention_mask,
    )
