"""Linear projection and layer normalization over flattened sequences.

Hidden states travel through the layer as 2D matrices of shape
``(batch_size, seq_length * features)``: row ``b`` holds the ``seq_length``
token vectors of sequence ``b`` back to back.  Both operations here view
that matrix as ``(batch_size * seq_length, features)`` (one row per token,
batches contiguous, tokens in sequence order), work on the rows, and
restore the flattened layout.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Tuple

import torch

from .exceptions import DimensionMismatchError, LayerConfigError
from .primitives import affine_forward


class LayerNormCache(NamedTuple):
  """Statistics kept by :func:`tensor_layer_norm` for the backward pass.

  ``mean`` and ``var`` are ``(1, batch_size * seq_length)`` rows with one
  entry per token.  ``norm`` holds the normalized values before the
  ``gamma``/``beta`` rescaling, in the hidden‑state layout.
  """

  mean: torch.Tensor
  var: torch.Tensor
  norm: torch.Tensor


def to_token_rows(x: torch.Tensor, seq_length: int, features: int) -> torch.Tensor:
  """View ``(B, T * C)`` as ``(B * T, C)``."""
  if x.dim() != 2 or x.shape[1] != seq_length * features:
    raise DimensionMismatchError(
      f"expected a (batch, {seq_length} * {features}) matrix, got {tuple(x.shape)}."
    )
  return x.reshape(x.shape[0] * seq_length, features)


def tensor_linear(
  x: torch.Tensor,
  weight: torch.Tensor,
  bias: torch.Tensor,
  seq_length: int,
  in_features: int,
) -> torch.Tensor:
  """Apply the same affine map to every token of a flattened batch.

  Parameters
  ----------
  x:
      Hidden states of shape ``(batch_size, seq_length * in_features)``.
  weight:
      Weight matrix of shape ``(in_features, out_features)``.
  bias:
      Bias row of shape ``(1, out_features)``.
  seq_length:
      Number of tokens per sequence.
  in_features:
      Feature width of each token in ``x``.

  Returns
  -------
  torch.Tensor
      Tensor of shape ``(batch_size, seq_length * out_features)``.
  """
  batch_size = x.shape[0]
  out = affine_forward(to_token_rows(x, seq_length, in_features), weight, bias)
  return out.reshape(batch_size, seq_length * out.shape[1])


def tensor_layer_norm(
  x: torch.Tensor,
  gamma: torch.Tensor,
  beta: torch.Tensor,
  eps: float,
  seq_length: int,
  features: int,
) -> Tuple[torch.Tensor, LayerNormCache]:
  """Normalize every token's feature vector and apply ``gamma``/``beta``.

  Each token is normalized on its own over the ``features`` axis using
  the population variance: ``(x - mean) / sqrt(var + eps)``.  The result
  is then scaled by ``gamma`` and shifted by ``beta``.

  Parameters
  ----------
  x:
      Hidden states of shape ``(batch_size, seq_length * features)``.
  gamma, beta:
      Rows of shape ``(1, features)``.
  eps:
      Positive constant added to the variance.
  seq_length:
      Number of tokens per sequence.
  features:
      Feature width of each token.

  Returns
  -------
  Tuple[torch.Tensor, LayerNormCache]
      The normalized tensor with the shape of ``x`` and the per‑token
      statistics.
  """
  if not (math.isfinite(eps) and eps > 0):
    raise LayerConfigError(f"eps must be a positive finite number, got {eps}.")
  for name, param in (("gamma", gamma), ("beta", beta)):
    if tuple(param.shape) != (1, features):
      raise DimensionMismatchError(
        f"{name} must have shape (1, {features}), got {tuple(param.shape)}."
      )

  tokens = to_token_rows(x, seq_length, features)
  mean = tokens.mean(dim=1, keepdim=True)
  var = ((tokens - mean) ** 2).mean(dim=1, keepdim=True)
  norm = (tokens - mean) / torch.sqrt(var + eps)
  out = norm * gamma + beta

  cache = LayerNormCache(
    mean=mean.reshape(1, -1),
    var=var.reshape(1, -1),
    norm=norm.reshape(x.shape),
  )
  return out.reshape(x.shape), cache
