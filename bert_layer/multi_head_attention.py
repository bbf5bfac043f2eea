"""Multi‑head scaled dot‑product attention over flattened sequences.

This module contains :func:`attention_forward`, which takes query, key and
value projections laid out as ``(batch_size, seq_length * hidden_size)``
matrices, splits them across heads, computes scaled dot‑product attention
and returns the recombined context.  The projections themselves are
computed by the caller.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple

import torch
import torch.nn.functional as F

from .config import check_probability
from .exceptions import DimensionMismatchError
from .primitives import dropout_forward, placeholder_mask


def transpose_for_scores(
  x: torch.Tensor, num_heads: int, seq_length: int, head_dim: int
) -> torch.Tensor:
  """Reshape a flattened projection for multi‑head attention.

  Given a tensor of shape ``(batch_size, seq_length * hidden_size)`` this
  function splits each token into ``(num_heads, head_dim)`` and
  rearranges the dimensions to produce a shape of
  ``(batch_size, num_heads, seq_length, head_dim)``.
  """
  if x.dim() != 2 or x.shape[1] != seq_length * num_heads * head_dim:
    raise DimensionMismatchError(
      f"expected a (batch, {seq_length} * {num_heads} * {head_dim}) matrix, "
      f"got {tuple(x.shape)}."
    )
  x = x.reshape(x.shape[0], seq_length, num_heads, head_dim)
  return x.permute(0, 2, 1, 3)


def attention_forward(
  query: torch.Tensor,
  key: torch.Tensor,
  value: torch.Tensor,
  num_heads: int,
  seq_length: int,
  head_dim: int,
  dropout_prob: float,
  generator: Optional[torch.Generator] = None,
  attention_mask: Optional[torch.Tensor] = None,
) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
  """Compute self‑attention from precomputed projections.

  Parameters
  ----------
  query, key, value:
      Tensors of shape ``(batch_size, seq_length * num_heads * head_dim)``.
  num_heads:
      Number of attention heads.
  seq_length:
      Number of tokens per sequence.
  head_dim:
      Width of a single head.
  dropout_prob:
      Probability of dropping an attention weight.  ``0`` disables
      dropout.
  generator:
      Random generator for the dropout mask.
  attention_mask:
      Optional tensor broadcastable to ``(batch_size, 1, 1, seq_length)``
      containing additive mask values.  Positions with large negative
      values will be ignored by the softmax.

  Returns
  -------
  Tuple[torch.Tensor, torch.Tensor, torch.Tensor]
      ``(context, attention, mask)`` where ``context`` has shape
      ``(batch_size, seq_length * hidden_size)``, ``attention`` holds the
      softmax probabilities (before dropout) flattened to
      ``(batch_size, num_heads * seq_length * seq_length)`` and ``mask``
      is the dropout mask in the same layout, or a ``(1, 1)`` placeholder
      when dropout is disabled.
  """
  check_probability("attention dropout probability", dropout_prob)
  batch_size = query.shape[0]
  query_layer = transpose_for_scores(query, num_heads, seq_length, head_dim)
  key_layer = transpose_for_scores(key, num_heads, seq_length, head_dim)
  value_layer = transpose_for_scores(value, num_heads, seq_length, head_dim)

  # (batch, heads, seq_len, head_dim) x (batch, heads, head_dim, seq_len) -> (batch, heads, seq_len, seq_len)
  attention_scores = torch.matmul(query_layer, key_layer.transpose(-1, -2)) / math.sqrt(head_dim)
  if attention_mask is not None:
    attention_scores = attention_scores + attention_mask.to(attention_scores.dtype)

  attention_probs = F.softmax(attention_scores, dim=-1)
  attention = attention_probs.reshape(batch_size, num_heads * seq_length * seq_length)

  if dropout_prob > 0:
    dropped, mask = dropout_forward(attention, dropout_prob, generator)
    attention_probs = dropped.reshape(attention_probs.shape)
  else:
    mask = placeholder_mask(attention)

  # Weighted sum of the values, then concatenate heads
  context_layer = torch.matmul(attention_probs, value_layer)
  context_layer = context_layer.permute(0, 2, 1, 3).contiguous()
  context = context_layer.reshape(batch_size, seq_length * num_heads * head_dim)
  return context, attention, mask
