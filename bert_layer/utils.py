"""Utility functions for the encoder layer.

This module contains helpers that are not part of the forward pass
itself.  They prepare attention masks and map weights from Hugging Face
BERT checkpoints onto :class:`TransformerEncoderLayer`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import torch


def create_extended_attention_mask(
  attention_mask: torch.Tensor, dtype: Optional[torch.dtype] = None
) -> torch.Tensor:
  """Expand a 2D attention mask to a 4D mask for broadcasting in attention.

  The mask has shape ``(batch_size, seq_len)`` and contains 1 for tokens
  that should be attended to and 0 for padded tokens.  This function
  converts it into a shape ``(batch_size, 1, 1, seq_len)`` and changes
  the value range to either 0.0 for attendable tokens or a large negative
  value for masked tokens.  The negative values ensure that masked
  positions have near‑zero attention probability after the softmax.

  Parameters
  ----------
  attention_mask:
      Tensor of shape ``(batch_size, seq_len)`` with binary values.
  dtype:
      Floating point type of the returned mask, ``float32`` when ``None``.
      Attention casts the mask to the dtype of its scores.

  Returns
  -------
  torch.Tensor
      A broadcastable attention mask of shape ``(batch_size, 1, 1, seq_len)``.
  """
  extended_attention_mask = attention_mask[:, None, None, :].float()
  if dtype is not None:
    extended_attention_mask = extended_attention_mask.to(dtype)
  return (1.0 - extended_attention_mask) * -10000.0


# Hugging Face ``BertLayer`` submodule -> ``TransformerEncoderLayer`` submodule
_HF_LAYER_KEYS = {
  "attention.self.query": "query",
  "attention.self.key": "key",
  "attention.self.value": "value",
  "attention.output.dense": "attention_output",
  "attention.output.LayerNorm": "norm1",
  "intermediate.dense": "intermediate",
  "output.dense": "output",
  "output.LayerNorm": "norm2",
}


def rename_state_dict_keys(
  state_dict: Dict[str, Any], layer_index: Optional[int] = None
) -> Dict[str, Any]:
  """Map Hugging Face BERT layer state dict keys to this package's keys.

  ``state_dict`` is either the state dict of a single ``BertLayer`` (keys
  such as ``attention.self.query.weight``) or, when ``layer_index`` is
  given, that of a full ``BertModel``/``BertForPreTraining`` from which
  only ``encoder.layer.{layer_index}`` is extracted.  Keys that do not
  belong to the selected layer are dropped.

  Parameters
  ----------
  state_dict:
      The original state dictionary from a Hugging Face BERT model.
  layer_index:
      Index of the encoder layer to extract from a full model.

  Returns
  -------
  Dict[str, Any]
      A new state dictionary loadable into :class:`TransformerEncoderLayer`.
  """
  new_state_dict: Dict[str, Any] = {}
  for key, value in state_dict.items():
    if layer_index is not None:
      # Ex: bert.encoder.layer.3.attention.self.query.weight
      prefix = f"encoder.layer.{layer_index}."
      position = key.find(prefix)
      if position < 0 or (position > 0 and key[position - 1] != "."):
        continue
      key = key[position + len(prefix):]

    # Ex: attention.output.LayerNorm.weight -> norm1.weight
    module, _, suffix = key.rpartition(".")
    if module in _HF_LAYER_KEYS:
      new_state_dict[f"{_HF_LAYER_KEYS[module]}.{suffix}"] = value
  return new_state_dict
