"""Configuration dataclass for a single encoder layer.

This module defines the :class:`LayerConfig` dataclass, which holds the
geometry and hyper‑parameters consumed by :func:`layer_forward`.  Weights
are not part of the configuration; they are owned by the outer model and
passed in on every call.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .exceptions import (
  InvalidProbabilityError,
  LayerConfigError,
  UnsupportedActivationError,
)


class Activation(str, Enum):
  """Activation functions accepted between the two feed‑forward projections."""

  TANH = "tanh"
  GELU = "gelu"


def check_probability(name: str, value: float) -> None:
  """Raise :class:`InvalidProbabilityError` unless ``0 <= value < 1``."""
  if not 0.0 <= value < 1.0:
    raise InvalidProbabilityError(f"{name} must lie in [0, 1), got {value}.")


@dataclass
class LayerConfig:
  """Structure holding the geometry and hyper‑parameters of one layer.

  Attributes
  ----------
  num_attention_heads:
      Number of attention heads ``H``.
  head_dim:
      Width ``d`` of a single head.  The model width is
      ``hidden_size = head_dim * num_attention_heads``.
  intermediate_size:
      Width ``I`` of the feed‑forward sublayer.
  seq_length:
      Number of tokens ``T`` per sequence.  Hidden states are stored as
      ``(batch_size, seq_length * hidden_size)`` matrices.
  hidden_dropout_prob:
      Dropout probability applied to both sublayer outputs, before the
      residual additions.
  attention_probs_dropout_prob:
      Dropout probability applied to the attention weights.
  layer_norm_eps:
      Epsilon added to the variance before the square root in both layer
      normalizations.
  hidden_act:
      Activation between the feed‑forward projections, ``"tanh"`` or
      ``"gelu"``.
  """

  num_attention_heads: int = 12
  head_dim: int = 64
  intermediate_size: int = 3072
  seq_length: int = 128
  hidden_dropout_prob: float = 0.1
  attention_probs_dropout_prob: float = 0.1
  layer_norm_eps: float = 1e-12
  hidden_act: str = Activation.GELU.value

  def __post_init__(self) -> None:
    """Validate the configuration after initialisation.

    Raises
    ------
    InvalidProbabilityError
        If a dropout probability lies outside ``[0, 1)``.
    UnsupportedActivationError
        If ``hidden_act`` is not a member of :class:`Activation`.
    LayerConfigError
        If a size is not positive or the epsilon is not a positive
        finite number.
    """
    for name in ("num_attention_heads", "head_dim", "intermediate_size", "seq_length"):
      if getattr(self, name) <= 0:
        raise LayerConfigError(f"{name} must be positive, got {getattr(self, name)}.")
    check_probability("hidden_dropout_prob", self.hidden_dropout_prob)
    check_probability("attention_probs_dropout_prob", self.attention_probs_dropout_prob)
    if not (math.isfinite(self.layer_norm_eps) and self.layer_norm_eps > 0):
      raise LayerConfigError(
        f"layer_norm_eps must be a positive finite number, got {self.layer_norm_eps}."
      )
    try:
      self.hidden_act = Activation(self.hidden_act).value
    except ValueError:
      raise UnsupportedActivationError(
        f"hidden_act must be one of {[a.value for a in Activation]}, got {self.hidden_act!r}."
      ) from None

  @property
  def hidden_size(self) -> int:
    return self.head_dim * self.num_attention_heads

  @classmethod
  def from_hf_config(cls, hf_config: Any, seq_length: int) -> "LayerConfig":
    """Build a layer configuration from a Hugging Face ``BertConfig``.

    Only the per‑layer fields are read; the sequence length is a property
    of the input rather than the model so it must be supplied.
    """
    if hf_config.hidden_size % hf_config.num_attention_heads != 0:
      raise LayerConfigError(
        f"hidden_size ({hf_config.hidden_size}) must be divisible by num_attention_heads "
        f"({hf_config.num_attention_heads})."
      )
    return cls(
      num_attention_heads=hf_config.num_attention_heads,
      head_dim=hf_config.hidden_size // hf_config.num_attention_heads,
      intermediate_size=hf_config.intermediate_size,
      seq_length=seq_length,
      hidden_dropout_prob=hf_config.hidden_dropout_prob,
      attention_probs_dropout_prob=hf_config.attention_probs_dropout_prob,
      layer_norm_eps=hf_config.layer_norm_eps,
      hidden_act=hf_config.hidden_act,
    )
