"""Two‑dimensional building blocks consumed by the encoder layer.

These are the affine, batch normalization, dropout and activation
primitives the layer is assembled from.  Each one works on plain 2D
``torch`` tensors and takes its parameters explicitly, so the outer model
stays in charge of parameter storage.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

import torch
import torch.nn.functional as F

from .config import Activation, check_probability
from .exceptions import DimensionMismatchError, UnsupportedActivationError


def affine_forward(x: torch.Tensor, weight: torch.Tensor, bias: torch.Tensor) -> torch.Tensor:
  """Compute ``x @ weight + bias`` with the bias broadcast over rows.

  Parameters
  ----------
  x:
      Input of shape ``(N, D)``.
  weight:
      Weight matrix of shape ``(D, M)``.
  bias:
      Bias row of shape ``(1, M)``.

  Returns
  -------
  torch.Tensor
      Output of shape ``(N, M)``.
  """
  if x.dim() != 2 or weight.dim() != 2 or x.shape[1] != weight.shape[0]:
    raise DimensionMismatchError(
      f"cannot multiply input {tuple(x.shape)} by weight {tuple(weight.shape)}."
    )
  if tuple(bias.shape) != (1, weight.shape[1]):
    raise DimensionMismatchError(
      f"bias must have shape (1, {weight.shape[1]}), got {tuple(bias.shape)}."
    )
  return x @ weight + bias


def batchnorm_forward(
  x: torch.Tensor,
  gamma: torch.Tensor,
  beta: torch.Tensor,
  mode: str,
  ema_mean: Optional[torch.Tensor],
  ema_var: Optional[torch.Tensor],
  momentum: float,
  eps: float,
) -> Tuple[
  torch.Tensor,
  Optional[torch.Tensor],
  Optional[torch.Tensor],
  torch.Tensor,
  torch.Tensor,
  torch.Tensor,
]:
  """Normalize each column of ``x`` over the rows (1D batch normalization).

  In ``"train"`` mode the column statistics of the current batch are used
  and the running averages are updated as
  ``momentum * ema + (1 - momentum) * batch_stat``.  Passing ``None`` for
  the running averages skips the update.  In ``"test"`` mode the running
  averages are used instead and returned unchanged.

  ``gamma`` and ``beta`` are broadcast against ``x``, so they may be
  ``(1, D)`` rows or ``(N, 1)`` columns.

  Returns
  -------
  Tuple
      ``(out, ema_mean_upd, ema_var_upd, cache_mean, cache_var, cache_norm)``
      where the caches hold the ``(1, D)`` statistics used and the
      normalized input before scaling.
  """
  if mode == "train":
    mean = x.mean(dim=0, keepdim=True)
    var = ((x - mean) ** 2).mean(dim=0, keepdim=True)
    if ema_mean is not None and ema_var is not None:
      ema_mean = momentum * ema_mean + (1 - momentum) * mean
      ema_var = momentum * ema_var + (1 - momentum) * var
  elif mode == "test":
    if ema_mean is None or ema_var is None:
      raise ValueError("test mode requires running mean and variance.")
    mean, var = ema_mean, ema_var
  else:
    raise ValueError(f"mode must be 'train' or 'test', got {mode!r}.")

  norm = (x - mean) / torch.sqrt(var + eps)
  out = norm * gamma + beta
  return out, ema_mean, ema_var, mean, var, norm


def dropout_forward(
  x: torch.Tensor,
  p: float,
  generator: Optional[torch.Generator] = None,
) -> Tuple[torch.Tensor, torch.Tensor]:
  """Apply inverted dropout to ``x``.

  Each element is dropped with probability ``p``; survivors are scaled by
  ``1 / (1 - p)`` so the expectation is unchanged.  The mask is drawn from
  ``generator`` when one is given.

  Returns
  -------
  Tuple[torch.Tensor, torch.Tensor]
      ``(out, mask)`` where ``mask`` is a binary keep‑mask with the shape
      of ``x``.
  """
  check_probability("dropout probability", p)
  noise = torch.rand(x.shape, generator=generator, dtype=x.dtype, device=x.device)
  mask = (noise >= p).to(x.dtype)
  return x * mask / (1.0 - p), mask


def placeholder_mask(like: torch.Tensor) -> torch.Tensor:
  """Degenerate ``(1, 1)`` mask returned by a dropout site that is disabled."""
  return torch.ones(1, 1, dtype=like.dtype, device=like.device)


def tanh_forward(x: torch.Tensor) -> torch.Tensor:
  return torch.tanh(x)


def gelu_forward(x: torch.Tensor) -> torch.Tensor:
  # Exact erf form, as used by BERT.
  return F.gelu(x)


ACTIVATIONS: Dict[str, Callable[[torch.Tensor], torch.Tensor]] = {
  Activation.TANH.value: tanh_forward,
  Activation.GELU.value: gelu_forward,
}


def activation_forward(x: torch.Tensor, name: str) -> torch.Tensor:
  """Apply the activation called ``name`` element‑wise."""
  try:
    fn = ACTIVATIONS[Activation(name).value]
  except ValueError:
    raise UnsupportedActivationError(f"unsupported activation {name!r}.") from None
  return fn(x)
