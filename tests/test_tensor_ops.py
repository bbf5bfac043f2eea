"""Unit tests for the flattened linear projection and layer normalization."""

import pytest
import torch
import torch.nn.functional as F

from bert_layer.exceptions import DimensionMismatchError, LayerConfigError
from bert_layer.primitives import affine_forward, batchnorm_forward
from bert_layer.tensor_ops import tensor_layer_norm, tensor_linear

BATCH, SEQ_LEN, FEATURES, OUT_FEATURES = 2, 3, 4, 6


def _inputs():
  generator = torch.Generator().manual_seed(7)
  x = torch.randn(BATCH, SEQ_LEN * FEATURES, dtype=torch.float64, generator=generator)
  weight = torch.randn(FEATURES, OUT_FEATURES, dtype=torch.float64, generator=generator)
  bias = torch.randn(1, OUT_FEATURES, dtype=torch.float64, generator=generator)
  return x, weight, bias


def test_tensor_linear_output_shape() -> None:
  x, weight, bias = _inputs()
  out = tensor_linear(x, weight, bias, SEQ_LEN, FEATURES)
  assert out.shape == (BATCH, SEQ_LEN * OUT_FEATURES)


def test_tensor_linear_single_token_matches_affine() -> None:
  _, weight, bias = _inputs()
  x = torch.randn(1, FEATURES, dtype=torch.float64)
  assert torch.equal(tensor_linear(x, weight, bias, 1, FEATURES), affine_forward(x, weight, bias))


def test_tensor_linear_applies_the_same_map_to_every_token() -> None:
  x, weight, bias = _inputs()
  out = tensor_linear(x, weight, bias, SEQ_LEN, FEATURES)
  for b in range(BATCH):
    for t in range(SEQ_LEN):
      token = x[b : b + 1, t * FEATURES : (t + 1) * FEATURES]
      expected = token @ weight + bias
      assert torch.allclose(out[b : b + 1, t * OUT_FEATURES : (t + 1) * OUT_FEATURES], expected)


def test_tensor_linear_rejects_wrong_width() -> None:
  x, weight, bias = _inputs()
  with pytest.raises(DimensionMismatchError):
    tensor_linear(x, weight, bias, SEQ_LEN, FEATURES + 1)
  with pytest.raises(DimensionMismatchError):
    tensor_linear(x, weight[:-1], bias, SEQ_LEN, FEATURES)


def _norm_params(gamma_value: float = 1.0, beta_value: float = 0.0):
  gamma = torch.full((1, FEATURES), gamma_value, dtype=torch.float64)
  beta = torch.full((1, FEATURES), beta_value, dtype=torch.float64)
  return gamma, beta


def test_layer_norm_gives_zero_mean_unit_variance_per_token() -> None:
  x, _, _ = _inputs()
  gamma, beta = _norm_params()
  out, cache = tensor_layer_norm(x * 5.0 + 3.0, gamma, beta, 1e-12, SEQ_LEN, FEATURES)
  assert out.shape == x.shape
  tokens = out.reshape(BATCH * SEQ_LEN, FEATURES)
  assert torch.allclose(tokens.mean(dim=1), torch.zeros(BATCH * SEQ_LEN, dtype=torch.float64), atol=1e-10)
  assert torch.allclose(
    tokens.var(dim=1, unbiased=False), torch.ones(BATCH * SEQ_LEN, dtype=torch.float64), atol=1e-8
  )
  assert torch.equal(out, cache.norm)


def test_layer_norm_cache_follows_token_order() -> None:
  x, _, _ = _inputs()
  gamma, beta = _norm_params(2.0, 1.0)
  _, cache = tensor_layer_norm(x, gamma, beta, 1e-5, SEQ_LEN, FEATURES)
  assert cache.mean.shape == (1, BATCH * SEQ_LEN)
  assert cache.var.shape == (1, BATCH * SEQ_LEN)
  assert cache.norm.shape == x.shape
  for b in range(BATCH):
    for t in range(SEQ_LEN):
      token = x[b, t * FEATURES : (t + 1) * FEATURES]
      assert torch.isclose(cache.mean[0, b * SEQ_LEN + t], token.mean())
      assert torch.isclose(cache.var[0, b * SEQ_LEN + t], token.var(unbiased=False))


def test_layer_norm_matches_torch_layer_norm() -> None:
  x, _, _ = _inputs()
  gamma = torch.randn(1, FEATURES, dtype=torch.float64)
  beta = torch.randn(1, FEATURES, dtype=torch.float64)
  out, _ = tensor_layer_norm(x, gamma, beta, 1e-12, SEQ_LEN, FEATURES)
  expected = F.layer_norm(
    x.reshape(BATCH, SEQ_LEN, FEATURES), (FEATURES,), gamma[0], beta[0], eps=1e-12
  )
  assert torch.allclose(out, expected.reshape(BATCH, SEQ_LEN * FEATURES), atol=1e-12)


def test_layer_norm_matches_batchnorm_on_transposed_tokens() -> None:
  x, _, _ = _inputs()
  gamma = torch.randn(1, FEATURES, dtype=torch.float64)
  beta = torch.randn(1, FEATURES, dtype=torch.float64)
  out, cache = tensor_layer_norm(x, gamma, beta, 1e-12, SEQ_LEN, FEATURES)

  transposed = x.reshape(BATCH * SEQ_LEN, FEATURES).t()
  bn_out, ema_mean, ema_var, bn_mean, bn_var, _ = batchnorm_forward(
    transposed, gamma.t(), beta.t(), "train", None, None, 0.0, 1e-12
  )
  assert ema_mean is None and ema_var is None
  assert torch.allclose(out, bn_out.t().reshape(BATCH, SEQ_LEN * FEATURES), atol=1e-12)
  assert torch.allclose(cache.mean, bn_mean)
  assert torch.allclose(cache.var, bn_var)


def test_layer_norm_rejects_bad_parameters() -> None:
  x, _, _ = _inputs()
  gamma, beta = _norm_params()
  with pytest.raises(DimensionMismatchError):
    tensor_layer_norm(x, gamma[:, :-1], beta, 1e-12, SEQ_LEN, FEATURES)
  with pytest.raises(LayerConfigError):
    tensor_layer_norm(x, gamma, beta, 0.0, SEQ_LEN, FEATURES)
  with pytest.raises(LayerConfigError):
    tensor_layer_norm(x, gamma, beta, float("nan"), SEQ_LEN, FEATURES)
