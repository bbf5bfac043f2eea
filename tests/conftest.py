"""pytest config: put the repo root on sys.path and share small layer fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest
import torch

# Prepend the repository root to sys.path so that the ``bert_layer`` package
# is discoverable when running tests.
ROOT_DIR: Path = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
  sys.path.insert(0, str(ROOT_DIR))

from bert_layer.config import LayerConfig  # noqa: E402
from bert_layer.transformer_encoder_layer import (  # noqa: E402
  EncoderLayerParameters,
  TransformerEncoderLayer,
)


@pytest.fixture
def tiny_config() -> LayerConfig:
  return LayerConfig(
    num_attention_heads=2,
    head_dim=4,
    intermediate_size=16,
    seq_length=5,
    hidden_dropout_prob=0.0,
    attention_probs_dropout_prob=0.0,
  )


@pytest.fixture
def layer_params(tiny_config: LayerConfig) -> EncoderLayerParameters:
  torch.manual_seed(0)
  layer = TransformerEncoderLayer(tiny_config)
  with torch.no_grad():
    layer.norm1.weight.uniform_(0.5, 1.5)
    layer.norm1.bias.uniform_(-0.5, 0.5)
    layer.norm2.weight.uniform_(0.5, 1.5)
    layer.norm2.bias.uniform_(-0.5, 0.5)
    return layer.layer_parameters()


@pytest.fixture
def states(tiny_config: LayerConfig) -> torch.Tensor:
  generator = torch.Generator().manual_seed(1)
  return torch.randn(
    3,
    tiny_config.seq_length * tiny_config.hidden_size,
    dtype=torch.float64,
    generator=generator,
  )
