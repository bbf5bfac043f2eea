"""Errors raised by the encoder layer.

Every failure in this package is a configuration or shape problem detected
before (or while) a forward call runs.  They all derive from
:class:`ValueError` so callers that already guard configuration with
``except ValueError`` keep working.
"""

from __future__ import annotations


class LayerConfigError(ValueError):
  """Base class for invalid layer configuration or inputs."""


class DimensionMismatchError(LayerConfigError):
  """Operand shapes are inconsistent (e.g. ``head_dim * num_heads`` does not
  match the feature width of the hidden states)."""


class InvalidProbabilityError(LayerConfigError):
  """A dropout probability lies outside ``[0, 1)``."""


class UnsupportedActivationError(LayerConfigError):
  """The activation selector is not one of the supported functions."""
