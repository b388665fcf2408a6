from __future__ import annotations


class MetaPlanError(Exception):
    """Base class for meta-planning errors."""


class NothingToArbitrateError(MetaPlanError, ValueError):
    """process() was called without a blueprint and without alternatives."""


class PolicyError(MetaPlanError):
    """A policy section failed typed validation."""
