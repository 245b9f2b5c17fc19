# File: backend/pert_sampler.py
#
# Beta-PERT sampling from a three-point estimate.
#
# Everything here is a pure function of a `uniform()` callable returning
# floats in [0, 1): the same stream of uniforms always gives the same sample.
# The simulation driver hands in a seeded numpy Generator's `random` method;
# tests can hand in a fixed sequence.

import math

PERT_WEIGHT = 4.0       # standard PERT gamma: weight of the most likely value


def _open_uniform(uniform):
    """Uniform on (0, 1] so log() is always defined."""
    return 1.0 - uniform()


def standard_normal(uniform):
    """Box-Muller: two uniforms -> one N(0, 1) draw."""
    u1 = _open_uniform(uniform)
    u2 = uniform()
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def sample_gamma(shape, uniform):
    """
    Gamma(shape, 1) by Marsaglia & Tsang (2000).

    Shapes below 1 draw Gamma(shape + 1) and scale by U^(1/shape).
    """
    if shape <= 0:
        raise ValueError(f"gamma shape must be positive, got {shape}")
    if shape < 1.0:
        boost = _open_uniform(uniform) ** (1.0 / shape)
        return sample_gamma(shape + 1.0, uniform) * boost

    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)
    while True:
        x = standard_normal(uniform)
        v = 1.0 + c * x
        if v <= 0.0:
            continue
        v = v * v * v
        u = _open_uniform(uniform)
        if u < 1.0 - 0.0331 * x ** 4:
            return d * v
        if math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v


def pert_shape(minimum, mode, maximum):
    """(alpha, beta) of the Beta distribution behind a PERT estimate."""
    span = maximum - minimum
    alpha = 1.0 + PERT_WEIGHT * (mode - minimum) / span
    beta = 1.0 + PERT_WEIGHT * (maximum - mode) / span
    return alpha, beta


def pert_mean(minimum, mode, maximum):
    return (minimum + PERT_WEIGHT * mode + maximum) / (PERT_WEIGHT + 2.0)


def sample_pert(minimum, mode, maximum, uniform):
    if not (minimum <= mode <= maximum):
        raise ValueError(f"PERT bounds out of order: min={minimum}, mode={mode}, max={maximum}")
    if minimum == maximum:
        return minimum

    alpha, beta = pert_shape(minimum, mode, maximum)
    x = sample_gamma(alpha, uniform)
    y = sample_gamma(beta, uniform)
    return minimum + (x / (x + y)) * (maximum - minimum)


class PertSampler:
    """Draws PERT samples from one seeded numpy Generator."""

    def __init__(self, rng):
        self._uniform = rng.random

    def sample(self, distribution):
        return sample_pert(distribution.min, distribution.mode, distribution.max, self._uniform)
