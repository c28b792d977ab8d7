"""
Elementary squash catalog.

Each strategy supplies ``squash``, its ``inverse`` and ``derivative``.
Inverses satisfy ``squash(inverse(squash(x))) ≈ squash(x)``; where the squash
saturates, the inverse returns a pre-activation that reproduces the
saturated value.  Non-injective squashes use the optional ``hint`` (the
pre-activation recorded while tracing) to pick a branch.
"""

from __future__ import annotations

import math
import sys

from activation_base import MAX_ACTIVATION, ActivationRange, ElementaryActivation

# Largest argument math.exp accepts, and the most negative useful log.
_LOG_MAX = math.log(MAX_ACTIVATION)
_LOG_MIN = math.log(sys.float_info.min)
# Largest double strictly below 1.
_BELOW_ONE = 1.0 - sys.float_info.epsilon / 2


def _exp(x: float) -> float:
    if x > _LOG_MAX:
        return MAX_ACTIVATION
    try:
        return math.exp(x)
    except OverflowError:
        return MAX_ACTIVATION


def _logistic(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def _softplus(x: float) -> float:
    if x > 0:
        return x + math.log1p(math.exp(-x))
    return math.log1p(math.exp(x))


def _softplus_inverse(a: float) -> float:
    if a <= 0:
        return _LOG_MIN
    if a > 30:
        return a + math.log(-math.expm1(-a))
    return math.log(math.expm1(a))


def _clamp_unit(a: float) -> float:
    return max(-_BELOW_ONE, min(_BELOW_ONE, a))


# Enough halvings to walk any double interval down to adjacent floats.
_BISECT_STEPS = 2200


def _bisect(f, target: float, lo: float, hi: float) -> float:
    """``x`` in ``[lo, hi]`` with ``f(x)`` closest to ``target``.

    ``f(x) - target`` must change sign over the interval.
    """
    low_value = f(lo)
    if low_value == target:
        return lo
    below = low_value < target
    for _ in range(_BISECT_STEPS):
        mid = lo + 0.5 * (hi - lo)
        if mid == lo or mid == hi:
            break
        if (f(mid) < target) == below:
            lo = mid
        else:
            hi = mid
    return min((lo, hi), key=lambda x: abs(f(x) - target))


def _swish(x: float) -> float:
    return x * _logistic(x)


def _swish_derivative(x: float) -> float:
    s = _logistic(x)
    return s + x * s * (1.0 - s)


def _mish(x: float) -> float:
    return x * math.tanh(_softplus(x))


def _mish_derivative(x: float) -> float:
    t = math.tanh(_softplus(x))
    return t + x * (1.0 - t * t) * _logistic(x)


_GELU_C = math.sqrt(2.0 / math.pi)


def _gelu(x: float) -> float:
    return 0.5 * x * (1.0 + math.tanh(_GELU_C * (x + 0.044715 * x * x * x)))


def _gelu_derivative(x: float) -> float:
    if abs(x) > 10.0:
        return 1.0 if x > 0 else 0.0
    t = math.tanh(_GELU_C * (x + 0.044715 * x * x * x))
    return 0.5 * (1.0 + t) + 0.5 * x * (1.0 - t * t) * _GELU_C * (1.0 + 3 * 0.044715 * x * x)


# ---------------------------------------------------------------------------
# Linear family
# ---------------------------------------------------------------------------

class Identity(ElementaryActivation):
    NAME = "IDENTITY"

    def squash(self, x):
        return x

    def inverse(self, activation, hint=None):
        return activation

    def derivative(self, x):
        return 1.0


class Complement(ElementaryActivation):
    """``1 - x``."""

    NAME = "COMPLEMENT"

    def squash(self, x):
        return 1.0 - x

    def inverse(self, activation, hint=None):
        return 1.0 - activation

    def derivative(self, x):
        return -1.0


class Clipped(ElementaryActivation):
    """Identity clamped to [-1, 1]."""

    NAME = "CLIPPED"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        return max(-1.0, min(1.0, x))

    def inverse(self, activation, hint=None):
        if hint is not None and abs(activation) >= 1.0:
            if math.copysign(1.0, hint) == math.copysign(1.0, activation) and abs(hint) > 1.0:
                return hint
        return activation

    def derivative(self, x):
        return 1.0 if -1.0 < x < 1.0 else 0.0


# ---------------------------------------------------------------------------
# Rectifiers
# ---------------------------------------------------------------------------

class ReLU(ElementaryActivation):
    NAME = "RELU"
    range = ActivationRange(0.0, math.inf)

    def squash(self, x):
        return x if x > 0 else 0.0

    def inverse(self, activation, hint=None):
        if activation > 0:
            return activation
        # Every non-positive value maps to zero; keep the traced one.
        if hint is not None and hint <= 0:
            return hint
        return 0.0

    def derivative(self, x):
        return 1.0 if x > 0 else 0.0


class LeakyReLU(ElementaryActivation):
    NAME = "LeakyReLU"
    ALPHA = 0.01

    def squash(self, x):
        return x if x > 0 else self.ALPHA * x

    def inverse(self, activation, hint=None):
        return activation if activation > 0 else activation / self.ALPHA

    def derivative(self, x):
        return 1.0 if x > 0 else self.ALPHA


class ELU(ElementaryActivation):
    NAME = "ELU"
    range = ActivationRange(-1.0, math.inf)

    def squash(self, x):
        return x if x > 0 else math.expm1(x)

    def inverse(self, activation, hint=None):
        if activation > 0:
            return activation
        if activation <= -1.0:
            return _LOG_MIN
        return math.log1p(activation)

    def derivative(self, x):
        return 1.0 if x > 0 else math.exp(x)


class Softplus(ElementaryActivation):
    NAME = "Softplus"
    range = ActivationRange(0.0, math.inf)

    def squash(self, x):
        return _softplus(x)

    def inverse(self, activation, hint=None):
        return _softplus_inverse(activation)

    def derivative(self, x):
        return _logistic(x)


class Step(ElementaryActivation):
    """Heaviside step; the inverse maps each level back to a representative."""

    NAME = "STEP"
    range = ActivationRange(0.0, 1.0)

    def squash(self, x):
        return 1.0 if x > 0 else 0.0

    def inverse(self, activation, hint=None):
        if activation > 0.5:
            return hint if hint is not None and hint > 0 else 1.0
        return hint if hint is not None and hint <= 0 else 0.0

    def derivative(self, x):
        return 0.0


# ---------------------------------------------------------------------------
# Sigmoids
# ---------------------------------------------------------------------------

class Logistic(ElementaryActivation):
    NAME = "LOGISTIC"
    range = ActivationRange(0.0, 1.0)

    def squash(self, x):
        return _logistic(x)

    def inverse(self, activation, hint=None):
        a = max(sys.float_info.min, min(_BELOW_ONE, activation))
        return math.log(a) - math.log1p(-a)

    def derivative(self, x):
        fx = _logistic(x)
        return fx * (1.0 - fx)


class LogSigmoid(ElementaryActivation):
    NAME = "LogSigmoid"
    range = ActivationRange(-math.inf, 0.0)

    def squash(self, x):
        return -_softplus(-x)

    def inverse(self, activation, hint=None):
        return -_softplus_inverse(-activation)

    def derivative(self, x):
        return _logistic(-x)


class Tanh(ElementaryActivation):
    NAME = "TANH"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        return math.tanh(x)

    def inverse(self, activation, hint=None):
        return math.atanh(_clamp_unit(activation))

    def derivative(self, x):
        return 1.0 - math.tanh(x) ** 2


class BipolarSigmoid(ElementaryActivation):
    """``2 / (1 + e^-x) - 1``, computed as ``tanh(x / 2)``."""

    NAME = "BIPOLAR_SIGMOID"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        return math.tanh(x / 2.0)

    def inverse(self, activation, hint=None):
        return 2.0 * math.atanh(_clamp_unit(activation))

    def derivative(self, x):
        return 0.5 * (1.0 - math.tanh(x / 2.0) ** 2)


class Softsign(ElementaryActivation):
    NAME = "SOFTSIGN"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        if math.isinf(x):
            return math.copysign(1.0, x)
        return x / (1.0 + abs(x))

    def inverse(self, activation, hint=None):
        a = _clamp_unit(activation)
        return a / (1.0 - abs(a))

    def derivative(self, x):
        d = 1.0 + abs(x)
        return 1.0 / (d * d)


# ---------------------------------------------------------------------------
# Exponential family
# ---------------------------------------------------------------------------

class Exponential(ElementaryActivation):
    NAME = "Exponential"
    range = ActivationRange(0.0, math.inf)

    def squash(self, x):
        return _exp(x)

    def inverse(self, activation, hint=None):
        if activation <= 0:
            return _LOG_MIN
        return math.log(activation)

    def derivative(self, x):
        return _exp(x)


class Gaussian(ElementaryActivation):
    """``e^(-x²)``; the hint picks the sign of the inverse."""

    NAME = "GAUSSIAN"
    range = ActivationRange(0.0, 1.0)

    def squash(self, x):
        return math.exp(-(x * x))

    def inverse(self, activation, hint=None):
        if activation >= 1.0:
            return 0.0
        if activation <= 0:
            magnitude = math.sqrt(-_LOG_MIN)
        else:
            magnitude = math.sqrt(-math.log(activation))
        if hint is not None and hint < 0:
            return -magnitude
        return magnitude

    def derivative(self, x):
        return -2.0 * x * math.exp(-(x * x))


class Cosine(ElementaryActivation):
    NAME = "Cosine"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        if not math.isfinite(x):
            return math.nan
        return math.cos(x)

    def inverse(self, activation, hint=None):
        angle = math.acos(max(-1.0, min(1.0, activation)))
        if hint is not None and hint < 0:
            return -angle
        return angle

    def derivative(self, x):
        if not math.isfinite(x):
            return 0.0
        return -math.sin(x)


class Sinusoid(ElementaryActivation):
    NAME = "SINUSOID"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        if not math.isfinite(x):
            return math.nan
        return math.sin(x)

    def inverse(self, activation, hint=None):
        return math.asin(max(-1.0, min(1.0, activation)))

    def derivative(self, x):
        if not math.isfinite(x):
            return 0.0
        return math.cos(x)


# ---------------------------------------------------------------------------
# Scaled and bounded linear units
# ---------------------------------------------------------------------------

_SELU_ALPHA = 1.6732632423543772848170429916717
_SELU_SCALE = 1.0507009873554804934193349852946


class SELU(ElementaryActivation):
    """Scaled ELU (Klambauer et al., 2017)."""

    NAME = "SELU"
    range = ActivationRange(-_SELU_SCALE * _SELU_ALPHA, math.inf)

    def squash(self, x):
        if x > 0:
            return _SELU_SCALE * x
        return _SELU_SCALE * _SELU_ALPHA * math.expm1(x)

    def inverse(self, activation, hint=None):
        if activation > 0:
            return activation / _SELU_SCALE
        ratio = activation / (_SELU_SCALE * _SELU_ALPHA)
        if ratio <= -1.0:
            return _LOG_MIN
        return math.log1p(ratio)

    def derivative(self, x):
        if x > 0:
            return _SELU_SCALE
        return _SELU_SCALE * _SELU_ALPHA * math.exp(x)


class ReLU6(ElementaryActivation):
    NAME = "ReLU6"
    range = ActivationRange(0.0, 6.0)

    def squash(self, x):
        return min(max(0.0, x), 6.0)

    def inverse(self, activation, hint=None):
        if 0.0 < activation < 6.0:
            return activation
        if activation >= 6.0:
            return hint if hint is not None and hint > 6.0 else 6.0
        return hint if hint is not None and hint <= 0 else 0.0

    def derivative(self, x):
        return 1.0 if 0.0 < x < 6.0 else 0.0


class HardTanh(Clipped):
    NAME = "HARD_TANH"


class Inverse(Complement):
    NAME = "INVERSE"


class Absolute(ElementaryActivation):
    """``|x|``; the hint picks the sign of the inverse."""

    NAME = "ABSOLUTE"
    range = ActivationRange(0.0, math.inf)

    def squash(self, x):
        return abs(x)

    def inverse(self, activation, hint=None):
        magnitude = max(activation, 0.0)
        if hint is not None and hint < 0:
            return -magnitude
        return magnitude

    def derivative(self, x):
        if x == 0:
            return 0.0
        return math.copysign(1.0, x)


class BentIdentity(ElementaryActivation):
    """``(sqrt(x² + 1) - 1) / 2 + x``, strictly increasing."""

    NAME = "BENT_IDENTITY"

    def squash(self, x):
        return (math.hypot(x, 1.0) - 1.0) / 2.0 + x

    def inverse(self, activation, hint=None):
        # Smaller root of 3x² - (8a + 4)x + 4a² + 4a = 0.
        shifted = activation + 0.5
        root = math.hypot(shifted, math.sqrt(0.75))
        return 2.0 / 3.0 * (shifted + (shifted - root))

    def derivative(self, x):
        return x / (2.0 * math.hypot(x, 1.0)) + 1.0


class Bipolar(ElementaryActivation):
    """Sign function onto {-1, 1}; the inverse keeps a traced value on the same side."""

    NAME = "BIPOLAR"
    range = ActivationRange(-1.0, 1.0)

    def squash(self, x):
        return 1.0 if x > 0 else -1.0

    def inverse(self, activation, hint=None):
        if activation > 0:
            return hint if hint is not None and hint > 0 else 1.0
        return hint if hint is not None and hint <= 0 else -1.0

    def derivative(self, x):
        return 0.0


class StdInverse(ElementaryActivation):
    """``1 / x`` with ``0`` mapped to ``0``."""

    NAME = "StdInverse"

    def squash(self, x):
        return 1.0 / x if x != 0 else 0.0

    def inverse(self, activation, hint=None):
        if activation == 0:
            return 0.0
        if abs(activation) < 1e-300:
            return math.copysign(MAX_ACTIVATION, activation)
        return 1.0 / activation

    def derivative(self, x):
        if x == 0:
            return 0.0
        square = x * x
        if square == 0:
            return -MAX_ACTIVATION
        return -1.0 / square


# ---------------------------------------------------------------------------
# Self-gated units
# ---------------------------------------------------------------------------

class _DippedActivation(ElementaryActivation):
    """Squash that falls to a single minimum at ``X_MIN`` and then rises through 0.

    Every value above the minimum has a preimage on the rising branch.
    Negative values also have one left of ``X_MIN``, used when the hint lies
    there.  Both branches are inverted by bisection.
    """

    X_MIN = 0.0
    # Far enough left that the squash has underflowed to zero.
    FAR_LEFT = -750.0

    def inverse(self, activation, hint=None):
        if activation >= 0:
            return _bisect(self.squash, activation, 0.0, activation + 1.0)
        if activation <= self.squash(self.X_MIN):
            return self.X_MIN
        if hint is not None and hint < self.X_MIN:
            return _bisect(self.squash, activation, self.FAR_LEFT, self.X_MIN)
        return _bisect(self.squash, activation, self.X_MIN, 0.0)


_SWISH_X_MIN = _bisect(_swish_derivative, 0.0, -3.0, 0.0)
_MISH_X_MIN = _bisect(_mish_derivative, 0.0, -3.0, 0.0)
_GELU_X_MIN = _bisect(_gelu_derivative, 0.0, -3.0, 0.0)
# Range bounds sit a hair below the computed minima.
_DIP_MARGIN = 1e-12


class Swish(_DippedActivation):
    """``x · logistic(x)``, also known as SiLU."""

    NAME = "Swish"
    X_MIN = _SWISH_X_MIN
    range = ActivationRange(_swish(_SWISH_X_MIN) - _DIP_MARGIN, math.inf)

    def squash(self, x):
        return _swish(x)

    def derivative(self, x):
        return _swish_derivative(x)


class Mish(_DippedActivation):
    """``x · tanh(softplus(x))``."""

    NAME = "Mish"
    X_MIN = _MISH_X_MIN
    range = ActivationRange(_mish(_MISH_X_MIN) - _DIP_MARGIN, math.inf)

    def squash(self, x):
        return _mish(x)

    def derivative(self, x):
        return _mish_derivative(x)


class GELU(_DippedActivation):
    """Gaussian error linear unit, tanh approximation."""

    NAME = "GELU"
    X_MIN = _GELU_X_MIN
    range = ActivationRange(_gelu(_GELU_X_MIN) - _DIP_MARGIN, math.inf)

    def squash(self, x):
        return _gelu(x)

    def derivative(self, x):
        return _gelu_derivative(x)


ELEMENTARY_STRATEGIES = (
    Identity(),
    Logistic(),
    Tanh(),
    ReLU(),
    LeakyReLU(),
    ELU(),
    Softsign(),
    Softplus(),
    BipolarSigmoid(),
    Exponential(),
    Complement(),
    Clipped(),
    Gaussian(),
    Cosine(),
    LogSigmoid(),
    Step(),
    SELU(),
    Swish(),
    Mish(),
    GELU(),
    HardTanh(),
    ReLU6(),
    Absolute(),
    BentIdentity(),
    Bipolar(),
    Sinusoid(),
    Inverse(),
    StdInverse(),
)
