"""
Numerical helpers shared by the charge solver and the field evaluators.

Contains the physical/numerical constants of the solver, dense matrix
inversion for real and complex capacitance matrices and the modified
Bessel functions K0/K1 used by the finite-gap point-charge sums.
"""

import math
import numpy as np
from scipy import linalg
from numba import jit


# Numerical constants
SMALL = 1.0e-7               # length below which two coordinates coincide [cm]
CLOG2 = math.log(2.0)        # log(2), asymptotic term of log|2 sinh|
HALF_PI = 0.5 * math.pi
TWO_PI = 2.0 * math.pi

# Physical constants
EPSILON_0 = 8.8541878128e-14                     # F/cm
FOUR_PI_EPSILON_0 = 4.0 * math.pi * EPSILON_0 * 1.0e15   # fC / (V cm)

# Argument beyond which sinh/cosh terms are replaced by their exponential asymptote
ASYMPTOTIC_LIMIT = 20.0
# Same for the doubly periodic (C type) series
ASYMPTOTIC_LIMIT_C = 15.0


def invert_matrix(a):
    """
    Invert a dense real or complex square matrix.

    Args:
        a: square numpy array (float64 or complex128)

    Returns:
        (inverse, True) on success, (None, False) if the matrix is singular
        or the inverse contains non-finite entries.
    """
    a = np.asarray(a)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(f"invert_matrix expects a square matrix, got shape {a.shape}")
    if a.shape[0] == 0:
        return np.zeros_like(a), True
    try:
        inv = linalg.inv(a, check_finite=True)
    except (linalg.LinAlgError, ValueError) as exc:
        print(f"[numerics] Matrix inversion failed: {exc}")
        return None, False
    if not np.all(np.isfinite(inv)):
        print("[numerics] Matrix inversion produced non-finite entries.")
        return None, False
    return inv, True


# Modified Bessel functions, Abramowitz & Stegun 9.8.1 - 9.8.8.
# Small-argument forms are valid for 0 < x <= 2, large-argument forms for x >= 2.

@jit(nopython=True, fastmath=True, cache=True)
def _bessel_i0(x):
    t = (x / 3.75) ** 2
    return (1.0 + t * (3.5156229 + t * (3.0899424 + t * (1.2067492 +
            t * (0.2659732 + t * (0.0360768 + t * 0.0045813))))))


@jit(nopython=True, fastmath=True, cache=True)
def _bessel_i1(x):
    t = (x / 3.75) ** 2
    return x * (0.5 + t * (0.87890594 + t * (0.51498869 + t * (0.15084934 +
                t * (0.02658733 + t * (0.00301532 + t * 0.00032411))))))


@jit(nopython=True, fastmath=True, cache=True)
def bessel_k0_small(x):
    y = 0.25 * x * x
    return (-math.log(0.5 * x) * _bessel_i0(x) +
            (-0.57721566 + y * (0.42278420 + y * (0.23069756 + y * (0.03488590 +
             y * (0.00262698 + y * (0.00010750 + y * 0.00000740)))))))


@jit(nopython=True, fastmath=True, cache=True)
def bessel_k1_small(x):
    y = 0.25 * x * x
    return (x * math.log(0.5 * x) * _bessel_i1(x) +
            1.0 + y * (0.15443144 + y * (-0.67278579 + y * (-0.18156897 +
            y * (-0.01919402 + y * (-0.00110404 + y * (-0.00004686))))))) / x


@jit(nopython=True, fastmath=True, cache=True)
def bessel_k0_large(x):
    y = 2.0 / x
    return (math.exp(-x) / math.sqrt(x)) * (
        1.25331414 + y * (-0.07832358 + y * (0.02189568 + y * (-0.01062446 +
        y * (0.00587872 + y * (-0.00251540 + y * 0.00053208))))))


@jit(nopython=True, fastmath=True, cache=True)
def bessel_k1_large(x):
    y = 2.0 / x
    return (math.exp(-x) / math.sqrt(x)) * (
        1.25331414 + y * (0.23498619 + y * (-0.03655620 + y * (0.01504268 +
        y * (-0.00780353 + y * (0.00325614 + y * (-0.00068245)))))))


@jit(nopython=True, fastmath=True, cache=True)
def bessel_k0(x):
    #K0 for x > 0, switching regime at x = 2
    if x < 2.0:
        return bessel_k0_small(x)
    return bessel_k0_large(x)


@jit(nopython=True, fastmath=True, cache=True)
def bessel_k1(x):
    #K1 for x > 0, switching regime at x = 2
    if x < 2.0:
        return bessel_k1_small(x)
    return bessel_k1_large(x)


def nint(x):
    #Nearest integer, halves rounded away from zero
    if x >= 0.0:
        return int(math.floor(x + 0.5))
    return -int(math.floor(-x + 0.5))
