"""
Closed-form inverse of symmetric positive definite 6x6 matrices.

The local surface fit solves ``(X^T X + r I) beta = X^T y`` for the six
coefficients of a quadratic. The normal matrix is split into 3x3 blocks

    M = | A   B |
        | B^T D |

and inverted through the Schur complement ``S = D - B^T A^-1 B``:

    M^-1 = | A^-1 + A^-1 B S^-1 B^T A^-1    -A^-1 B S^-1 |
           | -S^-1 B^T A^-1                  S^-1        |

Two renditions of the same arithmetic live here: ``inverse_spd6`` works on
plain Python floats one matrix at a time, ``inverse_spd6_batched`` applies it
to a stack of matrices with numpy broadcasting. Results agree to rounding.
"""

from __future__ import annotations

from typing import List, Sequence

import numpy as np

Matrix = List[List[float]]


def _inv_sym3(m: Sequence[Sequence[float]]) -> Matrix:
    """Adjugate inverse of a symmetric 3x3 matrix (upper triangle is read)."""
    c0 = m[1][1] * m[2][2] - m[1][2] * m[1][2]
    c1 = m[1][2] * m[0][2] - m[0][1] * m[2][2]
    c2 = m[0][1] * m[1][2] - m[1][1] * m[0][2]

    det = m[0][0] * c0 + m[0][1] * c1 + m[0][2] * c2
    inv_det = 1.0 / det

    n01 = c1 * inv_det
    n02 = c2 * inv_det
    n12 = (m[0][1] * m[0][2] - m[0][0] * m[1][2]) * inv_det
    return [
        [c0 * inv_det, n01, n02],
        [n01, (m[0][0] * m[2][2] - m[0][2] * m[0][2]) * inv_det, n12],
        [n02, n12, (m[0][0] * m[1][1] - m[0][1] * m[0][1]) * inv_det],
    ]


def _mul3(a: Sequence[Sequence[float]], b: Sequence[Sequence[float]]) -> Matrix:
    return [[sum(a[i][k] * b[k][j] for k in range(3)) for j in range(3)] for i in range(3)]


def inverse_spd6(m: Sequence[Sequence[float]]) -> Matrix:
    """Invert a symmetric positive definite 6x6 matrix given as nested rows.

    Raises ``ZeroDivisionError`` when a diagonal block is exactly singular.
    """
    a = [[float(m[i][j]) for j in range(3)] for i in range(3)]
    b = [[float(m[i][j]) for j in range(3, 6)] for i in range(3)]
    bt = [[b[j][i] for j in range(3)] for i in range(3)]
    d = [[float(m[i][j]) for j in range(3, 6)] for i in range(3, 6)]

    a_inv = _inv_sym3(a)
    a_inv_b = _mul3(a_inv, b)
    bt_a_inv_b = _mul3(bt, a_inv_b)
    schur = [[d[i][j] - bt_a_inv_b[i][j] for j in range(3)] for i in range(3)]
    s_inv = _inv_sym3(schur)

    # lower-left block, -S^-1 B^T A^-1
    bt_a_inv = _mul3(bt, a_inv)
    lower_left = [[-v for v in row] for row in _mul3(s_inv, bt_a_inv)]
    # upper-left block, A^-1 - (A^-1 B) * lower_left
    correction = _mul3(a_inv_b, lower_left)
    upper_left = [[a_inv[i][j] - correction[i][j] for j in range(3)] for i in range(3)]

    out = [[0.0] * 6 for _ in range(6)]
    for i in range(3):
        for j in range(3):
            out[i][j] = upper_left[i][j]
            out[i + 3][j] = lower_left[i][j]
            out[j][i + 3] = lower_left[i][j]
            out[i + 3][j + 3] = s_inv[i][j]
    return out


def _inv_sym3_batched(m: np.ndarray) -> np.ndarray:
    c0 = m[..., 1, 1] * m[..., 2, 2] - m[..., 1, 2] * m[..., 1, 2]
    c1 = m[..., 1, 2] * m[..., 0, 2] - m[..., 0, 1] * m[..., 2, 2]
    c2 = m[..., 0, 1] * m[..., 1, 2] - m[..., 1, 1] * m[..., 0, 2]

    det = m[..., 0, 0] * c0 + m[..., 0, 1] * c1 + m[..., 0, 2] * c2
    inv_det = 1.0 / det

    out = np.empty_like(m)
    out[..., 0, 0] = c0 * inv_det
    out[..., 0, 1] = out[..., 1, 0] = c1 * inv_det
    out[..., 0, 2] = out[..., 2, 0] = c2 * inv_det
    out[..., 1, 2] = out[..., 2, 1] = (m[..., 0, 1] * m[..., 0, 2] - m[..., 0, 0] * m[..., 1, 2]) * inv_det
    out[..., 1, 1] = (m[..., 0, 0] * m[..., 2, 2] - m[..., 0, 2] * m[..., 0, 2]) * inv_det
    out[..., 2, 2] = (m[..., 0, 0] * m[..., 1, 1] - m[..., 0, 1] * m[..., 0, 1]) * inv_det
    return out


def inverse_spd6_batched(m: np.ndarray) -> np.ndarray:
    """Invert a stack of symmetric positive definite matrices of shape ``(..., 6, 6)``."""
    m = np.asarray(m, dtype=np.float64)
    if m.shape[-2:] != (6, 6):
        raise ValueError(f"Expected (..., 6, 6) matrices, got shape {m.shape}")

    a = m[..., :3, :3]
    b = m[..., :3, 3:]
    d = m[..., 3:, 3:]
    bt = np.swapaxes(b, -1, -2)

    with np.errstate(divide="ignore", invalid="ignore"):
        a_inv = _inv_sym3_batched(a)
        a_inv_b = a_inv @ b
        s_inv = _inv_sym3_batched(d - bt @ a_inv_b)

    lower_left = -(s_inv @ (bt @ a_inv))
    upper_left = a_inv - a_inv_b @ lower_left

    out = np.empty_like(m)
    out[..., :3, :3] = upper_left
    out[..., 3:, :3] = lower_left
    out[..., :3, 3:] = np.swapaxes(lower_left, -1, -2)
    out[..., 3:, 3:] = s_inv
    return out


def solve_spd6(m: Sequence[Sequence[float]], rhs: Sequence[float]) -> List[float]:
    """Return ``M^-1 rhs`` using the scalar closed-form inverse."""
    inv = inverse_spd6(m)
    return [sum(inv[i][j] * float(rhs[j]) for j in range(6)) for i in range(6)]
