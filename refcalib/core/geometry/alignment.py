"""Closed-form similarity alignment of matched point sets (Umeyama)."""

from __future__ import annotations

import numpy as np
import numpy.typing as npt

from refcalib.errors import InputError


def similarity_transform(
    sources: npt.ArrayLike, targets: npt.ArrayLike, *, with_scale: bool = True
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], float]:
    """Least-squares ``R, t, s`` with ``targets ~= s * sources @ R.T + t``.

    The rotation is a proper rotation (reflections are excluded). With
    ``with_scale=False`` the scale is fixed at 1 and the result is the
    rigid Kabsch fit.

    Raises:
        InputError: mismatched shapes or a source set without spread
    """
    P = np.asarray(sources, dtype=np.float64).reshape(-1, 3)
    Q = np.asarray(targets, dtype=np.float64).reshape(-1, 3)
    if P.shape != Q.shape or P.shape[0] == 0:
        raise InputError(f"Need matching non-empty point sets, got {P.shape} and {Q.shape}")

    mu_p = P.mean(axis=0)
    mu_q = Q.mean(axis=0)
    X = P - mu_p
    Y = Q - mu_q

    # Cross-covariance
    sigma = Y.T @ X / P.shape[0]
    U, D, Vt = np.linalg.svd(sigma)

    S = np.eye(3)
    if np.linalg.det(U) * np.linalg.det(Vt) < 0.0:
        S[2, 2] = -1.0
    R = U @ S @ Vt

    scale = 1.0
    if with_scale:
        var_p = float(np.sum(X * X)) / P.shape[0]
        if var_p <= 0.0:
            raise InputError("Source points have no spread")
        scale = float(np.sum(D * np.diag(S))) / var_p

    t = mu_q - scale * R @ mu_p
    return R, t, scale


__all__ = ["similarity_transform"]
