from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np


# 无有效非零相似度时的偏好值
MIN_SIMILARITY = -1000.0


@dataclass(frozen=True)
class ClusterResult:
    """
    labels[i]: 点 i 所属簇在 exemplars 中的下标（无簇时为 -1）
    exemplars: 作为簇中心的点下标
    """

    labels: np.ndarray
    exemplars: List[int]
    iterations: int
    converged: bool

    def members(self, cluster: int) -> List[int]:
        return [int(i) for i in np.flatnonzero(self.labels == cluster)]


def similarity_matrix(points: np.ndarray) -> np.ndarray:
    """
    相似度 s(i,j) = -||p_i - p_j||^2，对角线为偏好值。
    偏好值取全部非对角元素（含对称重复项，去掉恰为 0 的项）的中位数。
    """
    points = np.asarray(points, dtype=float)
    diff = points[:, None, :] - points[None, :, :]
    s = -np.einsum("ijk,ijk->ij", diff, diff)
    n = s.shape[0]
    off = s[~np.eye(n, dtype=bool)]
    off = off[off != 0.0]
    preference = float(np.median(off)) if off.size else MIN_SIMILARITY
    np.fill_diagonal(s, preference)
    return s


def affinity_propagation(
    points: np.ndarray,
    damping: float = 0.6,
    max_iterations: int = 100,
    epsilon: float = 1e-6,
) -> ClusterResult:
    """
    Affinity propagation clustering over 2-D points.

    Each iteration computes undamped responsibilities from the current
    availabilities, undamped availabilities from those responsibilities,
    then blends both with the previous values:
        value = damping * previous + (1 - damping) * new
    Stops once the largest change in either matrix is below ``epsilon`` or
    after ``max_iterations``.

    Args:
        points: array of shape (n, 2).
        damping: weight kept from the previous iteration.
        max_iterations: hard iteration cap.
        epsilon: convergence threshold on the max absolute change.

    Returns:
        ClusterResult with exemplar indices (``r[i,i] + a[i,i] > 0``) and,
        for every other point, the exemplar maximising ``s[i, exemplar]``.
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    n = points.shape[0]
    if n == 0:
        return ClusterResult(labels=np.zeros(0, dtype=int), exemplars=[], iterations=0, converged=True)
    if n == 1:
        return ClusterResult(labels=np.zeros(1, dtype=int), exemplars=[0], iterations=0, converged=True)

    s = similarity_matrix(points)
    rows = np.arange(n)
    r = np.zeros((n, n))
    a = np.zeros((n, n))

    iterations = 0
    converged = False
    while iterations < max_iterations:
        # responsibility: r(i,k) = s(i,k) - max_{k'!=k} (a(i,k') + s(i,k'))
        as_ = a + s
        best = np.argmax(as_, axis=1)
        first = as_[rows, best]
        as_[rows, best] = -np.inf
        second = np.max(as_, axis=1)
        r_new = s - first[:, None]
        r_new[rows, best] = s[rows, best] - second

        # availability
        rp = np.maximum(r_new, 0.0)
        rp[rows, rows] = r_new[rows, rows]
        a_new = rp.sum(axis=0)[None, :] - rp
        self_avail = a_new[rows, rows].copy()
        a_new = np.minimum(a_new, 0.0)
        a_new[rows, rows] = self_avail

        r_next = damping * r + (1 - damping) * r_new
        a_next = damping * a + (1 - damping) * a_new
        delta = max(np.max(np.abs(r_next - r)), np.max(np.abs(a_next - a)))
        r, a = r_next, a_next
        iterations += 1
        if delta < epsilon:
            converged = True
            break

    exemplars = [int(i) for i in np.flatnonzero(np.diag(r) + np.diag(a) > 0)]
    if not exemplars:
        return ClusterResult(
            labels=np.full(n, -1, dtype=int), exemplars=[], iterations=iterations, converged=converged
        )
    # 平局时取靠前的簇中心；簇中心的对角线是偏好值而非距离，固定归属自身
    labels = np.argmax(s[:, exemplars], axis=1).astype(int)
    labels[exemplars] = np.arange(len(exemplars))
    return ClusterResult(labels=labels, exemplars=exemplars, iterations=iterations, converged=converged)
