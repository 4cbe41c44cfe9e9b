"""
線性代數工具
Linear Algebra Utilities

仿射擬合與迴歸共用的矩陣求逆（Gauss-Jordan + 部分主元）
"""

import numpy as np
from typing import Optional


# 主元相對於矩陣最大元素低於此比例視為奇異
PIVOT_EPSILON = 1e-12


def invert_matrix(matrix: np.ndarray, eps: float = PIVOT_EPSILON) -> Optional[np.ndarray]:
    """
    使用 Gauss-Jordan 消去法（部分主元）求方陣的逆矩陣

    Args:
        matrix: 方陣 (n, n)
        eps: 相對主元閾值（乘上矩陣最大絕對值）

    Returns:
        inverse: 逆矩陣 (n, n)；矩陣奇異或含非有限值時回傳 None
    """
    a = np.array(matrix, dtype=np.float64)
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        return None
    if not np.all(np.isfinite(a)):
        return None

    n = a.shape[0]
    inv = np.eye(n, dtype=np.float64)
    threshold = eps * max(float(np.max(np.abs(a))), 1e-300) if n > 0 else eps

    for i in range(n):
        # 選取第 i 列以下絕對值最大的主元
        pivot_row = i + int(np.argmax(np.abs(a[i:, i])))
        if abs(a[pivot_row, i]) <= threshold:
            return None

        if pivot_row != i:
            a[[i, pivot_row]] = a[[pivot_row, i]]
            inv[[i, pivot_row]] = inv[[pivot_row, i]]

        # 正規化主元列
        pivot = a[i, i]
        a[i] /= pivot
        inv[i] /= pivot

        # 消去其他列
        for k in range(n):
            if k == i:
                continue
            factor = a[k, i]
            if factor != 0.0:
                a[k] -= factor * a[i]
                inv[k] -= factor * inv[i]

    if not np.all(np.isfinite(inv)):
        return None

    return inv


def solve_normal_equations(design: np.ndarray,
                           targets: np.ndarray,
                           ridge: float = 0.0) -> Optional[np.ndarray]:
    """
    以正規方程式求最小平方解 (XᵗX + λI)⁻¹XᵗY

    Args:
        design: 設計矩陣 X (m, n)
        targets: 目標 Y (m,) 或 (m, k)
        ridge: 對角正則化係數 λ（0 表示普通最小平方）

    Returns:
        解 (n,) 或 (n, k)；正規矩陣奇異時回傳 None
    """
    x = np.asarray(design, dtype=np.float64)
    y = np.asarray(targets, dtype=np.float64)

    normal = x.T @ x
    if ridge > 0.0:
        normal = normal + ridge * np.eye(normal.shape[0])

    normal_inv = invert_matrix(normal)
    if normal_inv is None:
        return None

    solution = normal_inv @ (x.T @ y)
    if not np.all(np.isfinite(solution)):
        return None
    return solution


def is_finite_vector(values) -> bool:
    """檢查數值序列是否全部為有限值"""
    try:
        arr = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError):
        return False
    return arr.size > 0 and bool(np.all(np.isfinite(arr)))
