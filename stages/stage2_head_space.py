"""
第二階段：頭部座標空間映射
Stage 2: Head-Space Mapping

以最小平方法估計兩組 3D 對應點之間的仿射變換（3x4）：
- 先由水平/垂直參考點對估計兩空間的相對縮放
- 正規方程式 (XᵗX)⁻¹Xᵗy 求解 12 個參數
- 正向（偵測空間 → 頭部空間）與反向映射

每一幀重新擬合，頭部姿態連續變化，不假設變換跨幀穩定

作者: [你的名字]
日期: 2026-10
"""

import numpy as np
from typing import Dict, Optional, Sequence

from utils import face_model
from utils import landmarks as lm
from utils.linalg import invert_matrix


MIN_CORRESPONDENCES = 4
# 來源點在最窄方向的分佈 / 最寬方向的分佈，低於此值視為共面（退化）
MIN_SPREAD_RATIO = 1e-4


def _as_points(points) -> Optional[np.ndarray]:
    try:
        arr = np.asarray(points, dtype=np.float64)
    except (TypeError, ValueError):
        return None
    if arr.ndim != 2 or arr.shape[1] != 3:
        return None
    return arr


def compute_scale_factor(source_hor: np.ndarray,
                         source_ver: np.ndarray,
                         target_hor: np.ndarray,
                         target_ver: np.ndarray) -> Optional[float]:
    """
    由兩組參考點對計算縮放係數

    scale = (寬度比 + 高度比) / 2，比值為來源空間距離 / 目標空間距離；
    目標點乘上 scale 後與來源點同尺度

    Returns:
        scale；任一距離為 0 或非有限值時回傳 None
    """
    source_width = np.linalg.norm(source_hor[0] - source_hor[1])
    source_height = np.linalg.norm(source_ver[0] - source_ver[1])
    target_width = np.linalg.norm(target_hor[0] - target_hor[1])
    target_height = np.linalg.norm(target_ver[0] - target_ver[1])

    if target_width <= 0.0 or target_height <= 0.0:
        return None

    scale = (source_width / target_width + source_height / target_height) / 2.0
    if not np.isfinite(scale) or scale <= 0.0:
        return None
    return float(scale)


def is_well_spread(points: np.ndarray, min_ratio: float = MIN_SPREAD_RATIO) -> bool:
    """
    檢查點集是否在三個方向上都有足夠分佈

    以置中後點集的奇異值比 σ_min / σ_max 判斷；
    共線、共面（含微小雜訊）的點集回傳 False
    """
    if not np.all(np.isfinite(points)):
        return False
    centered = points - points.mean(axis=0)
    singular_values = np.linalg.svd(centered, compute_uv=False)
    if len(singular_values) < 3 or singular_values[0] <= 0.0:
        return False
    return bool(singular_values[-1] / singular_values[0] >= min_ratio)


def estimate_affine_3d(source: np.ndarray, target: np.ndarray) -> Optional[np.ndarray]:
    """
    最小平方估計 3D 仿射變換 target ≈ A·source + b

    Args:
        source: 來源點 (N, 3)，N >= 4
        target: 目標點 (N, 3)

    Returns:
        matrix: 3x4 [A | b]；點數不足、來源點退化或正規矩陣奇異時回傳 None
    """
    if len(source) != len(target) or len(source) < MIN_CORRESPONDENCES:
        return None
    if not is_well_spread(source):
        return None

    n = len(source)
    design = np.zeros((3 * n, 12))
    homogeneous = np.hstack([source, np.ones((n, 1))])
    # 每個對應點產生 X', Y', Z' 三列
    design[0::3, 0:4] = homogeneous
    design[1::3, 4:8] = homogeneous
    design[2::3, 8:12] = homogeneous
    rhs = target.reshape(-1)

    normal_inv = invert_matrix(design.T @ design)
    if normal_inv is None:
        return None

    params = normal_inv @ (design.T @ rhs)
    if not np.all(np.isfinite(params)):
        return None
    return params.reshape(3, 4)


class AffineModel:
    """
    兩個 3D 座標空間之間的仿射模型（擬合後不可變）

    valid 為 False 時所有映射都回傳 None
    """

    def __init__(self, matrix: Optional[np.ndarray] = None, scale: Optional[float] = None):
        self.valid = False
        self._matrix = None
        self._inverse = None
        self._scale = None

        if matrix is None or scale is None:
            return
        if not np.all(np.isfinite(matrix)) or not np.isfinite(scale) or scale <= 0.0:
            return

        homogeneous = np.vstack([matrix, [0.0, 0.0, 0.0, 1.0]])
        inverse = invert_matrix(homogeneous)
        if inverse is None:
            return

        self._matrix = np.array(matrix, dtype=np.float64)
        self._inverse = inverse
        self._scale = float(scale)
        self.valid = True

    @property
    def matrix(self) -> Optional[np.ndarray]:
        return None if self._matrix is None else self._matrix.copy()

    @property
    def scale(self) -> Optional[float]:
        return self._scale

    @classmethod
    def fit(cls,
            source_points,
            target_points,
            source_scale_refs: Sequence,
            target_scale_refs: Sequence) -> 'AffineModel':
        """
        擬合仿射模型

        Args:
            source_points: 來源空間點 (N, 3)，N >= 4
            target_points: 目標空間對應點 (N, 3)
            source_scale_refs: 來源空間 (水平點對, 垂直點對)，各為 (2, 3)
            target_scale_refs: 目標空間 (水平點對, 垂直點對)

        Returns:
            AffineModel；任何失敗都回傳 valid=False 的模型
        """
        source = _as_points(source_points)
        target = _as_points(target_points)
        if source is None or target is None or len(source) != len(target):
            return cls()
        if len(source) < MIN_CORRESPONDENCES:
            return cls()

        try:
            source_hor, source_ver = (np.asarray(p, dtype=np.float64) for p in source_scale_refs)
            target_hor, target_ver = (np.asarray(p, dtype=np.float64) for p in target_scale_refs)
        except (TypeError, ValueError):
            return cls()

        scale = compute_scale_factor(source_hor, source_ver, target_hor, target_ver)
        if scale is None:
            return cls()

        matrix = estimate_affine_3d(source, target * scale)
        if matrix is None:
            return cls()

        return cls(matrix, scale)

    def map_forward(self, point) -> Optional[np.ndarray]:
        """來源空間 → 目標空間"""
        if not self.valid:
            return None
        p = np.append(np.asarray(point, dtype=np.float64), 1.0)
        result = (self._matrix @ p) / self._scale
        return result if np.all(np.isfinite(result)) else None

    def map_inverse(self, point) -> Optional[np.ndarray]:
        """目標空間 → 來源空間"""
        if not self.valid:
            return None
        p = np.append(np.asarray(point, dtype=np.float64) * self._scale, 1.0)
        result = self._inverse @ p
        if result[3] == 0.0:
            return None
        result = result[:3] / result[3]
        return result if np.all(np.isfinite(result)) else None

    def map_forward_many(self, points) -> Optional[np.ndarray]:
        """批量正向映射 (N, 3) → (N, 3)"""
        if not self.valid:
            return None
        pts = np.asarray(points, dtype=np.float64)
        homogeneous = np.hstack([pts, np.ones((len(pts), 1))])
        result = (homogeneous @ self._matrix.T) / self._scale
        return result if np.all(np.isfinite(result)) else None


class HeadSpaceMapper:
    """
    將偵測到的人臉映射到通用人臉模型（頭部空間）

    對應點：內/外眼角、頭部外側點、鼻樑、鼻尖
    縮放參考：頭部外側點（水平）、鼻樑-鼻尖（垂直）
    """

    def __init__(self, config: Dict = None):
        """
        初始化頭部空間映射器

        Args:
            config: 配置字典（預留）
        """
        if config is None:
            config = {}

        self.base_landmarks = list(lm.BASE_LANDMARKS)
        self.face_model = face_model.BASE_FACE_MODEL.copy()
        self.model_hor = face_model.OUTER_HEAD_POINTS_MODEL.copy()
        self.model_ver = np.vstack([face_model.NOSE_BRIDGE_MODEL, face_model.NOSE_TIP_MODEL])

        print(f"✓ HeadSpaceMapper 初始化完成")
        print(f"  - 對應點數: {len(self.base_landmarks)}")

    def map_into_head_space(self, landmarks) -> AffineModel:
        """
        擬合本幀的 偵測空間 → 頭部空間 仿射模型

        Args:
            landmarks: (N, 3) 特徵點

        Returns:
            AffineModel（可能為 invalid）
        """
        points = lm.landmarks_to_array(landmarks)
        if len(points) <= max(self.base_landmarks):
            return AffineModel()

        source = points[self.base_landmarks]
        source_hor = points[lm.OUTER_HEAD_POINTS]
        source_ver = points[[lm.NOSE_BRIDGE, lm.NOSE_TIP]]

        return AffineModel.fit(
            source,
            self.face_model,
            (source_hor, source_ver),
            (self.model_hor, self.model_ver),
        )


def create_head_space_mapper(config: Dict = None) -> HeadSpaceMapper:
    """
    工廠函數：創建頭部空間映射器實例
    """
    return HeadSpaceMapper(config)
