"""
第一階段：特徵向量提取
Stage 1: Feature Vector Extraction

從 478 個 3D 特徵點 + 頭部變換矩陣提取固定長度特徵向量：
- 左右虹膜中心 (x, y, z)
- 左右瞳孔 (x, y)
- 頭部平移 (tx, ty, tz) 與旋轉 (pitch, yaw, roll)

作者: [你的名字]
日期: 2026-10
"""

import warnings
import numpy as np
from typing import Dict, Optional, Sequence, Tuple
from scipy.spatial.transform import Rotation as R

from utils import landmarks as lm


FEATURE_VECTOR_LENGTH = 16

FEATURE_NAMES = [
    'left_iris_x', 'left_iris_y', 'left_iris_z',
    'right_iris_x', 'right_iris_y', 'right_iris_z',
    'left_pupil_x', 'left_pupil_y',
    'right_pupil_x', 'right_pupil_y',
    'head_tx', 'head_ty', 'head_tz',
    'head_pitch', 'head_yaw', 'head_roll',
]


def mean_position(points: np.ndarray, indices: Sequence[int]) -> Optional[np.ndarray]:
    """
    計算指定索引特徵點的平均位置（略過超出範圍或非有限值的點）

    Returns:
        平均位置 (3,)；沒有任何有效點時回傳 None
    """
    valid = []
    for idx in indices:
        if idx < 0 or idx >= len(points):
            continue
        p = points[idx]
        if np.all(np.isfinite(p)):
            valid.append(p)
    if not valid:
        return None
    return np.mean(np.stack(valid, axis=0), axis=0)


def rotation_to_euler(rotation: np.ndarray) -> Tuple[float, float, float]:
    """
    旋轉矩陣 → 歐拉角 (pitch, yaw, roll)，弧度

    R = Rz(roll) · Ry(yaw) · Rx(pitch)，即 scipy 外旋 'xyz'
    萬向鎖（yaw = ±90°）時 roll 固定為 0

    Raises:
        ValueError: 矩陣不是有效的旋轉（行列式 <= 0）
    """
    rotation = np.asarray(rotation, dtype=np.float64)
    if not np.linalg.det(rotation) > 0.0:
        raise ValueError(f"旋轉矩陣行列式必須 > 0: {np.linalg.det(rotation)}")

    r = R.from_matrix(rotation)
    # 萬向鎖時 scipy 會發出 UserWarning 並將第三個角設為 0
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', UserWarning)
        pitch, yaw, roll = r.as_euler('xyz')
    return float(pitch), float(yaw), float(roll)


class FeatureExtractor:
    """
    特徵向量提取器

    特徵向量順序固定（見 FEATURE_NAMES），長度為 FEATURE_VECTOR_LENGTH
    """

    def __init__(self, config: Dict = None):
        """
        初始化特徵提取器

        Args:
            config: 配置字典：
                - expected_landmarks: 最少特徵點數量，默認 478
                - head_transform_column_major: 16 值矩陣是否為 column-major，默認 False
                - feature_vector_length: 特徵向量長度，必須為 16
        """
        if config is None:
            config = {}

        self.expected_landmarks = int(config.get('expected_landmarks', lm.NUM_LANDMARKS))
        self.column_major = bool(config.get('head_transform_column_major', False))
        self.feature_length = int(config.get('feature_vector_length', FEATURE_VECTOR_LENGTH))
        if self.feature_length != FEATURE_VECTOR_LENGTH:
            raise ValueError(
                f"feature_vector_length ({self.feature_length}) "
                f"與特徵格式長度 ({FEATURE_VECTOR_LENGTH}) 不符"
            )

        print(f"✓ FeatureExtractor 初始化完成")
        print(f"  - 特徵點數量: {self.expected_landmarks}")
        print(f"  - 特徵向量長度: {self.feature_length}")

    def head_pose_components(self, head_transform) -> np.ndarray:
        """
        從 4x4 頭部變換矩陣取出平移與旋轉分量

        Returns:
            [tx, ty, tz, pitch, yaw, roll]；矩陣不可用時全為 0
        """
        matrix = lm.head_transform_to_matrix(head_transform, column_major=self.column_major)
        if matrix is None or not np.all(np.isfinite(matrix)):
            return np.zeros(6)

        translation = matrix[:3, 3]
        try:
            pitch, yaw, roll = rotation_to_euler(matrix[:3, :3])
        except ValueError:
            return np.zeros(6)
        return np.array([translation[0], translation[1], translation[2], pitch, yaw, roll])

    def extract(self, landmarks, head_transform=None) -> Optional[np.ndarray]:
        """
        提取特徵向量

        Args:
            landmarks: (478, 3) 特徵點或 NormalizedLandmark 序列
            head_transform: 4x4 頭部變換矩陣（可選）

        Returns:
            features: (16,) 特徵向量；特徵點不足、無法計算或含 NaN 時回傳 None
        """
        if landmarks is None:
            return None

        try:
            points = lm.landmarks_to_array(landmarks)
        except (TypeError, ValueError) as e:
            print(f"警告: 特徵點格式錯誤（{e}），略過此幀")
            return None
        if len(points) < self.expected_landmarks:
            return None

        left_iris = mean_position(points, lm.LEFT_IRIS)
        right_iris = mean_position(points, lm.RIGHT_IRIS)
        left_pupil = mean_position(points, [lm.LEFT_PUPIL])
        right_pupil = mean_position(points, [lm.RIGHT_PUPIL])

        if left_iris is None or right_iris is None or left_pupil is None or right_pupil is None:
            return None

        features = np.concatenate([
            left_iris,
            right_iris,
            left_pupil[:2],
            right_pupil[:2],
            self.head_pose_components(head_transform),
        ])

        if not np.all(np.isfinite(features)):
            print(f"警告: 特徵向量含非有限值，略過此幀")
            return None

        return features


def create_feature_extractor(config: Dict = None) -> FeatureExtractor:
    """
    工廠函數：創建特徵提取器實例
    """
    return FeatureExtractor(config)
