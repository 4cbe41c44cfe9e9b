"""
面部特徵點索引表
Face Landmark Index Table

MediaPipe Face Landmarker（refine_landmarks）輸出 478 個 3D 特徵點，
索引語義固定：0-467 為臉部網格，468-477 為虹膜/瞳孔
"""

import numpy as np
from typing import Optional


NUM_LANDMARKS = 478

# 頭部空間對應點
OUTER_HEAD_POINTS = [162, 389]
NOSE_BRIDGE = 6
NOSE_TIP = 4

INTERNAL_EYES_CORNERS = [155, 362]
OUTER_EYES_CORNERS = [33, 263]

# 虹膜與瞳孔
LEFT_IRIS = [469, 470, 471, 472]
LEFT_PUPIL = 468

RIGHT_IRIS = [474, 475, 476, 477]
RIGHT_PUPIL = 473

# 眼瞼上鄰近眼球表面的點
ADJACENT_LEFT_EYELID_PART = [160, 159, 158, 163, 144, 145, 153]
ADJACENT_RIGHT_EYELID_PART = [387, 386, 385, 390, 373, 374, 380]

# 仿射擬合使用的特徵點順序（與 face_model.BASE_FACE_MODEL 一一對應）
BASE_LANDMARKS = (
    INTERNAL_EYES_CORNERS
    + OUTER_EYES_CORNERS
    + OUTER_HEAD_POINTS
    + [NOSE_BRIDGE, NOSE_TIP]
)

# 每隻眼睛送入眼球估計器的點
LEFT_EYE_SURFACE = LEFT_IRIS + ADJACENT_LEFT_EYELID_PART
RIGHT_EYE_SURFACE = RIGHT_IRIS + ADJACENT_RIGHT_EYELID_PART


def landmarks_to_array(landmarks) -> np.ndarray:
    """
    將特徵點輸入轉換為 (N, 3) float64 陣列

    支援兩種格式：
    - (N, 3) 的 array-like
    - 具有 .x / .y / .z 屬性的物件序列（MediaPipe NormalizedLandmark）

    Raises:
        ValueError: 輸入無法轉為 (N, 3)
    """
    if landmarks is None:
        raise ValueError("特徵點輸入為 None")

    if isinstance(landmarks, np.ndarray):
        points = landmarks.astype(np.float64)
    elif len(landmarks) > 0 and hasattr(landmarks[0], 'x'):
        points = np.array(
            [[float(lm.x), float(lm.y), float(getattr(lm, 'z', 0.0))] for lm in landmarks],
            dtype=np.float64
        )
    else:
        points = np.asarray(landmarks, dtype=np.float64)

    if points.size == 0:
        return np.zeros((0, 3), dtype=np.float64)

    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"特徵點形狀錯誤: {points.shape}，期望 (N, 3)")

    return points


def head_transform_to_matrix(head_transform, column_major: bool = False) -> Optional[np.ndarray]:
    """
    將頭部變換矩陣輸入轉為 4x4 row-major 陣列

    Args:
        head_transform: 4x4 array-like 或 16 個數值；None 表示不可用
        column_major: 16 個數值是否為 column-major 排列
                      （MediaPipe facialTransformationMatrixes[i].data）

    Returns:
        matrix: (4, 4) 陣列；輸入無效時回傳 None
    """
    if head_transform is None:
        return None

    data = head_transform
    if not isinstance(head_transform, (np.ndarray, list, tuple)) and hasattr(head_transform, 'data'):
        data = head_transform.data
    try:
        matrix = np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError):
        return None

    if matrix.size != 16:
        return None

    if matrix.ndim == 1:
        matrix = matrix.reshape(4, 4)
        if column_major:
            matrix = matrix.T

    return matrix.reshape(4, 4)
