"""
通用 3D 人臉模型（頭部座標空間）
Canonical Face Model (Head Space)

單位：公尺；X 向右，Y 向下，Z 遠離相機
各點順序與 landmarks.BASE_LANDMARKS 一一對應
"""

import numpy as np


INTERNAL_EYES_CORNERS_MODEL = np.array([
    [-0.035, -0.05, 0.0],
    [0.035, -0.05, 0.0],
])

OUTER_EYES_CORNERS_MODEL = np.array([
    [-0.09, -0.057, 0.01],
    [0.09, -0.057, 0.01],
])

OUTER_HEAD_POINTS_MODEL = np.array([
    [-0.145, -0.1, 0.1],
    [0.145, -0.1, 0.1],
])

NOSE_BRIDGE_MODEL = np.array([
    [0.0, -0.0319, -0.0432],
])

NOSE_TIP_MODEL = np.array([
    [0.0, 0.088, -0.071],
])

BASE_FACE_MODEL = np.vstack([
    INTERNAL_EYES_CORNERS_MODEL,
    OUTER_EYES_CORNERS_MODEL,
    OUTER_HEAD_POINTS_MODEL,
    NOSE_BRIDGE_MODEL,
    NOSE_TIP_MODEL,
])

# 眼球中心預設值：內外眼角中點略向上，並往後 2 cm
DEFAULT_LEFT_EYE_CENTER_MODEL = np.array([
    (INTERNAL_EYES_CORNERS_MODEL[0, 0] + OUTER_EYES_CORNERS_MODEL[0, 0]) * 0.5,
    (INTERNAL_EYES_CORNERS_MODEL[0, 1] + OUTER_EYES_CORNERS_MODEL[0, 1]) * 0.5 - 0.009,
    0.02,
])

DEFAULT_RIGHT_EYE_CENTER_MODEL = np.array([
    (INTERNAL_EYES_CORNERS_MODEL[1, 0] + OUTER_EYES_CORNERS_MODEL[1, 0]) * 0.5,
    (INTERNAL_EYES_CORNERS_MODEL[1, 1] + OUTER_EYES_CORNERS_MODEL[1, 1]) * 0.5 - 0.009,
    0.02,
])

DEFAULT_EYE_RADIUS = 0.02
