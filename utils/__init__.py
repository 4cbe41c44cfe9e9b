"""
視線估計系統 - 工具模組
Gaze Estimation System - Utility Modules
"""

from .landmarks import (
    NUM_LANDMARKS,
    landmarks_to_array,
    head_transform_to_matrix,
)
from .linalg import (
    invert_matrix,
    solve_normal_equations,
    is_finite_vector,
)
from .synthetic_face import (
    create_synthetic_landmarks,
    create_head_transform,
    rotation_from_euler,
    create_demo_session,
)

__all__ = [
    # 特徵點
    'NUM_LANDMARKS',
    'landmarks_to_array',
    'head_transform_to_matrix',
    # 線性代數
    'invert_matrix',
    'solve_normal_equations',
    'is_finite_vector',
    # 合成資料
    'create_synthetic_landmarks',
    'create_head_transform',
    'rotation_from_euler',
    'create_demo_session',
]
