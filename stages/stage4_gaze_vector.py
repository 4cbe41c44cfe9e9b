"""
第四階段：視線向量計算
Stage 4: Gaze Vector Computation

每幀流程（每隻眼睛）：
- 以本幀仿射模型將虹膜+眼瞼點映射到頭部空間
- 更新該眼的眼球偵測器
- 偵測到眼球中心後，反向映射回相機空間（短窗口移動平均）
- gaze_vector = 瞳孔相機空間位置 - 眼球相機空間中心

另提供視線向量與角度（pitch, yaw）的雙向轉換

作者: [你的名字]
日期: 2026-10
"""

import numpy as np
from typing import Dict, Optional, Tuple

from utils import landmarks as lm
from .stage2_head_space import AffineModel
from .stage3_eyeball_detection import EyeballDetector, create_eyeball_detectors
from .stage7_smoothing import MovingAverage


def vector_to_angles(gaze_vector: np.ndarray) -> Tuple[float, float]:
    """
    將 3D 視線向量轉換為視線角度

    Args:
        gaze_vector: 3D 視線向量 (3,) [x, y, z]

    Returns:
        pitch: 俯仰角（弧度）
        yaw: 偏航角（弧度）

    公式:
        pitch = arcsin(-y)
        yaw = arctan2(-x, -z)
    """
    norm = np.linalg.norm(gaze_vector)
    if norm > 1e-9:
        gaze_vector = gaze_vector / norm

    x, y, z = gaze_vector
    pitch = float(np.arcsin(np.clip(-y, -1.0, 1.0)))
    yaw = float(np.arctan2(-x, -z))
    return pitch, yaw


def angles_to_vector(pitch: float, yaw: float) -> np.ndarray:
    """
    將視線角度轉換為 3D 單位向量（vector_to_angles 的反函數）

    公式:
        x = -cos(pitch) * sin(yaw)
        y = -sin(pitch)
        z = -cos(pitch) * cos(yaw)
    """
    return np.array([
        -np.cos(pitch) * np.sin(yaw),
        -np.sin(pitch),
        -np.cos(pitch) * np.cos(yaw),
    ])


class EyeGazeTracker:
    """
    單眼視線向量追蹤：眼球偵測器 + 相機空間中心的移動平均
    """

    def __init__(self, detector: EyeballDetector, surface_indices, pupil_index: int,
                 center_window: int = 2):
        self.detector = detector
        self.surface_indices = list(surface_indices)
        self.pupil_index = pupil_index
        self.center_filter = MovingAverage(window=center_window)

    def update(self, points: np.ndarray, affine: AffineModel, timestamp_ms: float) -> Dict:
        """
        更新單眼狀態並計算視線向量

        Returns:
            result: 包含 gaze_vector / eyeball_center 等的字典；不可用的欄位為 None
        """
        result = {
            'gaze_vector': None,
            'eyeball_center': None,
            'pitch': None,
            'yaw': None,
        }

        if not affine.valid:
            result.update(self._detector_state())
            return result

        head_points = affine.map_forward_many(points[self.surface_indices])
        if head_points is not None:
            self.detector.update(head_points, timestamp_ms)

        result.update(self._detector_state())

        if not self.detector.center_detected:
            return result

        camera_center = affine.map_inverse(self.detector.center)
        if camera_center is None:
            return result

        smoothed_center = self.center_filter.update(camera_center)
        gaze_vector = points[self.pupil_index] - smoothed_center
        if not np.all(np.isfinite(gaze_vector)):
            return result

        pitch, yaw = vector_to_angles(gaze_vector)
        result.update({
            'gaze_vector': gaze_vector,
            'eyeball_center': smoothed_center,
            'pitch': pitch,
            'yaw': yaw,
        })
        return result

    def _detector_state(self) -> Dict:
        return {
            'eyeball_center_head': self.detector.center.copy(),
            'eyeball_radius': self.detector.radius,
            'confidence': self.detector.confidence,
            'center_detected': self.detector.center_detected,
            'search_completed': self.detector.search_completed,
        }

    def reset(self):
        self.detector.reset()
        self.center_filter.reset()


class GazeVectorEstimator:
    """
    雙眼視線向量估計器

    持有左右眼各一個眼球偵測器，仿射模型由呼叫端每幀提供
    """

    def __init__(self, config: Dict = None, eyeball_config: Dict = None):
        """
        初始化視線向量估計器

        Args:
            config: 配置字典：
                - center_window: 眼球中心移動平均窗口，默認 2
            eyeball_config: 傳給 EyeballDetector 的配置
        """
        if config is None:
            config = {}

        self.center_window = int(config.get('center_window', 2))

        left_detector, right_detector = create_eyeball_detectors(eyeball_config)
        self.left = EyeGazeTracker(left_detector, lm.LEFT_EYE_SURFACE, lm.LEFT_PUPIL, self.center_window)
        self.right = EyeGazeTracker(right_detector, lm.RIGHT_EYE_SURFACE, lm.RIGHT_PUPIL, self.center_window)

        print(f"✓ GazeVectorEstimator 初始化完成")
        print(f"  - 眼球中心平滑窗口: {self.center_window}")

    def estimate(self, landmarks, affine: AffineModel, timestamp_ms: float) -> Dict:
        """
        計算雙眼視線向量

        Args:
            landmarks: (478, 3) 特徵點
            affine: 本幀的 偵測空間 → 頭部空間 仿射模型
            timestamp_ms: 時間戳（毫秒）

        Returns:
            {'left': {...}, 'right': {...}}
        """
        points = lm.landmarks_to_array(landmarks)
        if len(points) < lm.NUM_LANDMARKS:
            affine = AffineModel()
            points = np.full((lm.NUM_LANDMARKS, 3), np.nan)
        return {
            'left': self.left.update(points, affine, timestamp_ms),
            'right': self.right.update(points, affine, timestamp_ms),
        }

    def reset(self):
        self.left.reset()
        self.right.reset()


def create_gaze_vector_estimator(config: Dict = None, eyeball_config: Dict = None) -> GazeVectorEstimator:
    """
    工廠函數：創建視線向量估計器實例
    """
    return GazeVectorEstimator(config, eyeball_config)
