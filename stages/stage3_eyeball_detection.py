"""
第三階段：眼球球體估計
Stage 3: Eyeball Sphere Estimation

累積頭部空間中的眼部表面點，擬合眼球球體（中心、半徑）：
- 梯度下降最小化 Σ(‖pᵢ - c‖ - r)²
- 信心值 confidence = 1 / (1 + loss)
- 只在信心值嚴格提升時更新中心/半徑
- 超過刷新時間沒有提升時重新開放搜尋

每隻眼睛一個實例

作者: [你的名字]
日期: 2026-10
"""

from collections import deque
import numpy as np
from typing import Dict, Optional, Sequence, Tuple

from utils import face_model


def solve_for_sphere(points: np.ndarray,
                     initial_center: np.ndarray,
                     initial_radius: float,
                     radius_bounds: Tuple[float, float] = (0.015, 0.025),
                     learning_rate: float = 0.2,
                     max_iterations: int = 100) -> Tuple[np.ndarray, float, float]:
    """
    梯度下降擬合球體

    Args:
        points: 球面觀測點 (N, 3)
        initial_center: 初始中心 (3,)
        initial_radius: 初始半徑
        radius_bounds: 半徑範圍 (min, max)
        learning_rate: 學習率
        max_iterations: 迭代次數

    Returns:
        (center, radius, confidence)：整個迭代過程中 loss 最小的參數
    """
    points = np.asarray(points, dtype=np.float64)
    center = np.array(initial_center, dtype=np.float64)
    radius = float(np.clip(initial_radius, radius_bounds[0], radius_bounds[1]))
    n = len(points)

    best_loss = np.inf
    best_center = center.copy()
    best_radius = radius

    for _ in range(max_iterations):
        offsets = points - center
        dist = np.linalg.norm(offsets, axis=1)
        residual = dist - radius
        loss = float(np.sum(residual ** 2))

        if loss < best_loss:
            best_loss = loss
            best_center = center.copy()
            best_radius = radius

        # ∂/∂c = -2·res·(p - c)/‖p - c‖，距離過小的點不貢獻方向
        safe = dist > 1e-9
        directions = np.zeros_like(offsets)
        directions[safe] = offsets[safe] / dist[safe, None]
        grad_center = np.sum(-2.0 * residual[:, None] * directions, axis=0) / n
        grad_radius = np.sum(-2.0 * residual) / n

        center = center - learning_rate * grad_center
        radius = float(np.clip(radius - learning_rate * grad_radius, radius_bounds[0], radius_bounds[1]))

    # 最後一步的參數也要評估
    residual = np.linalg.norm(points - center, axis=1) - radius
    loss = float(np.sum(residual ** 2))
    if loss < best_loss:
        best_loss = loss
        best_center = center.copy()
        best_radius = radius

    confidence = 1.0 / (1.0 + best_loss)
    return best_center, best_radius, confidence


class EyeballDetector:
    """
    眼球中心偵測器

    狀態：
    - center / radius / confidence：目前最佳估計
    - center_detected：confidence >= min_confidence
    - search_completed：confidence >= reasonable_confidence（本次搜尋的單向鎖）
    """

    def __init__(self, initial_center: Sequence[float], config: Dict = None):
        """
        初始化眼球偵測器

        Args:
            initial_center: 頭部空間中的初始眼球中心
            config: 配置字典：
                - initial_radius: 初始半徑，默認 0.02
                - radius_bounds: 半徑範圍，默認 [0.015, 0.025]
                - min_confidence: 偵測閾值，默認 0.995
                - reasonable_confidence: 停止搜尋閾值，默認 0.997
                - points_threshold: 開始擬合所需點數，默認 300
                - points_history_size: 緩衝區容量，默認 400
                - refresh_time_threshold_ms: 重新搜尋的逾時（毫秒），默認 10000
                - learning_rate: 梯度下降學習率，默認 0.2
                - max_iterations: 梯度下降迭代次數，默認 100
        """
        if config is None:
            config = {}

        self.initial_center = np.array(initial_center, dtype=np.float64)
        self.initial_radius = float(config.get('initial_radius', face_model.DEFAULT_EYE_RADIUS))
        self.radius_bounds = tuple(float(v) for v in config.get('radius_bounds', (0.015, 0.025)))
        self.min_confidence = float(config.get('min_confidence', 0.995))
        self.reasonable_confidence = float(config.get('reasonable_confidence', 0.997))
        self.points_threshold = int(config.get('points_threshold', 300))
        self.points_history_size = int(config.get('points_history_size', 400))
        self.refresh_time_threshold = float(config.get('refresh_time_threshold_ms', 10000))
        self.learning_rate = float(config.get('learning_rate', 0.2))
        self.max_iterations = int(config.get('max_iterations', 100))

        if len(self.radius_bounds) != 2 or self.radius_bounds[0] > self.radius_bounds[1]:
            raise ValueError(f"radius_bounds 無效: {self.radius_bounds}")
        if self.points_threshold > self.points_history_size:
            raise ValueError(
                f"points_threshold ({self.points_threshold}) "
                f"不可大於 points_history_size ({self.points_history_size})"
            )

        self._points = deque(maxlen=self.points_history_size)
        self.center = self.initial_center.copy()
        self.radius = float(np.clip(self.initial_radius, *self.radius_bounds))
        self.confidence = 0.0
        self.center_detected = False
        self.search_completed = False
        self._last_update_time = None

    @property
    def num_points(self) -> int:
        return len(self._points)

    def update(self, new_points, timestamp_ms: float) -> bool:
        """
        加入新觀測點並（必要時）重新擬合

        Args:
            new_points: 頭部空間中的眼部表面點 (K, 3)
            timestamp_ms: 時間戳（毫秒）

        Returns:
            本次是否提升了估計
        """
        points = np.asarray(new_points, dtype=np.float64).reshape(-1, 3)
        points = points[np.all(np.isfinite(points), axis=1)]
        self._points.extend(points)

        if self._last_update_time is None:
            self._last_update_time = timestamp_ms

        # 長時間沒有提升：重新開放搜尋（適應頭部移動、光線變化）
        if self.search_completed and timestamp_ms - self._last_update_time > self.refresh_time_threshold:
            self.search_completed = False

        if len(self._points) < self.points_threshold or self.search_completed:
            return False

        center, radius, confidence = solve_for_sphere(
            np.array(self._points),
            self.center,
            self.radius,
            radius_bounds=self.radius_bounds,
            learning_rate=self.learning_rate,
            max_iterations=self.max_iterations,
        )

        if not (np.isfinite(confidence) and confidence > self.confidence):
            return False

        self.center = center
        self.radius = float(np.clip(radius, *self.radius_bounds))
        self.confidence = float(confidence)
        self._last_update_time = timestamp_ms

        if self.confidence >= self.min_confidence:
            self.center_detected = True
        if self.confidence >= self.reasonable_confidence:
            self.search_completed = True
        return True

    def reset(self):
        """清除緩衝區、信心值與旗標（保留配置）"""
        self._points.clear()
        self.center = self.initial_center.copy()
        self.radius = float(np.clip(self.initial_radius, *self.radius_bounds))
        self.confidence = 0.0
        self.center_detected = False
        self.search_completed = False
        self._last_update_time = None

    def state(self) -> Dict:
        """目前估計狀態（副本）"""
        return {
            'center': self.center.copy(),
            'radius': self.radius,
            'confidence': self.confidence,
            'center_detected': self.center_detected,
            'search_completed': self.search_completed,
            'num_points': self.num_points,
        }


def create_eyeball_detectors(config: Dict = None) -> Tuple[EyeballDetector, EyeballDetector]:
    """
    工廠函數：創建左右眼的眼球偵測器
    """
    left = EyeballDetector(face_model.DEFAULT_LEFT_EYE_CENTER_MODEL, config)
    right = EyeballDetector(face_model.DEFAULT_RIGHT_EYE_CENTER_MODEL, config)

    print(f"✓ EyeballDetector 初始化完成")
    print(f"  - 緩衝區容量: {left.points_history_size}")
    print(f"  - 擬合所需點數: {left.points_threshold}")
    print(f"  - 信心閾值: {left.min_confidence} / {left.reasonable_confidence}")
    return left, right
