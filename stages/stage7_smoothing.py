"""
第七階段：時間平滑
Stage 7: Temporal Smoothing

- KalmanFilter1D：逐軸純量 Kalman 濾波（固定 Q / R）
- GazePointSmoother：螢幕注視點 (x, y) 的兩軸 Kalman 平滑
- MovingAverage：短窗口移動平均（眼球中心去抖動）
"""

from collections import deque
import numpy as np
from typing import Dict, Optional, Sequence, Tuple


class KalmanFilter1D:
    """
    純量 Kalman 濾波器

    第一個觀測值直接作為估計值；之後每次：
        P += Q
        K = P / (P + R)
        x = x + K (z - x)
        P = (1 - K) P
    """

    def __init__(self, process_noise: float = 1.0, measurement_noise: float = 25.0,
                 initial_error_covariance: float = 1.0):
        if process_noise < 0.0 or measurement_noise <= 0.0 or initial_error_covariance < 0.0:
            raise ValueError(
                f"Kalman 參數無效: Q={process_noise}, R={measurement_noise}, "
                f"P0={initial_error_covariance}"
            )
        self.process_noise = float(process_noise)
        self.measurement_noise = float(measurement_noise)
        self.initial_error_covariance = float(initial_error_covariance)
        self.reset()

    def reset(self):
        self.estimate = 0.0
        self.error_covariance = self.initial_error_covariance
        self.initialized = False

    def update(self, observation: float) -> float:
        observation = float(observation)
        if not self.initialized:
            self.estimate = observation
            self.error_covariance = self.initial_error_covariance
            self.initialized = True
            return self.estimate

        self.error_covariance += self.process_noise
        gain = self.error_covariance / (self.error_covariance + self.measurement_noise)
        self.estimate = self.estimate + gain * (observation - self.estimate)
        self.error_covariance = (1.0 - gain) * self.error_covariance
        return self.estimate


class GazePointSmoother:
    """
    注視點平滑器（x、y 各一個 KalmanFilter1D）
    """

    def __init__(self, config: Dict = None):
        """
        初始化注視點平滑器

        Args:
            config: 配置字典：
                - process_noise: Q，默認 1.0
                - measurement_noise: R，默認 25.0
                - initial_error_covariance: 初始 P，默認 1.0
        """
        if config is None:
            config = {}

        q = float(config.get('process_noise', 1.0))
        r = float(config.get('measurement_noise', 25.0))
        p0 = float(config.get('initial_error_covariance', 1.0))
        self.filters = [KalmanFilter1D(q, r, p0), KalmanFilter1D(q, r, p0)]

        print(f"✓ GazePointSmoother 初始化完成")
        print(f"  - Q: {q}, R: {r}")

    @property
    def initialized(self) -> bool:
        return all(f.initialized for f in self.filters)

    def update(self, point: Sequence[float]) -> Optional[Tuple[float, float]]:
        """
        平滑一個注視點

        Returns:
            平滑後的 (x, y)；輸入含非有限值時回傳 None 且不更新狀態
        """
        if point is None or not np.all(np.isfinite(point)):
            return None
        x = self.filters[0].update(point[0])
        y = self.filters[1].update(point[1])
        return x, y

    def reset(self):
        for f in self.filters:
            f.reset()


class MovingAverage:
    """固定窗口移動平均（向量）"""

    def __init__(self, window: int = 2):
        if window < 1:
            raise ValueError(f"移動平均窗口必須 >= 1: {window}")
        self.window = int(window)
        self._history = deque(maxlen=self.window)

    def update(self, value) -> np.ndarray:
        self._history.append(np.array(value, dtype=np.float64))
        return np.mean(np.stack(self._history, axis=0), axis=0)

    def reset(self):
        self._history.clear()

    def __len__(self) -> int:
        return len(self._history)


def create_gaze_point_smoother(config: Dict = None) -> GazePointSmoother:
    """
    工廠函數：創建注視點平滑器實例
    """
    return GazePointSmoother(config)
