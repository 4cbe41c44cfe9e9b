"""
第五階段：校正資料收集
Stage 5: Calibration Data Collection

- CalibrationStore：保存 (特徵向量, 螢幕目標) 樣本，只回傳副本
- CalibrationSession：校正流程狀態機
    idle → collecting →（>= 5 個有效樣本 + train()）→ trained
    collecting → idle（cancel）
    trained 狀態下新增樣本 → 回到 collecting

作者: [你的名字]
日期: 2026-10
"""

from dataclasses import dataclass
from enum import Enum
import numpy as np
from typing import Dict, List, Optional, Tuple

from .stage1_feature_extraction import FEATURE_VECTOR_LENGTH
from .stage6_regression import MIN_CALIBRATION_POINTS, create_gaze_regressor
from .stage7_smoothing import create_gaze_point_smoother


@dataclass(frozen=True)
class CalibrationSample:
    features: Tuple[float, ...]
    screen_x: float
    screen_y: float


class CalibrationState(Enum):
    IDLE = 'idle'
    COLLECTING = 'collecting'
    TRAINED = 'trained'


class CalibrationStore:
    """
    校正樣本儲存（唯一擁有者）
    """

    def __init__(self, config: Dict = None):
        """
        初始化校正樣本儲存

        Args:
            config: 配置字典：
                - min_calibration_points: 最少校正點數，默認 5
                - feature_vector_length: 特徵向量長度，默認 16
        """
        if config is None:
            config = {}

        self.min_calibration_points = int(config.get('min_calibration_points', MIN_CALIBRATION_POINTS))
        self.feature_length = int(config.get('feature_vector_length', FEATURE_VECTOR_LENGTH))
        self._samples: List[CalibrationSample] = []

    def add_sample(self, features, screen_x: float, screen_y: float) -> bool:
        """
        新增校正樣本（保存副本）

        Returns:
            是否成功加入；特徵向量為空或格式錯誤時回傳 False 並印出警告
        """
        if features is None:
            print(f"警告: 校正樣本缺少特徵向量，已略過")
            return False

        try:
            values = np.asarray(features, dtype=np.float64).reshape(-1)
            target = np.array([screen_x, screen_y], dtype=np.float64)
        except (TypeError, ValueError):
            print(f"警告: 校正樣本格式錯誤，已略過")
            return False

        if len(values) == 0 or len(values) != self.feature_length:
            print(f"警告: 校正樣本特徵長度錯誤 ({len(values)}，期望 {self.feature_length})，已略過")
            return False
        if not (np.all(np.isfinite(values)) and np.all(np.isfinite(target))):
            print(f"警告: 校正樣本含非有限值，已略過")
            return False

        self._samples.append(CalibrationSample(
            features=tuple(float(v) for v in values),
            screen_x=float(target[0]),
            screen_y=float(target[1]),
        ))
        print(f"  - 校正點 {len(self._samples)} 已加入 ({target[0]:.0f}, {target[1]:.0f})")
        return True

    def samples(self) -> List[CalibrationSample]:
        """回傳樣本列表副本"""
        return list(self._samples)

    def clear(self):
        self._samples = []

    def has_enough_samples(self) -> bool:
        return len(self._samples) >= self.min_calibration_points

    def __len__(self) -> int:
        return len(self._samples)


class CalibrationSession:
    """
    校正流程狀態機

    擁有樣本儲存、迴歸模型與注視點平滑器；
    樣本變動會使模型失效，訓練或清除時一律重置平滑狀態
    """

    def __init__(self, config: Dict = None, regression_config: Dict = None,
                 smoothing_config: Dict = None):
        if config is None:
            config = {}
        regression_config = dict(regression_config or {})
        regression_config.setdefault('min_calibration_points', config.get('min_calibration_points', MIN_CALIBRATION_POINTS))
        regression_config.setdefault('feature_vector_length', config.get('feature_vector_length', FEATURE_VECTOR_LENGTH))

        self.store = CalibrationStore(config)
        self.regressor = create_gaze_regressor(regression_config)
        self.smoother = create_gaze_point_smoother(smoothing_config)
        self.state = CalibrationState.IDLE

        print(f"✓ CalibrationSession 初始化完成")
        print(f"  - 最少校正點數: {self.store.min_calibration_points}")

    @property
    def sample_count(self) -> int:
        return len(self.store)

    @property
    def is_trained(self) -> bool:
        return self.state == CalibrationState.TRAINED and self.regressor.trained

    @property
    def is_collecting(self) -> bool:
        return self.state == CalibrationState.COLLECTING

    def start(self):
        """開始新的校正：清除舊樣本並取消訓練"""
        self.store.clear()
        self._invalidate()
        self.state = CalibrationState.COLLECTING
        print(f"開始校正（需要至少 {self.store.min_calibration_points} 點）")

    def add_sample(self, features, screen_x: float, screen_y: float) -> bool:
        """
        加入校正樣本；trained 狀態下加入會回到 collecting

        Returns:
            是否成功加入
        """
        if self.state == CalibrationState.IDLE:
            print(f"警告: 尚未開始校正，樣本已略過")
            return False

        if not self.store.add_sample(features, screen_x, screen_y):
            return False

        self._invalidate()
        self.state = CalibrationState.COLLECTING
        return True

    def train(self) -> bool:
        """
        以目前樣本訓練模型

        Returns:
            是否訓練成功；失敗時保留樣本並維持 collecting
        """
        if self.state == CalibrationState.IDLE:
            print(f"警告: 尚未開始校正，無法訓練")
            return False

        self.smoother.reset()
        if not self.store.has_enough_samples():
            print(f"警告: 校正點不足 ({len(self.store)} / {self.store.min_calibration_points})")
            self.regressor.reset()
            self.state = CalibrationState.COLLECTING
            return False

        if self.regressor.train(self.store.samples()):
            self.state = CalibrationState.TRAINED
            return True

        self.state = CalibrationState.COLLECTING
        return False

    def finish(self) -> bool:
        """
        結束收集：樣本足夠則訓練，否則（或訓練失敗）清除並回到 idle

        Returns:
            是否進入 trained
        """
        if self.state != CalibrationState.COLLECTING:
            return self.is_trained
        if self.store.has_enough_samples() and self.train():
            return True
        print(f"警告: 校正未完成，請重新校正")
        self.clear()
        return False

    def cancel(self):
        """取消校正，回到 idle"""
        self.store.clear()
        self._invalidate()
        self.state = CalibrationState.IDLE
        print(f"校正已取消")

    def clear(self):
        """清除所有校正資料與模型"""
        self.store.clear()
        self._invalidate()
        self.state = CalibrationState.IDLE

    def samples(self) -> List[CalibrationSample]:
        return self.store.samples()

    def predict(self, features) -> Tuple[Optional[Tuple[float, float]], Optional[Tuple[float, float]]]:
        """
        預測並平滑注視點

        Returns:
            (raw, smoothed)；未訓練或校正中回傳 (None, None)
        """
        if not self.is_trained:
            return None, None
        raw = self.regressor.predict(features)
        if raw is None:
            return None, None
        return raw, self.smoother.update(raw)

    def _invalidate(self):
        self.regressor.reset()
        self.smoother.reset()


def create_calibration_session(config: Dict = None,
                               regression_config: Dict = None,
                               smoothing_config: Dict = None) -> CalibrationSession:
    """
    工廠函數：創建校正流程實例
    """
    return CalibrationSession(config, regression_config, smoothing_config)
