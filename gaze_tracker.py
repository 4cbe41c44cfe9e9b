"""
視線追蹤主流程
Gaze Tracker Pipeline

每幀由外部 frame pump 呼叫一次 process_frame：
1. 特徵向量提取（stage 1）
2. 頭部空間仿射擬合（stage 2）
3. 眼球中心估計 + 視線向量（stage 3, 4）
4. 校正中：收集樣本（stage 5）；已訓練：迴歸預測 + Kalman 平滑（stage 6, 7）

單執行緒、同步；每次呼叫完成前不接受下一幀
"""

import numpy as np
from pathlib import Path
from typing import Dict, Optional, Tuple
import yaml

from stages.stage1_feature_extraction import create_feature_extractor
from stages.stage2_head_space import create_head_space_mapper
from stages.stage4_gaze_vector import create_gaze_vector_estimator
from stages.stage5_calibration import create_calibration_session
from utils.landmarks import landmarks_to_array
from utils.linalg import is_finite_vector


def load_config(config_path) -> Dict:
    """
    載入 YAML 配置文件

    Raises:
        FileNotFoundError: 配置文件不存在
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"配置文件不存在: {config_path}")
    with open(config_path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


class GazeTracker:
    """
    視線追蹤器

    擁有左右眼的眼球偵測器、注視點平滑狀態與校正流程；
    仿射模型每幀重新擬合，不跨幀保存
    """

    def __init__(self, config: Dict = None):
        """
        初始化視線追蹤器

        Args:
            config: 完整配置字典（各階段一個區段），None 時全部使用默認值
        """
        if config is None:
            config = {}

        print("=" * 70)
        print("視線追蹤器初始化")
        print("Gaze Tracker Initialization")
        print("=" * 70)

        calibration_config = dict(config.get('calibration') or {})
        feature_config = dict(config.get('feature_extraction') or {})
        calibration_config.setdefault(
            'feature_vector_length', feature_config.get('feature_vector_length', 16)
        )

        self.feature_extractor = create_feature_extractor(feature_config)
        self.head_space_mapper = create_head_space_mapper(config.get('head_space'))
        self.gaze_vector_estimator = create_gaze_vector_estimator(
            config.get('gaze_vector'),
            config.get('eyeball_detection'),
        )
        self.calibration = create_calibration_session(
            calibration_config,
            config.get('regression'),
            config.get('smoothing'),
        )

        self.last_features = None
        self.last_timestamp = None

        print("✓ 視線追蹤器初始化完成\n")

    @classmethod
    def from_config_file(cls, config_path) -> 'GazeTracker':
        return cls(config=load_config(config_path))

    def process_frame(self, landmarks, head_transform=None, timestamp_ms: float = None) -> Dict:
        """
        處理一幀特徵點

        Args:
            landmarks: (478, 3) 特徵點、NormalizedLandmark 序列，或 None（未偵測到人臉）
            head_transform: 4x4 頭部變換矩陣（可選）
            timestamp_ms: 單調遞增的時間戳（毫秒）；None 時沿用上一幀 + 1

        Returns:
            result: 每幀結果字典（見 _empty_result）
        """
        if timestamp_ms is None:
            timestamp_ms = 0.0 if self.last_timestamp is None else self.last_timestamp + 1.0

        result = self._empty_result(timestamp_ms)

        if self.last_timestamp is not None and timestamp_ms < self.last_timestamp:
            print(f"警告: 時間戳倒退 ({timestamp_ms} < {self.last_timestamp})，略過此幀")
            return result
        self.last_timestamp = timestamp_ms

        # 本幀沒有可用特徵時，校正點不可沿用舊幀的特徵
        self.last_features = None

        if landmarks is None:
            return result

        try:
            points = landmarks_to_array(landmarks)
        except (TypeError, ValueError) as e:
            print(f"警告: 特徵點格式錯誤（{e}），略過此幀")
            return result
        if len(points) < self.feature_extractor.expected_landmarks:
            return result

        result['face_detected'] = True

        # 1. 特徵向量
        features = self.feature_extractor.extract(points, head_transform)
        result['features'] = features
        self.last_features = features

        # 2. 頭部空間仿射擬合（每幀重新擬合）
        affine = self.head_space_mapper.map_into_head_space(points)
        result['affine_valid'] = affine.valid

        # 3. 眼球中心 + 視線向量
        eyes = self.gaze_vector_estimator.estimate(points, affine, timestamp_ms)
        result['left'] = eyes['left']
        result['right'] = eyes['right']

        # 4. 注視點預測（校正中不輸出）
        if features is not None and not self.calibration.is_collecting:
            raw, smoothed = self.calibration.predict(features)
            result['raw_gaze_point'] = raw
            result['gaze_point'] = smoothed

        result['success'] = features is not None
        result['calibration_state'] = self.calibration.state.value
        return result

    def start_calibration(self):
        self.calibration.start()

    def add_calibration_point(self, screen_x: float, screen_y: float, features=None) -> bool:
        """
        加入校正點（默認使用最近一次有效的特徵向量）

        Returns:
            是否成功加入
        """
        if features is None:
            features = self.last_features
        if features is None or not is_finite_vector(features):
            print(f"警告: 沒有可用的特徵向量（未偵測到人臉？），校正點已略過")
            return False
        return self.calibration.add_sample(features, screen_x, screen_y)

    def train(self) -> bool:
        return self.calibration.train()

    def finish_calibration(self) -> bool:
        return self.calibration.finish()

    def cancel_calibration(self):
        self.calibration.cancel()

    @property
    def is_trained(self) -> bool:
        return self.calibration.is_trained

    def reset(self):
        """重新開始追蹤：清除眼球估計、平滑狀態與校正資料"""
        self.gaze_vector_estimator.reset()
        self.calibration.clear()
        self.last_features = None
        self.last_timestamp = None

    def _empty_result(self, timestamp_ms: float) -> Dict:
        empty_eye = {
            'gaze_vector': None,
            'eyeball_center': None,
            'eyeball_center_head': None,
            'eyeball_radius': None,
            'confidence': None,
            'center_detected': False,
            'search_completed': False,
            'pitch': None,
            'yaw': None,
        }
        return {
            'success': False,
            'face_detected': False,
            'timestamp_ms': timestamp_ms,
            'features': None,
            'affine_valid': False,
            'raw_gaze_point': None,
            'gaze_point': None,
            'calibration_state': self.calibration.state.value,
            'left': dict(empty_eye),
            'right': dict(empty_eye),
        }


def create_gaze_tracker(config: Dict = None) -> GazeTracker:
    """
    工廠函數：創建視線追蹤器實例
    """
    return GazeTracker(config)
