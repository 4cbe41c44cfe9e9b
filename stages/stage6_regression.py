"""
第六階段：注視點迴歸
Stage 6: Gaze Point Regression

由校正樣本訓練 特徵向量 → 螢幕座標 的映射，迴歸方法可替換：
- ridge：多變量線性（特徵標準化 + 微小 ridge 正則化），默認
- polynomial：單一特徵的二次多項式（簡化備用方案）

兩種方法使用同一種 16 維特徵向量格式

作者: [你的名字]
日期: 2026-10
"""

import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple

from utils.linalg import solve_normal_equations
from .stage1_feature_extraction import FEATURE_VECTOR_LENGTH


MIN_CALIBRATION_POINTS = 5


class RidgeRegression:
    """
    多變量線性迴歸

    X 以校正集的平均值/標準差標準化，目標值置中，
    W = (XᵗX + λI)⁻¹XᵗY，截距 = 目標平均
    特徵數多於樣本數（5 點校正 × 16 維）時 λ 保證正規矩陣可逆
    """

    name = 'ridge'

    def __init__(self, ridge_lambda: float = 1e-3):
        if ridge_lambda <= 0.0:
            raise ValueError(f"ridge_lambda 必須 > 0: {ridge_lambda}")
        self.ridge_lambda = float(ridge_lambda)

    def fit(self, features: np.ndarray, targets: np.ndarray) -> Optional[Dict]:
        mean = features.mean(axis=0)
        std = features.std(axis=0)
        # 常數欄位不參與
        std = np.where(std > 1e-9, std, 1.0)

        standardized = (features - mean) / std
        target_mean = targets.mean(axis=0)

        weights = solve_normal_equations(standardized, targets - target_mean, ridge=self.ridge_lambda)
        if weights is None:
            return None

        return {
            'mean': mean,
            'std': std,
            'weights': weights,
            'intercept': target_mean,
        }

    def predict(self, params: Dict, features: np.ndarray) -> np.ndarray:
        standardized = (features - params['mean']) / params['std']
        return standardized @ params['weights'] + params['intercept']


class PolynomialRegression:
    """
    單一特徵的多項式迴歸（每個螢幕軸各一條）
    設計矩陣 [1, f, f², ...]，普通最小平方
    """

    name = 'polynomial'

    def __init__(self, order: int = 2, feature_index: int = 0):
        if order < 1:
            raise ValueError(f"polynomial_order 必須 >= 1: {order}")
        if not 0 <= feature_index < FEATURE_VECTOR_LENGTH:
            raise ValueError(f"polynomial_feature_index 超出範圍: {feature_index}")
        self.order = int(order)
        self.feature_index = int(feature_index)

    def _design(self, values: np.ndarray) -> np.ndarray:
        return np.vander(values, self.order + 1, increasing=True)

    def fit(self, features: np.ndarray, targets: np.ndarray) -> Optional[Dict]:
        values = features[:, self.feature_index]
        coefficients = solve_normal_equations(self._design(values), targets)
        if coefficients is None:
            return None
        return {'coefficients': coefficients}

    def predict(self, params: Dict, features: np.ndarray) -> np.ndarray:
        values = np.atleast_1d(features[..., self.feature_index])
        result = self._design(values) @ params['coefficients']
        return result[0] if features.ndim == 1 else result


def create_regression_strategy(config: Dict = None):
    """
    工廠函數：依配置創建迴歸方法

    Raises:
        ValueError: 未知的迴歸方法
    """
    if config is None:
        config = {}

    method = config.get('method', 'ridge')
    if method == 'ridge':
        return RidgeRegression(ridge_lambda=float(config.get('ridge_lambda', 1e-3)))
    if method == 'polynomial':
        return PolynomialRegression(
            order=int(config.get('polynomial_order', 2)),
            feature_index=int(config.get('polynomial_feature_index', 0)),
        )
    raise ValueError(f"未知的迴歸方法: {method}（可用: ridge, polynomial）")


class GazeRegressor:
    """
    注視點迴歸模型

    只有在樣本數足夠、特徵長度一致且數值擬合成功時 trained 才為 True；
    任何失敗都會清除模型
    """

    def __init__(self, config: Dict = None):
        """
        初始化迴歸模型

        Args:
            config: 配置字典：
                - method: 'ridge' 或 'polynomial'，默認 'ridge'
                - ridge_lambda: ridge 正則化係數，默認 1e-3
                - polynomial_order: 多項式階數，默認 2
                - polynomial_feature_index: 多項式使用的特徵索引，默認 0
                - min_calibration_points: 最少校正點數，默認 5
                - feature_vector_length: 特徵向量長度，默認 16
        """
        if config is None:
            config = {}

        self.strategy = create_regression_strategy(config)
        self.min_calibration_points = int(config.get('min_calibration_points', MIN_CALIBRATION_POINTS))
        self.expected_length = int(config.get('feature_vector_length', FEATURE_VECTOR_LENGTH))

        self.params = None
        self.trained = False
        self.feature_length = None
        self.training_rmse = None

        print(f"✓ GazeRegressor 初始化完成")
        print(f"  - 迴歸方法: {self.strategy.name}")
        print(f"  - 最少校正點數: {self.min_calibration_points}")

    def reset(self):
        """清除已訓練的模型"""
        self.params = None
        self.trained = False
        self.feature_length = None
        self.training_rmse = None

    def train(self, samples: Sequence) -> bool:
        """
        訓練模型

        Args:
            samples: CalibrationSample 序列（features, screen_x, screen_y）

        Returns:
            是否訓練成功
        """
        self.reset()

        if len(samples) < self.min_calibration_points:
            print(f"警告: 校正點不足 ({len(samples)} < {self.min_calibration_points})，拒絕訓練")
            return False

        lengths = {len(s.features) for s in samples}
        if lengths != {self.expected_length}:
            print(f"警告: 特徵向量長度不一致或錯誤 {sorted(lengths)}，期望 {self.expected_length}")
            return False

        features = np.array([s.features for s in samples], dtype=np.float64)
        targets = np.array([[s.screen_x, s.screen_y] for s in samples], dtype=np.float64)
        if not (np.all(np.isfinite(features)) and np.all(np.isfinite(targets))):
            print(f"警告: 校正資料含非有限值，拒絕訓練")
            return False

        params = self.strategy.fit(features, targets)
        if params is None:
            print(f"警告: 迴歸擬合失敗（設計矩陣奇異）")
            return False

        predictions = self.strategy.predict(params, features)
        if not np.all(np.isfinite(predictions)):
            print(f"警告: 迴歸結果含非有限值")
            return False

        self.params = params
        self.trained = True
        self.feature_length = features.shape[1]
        self.training_rmse = float(np.sqrt(np.mean(np.sum((predictions - targets) ** 2, axis=1))))

        print(f"✓ 注視點模型訓練完成")
        print(f"  - 樣本數: {len(samples)}")
        print(f"  - 迴歸方法: {self.strategy.name}")
        print(f"  - 訓練 RMSE: {self.training_rmse:.2f} px")
        return True

    def predict(self, features) -> Optional[Tuple[float, float]]:
        """
        預測螢幕座標

        Returns:
            (x, y)；模型未訓練、特徵長度不符或輸出非有限值時回傳 None
        """
        if features is None:
            return None
        try:
            x = np.asarray(features, dtype=np.float64).reshape(-1)
        except (TypeError, ValueError):
            return None

        if not self.trained or len(x) != self.feature_length:
            return None
        if not np.all(np.isfinite(x)):
            return None

        result = self.strategy.predict(self.params, x)
        if not np.all(np.isfinite(result)):
            return None
        return float(result[0]), float(result[1])


def create_gaze_regressor(config: Dict = None) -> GazeRegressor:
    """
    工廠函數：創建迴歸模型實例
    """
    return GazeRegressor(config)
