"""
視線估計系統 - 七個階段模組
Gaze Estimation System - Seven Stage Modules
"""

from .stage1_feature_extraction import FeatureExtractor, FEATURE_VECTOR_LENGTH
from .stage2_head_space import AffineModel, HeadSpaceMapper
from .stage3_eyeball_detection import EyeballDetector
from .stage4_gaze_vector import GazeVectorEstimator
from .stage5_calibration import CalibrationSample, CalibrationSession, CalibrationState, CalibrationStore
from .stage6_regression import GazeRegressor, MIN_CALIBRATION_POINTS
from .stage7_smoothing import GazePointSmoother, KalmanFilter1D, MovingAverage

__all__ = [
    'FeatureExtractor',
    'FEATURE_VECTOR_LENGTH',
    'AffineModel',
    'HeadSpaceMapper',
    'EyeballDetector',
    'GazeVectorEstimator',
    'CalibrationSample',
    'CalibrationSession',
    'CalibrationState',
    'CalibrationStore',
    'GazeRegressor',
    'MIN_CALIBRATION_POINTS',
    'GazePointSmoother',
    'KalmanFilter1D',
    'MovingAverage',
]
