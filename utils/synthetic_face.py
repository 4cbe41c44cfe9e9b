"""
合成人臉特徵點生成器
Synthetic Face Landmark Generator

以通用人臉模型 + 已知眼球球體產生 478 點特徵點，
用於 demo session 與測試（幾何真值已知）
"""

import numpy as np
from typing import Dict, Optional, Sequence, Tuple
from scipy.spatial.transform import Rotation as R

from . import face_model
from . import landmarks as lm


# 虹膜環與瞳孔軸夾角（約 6 mm / 20 mm）
IRIS_ANGLE = np.arcsin(0.3)
# 眼瞼點與正前方夾角
EYELID_ANGLE = np.deg2rad(40.0)


def gaze_direction(yaw: float, pitch: float) -> np.ndarray:
    """
    視線角度 → 頭部空間單位方向（-Z 朝向相機）

    與 stage4 的 angles_to_vector 相同慣例：
    yaw 為正時朝 -X，pitch 為正時朝 -Y（向上）
    """
    return np.array([
        -np.cos(pitch) * np.sin(yaw),
        -np.sin(pitch),
        -np.cos(pitch) * np.cos(yaw),
    ])


def _orthonormal_basis(direction: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    helper = np.array([0.0, 1.0, 0.0]) if abs(direction[1]) < 0.9 else np.array([1.0, 0.0, 0.0])
    u = np.cross(direction, helper)
    u /= np.linalg.norm(u)
    v = np.cross(direction, u)
    return u, v


def sphere_cap_points(center: np.ndarray,
                      radius: float,
                      direction: np.ndarray,
                      angle: float,
                      count: int,
                      phase: float = 0.0) -> np.ndarray:
    """在球面上、與 direction 夾角為 angle 的圓上均勻取 count 個點"""
    u, v = _orthonormal_basis(direction)
    points = []
    for k in range(count):
        theta = phase + 2.0 * np.pi * k / count
        ring = np.cos(theta) * u + np.sin(theta) * v
        d = np.cos(angle) * direction + np.sin(angle) * ring
        points.append(center + radius * d)
    return np.array(points)


def rotation_from_euler(pitch: float, yaw: float, roll: float) -> np.ndarray:
    """
    Euler 角 → 旋轉矩陣 R = Rz(roll)·Ry(yaw)·Rx(pitch)

    與 stage1 的 rotation_to_euler 互為反函數（非萬向鎖情況）
    """
    return R.from_euler('xyz', [pitch, yaw, roll]).as_matrix()


def create_head_transform(rotation: np.ndarray, translation: Sequence[float]) -> np.ndarray:
    """建立 4x4 row-major 頭部變換矩陣"""
    matrix = np.eye(4)
    matrix[:3, :3] = rotation
    matrix[:3, 3] = translation
    return matrix


def create_synthetic_landmarks(gaze_yaw: float = 0.0,
                               gaze_pitch: float = 0.0,
                               rotation: Optional[np.ndarray] = None,
                               translation: Sequence[float] = (0.5, 0.5, 0.0),
                               scale: float = 0.6,
                               eye_radius: float = face_model.DEFAULT_EYE_RADIUS,
                               noise: float = 0.0,
                               rng: Optional[np.random.RandomState] = None) -> np.ndarray:
    """
    產生一幀合成特徵點

    Args:
        gaze_yaw / gaze_pitch: 雙眼視線角度（弧度）
        rotation: 頭部旋轉矩陣 (3, 3)，預設為單位矩陣
        translation: 頭部在影像正規化空間的平移
        scale: 頭部空間 → 影像空間的縮放
        eye_radius: 眼球半徑（頭部空間）
        noise: 高斯雜訊標準差（影像空間）
        rng: 亂數產生器

    Returns:
        landmarks: (478, 3) 陣列
    """
    if rotation is None:
        rotation = np.eye(3)
    if rng is None:
        rng = np.random.RandomState(0)
    translation = np.asarray(translation, dtype=np.float64)

    model_points = np.zeros((lm.NUM_LANDMARKS, 3))
    # 其餘網格點放在臉部範圍內，不參與計算
    model_points[:] = rng.uniform(-0.05, 0.05, size=(lm.NUM_LANDMARKS, 3))

    model_points[lm.BASE_LANDMARKS] = face_model.BASE_FACE_MODEL

    direction = gaze_direction(gaze_yaw, gaze_pitch)
    forward = np.array([0.0, 0.0, -1.0])
    eyes = [
        (face_model.DEFAULT_LEFT_EYE_CENTER_MODEL, lm.LEFT_PUPIL, lm.LEFT_IRIS, lm.ADJACENT_LEFT_EYELID_PART),
        (face_model.DEFAULT_RIGHT_EYE_CENTER_MODEL, lm.RIGHT_PUPIL, lm.RIGHT_IRIS, lm.ADJACENT_RIGHT_EYELID_PART),
    ]
    for center, pupil_idx, iris_idx, eyelid_idx in eyes:
        model_points[pupil_idx] = center + eye_radius * direction
        model_points[iris_idx] = sphere_cap_points(center, eye_radius, direction, IRIS_ANGLE, len(iris_idx))
        model_points[eyelid_idx] = sphere_cap_points(
            center, eye_radius, forward, EYELID_ANGLE, len(eyelid_idx), phase=0.3
        )

    points = scale * (model_points @ np.asarray(rotation).T) + translation
    if noise > 0.0:
        points = points + rng.normal(0.0, noise, size=points.shape)
    return points


def screen_to_gaze_angles(screen_x: float,
                          screen_y: float,
                          screen_size: Tuple[int, int] = (1920, 1080),
                          yaw_range: float = 0.5,
                          pitch_range: float = 0.3) -> Tuple[float, float]:
    """將螢幕座標線性映射為模擬的視線角度"""
    width, height = screen_size
    yaw = (screen_x / width - 0.5) * yaw_range
    pitch = (screen_y / height - 0.5) * pitch_range
    return yaw, pitch


def create_demo_session(num_tracking_frames: int = 100,
                        screen_size: Tuple[int, int] = (1920, 1080),
                        warmup_frames: int = 40,
                        frame_interval_ms: float = 33.0,
                        noise: float = 0.0,
                        seed: int = 0,
                        head_angles: Tuple[float, float, float] = (0.0, 0.0, 0.0)) -> list:
    """
    產生完整的 demo session（記錄格式與 process_landmarks 的 JSON Lines 相同）

    流程：暖機（眼球中心搜尋）→ 5 點校正 → 訓練 → 追蹤

    Args:
        head_angles: 固定的頭部姿態 (pitch, yaw, roll)，同時用於特徵點與 head_transform
    """
    rng = np.random.RandomState(seed)
    width, height = screen_size
    rotation = rotation_from_euler(*head_angles)
    head_transform = create_head_transform(rotation, [0.0, 0.0, -50.0]).tolist()

    records = []
    timestamp = 0.0

    def frame(yaw, pitch, **extra) -> Dict:
        nonlocal timestamp
        timestamp += frame_interval_ms
        points = create_synthetic_landmarks(yaw, pitch, rotation=rotation, noise=noise, rng=rng)
        record = {
            'timestamp_ms': timestamp,
            'landmarks': points.tolist(),
            'head_transform': head_transform,
        }
        record.update(extra)
        return record

    for i in range(warmup_frames):
        yaw = 0.2 * np.sin(i * 0.4)
        pitch = 0.1 * np.cos(i * 0.3)
        records.append(frame(yaw, pitch))

    targets = [(0, 0), (width, 0), (width / 2, height / 2), (0, height), (width, height)]
    for k, (tx, ty) in enumerate(targets):
        yaw, pitch = screen_to_gaze_angles(tx, ty, screen_size)
        extra = {'calibration_target': [tx, ty]}
        if k == 0:
            extra['event'] = 'start_calibration'
        records.append(frame(yaw, pitch, **extra))
    records[-1]['event'] = 'train'

    for i in range(num_tracking_frames):
        sx = rng.uniform(0, width)
        sy = rng.uniform(0, height)
        yaw, pitch = screen_to_gaze_angles(sx, sy, screen_size)
        records.append(frame(yaw, pitch, true_target=[sx, sy]))

    return records
