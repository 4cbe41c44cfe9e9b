"""
測試視線追蹤主流程
Test Gaze Tracker Pipeline

校正 → 訓練 → 追蹤，使用合成人臉
"""

from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest

from gaze_tracker import GazeTracker, create_gaze_tracker, load_config
from utils.synthetic_face import create_head_transform, create_synthetic_landmarks, screen_to_gaze_angles


CONFIG_PATH = Path(__file__).parent / 'config.yaml'
CORNERS = [(0, 0), (1920, 0), (960, 540), (0, 1080), (1920, 1080)]

FAST_CONFIG = {
    'eyeball_detection': {
        'points_threshold': 44,
        'points_history_size': 88,
    },
}


def landmarks_for_target(x, y):
    yaw, pitch = screen_to_gaze_angles(x, y)
    return create_synthetic_landmarks(yaw, pitch)


def calibrate(tracker, start_ms=0.0):
    tracker.start_calibration()
    timestamp = start_ms
    for x, y in CORNERS:
        tracker.process_frame(landmarks_for_target(x, y), timestamp_ms=timestamp)
        assert tracker.add_calibration_point(x, y)
        timestamp += 33.0
    return timestamp


def test_no_face():
    tracker = GazeTracker()

    result = tracker.process_frame(None, timestamp_ms=0.0)

    assert not result['success']
    assert not result['face_detected']
    assert result['gaze_point'] is None
    assert result['calibration_state'] == 'idle'


def test_incomplete_landmarks():
    tracker = GazeTracker()
    result = tracker.process_frame(create_synthetic_landmarks()[:468], timestamp_ms=0.0)

    assert not result['face_detected']
    assert result['features'] is None


def test_untrained_frame_has_features_but_no_gaze():
    tracker = GazeTracker()
    result = tracker.process_frame(create_synthetic_landmarks(), timestamp_ms=0.0)

    assert result['success']
    assert result['face_detected']
    assert result['affine_valid']
    assert len(result['features']) == 16
    assert result['gaze_point'] is None
    assert result['raw_gaze_point'] is None


def test_calibration_and_tracking():
    tracker = GazeTracker(FAST_CONFIG)
    timestamp = calibrate(tracker)
    assert tracker.train()
    assert tracker.is_trained

    result = tracker.process_frame(landmarks_for_target(960, 540), timestamp_ms=timestamp)

    assert result['calibration_state'] == 'trained'
    assert result['gaze_point'] is not None
    assert result['gaze_point'] == pytest.approx(result['raw_gaze_point'])
    assert result['gaze_point'] == pytest.approx((960, 540), abs=20.0)


def test_tracking_between_calibration_points():
    """非校正點的注視位置也應接近"""
    tracker = GazeTracker(FAST_CONFIG)
    timestamp = calibrate(tracker)
    tracker.train()

    result = tracker.process_frame(landmarks_for_target(480, 270), timestamp_ms=timestamp)

    x, y = result['raw_gaze_point']
    assert np.hypot(x - 480, y - 270) < 100.0


def test_no_prediction_while_collecting():
    tracker = GazeTracker(FAST_CONFIG)
    timestamp = calibrate(tracker)
    tracker.train()

    tracker.add_calibration_point(100, 100)
    result = tracker.process_frame(landmarks_for_target(960, 540), timestamp_ms=timestamp)

    assert result['calibration_state'] == 'collecting'
    assert result['gaze_point'] is None
    assert not tracker.is_trained


def test_train_with_too_few_points():
    tracker = GazeTracker()
    tracker.start_calibration()
    for k, (x, y) in enumerate(CORNERS[:4]):
        tracker.process_frame(landmarks_for_target(x, y), timestamp_ms=33.0 * k)
        tracker.add_calibration_point(x, y)

    assert not tracker.train()
    assert not tracker.is_trained

    assert not tracker.finish_calibration()
    assert tracker.calibration.state.value == 'idle'


def test_finish_and_cancel():
    tracker = GazeTracker()
    calibrate(tracker)
    assert tracker.finish_calibration()
    assert tracker.is_trained

    tracker.start_calibration()
    tracker.cancel_calibration()
    assert not tracker.is_trained
    assert tracker.calibration.sample_count == 0


def test_add_point_without_features():
    tracker = GazeTracker()
    tracker.start_calibration()

    assert not tracker.add_calibration_point(0, 0)
    assert tracker.add_calibration_point(0, 0, features=np.ones(16))


def test_calibration_point_after_lost_face_is_skipped():
    """人臉消失後，校正點不可沿用上一幀的特徵"""
    tracker = GazeTracker()
    tracker.start_calibration()
    tracker.process_frame(landmarks_for_target(0, 0), timestamp_ms=0.0)

    tracker.process_frame(None, timestamp_ms=33.0)
    assert not tracker.add_calibration_point(1920, 1080)

    tracker.process_frame(create_synthetic_landmarks()[:100], timestamp_ms=66.0)
    assert not tracker.add_calibration_point(1920, 1080)

    assert tracker.calibration.sample_count == 0
    assert tracker.last_features is None


def test_malformed_landmarks_do_not_raise():
    """形狀錯誤或列長度不一的特徵點：本幀失敗，追蹤繼續"""
    tracker = GazeTracker()
    ragged = create_synthetic_landmarks().tolist()
    ragged[10] = [0.1, 0.2]

    for k, frame in enumerate([np.zeros((478, 2)), ragged, 'not landmarks']):
        result = tracker.process_frame(frame, timestamp_ms=33.0 * k)
        assert not result['success']
        assert not result['face_detected']
        assert result['features'] is None

    result = tracker.process_frame(create_synthetic_landmarks(), timestamp_ms=100.0)
    assert result['success']


def test_stages_built_from_config():
    """各階段由配置區段建立"""
    config = {
        'regression': {'method': 'polynomial', 'polynomial_order': 3},
        'smoothing': {'measurement_noise': 9.0},
    }
    tracker = create_gaze_tracker(config)

    assert tracker.calibration.regressor.strategy.order == 3
    assert tracker.calibration.smoother.filters[0].measurement_noise == 9.0
    assert tracker.feature_extractor.feature_length == 16


def test_backward_timestamp_is_rejected():
    tracker = GazeTracker()
    tracker.process_frame(create_synthetic_landmarks(), timestamp_ms=100.0)

    result = tracker.process_frame(create_synthetic_landmarks(), timestamp_ms=50.0)

    assert not result['success']
    assert not result['face_detected']
    assert tracker.last_timestamp == 100.0


def test_eyeball_detection_through_pipeline():
    tracker = GazeTracker(FAST_CONFIG)
    result = None
    for k in range(6):
        points = create_synthetic_landmarks(0.1 * np.sin(k), 0.05 * np.cos(k))
        result = tracker.process_frame(points, timestamp_ms=33.0 * k)

    for side in ('left', 'right'):
        assert result[side]['center_detected']
        assert result[side]['gaze_vector'] is not None
        assert result[side]['confidence'] > 0.995


def test_head_transform_and_landmark_objects():
    tracker = GazeTracker()
    points = create_synthetic_landmarks()
    objects = [SimpleNamespace(x=p[0], y=p[1], z=p[2]) for p in points]
    transform = create_head_transform(np.eye(3), [1.0, 2.0, -40.0])

    result = tracker.process_frame(objects, head_transform=transform, timestamp_ms=0.0)

    assert result['success']
    np.testing.assert_allclose(result['features'][10:13], [1.0, 2.0, -40.0])


def test_reset():
    tracker = GazeTracker(FAST_CONFIG)
    calibrate(tracker)
    tracker.train()

    tracker.reset()

    assert not tracker.is_trained
    assert tracker.last_features is None
    assert tracker.last_timestamp is None
    # 時間戳可從頭開始
    result = tracker.process_frame(create_synthetic_landmarks(), timestamp_ms=0.0)
    assert result['success']
    assert not result['left']['center_detected']


def test_config_file():
    config = load_config(CONFIG_PATH)
    assert config['eyeball_detection']['points_threshold'] == 300
    assert config['regression']['method'] == 'ridge'

    tracker = GazeTracker.from_config_file(CONFIG_PATH)
    assert tracker.calibration.store.min_calibration_points == 5

    with pytest.raises(FileNotFoundError):
        load_config(CONFIG_PATH.parent / 'missing.yaml')


def test_invalid_config_raises():
    with pytest.raises(ValueError):
        create_gaze_tracker({'regression': {'method': 'unknown'}})


def main():
    """主函數"""
    print("=" * 70)
    print("測試視線追蹤主流程")
    print("=" * 70)

    test_no_face()
    test_incomplete_landmarks()
    test_untrained_frame_has_features_but_no_gaze()
    test_calibration_and_tracking()
    test_tracking_between_calibration_points()
    test_no_prediction_while_collecting()
    test_train_with_too_few_points()
    test_finish_and_cancel()
    test_add_point_without_features()
    test_calibration_point_after_lost_face_is_skipped()
    test_malformed_landmarks_do_not_raise()
    test_stages_built_from_config()
    test_backward_timestamp_is_rejected()
    test_eyeball_detection_through_pipeline()
    test_head_transform_and_landmark_objects()
    test_reset()
    test_config_file()
    test_invalid_config_raises()

    print("\n✓ 主流程測試完成")


if __name__ == '__main__':
    main()
