"""
測試第七階段：時間平滑
Test Stage 7: Temporal Smoothing
"""

import numpy as np
import pytest

from stages.stage7_smoothing import GazePointSmoother, KalmanFilter1D, MovingAverage


def test_first_observation_passes_through():
    kalman = KalmanFilter1D()
    assert kalman.update(123.0) == 123.0
    assert kalman.initialized


def test_single_update():
    """Q = R = P0 = 1：P = 2，K = 2/3"""
    kalman = KalmanFilter1D(1.0, 1.0, 1.0)
    kalman.update(0.0)

    assert kalman.update(10.0) == pytest.approx(20.0 / 3.0)
    assert kalman.error_covariance == pytest.approx(2.0 / 3.0)


def test_steady_state_gain():
    """Q = 1，R = 25：穩態增益約 0.181"""
    kalman = KalmanFilter1D(1.0, 25.0, 1.0)
    kalman.update(0.0)
    for _ in range(200):
        kalman.update(0.0)

    predicted = kalman.error_covariance + kalman.process_noise
    gain = predicted / (predicted + kalman.measurement_noise)
    assert gain == pytest.approx(0.181, abs=1e-3)


def test_converges_to_constant_input():
    kalman = KalmanFilter1D()
    kalman.update(0.0)
    for _ in range(100):
        value = kalman.update(500.0)
    assert value == pytest.approx(500.0, abs=1e-3)


def test_reset():
    kalman = KalmanFilter1D()
    kalman.update(5.0)
    kalman.update(7.0)

    kalman.reset()

    assert not kalman.initialized
    assert kalman.update(-3.0) == -3.0


def test_invalid_parameters():
    with pytest.raises(ValueError):
        KalmanFilter1D(measurement_noise=0.0)
    with pytest.raises(ValueError):
        KalmanFilter1D(process_noise=-1.0)


def test_gaze_point_smoother():
    smoother = GazePointSmoother()

    assert smoother.update((100.0, 200.0)) == (100.0, 200.0)
    x, y = smoother.update((200.0, 200.0))
    assert 100.0 < x < 200.0
    assert y == pytest.approx(200.0)


def test_smoother_ignores_non_finite():
    smoother = GazePointSmoother()
    smoother.update((10.0, 10.0))

    assert smoother.update((np.nan, 5.0)) is None
    assert smoother.update(None) is None
    assert smoother.filters[0].estimate == 10.0
    assert smoother.filters[1].estimate == 10.0


def test_smoother_config():
    smoother = GazePointSmoother({'process_noise': 1.0, 'measurement_noise': 1.0})
    smoother.update((0.0, 0.0))
    x, _ = smoother.update((10.0, 0.0))
    assert x == pytest.approx(20.0 / 3.0)

    smoother.reset()
    assert not smoother.initialized


def test_moving_average():
    average = MovingAverage(window=2)

    np.testing.assert_allclose(average.update([0.0, 0.0, 0.0]), [0.0, 0.0, 0.0])
    np.testing.assert_allclose(average.update([2.0, 4.0, 6.0]), [1.0, 2.0, 3.0])
    np.testing.assert_allclose(average.update([4.0, 4.0, 4.0]), [3.0, 4.0, 5.0])
    assert len(average) == 2

    average.reset()
    assert len(average) == 0

    with pytest.raises(ValueError):
        MovingAverage(window=0)


def main():
    """主函數"""
    print("=" * 70)
    print("測試第七階段：時間平滑")
    print("=" * 70)

    test_first_observation_passes_through()
    test_single_update()
    test_steady_state_gain()
    test_converges_to_constant_input()
    test_reset()
    test_invalid_parameters()
    test_gaze_point_smoother()
    test_smoother_ignores_non_finite()
    test_smoother_config()
    test_moving_average()

    print("\n✓ 第七階段測試完成")


if __name__ == '__main__':
    main()
