"""
特徵點序列視線估計處理腳本
Landmark Session Gaze Processor

功能：
- 讀取記錄好的特徵點序列（JSON Lines，每行一幀）
- 依時間順序逐幀執行視線追蹤（含校正事件）
- 導出每一幀的注視點與眼球數據（CSV 格式）
- --demo 模式：產生合成 session 直接處理

作者: [你的名字]
日期: 2026-10
"""

import argparse
import json
import time
from pathlib import Path

import numpy as np
import pandas as pd
from tqdm import tqdm

from gaze_tracker import GazeTracker, load_config
from utils.synthetic_face import create_demo_session


def load_session(session_path) -> list:
    """
    載入 JSON Lines 格式的特徵點序列

    Raises:
        FileNotFoundError: 文件不存在
        ValueError: 某一行不是合法 JSON
    """
    session_path = Path(session_path)
    if not session_path.exists():
        raise FileNotFoundError(f"特徵點序列文件不存在: {session_path}")

    records = []
    with open(session_path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError as e:
                raise ValueError(f"第 {line_no} 行 JSON 格式錯誤: {e}")
    return records


def save_session(records: list, session_path):
    """將 session 寫成 JSON Lines"""
    session_path = Path(session_path)
    session_path.parent.mkdir(parents=True, exist_ok=True)
    with open(session_path, 'w', encoding='utf-8') as f:
        for record in records:
            f.write(json.dumps(record) + '\n')


class LandmarkGazeProcessor:
    """特徵點序列視線估計處理器"""

    def __init__(self, config_path=None, config=None):
        """
        初始化處理器

        Args:
            config_path: 配置文件路徑（優先）
            config: 配置字典（config_path 為 None 時使用）
        """
        if config_path is not None:
            config = load_config(config_path)
        self.config = config or {}

        tracker_config = self.config.get('tracker') or {}
        self.screen_size = (
            int(tracker_config.get('screen_width', 1920)),
            int(tracker_config.get('screen_height', 1080)),
        )

        self.tracker = GazeTracker(config=self.config)

    def _apply_events(self, record: dict):
        """幀處理完成後套用校正事件（開始 → 加點 → 訓練/取消）"""
        event = record.get('event')

        if event == 'start_calibration':
            self.tracker.start_calibration()

        target = record.get('calibration_target')
        if target is not None:
            self.tracker.add_calibration_point(float(target[0]), float(target[1]))

        if event == 'train':
            self.tracker.train()
        elif event == 'finish_calibration':
            self.tracker.finish_calibration()
        elif event == 'cancel_calibration':
            self.tracker.cancel_calibration()

    @staticmethod
    def _result_row(frame_idx: int, result: dict, record: dict) -> dict:
        row = {
            'frame': frame_idx,
            'timestamp_ms': result['timestamp_ms'],
            'face_detected': result['face_detected'],
            'success': result['success'],
            'affine_valid': result['affine_valid'],
            'calibration_state': result['calibration_state'],
            'gaze_x': np.nan,
            'gaze_y': np.nan,
            'raw_gaze_x': np.nan,
            'raw_gaze_y': np.nan,
        }
        if result['gaze_point'] is not None:
            row['gaze_x'], row['gaze_y'] = result['gaze_point']
        if result['raw_gaze_point'] is not None:
            row['raw_gaze_x'], row['raw_gaze_y'] = result['raw_gaze_point']

        for side in ('left', 'right'):
            eye = result[side]
            row[f'{side}_confidence'] = eye['confidence'] if eye['confidence'] is not None else np.nan
            row[f'{side}_center_detected'] = eye['center_detected']
            row[f'{side}_gaze_pitch_deg'] = np.rad2deg(eye['pitch']) if eye['pitch'] is not None else np.nan
            row[f'{side}_gaze_yaw_deg'] = np.rad2deg(eye['yaw']) if eye['yaw'] is not None else np.nan

        # 有真值時計算誤差（平滑後 / 原始）
        true_target = record.get('true_target')
        for column, point in (('error_px', result['gaze_point']), ('raw_error_px', result['raw_gaze_point'])):
            if true_target is not None and point is not None:
                row[column] = float(np.hypot(point[0] - true_target[0], point[1] - true_target[1]))
            else:
                row[column] = np.nan
        return row

    def process_session(self, records: list, output_csv_path=None, max_frames=None):
        """
        依序處理一個 session

        Args:
            records: 每幀記錄列表
            output_csv_path: 輸出 CSV 路徑（None 表示不輸出）
            max_frames: 最大處理幀數

        Returns:
            results_df: 每幀結果 DataFrame；沒有任何幀時回傳 None
        """
        if max_frames:
            records = records[:max_frames]

        print(f"\n處理 session: {len(records)} 幀")
        print("=" * 70)

        results_data = []
        start_time = time.time()

        for frame_idx, record in enumerate(tqdm(records, desc="處理進度", unit="frames")):
            result = self.tracker.process_frame(
                record.get('landmarks'),
                head_transform=record.get('head_transform'),
                timestamp_ms=record.get('timestamp_ms'),
            )
            self._apply_events(record)
            results_data.append(self._result_row(frame_idx, result, record))

        elapsed_time = time.time() - start_time

        if not results_data:
            print("✗ 沒有任何幀")
            return None

        results_df = pd.DataFrame(results_data)

        print("\n" + "=" * 70)
        print("處理完成！")
        print("=" * 70)
        print(f"總幀數: {len(results_df)}")
        print(f"偵測到人臉: {int(results_df['face_detected'].sum())} 幀")
        print(f"輸出注視點: {int(results_df['gaze_x'].notna().sum())} 幀")
        print(f"總耗時: {elapsed_time:.2f} 秒")
        if elapsed_time > 0:
            print(f"平均速度: {len(results_df) / elapsed_time:.2f} FPS")

        errors = results_df['error_px'].dropna()
        if len(errors) > 0:
            raw_errors = results_df['raw_error_px'].dropna()
            print(f"\n注視點誤差:")
            print(f"  - 平均值: {errors.mean():.1f} px（原始 {raw_errors.mean():.1f} px）")
            print(f"  - 中位數: {errors.median():.1f} px（原始 {raw_errors.median():.1f} px）")

        if output_csv_path:
            output_csv_path = Path(output_csv_path)
            output_csv_path.parent.mkdir(parents=True, exist_ok=True)
            results_df.to_csv(output_csv_path, index=False)
            print(f"\n✓ 視線數據已保存到: {output_csv_path}")

        return results_df


def main():
    """主函數"""
    parser = argparse.ArgumentParser(description='特徵點序列視線估計')
    parser.add_argument('--input', '-i', type=str, default=None,
                       help='輸入特徵點序列（JSON Lines）')
    parser.add_argument('--demo', type=int, default=None,
                       help='產生合成 session，指定追蹤幀數')
    parser.add_argument('--save-demo', type=str, default=None,
                       help='將合成 session 另存為 JSON Lines（可選）')
    parser.add_argument('--csv', '-c', type=str, default='output/gaze_data.csv',
                       help='輸出 CSV 數據路徑 (default: output/gaze_data.csv)')
    parser.add_argument('--config', type=str, default=None,
                       help='配置文件路徑（可選，默認使用內建參數）')
    parser.add_argument('--max-frames', type=int, default=None,
                       help='最大處理幀數（用於測試）')

    args = parser.parse_args()

    if args.input is None and args.demo is None:
        print("錯誤: 請指定 --input 或 --demo")
        print("範例: python process_landmarks.py --demo 200")
        return 1

    try:
        processor = LandmarkGazeProcessor(config_path=args.config)

        if args.demo is not None:
            records = create_demo_session(num_tracking_frames=args.demo, screen_size=processor.screen_size)
            if args.save_demo:
                save_session(records, args.save_demo)
                print(f"✓ 合成 session 已保存: {args.save_demo}")
        else:
            records = load_session(args.input)

        results_df = processor.process_session(
            records,
            output_csv_path=args.csv,
            max_frames=args.max_frames,
        )

        if results_df is not None:
            print("\n✓ 處理完成！")
            return 0
        print("\n✗ 處理失敗！")
        return 1

    except Exception as e:
        print(f"\n錯誤: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == '__main__':
    exit(main())
