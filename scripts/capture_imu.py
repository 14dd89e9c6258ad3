#!/usr/bin/env python3
"""
Capture the raw BWT901 byte stream and save it to a pickle file.
This allows offline replay of throws through the detector.

Usage:
    python scripts/capture_imu.py [output_file.pkl] [--replay]

Default output: ~/discflight_sessions/imu_capture_YYYYMMDD_HHMMSS.pkl
"""

import sys
import time
from datetime import datetime
from pathlib import Path

from discflight.bwt901 import BWT901Sensor
from discflight.capture import load_capture, replay_chunks, save_capture


def replay(path: Path):
    data = load_capture(path)
    events = replay_chunks(data["chunks"])
    print(f"{len(data['chunks'])} chunks, {len(events)} release(s)")
    for i, event in enumerate(events, 1):
        vx, vy, vz = event.release_velocity
        print(f"[{i}] t={event.timestamp:.2f}s speed={event.release_speed:.1f} m/s "
              f"v=({vx:+.1f}, {vy:+.1f}, {vz:+.1f}) spin={event.spin_center_dps or 0:.0f} deg/s")


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    if args:
        output_path = Path(args[0]).expanduser().resolve()
    else:
        output_dir = Path.home() / "discflight_sessions"
        output_dir.mkdir(exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_path = output_dir / f"imu_capture_{timestamp}.pkl"

    if "--replay" in sys.argv:
        replay(output_path)
        return

    print("=== IMU Capture Tool ===")
    print(f"Output file: {output_path}")
    print("Connecting to sensor...")

    sensor = BWT901Sensor()
    sensor.connect()
    print(f"Sensor: {sensor.port} @ {sensor.baud} baud")

    chunks = []
    metadata = {
        "port": sensor.port,
        "baud": sensor.baud,
        "capture_start": datetime.now().isoformat(),
    }

    print("\nCapturing raw frames. Throw the disc to record a throw.")
    print("Press Ctrl+C to stop and save\n")

    try:
        while True:
            chunk = sensor.serial.read(max(1, sensor.serial.in_waiting))
            if chunk:
                chunks.append((time.monotonic(), chunk))
                if len(chunks) % 100 == 0:
                    print(".", end="", flush=True)
    except KeyboardInterrupt:
        print(f"\n\nStopping... captured {len(chunks)} chunks")
    finally:
        sensor.disconnect()

    if chunks:
        metadata["capture_end"] = datetime.now().isoformat()
        save_capture(output_path, chunks, metadata)
        print(f"\nSaved {len(chunks)} chunks to {output_path}")
        print(f"File size: {output_path.stat().st_size / 1024:.1f} KB")
        print(f"\nReplay with: python scripts/capture_imu.py {output_path} --replay")
    else:
        print("\nNo data to save.")


if __name__ == "__main__":
    main()
