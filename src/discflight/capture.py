"""
Raw sensor capture files and offline replay.

A capture is the exact byte stream the sensor delivered, chunked as it was
read, with host arrival times. Replaying it through a fresh decoder and
detector on a synthetic tick clock reproduces detection offline.

Usage:
    chunks = load_capture("~/discflight_sessions/imu_capture_20250101_120000.pkl")["chunks"]
    for event in replay_chunks(chunks):
        print(event.release_speed)
"""

import logging
import pickle
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .bwt901 import FrameDecoder
from .detection import DetectorConfig, LatestSampleCell, ReleaseEvent, ThrowDetector

logger = logging.getLogger("discflight.capture")

Chunk = Tuple[float, bytes]


def save_capture(path: Union[str, Path], chunks: List[Chunk], metadata: Optional[Dict[str, Any]] = None) -> Path:
    """Write captured (arrival_time, bytes) chunks to a pickle file."""
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        pickle.dump({"metadata": metadata or {}, "chunks": list(chunks)}, f)
    return path


def load_capture(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a capture written by save_capture()."""
    with open(Path(path).expanduser(), "rb") as f:
        data = pickle.load(f)
    if "chunks" not in data:
        raise ValueError(f"{path} is not a sensor capture")
    return data


def replay_chunks(
    chunks: Iterable[Chunk],
    config: Optional[DetectorConfig] = None,
    rearm: bool = True,
) -> List[ReleaseEvent]:
    """
    Run recorded chunks through the decoder and detector.

    Ticks are placed every config.tick_interval seconds starting at the
    first chunk's arrival time. All ticks due before a chunk arrives run
    before that chunk is decoded.

    Args:
        chunks: (arrival_time, bytes) pairs in arrival order
        config: Detector settings (defaults if None)
        rearm: Reset the detector after each release to find further throws

    Returns:
        Release events in order
    """
    config = config or DetectorConfig()
    decoder = FrameDecoder()
    cell = LatestSampleCell()
    detector = ThrowDetector(cell, config)

    events: List[ReleaseEvent] = []
    interval = config.tick_interval
    next_tick: Optional[float] = None

    def run_tick(now: float):
        event = detector.tick(now)
        if event is not None:
            events.append(event)
            if rearm:
                detector.reset()

    for arrival, data in chunks:
        if next_tick is None:
            next_tick = arrival
        while next_tick < arrival:
            run_tick(next_tick)
            next_tick += interval
        for sample in decoder.feed(data):
            cell.publish(sample)

    if next_tick is not None:
        run_tick(next_tick)

    logger.info(f"Replayed {decoder.frames_decoded} frames: {len(events)} release(s)")
    return events
