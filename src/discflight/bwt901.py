"""
WitMotion BWT901 9-axis IMU driver for disc throw capture.

This module provides a Python interface to the BWT901 inertial sensor
over a USB/serial link, and a decoder for the same 20-byte frames when
they arrive as BLE notification payloads.

Wire format (one frame, little-endian):
- 2-byte header 0x55 0x61
- 9 signed 16-bit fields: ax, ay, az, wx, wy, wz, roll, pitch, yaw
- No checksum

Scaling to physical units:
- Acceleration: raw / 32768 * 16 * 9.82   -> m/s^2  (+/-16 g range)
- Angular rate: raw / 32768 * 2000        -> deg/s  (+/-2000 deg/s range)
- Orientation:  raw / 32768 * 180         -> degrees

Any 20 bytes following the header are accepted as a frame, so the header
sequence appearing inside payload data can produce a false decode.
"""

import logging
import struct
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

import serial
import serial.tools.list_ports

# Configure logging for raw sensor data
logger = logging.getLogger("bwt901")
raw_logger = logging.getLogger("bwt901.raw")

# Global flag to control raw frame console output
_show_raw_readings = False


def set_show_raw_readings(enabled: bool):
    """Enable/disable printing decoded sensor frames to console."""
    global _show_raw_readings  # pylint: disable=global-statement
    _show_raw_readings = enabled


FRAME_HEADER = b"\x55\x61"
FRAME_SIZE = 20

FULL_SCALE = 32768.0
ACCEL_RANGE = 16.0 * 9.82   # m/s^2 at full scale
GYRO_RANGE = 2000.0         # deg/s at full scale
ANGLE_RANGE = 180.0         # degrees at full scale

_PAYLOAD = struct.Struct("<9h")


class ConnectionStatus(Enum):
    """State of the acquisition link, reported to the composing application."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECEIVING = "receiving"
    LOST = "lost"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class InertialSample:
    """
    One decoded sensor frame in physical units.

    Attributes:
        timestamp: Host monotonic time when the frame was decoded (seconds)
        ax, ay, az: Body-frame linear acceleration (m/s^2)
        wx, wy, wz: Angular rate (deg/s); wz is the spin-axis rate
        roll, pitch, yaw: Orientation computed on the sensor (degrees)
    """
    timestamp: float
    ax: float
    ay: float
    az: float
    wx: float
    wy: float
    wz: float
    roll: float
    pitch: float
    yaw: float

    @property
    def linear_acceleration(self) -> Tuple[float, float, float]:
        return (self.ax, self.ay, self.az)

    @property
    def angular_rate(self) -> Tuple[float, float, float]:
        return (self.wx, self.wy, self.wz)

    @property
    def orientation(self) -> Tuple[float, float, float]:
        """(roll, pitch, yaw) in degrees."""
        return (self.roll, self.pitch, self.yaw)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "ax": self.ax, "ay": self.ay, "az": self.az,
            "wx": self.wx, "wy": self.wy, "wz": self.wz,
            "roll": self.roll, "pitch": self.pitch, "yaw": self.yaw,
        }


def decode_frame(frame: bytes, timestamp: Optional[float] = None) -> InertialSample:
    """
    Decode a single 20-byte frame into an InertialSample.

    Args:
        frame: Exactly FRAME_SIZE bytes starting with FRAME_HEADER
        timestamp: Sample time; defaults to time.monotonic()

    Returns:
        Decoded sample

    Raises:
        ValueError: If the frame has the wrong size or header
    """
    if len(frame) != FRAME_SIZE:
        raise ValueError(f"Frame must be {FRAME_SIZE} bytes, got {len(frame)}")
    if frame[:2] != FRAME_HEADER:
        raise ValueError(f"Bad frame header: {bytes(frame[:2])!r}")

    ax, ay, az, wx, wy, wz, roll, pitch, yaw = _PAYLOAD.unpack_from(frame, 2)

    return InertialSample(
        timestamp=time.monotonic() if timestamp is None else timestamp,
        ax=ax / FULL_SCALE * ACCEL_RANGE,
        ay=ay / FULL_SCALE * ACCEL_RANGE,
        az=az / FULL_SCALE * ACCEL_RANGE,
        wx=wx / FULL_SCALE * GYRO_RANGE,
        wy=wy / FULL_SCALE * GYRO_RANGE,
        wz=wz / FULL_SCALE * GYRO_RANGE,
        roll=roll / FULL_SCALE * ANGLE_RANGE,
        pitch=pitch / FULL_SCALE * ANGLE_RANGE,
        yaw=yaw / FULL_SCALE * ANGLE_RANGE,
    )


def _to_raw(value: float, full_range: float) -> int:
    raw = int(round(value / full_range * FULL_SCALE))
    return max(-32768, min(32767, raw))


def encode_frame(
    ax: float, ay: float, az: float,
    wx: float, wy: float, wz: float,
    roll: float, pitch: float, yaw: float,
) -> bytes:
    """
    Encode physical values into a 20-byte frame (inverse of decode_frame).

    Values outside the sensor range are clamped to the int16 limits.
    Used by the mock monitor and tests to synthesize sensor traffic.
    """
    payload = _PAYLOAD.pack(
        _to_raw(ax, ACCEL_RANGE), _to_raw(ay, ACCEL_RANGE), _to_raw(az, ACCEL_RANGE),
        _to_raw(wx, GYRO_RANGE), _to_raw(wy, GYRO_RANGE), _to_raw(wz, GYRO_RANGE),
        _to_raw(roll, ANGLE_RANGE), _to_raw(pitch, ANGLE_RANGE), _to_raw(yaw, ANGLE_RANGE),
    )
    return FRAME_HEADER + payload


class FrameDecoder:
    """
    Incremental decoder that extracts frames from an arbitrary byte stream.

    Bytes are accumulated in a bounded working buffer. Each call to feed()
    extracts every complete frame currently available; bytes preceding an
    extracted frame's header are discarded with it. A header without its
    full 18-byte payload is held back until more bytes arrive. When the
    retained bytes exceed max_buffer, the oldest are dropped.

    Not thread-safe: feed from a single acquisition path.
    """

    DEFAULT_MAX_BUFFER = 100

    def __init__(
        self,
        max_buffer: int = DEFAULT_MAX_BUFFER,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_buffer < FRAME_SIZE:
            raise ValueError(f"max_buffer must be at least {FRAME_SIZE} bytes")
        self.max_buffer = max_buffer
        self._clock = clock
        self._buffer = bytearray()
        self.frames_decoded = 0
        self.bytes_dropped = 0

    @property
    def pending(self) -> int:
        """Number of bytes held in the working buffer."""
        return len(self._buffer)

    def feed(self, data: bytes) -> List[InertialSample]:
        """
        Add bytes and return all samples decoded from complete frames.

        Args:
            data: Raw bytes from the serial port or a BLE notification

        Returns:
            Samples in arrival order (possibly empty)
        """
        self._buffer += data

        samples = []
        while True:
            frame = self.next_frame()
            if frame is None:
                break
            samples.append(decode_frame(frame, self._clock()))

        overflow = len(self._buffer) - self.max_buffer
        if overflow > 0:
            del self._buffer[:overflow]
            self.bytes_dropped += overflow

        return samples

    def next_frame(self) -> Optional[bytes]:
        """
        Pop the first complete frame from the working buffer.

        Returns:
            The 20 frame bytes, or None if no complete frame is buffered
        """
        header_index = self._buffer.find(FRAME_HEADER)
        if header_index == -1 or len(self._buffer) - header_index < FRAME_SIZE:
            return None

        frame = bytes(self._buffer[header_index:header_index + FRAME_SIZE])
        del self._buffer[:header_index + FRAME_SIZE]

        if header_index:
            self.bytes_dropped += header_index
            logger.debug(f"Skipped {header_index} bytes before frame header")
        self.frames_decoded += 1
        raw_logger.debug(f"RAW: {frame.hex(' ')}")

        return frame

    def clear(self):
        """Discard all buffered bytes."""
        self._buffer.clear()


class BWT901Sensor:
    """
    Driver for the WitMotion BWT901 9-axis IMU.

    Example usage:
        sensor = BWT901Sensor(port="/dev/ttyUSB0")
        sensor.connect()

        def on_sample(sample):
            print(f"wz={sample.wz:.1f} deg/s")

        sensor.start_streaming(callback=on_sample)
        ...
        sensor.disconnect()

    For BLE links, skip connect() and pass each notification payload to
    feed(); decoded samples go to the same callback.
    """

    # Default serial settings for the BWT901 USB adapter
    DEFAULT_BAUD = 115200
    DEFAULT_TIMEOUT = 0.5

    # Common USB-serial bridges shipped with WitMotion sensors
    VENDOR_IDS = [0x1A86, 0x10C4]  # WCH CH340, Silicon Labs CP210x

    def __init__(
        self,
        port: Optional[str] = None,
        baud: int = DEFAULT_BAUD,
        decoder: Optional[FrameDecoder] = None,
    ):
        """
        Initialize sensor driver.

        Args:
            port: Serial port (e.g., '/dev/ttyUSB0', 'COM5'). If None, auto-detect.
            baud: Baud rate (default 115200)
            decoder: Frame decoder to use (a fresh one if None)
        """
        self.port = port
        self.baud = baud
        self.serial: Optional[serial.Serial] = None
        self.decoder = decoder or FrameDecoder()
        self._streaming = False
        self._stream_thread: Optional[threading.Thread] = None
        self._callback: Optional[Callable[[InertialSample], None]] = None
        self._status_callback: Optional[Callable[[ConnectionStatus, str], None]] = None
        self._receiving = False
        self.status = ConnectionStatus.DISCONNECTED

    @staticmethod
    def find_sensor_ports() -> List[str]:
        """
        Find potential BWT901 serial ports.

        Returns:
            List of port names that might be WitMotion devices
        """
        ports = []
        for port in serial.tools.list_ports.comports():
            if port.vid in BWT901Sensor.VENDOR_IDS:
                ports.append(port.device)
            elif port.description and "WitMotion" in port.description:
                ports.append(port.device)
        return ports

    def connect(self, timeout: float = DEFAULT_TIMEOUT) -> bool:
        """
        Open the serial connection to the sensor.

        Args:
            timeout: Serial read timeout in seconds

        Returns:
            True if connection successful
        """
        self._set_status(ConnectionStatus.CONNECTING, "Connecting...")

        if self.port is None:
            ports = self.find_sensor_ports()
            if not ports:
                self._set_status(ConnectionStatus.DISCONNECTED, "Device not found")
                raise ConnectionError(
                    "No BWT901 sensor found. Check the USB connection or specify the port manually."
                )
            self.port = ports[0]

        try:
            self.serial = serial.Serial(
                port=self.port,
                baudrate=self.baud,
                timeout=timeout,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
            )
            self.serial.dtr = True
            self.serial.rts = True
            # Drop whatever accumulated before we started listening
            self.serial.reset_input_buffer()
        except serial.SerialException as e:
            self._set_status(ConnectionStatus.DISCONNECTED, str(e))
            raise ConnectionError(f"Failed to connect to {self.port}: {e}") from e

        self.decoder.clear()
        self._set_status(ConnectionStatus.CONNECTED, f"Connected to: {self.port}")
        return True

    def disconnect(self):
        """
        Stop streaming and close the port.

        Each step runs even if the one before it failed.
        """
        try:
            self.stop_streaming()
        except Exception as e:
            logger.error(f"Error stopping sensor stream: {e}")

        try:
            if self.serial and self.serial.is_open:
                self.serial.close()
                logger.info("Serial port closed")
        except serial.SerialException as e:
            logger.error(f"Error closing serial port: {e}")
        finally:
            self.serial = None

        self._set_status(ConnectionStatus.DISCONNECTED, "Disconnected")

    def read_samples(self) -> List[InertialSample]:
        """
        Read whatever bytes are available (blocking up to the port timeout).

        Returns:
            Samples decoded from the bytes read (possibly empty)
        """
        if not self.serial or not self.serial.is_open:
            raise ConnectionError("Not connected to sensor")

        chunk = self.serial.read(max(1, self.serial.in_waiting))
        if not chunk:
            return []

        return self.decoder.feed(chunk)

    def feed(self, payload: bytes) -> List[InertialSample]:
        """
        Decode a notification payload and dispatch samples to the callback.

        Args:
            payload: Bytes delivered by a BLE notification

        Returns:
            Samples decoded from the payload
        """
        samples = self.decoder.feed(payload)
        for sample in samples:
            self._dispatch(sample)
        return samples

    def start_streaming(
        self,
        callback: Callable[[InertialSample], None],
        status_callback: Optional[Callable[[ConnectionStatus, str], None]] = None,
    ):
        """
        Start the background read loop.

        Args:
            callback: Function called with each InertialSample
            status_callback: Optional function called on connection status changes
        """
        if self._streaming:
            return

        self._callback = callback
        if status_callback is not None:
            self._status_callback = status_callback
        self._receiving = False
        self._streaming = True
        self._stream_thread = threading.Thread(target=self._stream_loop, daemon=True)
        self._stream_thread.start()

    def set_callbacks(
        self,
        callback: Callable[[InertialSample], None],
        status_callback: Optional[Callable[[ConnectionStatus, str], None]] = None,
    ):
        """Register callbacks without starting the read loop (BLE feed path)."""
        self._callback = callback
        self._status_callback = status_callback

    def stop_streaming(self):
        """Signal the read loop to stop and wait for it to finish."""
        self._streaming = False
        thread = self._stream_thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=2.0)
            if thread.is_alive():
                logger.warning("Sensor read thread did not stop within 2s")
        self._stream_thread = None
        self._callback = None

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    def _dispatch(self, sample: InertialSample):
        if _show_raw_readings:
            print(f"[FRAME] wz={sample.wz:+8.1f} deg/s "
                  f"a=({sample.ax:+.2f}, {sample.ay:+.2f}, {sample.az:+.2f}) "
                  f"rpy=({sample.roll:+.1f}, {sample.pitch:+.1f}, {sample.yaw:+.1f})")

        if not self._receiving:
            self._receiving = True
            self._set_status(ConnectionStatus.RECEIVING, "Receiving sensor data...")

        if self._callback:
            self._callback(sample)

    def _set_status(self, status: ConnectionStatus, message: str):
        self.status = status
        logger.info(f"Sensor status: {status.value} ({message})")
        if self._status_callback:
            try:
                self._status_callback(status, message)
            except Exception as e:
                logger.warning(f"Status callback failed: {e}")

    def _stream_loop(self):
        """Internal read loop; retries transient errors, stops on a lost link."""
        while self._streaming:
            try:
                for sample in self.read_samples():
                    self._dispatch(sample)
            except (serial.SerialException, ConnectionError) as e:
                if self._streaming:
                    logger.error(f"Sensor link lost: {e}")
                    self._streaming = False
                    self._set_status(ConnectionStatus.LOST, f"Connection error: {e}")
                break
            except Exception as e:
                logger.warning(f"Serial read error: {e}")
                time.sleep(0.05)

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
        return False
