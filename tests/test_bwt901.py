"""Tests for the BWT901 frame decoder and sensor driver."""

import struct
import time
from unittest.mock import MagicMock, patch

import pytest
import serial

from discflight.bwt901 import (
    ACCEL_RANGE,
    ANGLE_RANGE,
    FRAME_HEADER,
    FRAME_SIZE,
    FULL_SCALE,
    GYRO_RANGE,
    BWT901Sensor,
    ConnectionStatus,
    FrameDecoder,
    decode_frame,
    encode_frame,
)


def raw_frame(*fields):
    """Frame from nine raw int16 field values."""
    return FRAME_HEADER + struct.pack("<9h", *fields)


class TestDecodeFrame:
    """Tests for single-frame decoding."""

    def test_scaling_from_raw_fields(self):
        """Raw int16 values are scaled to m/s^2, deg/s and degrees."""
        fields = (1000, -2000, 2048, 16384, -16384, 19661, 5461, -5461, 32767)
        sample = decode_frame(raw_frame(*fields), timestamp=1.5)

        assert sample.timestamp == 1.5
        assert sample.ax == pytest.approx(1000 / FULL_SCALE * ACCEL_RANGE)
        assert sample.ay == pytest.approx(-2000 / FULL_SCALE * ACCEL_RANGE)
        assert sample.az == pytest.approx(2048 / FULL_SCALE * 16 * 9.82)
        assert sample.wx == pytest.approx(1000.0)
        assert sample.wy == pytest.approx(-1000.0)
        assert sample.wz == pytest.approx(19661 / FULL_SCALE * GYRO_RANGE)
        assert sample.roll == pytest.approx(5461 / FULL_SCALE * ANGLE_RANGE)
        assert sample.pitch == pytest.approx(-5461 / FULL_SCALE * ANGLE_RANGE)
        assert sample.yaw == pytest.approx(32767 / FULL_SCALE * 180)

    def test_negative_full_scale(self):
        """-32768 decodes to the negative range limit."""
        sample = decode_frame(raw_frame(-32768, 0, 0, 0, 0, -32768, -32768, 0, 0), timestamp=0.0)
        assert sample.ax == pytest.approx(-ACCEL_RANGE)
        assert sample.wz == pytest.approx(-GYRO_RANGE)
        assert sample.roll == pytest.approx(-180.0)

    def test_wrong_size_rejected(self):
        with pytest.raises(ValueError):
            decode_frame(FRAME_HEADER + b"\x00" * 10)

    def test_wrong_header_rejected(self):
        with pytest.raises(ValueError):
            decode_frame(b"\x55\x51" + b"\x00" * 18)

    def test_encode_decode_within_quantization(self):
        """encode_frame inverts decode_frame to within one LSB."""
        values = (3.2, -9.81, 12.0, 150.0, -75.5, 1234.5, 15.5, 21.8, -31.6)
        sample = decode_frame(encode_frame(*values), timestamp=0.0)

        ranges = [ACCEL_RANGE] * 3 + [GYRO_RANGE] * 3 + [ANGLE_RANGE] * 3
        decoded = sample.linear_acceleration + sample.angular_rate + sample.orientation
        for expected, actual, full_range in zip(values, decoded, ranges):
            assert actual == pytest.approx(expected, abs=full_range / FULL_SCALE)

    def test_encode_clamps_out_of_range(self):
        sample = decode_frame(encode_frame(0, 0, 0, 0, 0, 5000.0, 0, 0, 0), timestamp=0.0)
        assert sample.wz == pytest.approx(32767 / FULL_SCALE * GYRO_RANGE)


class TestFrameDecoder:
    """Tests for stream framing."""

    def setup_method(self):
        self.decoder = FrameDecoder(clock=lambda: 42.0)
        self.frame = encode_frame(0.0, 0.0, 9.82, 0.0, 0.0, 800.0, 1.0, 2.0, 3.0)

    def test_header_at_offset_advances_past_frame(self):
        """A header at offset k with a full frame consumes exactly k + 20 bytes."""
        prefix = b"\x01\x02\x03\x04\x05\x06\x07"
        trailer = b"\x09\x09\x09\x09\x09"
        samples = self.decoder.feed(prefix + self.frame + trailer)

        assert len(samples) == 1
        assert samples[0].wz == pytest.approx(800.0, abs=0.1)
        assert samples[0].timestamp == 42.0
        assert self.decoder.pending == len(trailer)
        assert self.decoder.bytes_dropped == len(prefix)

    def test_no_header_keeps_bytes(self):
        """Without a header nothing is extracted and nothing is dropped."""
        data = bytes(range(60))
        assert self.decoder.feed(data) == []
        assert self.decoder.pending == 60
        assert self.decoder.bytes_dropped == 0

    def test_partial_frame_completed_later(self):
        """A header without its full payload waits for more bytes."""
        assert self.decoder.feed(self.frame[:12]) == []
        assert self.decoder.pending == 12

        samples = self.decoder.feed(self.frame[12:])
        assert len(samples) == 1
        assert self.decoder.pending == 0

    def test_byte_at_a_time(self):
        samples = []
        for b in self.frame * 3:
            samples.extend(self.decoder.feed(bytes([b])))
        assert len(samples) == 3
        assert self.decoder.frames_decoded == 3

    def test_multiple_frames_in_one_read(self):
        samples = self.decoder.feed(self.frame * 4)
        assert len(samples) == 4
        assert self.decoder.pending == 0

    def test_buffer_capped_drops_oldest(self):
        """The working buffer never holds more than max_buffer bytes."""
        self.decoder.feed(b"\x00" * 150)
        assert self.decoder.pending == FrameDecoder.DEFAULT_MAX_BUFFER
        assert self.decoder.bytes_dropped == 50

    def test_frame_survives_after_overflow(self):
        self.decoder.feed(b"\x00" * 150)
        samples = self.decoder.feed(self.frame)
        assert len(samples) == 1

    def test_next_frame_returns_raw_bytes(self):
        self.decoder._buffer += b"\xff" + self.frame
        frame = self.decoder.next_frame()
        assert frame == self.frame
        assert len(frame) == FRAME_SIZE
        assert self.decoder.next_frame() is None

    def test_clear(self):
        self.decoder.feed(self.frame[:5])
        self.decoder.clear()
        assert self.decoder.pending == 0

    def test_max_buffer_must_hold_a_frame(self):
        with pytest.raises(ValueError):
            FrameDecoder(max_buffer=10)


class TestBWT901Sensor:
    """Tests for the serial driver with a mocked port."""

    def setup_method(self):
        self.sensor = BWT901Sensor(port="/dev/ttyUSB0")
        self.frame = encode_frame(0.0, 0.0, 9.82, 0.0, 0.0, 700.0, 0.0, 0.0, 0.0)

    def _mock_serial(self, data=b""):
        mock = MagicMock()
        mock.is_open = True
        mock.in_waiting = len(data)
        mock.read.return_value = data
        return mock

    def test_read_samples_requires_connection(self):
        with pytest.raises(ConnectionError):
            self.sensor.read_samples()

    def test_read_samples_decodes(self):
        self.sensor.serial = self._mock_serial(self.frame)
        samples = self.sensor.read_samples()

        assert len(samples) == 1
        self.sensor.serial.read.assert_called_once_with(FRAME_SIZE)

    def test_read_timeout_returns_empty(self):
        self.sensor.serial = self._mock_serial(b"")
        assert self.sensor.read_samples() == []
        self.sensor.serial.read.assert_called_once_with(1)

    def test_connect_without_ports_raises(self):
        sensor = BWT901Sensor()
        with patch.object(BWT901Sensor, "find_sensor_ports", return_value=[]):
            with pytest.raises(ConnectionError):
                sensor.connect()
        assert sensor.status == ConnectionStatus.DISCONNECTED

    def test_connect_failure_raises_connection_error(self):
        with patch("serial.Serial", side_effect=serial.SerialException("busy")):
            with pytest.raises(ConnectionError):
                self.sensor.connect()

    def test_connect_opens_port(self):
        mock_port = self._mock_serial()
        statuses = []
        self.sensor._status_callback = lambda status, msg: statuses.append(status)

        with patch("serial.Serial", return_value=mock_port) as mock_cls:
            assert self.sensor.connect() is True

        mock_cls.assert_called_once()
        assert mock_cls.call_args.kwargs["baudrate"] == 115200
        mock_port.reset_input_buffer.assert_called_once()
        assert statuses == [ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED]

    def test_feed_dispatches_and_reports_receiving_once(self):
        received = []
        statuses = []
        self.sensor.set_callbacks(received.append, lambda status, msg: statuses.append(status))

        self.sensor.feed(self.frame)
        self.sensor.feed(self.frame)

        assert len(received) == 2
        assert statuses == [ConnectionStatus.RECEIVING]

    def test_disconnect_closes_port_even_if_stop_fails(self):
        mock_port = self._mock_serial()
        self.sensor.serial = mock_port

        with patch.object(self.sensor, "stop_streaming", side_effect=RuntimeError("stuck")):
            self.sensor.disconnect()

        mock_port.close.assert_called_once()
        assert self.sensor.serial is None
        assert self.sensor.status == ConnectionStatus.DISCONNECTED

    def test_stream_loop_reports_lost_link(self):
        mock_port = self._mock_serial()
        mock_port.read.side_effect = serial.SerialException("device unplugged")
        self.sensor.serial = mock_port
        statuses = []

        self.sensor.start_streaming(lambda s: None, lambda status, msg: statuses.append(status))
        thread = self.sensor._stream_thread
        thread.join(timeout=2.0)

        assert not thread.is_alive()
        assert not self.sensor.is_streaming
        assert ConnectionStatus.LOST in statuses

    def test_stream_loop_survives_callback_error(self):
        mock_port = self._mock_serial(self.frame)
        self.sensor.serial = mock_port
        calls = []

        def bad_callback(sample):
            calls.append(sample)
            raise RuntimeError("boom")

        self.sensor.start_streaming(bad_callback)
        deadline = time.time() + 2.0
        while len(calls) < 2 and time.time() < deadline:
            time.sleep(0.01)
        self.sensor.stop_streaming()

        assert len(calls) >= 2

    def test_find_sensor_ports_filters_by_vendor(self):
        wit = MagicMock(vid=0x1A86, device="/dev/ttyUSB0", description="USB Serial")
        other = MagicMock(vid=0x1234, device="/dev/ttyACM0", description="Arduino")
        with patch("serial.tools.list_ports.comports", return_value=[wit, other]):
            assert BWT901Sensor.find_sensor_ports() == ["/dev/ttyUSB0"]
