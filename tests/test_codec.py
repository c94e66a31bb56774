"""Tests for decoding, encoding and url resolution."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from thumbforge.engine import codec
from thumbforge.engine.codec import FORMAT_REGISTRY, OutputFormat
from thumbforge.engine.errors import DecodeError, EncodeError
from thumbforge.engine.urls import resolve_url, to_file_url


class TestResolveUrl:
    def test_strips_file_marker(self) -> None:
        assert resolve_url("file:///data/in.jpg") == "/data/in.jpg"

    def test_bare_path_passes_through(self) -> None:
        assert resolve_url("relative/in.jpg") == "relative/in.jpg"

    def test_round_trip_for_reporting(self) -> None:
        assert to_file_url("/data/out.jpg") == "file:///data/out.jpg"


class TestDecode:
    def test_keeps_alpha_channel(self) -> None:
        ok, encoded = cv2.imencode(".png", np.zeros((4, 5, 4), dtype=np.uint8))
        assert ok
        assert codec.decode(encoded.tobytes()).shape == (4, 5, 4)

    def test_empty_data_fails(self) -> None:
        with pytest.raises(DecodeError):
            codec.decode(b"")

    @patch("thumbforge.engine.codec.rawpy.imread")
    def test_raw_path_converts_to_bgr(self, mock_imread: MagicMock) -> None:
        rgb = np.zeros((2, 2, 3), dtype=np.uint8)
        rgb[..., 0] = 255  # red
        raw = mock_imread.return_value.__enter__.return_value
        raw.postprocess.return_value = rgb

        image = codec.decode(b"raw bytes")

        raw.postprocess.assert_called_once_with(use_camera_wb=True, output_bps=8)
        assert image[0, 0].tolist() == [0, 0, 255]

    def test_to_8bit_scales_sixteen_bit(self) -> None:
        deep = np.array([[0, 256, 65535]], dtype=np.uint16)
        assert codec.to_8bit(deep).tolist() == [[0, 1, 255]]

    def test_to_8bit_keeps_uint8_untouched(self) -> None:
        image = np.zeros((2, 2), dtype=np.uint8)
        assert codec.to_8bit(image) is image

    def test_read_bytes_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(DecodeError, match="Failed to extract image"):
            codec.read_bytes(str(tmp_path / "missing.jpg"))

    def test_read_bytes_empty_file(self, tmp_path: Path) -> None:
        empty = tmp_path / "empty.jpg"
        empty.touch()
        with pytest.raises(DecodeError):
            codec.read_bytes(str(empty))

    def test_load_image_missing_returns_none(self, tmp_path: Path) -> None:
        assert codec.load_image(str(tmp_path / "missing.png")) is None


class TestEncode:
    def test_jpeg_quality_changes_size(self) -> None:
        image = np.random.default_rng(1).integers(0, 256, (64, 64, 3), dtype=np.uint8)
        small = codec.encode(image, OutputFormat.JPEG, quality=10)
        large = codec.encode(image, OutputFormat.JPEG, quality=100)
        assert len(small) < len(large)

    def test_png_signature(self) -> None:
        data = codec.encode(np.zeros((3, 3, 3), dtype=np.uint8), OutputFormat.PNG)
        assert data.startswith(b"\x89PNG")

    def test_empty_buffer_fails(self) -> None:
        with pytest.raises(EncodeError, match="Could not encode PNG"):
            codec.encode(np.zeros((0, 0, 3), dtype=np.uint8), OutputFormat.PNG)

    def test_registry_covers_every_format(self) -> None:
        assert set(FORMAT_REGISTRY) == set(OutputFormat)

    def test_write_failure(self, tmp_path: Path) -> None:
        with pytest.raises(EncodeError, match="Failed to write output image"):
            codec.write(str(tmp_path / "no" / "such" / "dir.jpg"), np.zeros((3, 3, 3), dtype=np.uint8))

    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("out.jpg", [cv2.IMWRITE_JPEG_QUALITY, 70]),
            ("out.JPEG", [cv2.IMWRITE_JPEG_QUALITY, 70]),
            ("out.webp", [cv2.IMWRITE_WEBP_QUALITY, 70]),
            ("out.png", []),
            ("out.bmp", []),
        ],
    )
    @patch("thumbforge.engine.codec.cv2.imwrite")
    def test_write_params_follow_extension(self, mock_imwrite: MagicMock, name: str, expected: list[int]) -> None:
        mock_imwrite.return_value = True
        codec.write(name, np.zeros((3, 3, 3), dtype=np.uint8), quality=70)
        assert mock_imwrite.call_args.args[2] == expected

    def test_webp_quality_changes_size(self, tmp_path: Path) -> None:
        image = np.random.default_rng(2).integers(0, 256, (64, 64, 3), dtype=np.uint8)
        small, large = tmp_path / "small.webp", tmp_path / "large.webp"
        codec.write(str(small), image, quality=10)
        codec.write(str(large), image, quality=100)
        assert small.stat().st_size < large.stat().st_size
