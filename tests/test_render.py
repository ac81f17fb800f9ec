"""
Unit tests for the pixel rendering pipeline.

Tests:
- Colour reduction, polarity, rescale, windowing, normalization, packing
- Attribute coercion for window and rescale values
- Full render() on synthetic sample buffers
"""

import numpy as np
import pytest

from dicom_batch.dicom_io import DecodedPixels
from dicom_batch.errors import DimensionMismatchError, RenderError
from dicom_batch.models import Number, NumberList, Text
from dicom_batch.render import (
    RenderAttributes,
    apply_rescale,
    apply_window,
    as_float,
    correct_polarity,
    first_number,
    normalize,
    pack,
    read_samples,
    reduce_color,
    render,
)


def window_reference(values, center, width):
    """Straight transcription of the linear VOI function, one value at a time."""
    y_min, y_max = min(values), max(values)
    lower = center - 0.5 - (width - 1) / 2
    upper = center - 0.5 + (width - 1) / 2
    out = []
    for v in values:
        if v <= lower:
            out.append(y_min)
        elif v > upper:
            out.append(y_max)
        else:
            out.append(((v - (center - 0.5)) / (width - 1) + 0.5) * (y_max - y_min) + y_min)
    return np.array(out, dtype=np.float64)


def minmax_reference(values):
    values = np.asarray(values, dtype=np.float64)
    return np.round((values - values.min()) / (values.max() - values.min()) * 255.0).astype(np.uint8)


class TestReadSamples:
    """Tests for raw buffer interpretation."""

    def test_16_bit_is_little_endian(self):
        """Byte pairs should be read low byte first."""
        values = read_samples(b"\x01\x00\x00\x01", 16)
        assert values.tolist() == [1.0, 256.0]

    def test_8_bit_bytes_used_directly(self):
        values = read_samples(bytes([0, 7, 255]), 8)
        assert values.tolist() == [0.0, 7.0, 255.0]

    def test_odd_16_bit_buffer_rejected(self):
        with pytest.raises(DimensionMismatchError):
            read_samples(b"\x01\x00\x02", 16)

    def test_unsupported_bit_depth_rejected(self):
        with pytest.raises(RenderError):
            read_samples(b"\x00" * 4, 32)


class TestColorReduction:
    """Tests for RGB-family luminance reduction."""

    def test_rgb_uses_luma_weights(self):
        samples = np.array([255, 0, 0, 0, 255, 0, 0, 0, 255, 10, 20, 30], dtype=np.float64)

        luma = reduce_color(samples, "RGB")

        expected = [0.299 * 255, 0.587 * 255, 0.114 * 255, 0.299 * 10 + 0.587 * 20 + 0.114 * 30]
        assert np.allclose(luma, expected)

    def test_ybr_is_rgb_family(self):
        samples = np.array([100, 100, 100], dtype=np.float64)
        assert reduce_color(samples, "YBR_FULL").shape == (1,)

    def test_monochrome_passes_through(self):
        samples = np.array([1, 2, 3], dtype=np.float64)
        assert reduce_color(samples, "MONOCHROME2").tolist() == [1.0, 2.0, 3.0]

    def test_unknown_interpretation_falls_back_to_monochrome(self):
        """Unrecognised values take the monochrome path, not an error."""
        samples = np.array([1, 2, 3], dtype=np.float64)
        assert reduce_color(samples, "PALETTE COLOR").tolist() == [1.0, 2.0, 3.0]
        assert reduce_color(samples, None).tolist() == [1.0, 2.0, 3.0]

    def test_incomplete_triple_rejected(self):
        with pytest.raises(DimensionMismatchError):
            reduce_color(np.zeros(4), "RGB")


class TestPolarityAndRescale:
    """Tests for MONOCHROME1 inversion and the modality rescale."""

    def test_monochrome1_inverted_against_max(self):
        values = np.array([0.0, 10.0, 20.0])
        assert correct_polarity(values, "MONOCHROME1").tolist() == [20.0, 10.0, 0.0]

    def test_monochrome2_untouched(self):
        values = np.array([0.0, 10.0, 20.0])
        assert correct_polarity(values, "MONOCHROME2").tolist() == [0.0, 10.0, 20.0]

    def test_rescale_applies_slope_and_intercept(self):
        values = np.array([0.0, 1.0, 2.0])
        assert apply_rescale(values, 2.0, -1024.0).tolist() == [-1024.0, -1022.0, -1020.0]

    def test_rescale_defaults_are_identity(self):
        values = np.array([3.0, 4.0])
        assert apply_rescale(values).tolist() == [3.0, 4.0]


class TestCoercion:
    """Tests for the per-use-site attribute coercions."""

    def test_first_number_from_number(self):
        assert first_number(Number(40.0)) == 40.0

    def test_first_number_from_list(self):
        assert first_number(NumberList((40.0, 400.0))) == 40.0

    @pytest.mark.parametrize("text", ["40\\400", "40,400", " 40 "])
    def test_first_number_from_delimited_text(self, text):
        """Both backslash and comma separators occur in real files."""
        assert first_number(Text(text)) == 40.0

    def test_first_number_unparsable(self):
        assert first_number(Text("abc")) is None
        assert first_number(None) is None

    def test_as_float_defaults(self):
        assert as_float(None, 1.0) == 1.0
        assert as_float(Text("n/a"), 0.0) == 0.0
        assert as_float(Text("2.5"), 1.0) == 2.5
        assert as_float(Number(float("nan")), 1.0) == 1.0


class TestWindowing:
    """Tests for the linear VOI window."""

    def test_matches_reference_formula(self):
        values = np.arange(0, 300, dtype=np.float64)

        windowed = apply_window(values, 100.0, 50.0)

        assert np.allclose(windowed, window_reference(values.tolist(), 100.0, 50.0))

    def test_monotonic_non_decreasing(self):
        values = np.linspace(-2000, 4000, 5001)
        for center, width in [(40, 400), (0, 1), (1000, 2.5), (-500, 3000)]:
            windowed = apply_window(values, float(center), float(width))
            assert np.all(np.diff(windowed) >= 0)

    def test_clamps_outside_bounds(self):
        values = np.arange(0, 1000, dtype=np.float64)
        center, width = 500.0, 200.0
        lower = center - 0.5 - (width - 1) / 2
        upper = center - 0.5 + (width - 1) / 2

        windowed = apply_window(values, center, width)

        assert np.all(windowed[values <= lower] == values.min())
        assert np.all(windowed[values > upper] == values.max())

    def test_width_one_is_a_threshold(self):
        values = np.array([0.0, 49.0, 50.0, 100.0])
        windowed = apply_window(values, 50.0, 1.0)
        assert windowed.tolist() == [0.0, 0.0, 100.0, 100.0]

    @pytest.mark.parametrize("center,width", [(None, 100.0), (50.0, None), (50.0, 0.0), (50.0, -5.0)])
    def test_skipped_without_valid_attributes(self, center, width):
        values = np.array([0.0, 25.0, 100.0])
        assert apply_window(values, center, width).tolist() == [0.0, 25.0, 100.0]


class TestNormalizeAndPack:
    """Tests for min-max normalization and raster packing."""

    @pytest.mark.parametrize("value", [0.0, 1.0, 4095.0, -1024.0])
    def test_flat_input_gives_zeros(self, value):
        out = normalize(np.full(16, value))
        assert out.dtype == np.uint8
        assert not out.any()

    def test_full_range(self):
        out = normalize(np.array([10.0, 20.0, 30.0]))
        assert out.tolist() == [0, 128, 255]

    def test_pack_shape(self):
        raster = pack(np.zeros(6, dtype=np.uint8), rows=2, columns=3)
        assert raster.shape == (2, 3)

    def test_pack_rejects_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            pack(np.zeros(5, dtype=np.uint8), rows=2, columns=3)


class TestRender:
    """Tests for the full pipeline."""

    def test_monochrome_16_bit_without_attributes_is_plain_minmax(self):
        """With no window or rescale the output is a min-max scale of the raw samples."""
        rng = np.random.default_rng(7)
        raw = rng.integers(0, 4096, size=(8, 12), dtype=np.uint16)
        decoded = DecodedPixels(raw.astype("<u2").tobytes(), rows=8, columns=12, bits_allocated=16)

        raster = render(decoded, RenderAttributes(photometric_interpretation="MONOCHROME2"))

        assert raster.shape == (8, 12)
        assert np.array_equal(raster, minmax_reference(raw).reshape(8, 12))

    def test_flat_image_renders_black(self):
        decoded = DecodedPixels(bytes([77] * 16), rows=4, columns=4, bits_allocated=8)
        raster = render(decoded, RenderAttributes())
        assert not raster.any()

    def test_window_applied_before_normalization(self):
        raw = np.arange(256, dtype=np.uint8)
        decoded = DecodedPixels(raw.tobytes(), rows=16, columns=16, bits_allocated=8)
        attributes = RenderAttributes(
            photometric_interpretation="MONOCHROME2",
            window_center=Text("100\\300"),
            window_width=NumberList((50.0, 600.0)),
        )

        raster = render(decoded, attributes)

        expected = minmax_reference(window_reference(raw.astype(float).tolist(), 100.0, 50.0))
        assert np.array_equal(raster.ravel(), expected)

    def test_monochrome1_renders_inverted(self):
        raw = np.array([0, 100, 200, 255], dtype=np.uint8)
        decoded = DecodedPixels(raw.tobytes(), rows=2, columns=2, bits_allocated=8)

        raster = render(decoded, RenderAttributes(photometric_interpretation="MONOCHROME1"))

        assert raster.ravel().tolist() == [255, 155, 55, 0]

    def test_declared_size_mismatch_raises(self):
        decoded = DecodedPixels(bytes(10), rows=4, columns=4, bits_allocated=8)
        with pytest.raises(DimensionMismatchError):
            render(decoded, RenderAttributes())
