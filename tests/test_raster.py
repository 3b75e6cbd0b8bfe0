"""Tests for RasterImage, PixelSource and image decoding."""

import random
from pathlib import Path

import pytest
from PIL import Image

from appbundler import (
    DecodeError,
    PixelFormat,
    PixelSource,
    RasterImage,
    UnsupportedPixelFormat,
    decode_image,
    resample,
)


def noise_image(mode: str, size: tuple[int, int], seed: int = 0) -> Image.Image:
    """Create a deterministic noise image in the given mode."""
    channels = len(mode)
    data = random.Random(seed).randbytes(size[0] * size[1] * channels)
    return Image.frombytes(mode, size, data)


class TestRasterImage:
    """Tests for the RasterImage value type."""

    def test_init(self):
        """Test RasterImage initialization."""
        image = RasterImage(2, 3, PixelFormat.RGB, b"\x00" * 18)
        assert image.width == 2
        assert image.height == 3
        assert image.size == (2, 3)
        assert image.dimension == 2
        assert image.pixel_format is PixelFormat.RGB

    def test_buffer_size_mismatch(self):
        """Test that a wrongly sized pixel buffer is rejected."""
        with pytest.raises(ValueError, match="expected 16"):
            RasterImage(2, 2, PixelFormat.RGBA, b"\x00" * 15)

    def test_zero_size(self):
        """Test that empty images are rejected."""
        with pytest.raises(ValueError):
            RasterImage(0, 4, PixelFormat.GRAY, b"")

    def test_equality(self):
        """Test that images compare by size, format and pixels."""
        a = RasterImage(1, 1, PixelFormat.GRAY, b"\x10")
        b = RasterImage(1, 1, PixelFormat.GRAY, b"\x10")
        c = RasterImage(1, 1, PixelFormat.GRAY, b"\x11")
        assert a == b
        assert a != c

    def test_pil_round_trip(self):
        """Test converting to and from Pillow keeps pixels intact."""
        for mode in ("L", "LA", "RGB", "RGBA"):
            pil = noise_image(mode, (5, 7))
            image = RasterImage.from_pil(pil)
            assert image.pixel_format.mode == mode
            assert image.to_pil().tobytes() == pil.tobytes()

    def test_square_crops_center(self):
        """Test that non-square images are center-cropped."""
        pil = Image.new("RGB", (30, 10), (255, 0, 0))
        pil.paste((0, 255, 0), (10, 0, 20, 10))
        image = RasterImage.from_pil(pil).square()

        assert image.size == (10, 10)
        assert set(image.to_pil().getdata()) == {(0, 255, 0)}

    def test_square_returns_self_for_square(self):
        """Test that square images are returned unchanged."""
        image = RasterImage.from_pil(Image.new("L", (4, 4)))
        assert image.square() is image

    def test_resample_creates_new_image(self):
        """Test that resampling does not touch the source image."""
        source = RasterImage.from_pil(noise_image("RGBA", (300, 300)))
        original = source.data
        result = resample(source, 256)

        assert result.size == (256, 256)
        assert result.pixel_format is PixelFormat.RGBA
        assert source.size == (300, 300)
        assert source.data == original

    def test_planes_expand_gray(self):
        """Test that gray images are replicated into color planes."""
        image = RasterImage(2, 1, PixelFormat.GRAY, b"\x10\x20")
        red, green, blue, alpha = image.planes()
        assert red == green == blue == b"\x10\x20"
        assert alpha == b"\xff\xff"


class TestPixelSource:
    """Tests for PixelSource decoding."""

    def test_decode_supported_modes(self, tmp_path: Path):
        """Test decoding each supported pixel format from PNG."""
        for mode, pixel_format in (
            ("L", PixelFormat.GRAY),
            ("LA", PixelFormat.GRAY_ALPHA),
            ("RGB", PixelFormat.RGB),
            ("RGBA", PixelFormat.RGBA),
        ):
            pil = noise_image(mode, (8, 6))
            path = tmp_path / f"icon_{mode}.png"
            pil.save(path)

            image = decode_image(path)
            assert image.pixel_format is pixel_format
            assert image.size == (8, 6)
            assert image.data == pil.tobytes()

    def test_size_available_before_decode(self, tmp_path: Path):
        """Test that width and height are known before validation."""
        path = tmp_path / "print.tiff"
        Image.new("CMYK", (12, 9)).save(path)

        with PixelSource(path) as source:
            assert (source.width, source.height) == (12, 9)
            assert source.mode == "CMYK"
            with pytest.raises(UnsupportedPixelFormat, match="CMYK"):
                source.decode()

    def test_palette_expands_to_rgb(self, tmp_path: Path):
        """Test that palette images without transparency decode as RGB."""
        path = tmp_path / "palette.png"
        Image.new("RGB", (4, 4), (10, 20, 30)).convert("P").save(path)

        image = decode_image(path)
        assert image.pixel_format is PixelFormat.RGB

    def test_palette_with_transparency_expands_to_rgba(self, tmp_path: Path):
        """Test that transparent palette images decode as RGBA."""
        path = tmp_path / "palette.png"
        Image.new("P", (4, 4), 0).save(path, transparency=0)

        image = decode_image(path)
        assert image.pixel_format is PixelFormat.RGBA

    def test_bilevel_unsupported(self, tmp_path: Path):
        """Test that 1-bit images are rejected."""
        path = tmp_path / "mono.png"
        Image.new("1", (8, 8)).save(path)

        with pytest.raises(UnsupportedPixelFormat):
            decode_image(path)

    def test_sixteen_bit_unsupported(self, tmp_path: Path):
        """Test that 16-bit images are rejected."""
        path = tmp_path / "deep.png"
        Image.new("I;16", (8, 8)).save(path)

        with pytest.raises(UnsupportedPixelFormat):
            decode_image(path)

    def test_missing_file(self, tmp_path: Path):
        """Test that a missing file raises DecodeError naming the path."""
        path = tmp_path / "missing.png"
        with pytest.raises(DecodeError, match="missing.png"):
            decode_image(path)

    def test_not_an_image(self, tmp_path: Path):
        """Test that garbage data raises DecodeError."""
        path = tmp_path / "garbage.png"
        path.write_bytes(b"this is not an image")
        with pytest.raises(DecodeError):
            decode_image(path)

    def test_truncated_image(self, tmp_path: Path):
        """Test that a truncated file raises DecodeError on decode."""
        full = tmp_path / "full.png"
        noise_image("RGB", (64, 64)).save(full)
        data = full.read_bytes()
        path = tmp_path / "truncated.png"
        path.write_bytes(data[: len(data) // 2])

        with pytest.raises(DecodeError):
            decode_image(path)

    def test_close_releases_image(self, tmp_path: Path):
        """Test that leaving the context closes the source."""
        path = tmp_path / "icon.png"
        Image.new("RGB", (4, 4)).save(path)

        source = PixelSource(path)
        with source:
            assert source.width == 4
        assert source._image is None

    def test_header_read_on_first_access(self, tmp_path: Path):
        """Test properties open the file lazily without an explicit open()."""
        path = tmp_path / "icon.png"
        Image.new("LA", (6, 3)).save(path)

        source = PixelSource(path)
        assert source.mode == "LA"
        assert source.open() is source
        assert (source.width, source.height) == (6, 3)
        source.close()

    def test_missing_file_on_property_access(self, tmp_path: Path):
        """Test a missing file raises DecodeError from a property too."""
        source = PixelSource(tmp_path / "missing.png")
        with pytest.raises(DecodeError, match="missing.png"):
            source.width
