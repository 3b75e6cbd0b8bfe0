#!/usr/bin/env python3
"""appbundler - macOS application bundle builder with icon synthesis.

This module provides tools for:
1. Assembling macOS .app bundles from an executable, resources and icons
2. Synthesizing multi-resolution .icns icon containers from raster images

Icon candidates are decoded with Pillow, classified against the closed
set of ICNS element types by square size and density (a ``@2x`` file stem
marks a double-density image), downsampled once to the next power of two
when no element type matches, and packed into an ``icns`` container.
A candidate that already is an ``.icns`` file is copied verbatim instead.

Usage (CLI):
    # Create a bundle with a synthesized icon
    appbundler create build/myapp --icon icon.png --icon icon@2x.png

    # Build a standalone .icns container
    appbundler icns MyApp.icns icon_16.png icon_512.png icon_512@2x.png

    # List the elements of an existing container
    appbundler inspect MyApp.icns

Usage (API):
    from appbundler import BundleDescriptor, assemble

    descriptor = BundleDescriptor(
        name="MyApp",
        binary_name="myapp",
        identifier="com.example.myapp",
        version="1.0",
    )
    bundle_path = assemble(
        descriptor,
        icon_paths=["icon.png", "icon@2x.png"],
        resource_paths=["assets/"],
        binary_path="build/myapp",
        output_root="dist",
    )
"""

import argparse
import datetime
import glob
import io
import logging
import os
import shutil
import stat
import struct
import sys
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator
from xml.sax.saxutils import escape

from PIL import Image, UnidentifiedImageError

# ----------------------------------------------------------------------------
# Constants

__version__ = "0.1.0"

# Type aliases
Pathlike = Path | str

# Bundle package type identifier (APPL = Application, ???? = creator code)
PKG_INFO_CONTENT = "APPL????"

# Default bundle identifier prefix
DEFAULT_BUNDLE_ID = "org.me"

# Default bundle extension
DEFAULT_BUNDLE_EXT = ".app"

# Default bundle version
DEFAULT_VERSION = "1.0"

# Default minimum macOS version
DEFAULT_MIN_SYSTEM_VERSION = "10.13"

# Environment variable names
ENV_BUNDLE_ID = "BUNDLE_IDENTIFIER"
ENV_COPYRIGHT = "BUNDLE_COPYRIGHT"

# Icon container format
ICNS_EXTENSION = ".icns"
ICNS_MAGIC = b"icns"
ICNS_HEADER_SIZE = 8

# it32 payloads start with four zero bytes before the RLE data
IT32_PREFIX = b"\x00\x00\x00\x00"

# ICNS PackBits variant: literal blocks of 1..128 bytes, runs of 3..130
RLE_MAX_LITERAL = 128
RLE_MIN_RUN = 3
RLE_MAX_RUN = 130

# A file stem ending with this marker holds a double-density image
RETINA_MARKER = "@2x"

INFO_PLIST_TMPL = """\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
    <key>CFBundleDevelopmentRegion</key>
    <string>English</string>
    <key>CFBundleDisplayName</key>
    <string>{bundle_name}</string>
    <key>CFBundleExecutable</key>
    <string>{executable}</string>
{icon_file_entry}    <key>CFBundleIdentifier</key>
    <string>{bundle_identifier}</string>
    <key>CFBundleInfoDictionaryVersion</key>
    <string>6.0</string>
    <key>CFBundleName</key>
    <string>{bundle_name}</string>
    <key>CFBundlePackageType</key>
    <string>APPL</string>
    <key>CFBundleShortVersionString</key>
    <string>{bundle_version}</string>
    <key>CFBundleVersion</key>
    <string>{bundle_version}</string>
    <key>CSResourcesFileMapped</key>
    <true/>
    <key>LSMinimumSystemVersion</key>
    <string>{min_system_version}</string>
    <key>LSRequiresCarbon</key>
    <true/>
    <key>NSHighResolutionCapable</key>
    <true/>
{copyright_entry}</dict>
</plist>
"""

ICON_FILE_ENTRY_TMPL = """\
    <key>CFBundleIconFile</key>
    <string>{icon_file}</string>
"""

COPYRIGHT_ENTRY_TMPL = """\
    <key>NSHumanReadableCopyright</key>
    <string>{copyright}</string>
"""

# ----------------------------------------------------------------------------
# Optional dotenv support


def _load_dotenv() -> None:
    """Attempt to load .env file if python-dotenv is available."""
    try:
        from dotenv import load_dotenv

        load_dotenv()
    except ImportError:
        pass


_load_dotenv()

# ----------------------------------------------------------------------------
# Error handling


class BundlerError(Exception):
    """Base exception class for appbundler errors."""


class ConfigurationError(BundlerError):
    """Exception raised when configuration is invalid."""


class ValidationError(BundlerError):
    """Exception raised when validation fails."""


class FileError(BundlerError):
    """Exception raised when a file operation fails."""


class DirectoryError(FileError):
    """Exception raised when the bundle tree cannot be removed or created."""


class CopyError(FileError):
    """Exception raised when a resource or binary copy fails."""


class IconError(BundlerError):
    """Base exception class for icon synthesis errors."""


class DecodeError(IconError):
    """Exception raised when an image or icon container cannot be read."""


class UnsupportedPixelFormat(IconError):
    """Exception raised when an image uses a pixel format outside the
    supported 8-bit gray, gray+alpha, RGB and RGBA set."""

    def __init__(self, mode: str, path: Pathlike | None = None):
        self.mode = mode
        self.path = Path(path) if path is not None else None
        where = f": {self.path}" if self.path else ""
        super().__init__(f"Unsupported pixel format '{mode}'{where}")


class DuplicateSlot(IconError):
    """Exception raised when an icon slot is already occupied."""

    def __init__(self, slot: "IconSlot", path: Pathlike | None = None):
        self.slot = slot
        self.path = Path(path) if path is not None else None
        where = f" (skipping {self.path})" if self.path else ""
        super().__init__(f"Icon slot {slot.name} is already occupied{where}")


class UnusableIconSize(IconError):
    """Exception raised when an image has no matching icon slot, even after
    downsampling to the next power of two."""

    def __init__(
        self,
        dimension: int,
        density: "DensityClass",
        path: Pathlike | None = None,
    ):
        self.dimension = dimension
        self.density = density
        self.path = Path(path) if path is not None else None
        where = f": {self.path}" if self.path else ""
        super().__init__(
            f"No icon slot for {dimension}x{dimension} "
            f"at {density.scale}x density{where}"
        )


class NoUsableIcons(IconError):
    """Exception raised when no icon candidate could be added to a family."""


# ----------------------------------------------------------------------------
# Configuration file support


def load_config(config_path: Path | None = None) -> dict[str, object]:
    """Load configuration from a TOML file.

    Searches for configuration in the following order:
    1. Explicit config_path if provided
    2. .appbundler.toml in current directory
    3. appbundler.toml in current directory

    Args:
        config_path: Optional explicit path to config file

    Returns:
        Configuration dictionary (empty if no config found)

    Raises:
        ConfigurationError: If a config file exists but cannot be parsed

    Example .appbundler.toml:
        [bundle]
        name = "MyApp"
        identifier = "com.example.myapp"
        version = "2.0"
        copyright = "Copyright (c) 2024 Example"
        icons = ["icons/icon_256.png", "icons/icon_256@2x.png"]
        resources = ["assets/"]
        output = "dist"
    """
    # Try to import tomllib (Python 3.11+) or tomli as fallback
    try:
        import tomllib
    except ImportError:
        try:
            import tomli as tomllib  # type: ignore[import-not-found]
        except ImportError:
            return {}

    # Determine config file path
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        paths_to_try = [config_path]
    else:
        cwd = Path.cwd()
        paths_to_try = [
            cwd / ".appbundler.toml",
            cwd / "appbundler.toml",
        ]

    for path in paths_to_try:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    data: dict[str, object] = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                raise ConfigurationError(
                    f"Failed to read config file {path}: {e}"
                ) from e
            return data

    return {}


def get_config_value(
    config: dict[str, object],
    section: str,
    key: str,
    default: str | None = None,
) -> str | None:
    """Get a value from config with section.key lookup.

    Args:
        config: Configuration dictionary
        section: Section name (e.g., "bundle")
        key: Key name within section
        default: Default value if not found

    Returns:
        Configuration value or default

    Raises:
        ConfigurationError: If the value is present but not a string
    """
    section_config = config.get(section, {})
    if not isinstance(section_config, dict):
        return default
    value = section_config.get(key, default)
    if value is None or isinstance(value, str):
        return value
    raise ConfigurationError(f"Config value {section}.{key} must be a string")


def get_config_list(
    config: dict[str, object], section: str, key: str
) -> list[str]:
    """Get a list of strings from config with section.key lookup.

    A single string is accepted as a one-item list.

    Raises:
        ConfigurationError: If the value is neither a string nor a list
            of strings
    """
    section_config = config.get(section, {})
    if not isinstance(section_config, dict):
        return []
    value = section_config.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigurationError(
        f"Config value {section}.{key} must be a string or list of strings"
    )


# ----------------------------------------------------------------------------
# File validation

# Maximum file size for validation (1GB) - prevents copying unreasonably large files
MAX_FILE_SIZE = 1024 * 1024 * 1024


def validate_file(path: Pathlike, max_size: int = MAX_FILE_SIZE) -> None:
    """Validate a file before copying it into a bundle.

    Checks that the file:
    - Exists and is a regular file (not symlink, device, socket, etc.)
    - Is readable
    - Has non-zero size
    - Is not larger than max_size

    Args:
        path: Path to the file to validate
        max_size: Maximum allowed file size in bytes

    Raises:
        ValidationError: If any validation check fails
    """
    path = Path(path)

    if not path.exists():
        raise ValidationError(f"File does not exist: {path}")

    if path.is_symlink():
        raise ValidationError(f"File is a symbolic link: {path}")

    if not path.is_file():
        raise ValidationError(f"Path is not a regular file: {path}")

    if not os.access(path, os.R_OK):
        raise ValidationError(f"File is not readable: {path}")

    try:
        size = path.stat().st_size
    except OSError as e:
        raise ValidationError(f"Cannot stat file {path}: {e}") from e

    if size == 0:
        raise ValidationError(f"File is empty (zero bytes): {path}")

    if size > max_size:
        raise ValidationError(
            f"File exceeds maximum size ({size} > {max_size} bytes): {path}"
        )


# ----------------------------------------------------------------------------
# Logging configuration


class CustomFormatter(logging.Formatter):
    """Custom logging formatting class with color support."""

    class color:
        """Text colors for terminal output."""

        white = "\x1b[97;20m"
        grey = "\x1b[38;20m"
        green = "\x1b[32;20m"
        yellow = "\x1b[33;20m"
        red = "\x1b[31;20m"
        bold_red = "\x1b[31;1m"
        reset = "\x1b[0m"

    cfmt = (
        f"{color.white}%(delta)s{color.reset} - "
        f"{{}}%(levelname)s{color.reset} - "
        f"{color.white}%(name)s.%(funcName)s{color.reset} - "
        f"{color.grey}%(message)s{color.reset}"
    )

    FORMATS = {
        logging.DEBUG: cfmt.format(color.grey),
        logging.INFO: cfmt.format(color.green),
        logging.WARNING: cfmt.format(color.yellow),
        logging.ERROR: cfmt.format(color.red),
        logging.CRITICAL: cfmt.format(color.bold_red),
    }

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color
        self.fmt = (
            "%(delta)s - %(levelname)s - %(name)s.%(funcName)s - %(message)s"
        )

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record with color if enabled."""
        if not self.use_color:
            log_fmt = self.fmt
        else:
            log_fmt = self.FORMATS[record.levelno]
        duration = datetime.datetime.fromtimestamp(
            record.relativeCreated / 1000, datetime.timezone.utc
        )
        record.delta = duration.strftime("%H:%M:%S")
        formatter = logging.Formatter(log_fmt)
        return formatter.format(record)


def setup_logging(debug: bool = True, use_color: bool = True) -> None:
    """Configure logging for the application.

    Args:
        debug: Whether to enable debug logging
        use_color: Whether to use colored output
    """
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(CustomFormatter(use_color))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        handlers=[stream_handler],
    )


# ----------------------------------------------------------------------------
# Raster images


class PixelFormat(Enum):
    """Supported 8-bit pixel formats, keyed by Pillow mode."""

    GRAY = ("L", 1)
    GRAY_ALPHA = ("LA", 2)
    RGB = ("RGB", 3)
    RGBA = ("RGBA", 4)

    def __init__(self, mode: str, channels: int):
        self.mode = mode
        self.channels = channels

    @classmethod
    def from_mode(cls, mode: str) -> "PixelFormat | None":
        for pixel_format in cls:
            if pixel_format.mode == mode:
                return pixel_format
        return None


# Palette modes hold 8-bit indices and are expanded to truecolor on decode
PALETTE_MODES = ("P", "PA")


class RasterImage:
    """An immutable decoded bitmap.

    Args:
        width: Width in pixels (> 0)
        height: Height in pixels (> 0)
        pixel_format: One of the PixelFormat members
        data: Packed pixel buffer of exactly width * height * channels bytes

    Transforms (square, resized, converted) return new instances.
    """

    def __init__(
        self, width: int, height: int, pixel_format: PixelFormat, data: bytes
    ):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid image size {width}x{height}")
        expected = width * height * pixel_format.channels
        if len(data) != expected:
            raise ValueError(
                f"Pixel buffer holds {len(data)} bytes, expected {expected} "
                f"for {width}x{height} {pixel_format.name}"
            )
        self._width = width
        self._height = height
        self._pixel_format = pixel_format
        self._data = bytes(data)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def pixel_format(self) -> PixelFormat:
        return self._pixel_format

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> tuple[int, int]:
        return (self._width, self._height)

    @property
    def dimension(self) -> int:
        """The square-reduced dimension, i.e. the smaller edge."""
        return min(self._width, self._height)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RasterImage):
            return NotImplemented
        return (
            self.size == other.size
            and self.pixel_format is other.pixel_format
            and self.data == other.data
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"RasterImage({self._width}x{self._height}, "
            f"{self._pixel_format.name})"
        )

    @classmethod
    def from_pil(
        cls, image: Image.Image, path: Pathlike | None = None
    ) -> "RasterImage":
        """Create a RasterImage from a loaded Pillow image.

        Palette images are expanded to RGBA when they carry transparency
        and to RGB otherwise.

        Raises:
            UnsupportedPixelFormat: If the mode is not an 8-bit gray,
                gray+alpha, RGB, RGBA or palette mode
        """
        if image.mode in PALETTE_MODES:
            if image.mode == "PA" or "transparency" in image.info:
                image = image.convert("RGBA")
            else:
                image = image.convert("RGB")
        pixel_format = PixelFormat.from_mode(image.mode)
        if pixel_format is None:
            raise UnsupportedPixelFormat(image.mode, path)
        width, height = image.size
        return cls(width, height, pixel_format, image.tobytes())

    def to_pil(self) -> Image.Image:
        """Return a new Pillow image holding a copy of the pixels."""
        return Image.frombytes(self._pixel_format.mode, self.size, self._data)

    def square(self) -> "RasterImage":
        """Center-crop to the smaller edge; square images are returned as is."""
        if self._width == self._height:
            return self
        edge = self.dimension
        left = (self._width - edge) // 2
        top = (self._height - edge) // 2
        cropped = self.to_pil().crop((left, top, left + edge, top + edge))
        return RasterImage.from_pil(cropped)

    def resized(self, width: int, height: int) -> "RasterImage":
        """Resample to width x height with a Lanczos filter."""
        resized = self.to_pil().resize(
            (width, height), Image.Resampling.LANCZOS
        )
        return RasterImage.from_pil(resized)

    def converted(self, pixel_format: PixelFormat) -> "RasterImage":
        if pixel_format is self._pixel_format:
            return self
        return RasterImage.from_pil(self.to_pil().convert(pixel_format.mode))

    def planes(self) -> tuple[bytes, bytes, bytes, bytes]:
        """Return the red, green, blue and alpha planes.

        Gray values are replicated into each color plane; images without
        alpha get a fully opaque alpha plane.
        """
        bands = self.to_pil().convert("RGBA").split()
        red, green, blue, alpha = (band.tobytes() for band in bands)
        return red, green, blue, alpha


class PixelSource:
    """Decodes an image file into a RasterImage.

    The header is read first, so width, height and mode are available
    before the pixel format is validated and the pixels are loaded.

    Example:
        with PixelSource("icon.png") as source:
            if min(source.width, source.height) >= 16:
                image = source.decode()
    """

    def __init__(self, path: Pathlike):
        self.path = Path(path)
        self._image: Image.Image | None = None

    def open(self) -> "PixelSource":
        """Read the image header.

        Raises:
            DecodeError: If the file is missing, unreadable or not an image
        """
        self._opened()
        return self

    def close(self) -> None:
        if self._image is not None:
            self._image.close()
            self._image = None

    def __enter__(self) -> "PixelSource":
        return self.open()

    def __exit__(self, *args: object) -> None:
        self.close()

    def _opened(self) -> Image.Image:
        if self._image is None:
            try:
                self._image = Image.open(self.path)
            except (
                OSError,
                UnidentifiedImageError,
                Image.DecompressionBombError,
            ) as e:
                raise DecodeError(f"Cannot read image {self.path}: {e}") from e
        return self._image

    @property
    def width(self) -> int:
        return self._opened().size[0]

    @property
    def height(self) -> int:
        return self._opened().size[1]

    @property
    def mode(self) -> str:
        return self._opened().mode

    def decode(self) -> RasterImage:
        """Load the pixels and return them as a RasterImage.

        Raises:
            UnsupportedPixelFormat: If the image mode is not supported
            DecodeError: If the pixel data is malformed or truncated
        """
        image = self._opened()
        if image.mode not in PALETTE_MODES and PixelFormat.from_mode(
            image.mode
        ) is None:
            raise UnsupportedPixelFormat(image.mode, self.path)
        try:
            image.load()
        except (OSError, SyntaxError, ValueError) as e:
            raise DecodeError(f"Cannot decode image {self.path}: {e}") from e
        return RasterImage.from_pil(image, self.path)


def decode_image(path: Pathlike) -> RasterImage:
    """Decode an image file into a RasterImage."""
    with PixelSource(path) as source:
        return source.decode()


# ----------------------------------------------------------------------------
# Icon slots and classification


class DensityClass(Enum):
    """Pixel density of an icon image."""

    STANDARD = 1
    DOUBLE = 2

    @property
    def scale(self) -> int:
        return self.value


class IconEncoding(Enum):
    """Payload encoding of an ICNS element."""

    RLE24 = "rle24"  # PackBits-compressed RGB planes plus an 8-bit mask
    PNG = "png"


class IconSlot(Enum):
    """The closed set of ICNS element types an icon family can hold.

    Each slot carries its OSType tag, its pixel size, its density class,
    its payload encoding and, for RLE24 slots, the tag of its mask element.
    Declaration order is serialization order.
    """

    # fmt: off
    RGB24_16x16 = (b"is32", 16, DensityClass.STANDARD, IconEncoding.RLE24, b"s8mk")
    RGB24_32x32 = (b"il32", 32, DensityClass.STANDARD, IconEncoding.RLE24, b"l8mk")
    RGB24_48x48 = (b"ih32", 48, DensityClass.STANDARD, IconEncoding.RLE24, b"h8mk")
    RGB24_128x128 = (b"it32", 128, DensityClass.STANDARD, IconEncoding.RLE24, b"t8mk")
    RGBA32_16x16_2x = (b"ic11", 32, DensityClass.DOUBLE, IconEncoding.PNG, None)
    RGBA32_32x32_2x = (b"ic12", 64, DensityClass.DOUBLE, IconEncoding.PNG, None)
    RGBA32_64x64 = (b"icp6", 64, DensityClass.STANDARD, IconEncoding.PNG, None)
    RGBA32_128x128_2x = (b"ic13", 256, DensityClass.DOUBLE, IconEncoding.PNG, None)
    RGBA32_256x256 = (b"ic08", 256, DensityClass.STANDARD, IconEncoding.PNG, None)
    RGBA32_256x256_2x = (b"ic14", 512, DensityClass.DOUBLE, IconEncoding.PNG, None)
    RGBA32_512x512 = (b"ic09", 512, DensityClass.STANDARD, IconEncoding.PNG, None)
    RGBA32_512x512_2x = (b"ic10", 1024, DensityClass.DOUBLE, IconEncoding.PNG, None)
    # fmt: on

    def __init__(
        self,
        ostype: bytes,
        pixel_size: int,
        density: DensityClass,
        encoding: IconEncoding,
        mask_ostype: bytes | None,
    ):
        self.ostype = ostype
        self.pixel_size = pixel_size
        self.density = density
        self.encoding = encoding
        self.mask_ostype = mask_ostype

    @staticmethod
    def from_ostype(ostype: bytes) -> "IconSlot | None":
        return _SLOTS_BY_OSTYPE.get(ostype)


_SLOTS_BY_SIZE = {(slot.pixel_size, slot.density): slot for slot in IconSlot}
_SLOTS_BY_OSTYPE = {slot.ostype: slot for slot in IconSlot}
_MASK_OSTYPES = {slot.mask_ostype for slot in IconSlot if slot.mask_ostype}


def classify(dimension: int, density: DensityClass) -> IconSlot | None:
    """Map a square dimension and density to an icon slot.

    Returns None when no slot matches; callers pass min(width, height).
    """
    if dimension <= 0:
        raise ValueError(f"Icon dimension must be positive, got {dimension}")
    return _SLOTS_BY_SIZE.get((dimension, density))


def density_for_path(path: Pathlike) -> DensityClass:
    """Return DOUBLE for files named like ``icon@2x.png``, else STANDARD."""
    if Path(path).stem.endswith(RETINA_MARKER):
        return DensityClass.DOUBLE
    return DensityClass.STANDARD


# ----------------------------------------------------------------------------
# Resampling


def next_size_down(dimension: int) -> int:
    """Largest power of two that is not larger than dimension."""
    if dimension <= 0:
        raise ValueError(f"Icon dimension must be positive, got {dimension}")
    return 1 << (dimension.bit_length() - 1)


def resample(image: RasterImage, size: int) -> RasterImage:
    """Return a new size x size copy of a square image."""
    return image.square().resized(size, size)


# ----------------------------------------------------------------------------
# ICNS container codec


def encode_rle(data: bytes) -> bytes:
    """Compress one color plane with the ICNS PackBits variant.

    Runs of 3 to 130 equal bytes become ``0x80 + (count - 3)`` followed by
    the byte; everything else is emitted as literal blocks of up to 128
    bytes headed by ``count - 1``.
    """
    out = bytearray()
    literal = bytearray()

    def flush_literal() -> None:
        if literal:
            out.append(len(literal) - 1)
            out.extend(literal)
            literal.clear()

    i = 0
    length = len(data)
    while i < length:
        value = data[i]
        run = 1
        while (
            i + run < length and run < RLE_MAX_RUN and data[i + run] == value
        ):
            run += 1
        if run >= RLE_MIN_RUN:
            flush_literal()
            out.append(0x80 + run - RLE_MIN_RUN)
            out.append(value)
            i += run
        else:
            literal.append(value)
            i += 1
            if len(literal) == RLE_MAX_LITERAL:
                flush_literal()
    flush_literal()
    return bytes(out)


def decode_rle(
    data: bytes, expected: int, offset: int = 0
) -> tuple[bytes, int]:
    """Decompress one plane of exactly expected bytes starting at offset.

    Returns:
        The decoded plane and the offset just past the consumed input

    Raises:
        DecodeError: If the input ends early or a block overruns the plane
    """
    out = bytearray()
    pos = offset
    while len(out) < expected:
        if pos >= len(data):
            raise DecodeError("RLE data ends before the plane is complete")
        header = data[pos]
        pos += 1
        if header & 0x80:
            if pos >= len(data):
                raise DecodeError("RLE run is missing its value byte")
            out.extend(data[pos : pos + 1] * (header - 0x80 + RLE_MIN_RUN))
            pos += 1
        else:
            count = header + 1
            if pos + count > len(data):
                raise DecodeError("RLE literal block is truncated")
            out.extend(data[pos : pos + count])
            pos += count
    if len(out) != expected:
        raise DecodeError(
            f"RLE block overruns plane ({len(out)} > {expected} bytes)"
        )
    return bytes(out), pos


def read_icns_elements(data: bytes) -> list[tuple[bytes, bytes]]:
    """Split an icns container into (ostype, payload) pairs in file order.

    Raises:
        DecodeError: If the header or any element header is malformed
    """
    if len(data) < ICNS_HEADER_SIZE or data[:4] != ICNS_MAGIC:
        raise DecodeError("Not an icns container (bad magic)")
    (total,) = struct.unpack(">I", data[4:ICNS_HEADER_SIZE])
    if total < ICNS_HEADER_SIZE or total > len(data):
        raise DecodeError(
            f"icns container declares {total} bytes, {len(data)} available"
        )
    elements = []
    pos = ICNS_HEADER_SIZE
    while pos < total:
        if pos + ICNS_HEADER_SIZE > total:
            raise DecodeError(f"Truncated element header at offset {pos}")
        ostype = data[pos : pos + 4]
        (length,) = struct.unpack(">I", data[pos + 4 : pos + ICNS_HEADER_SIZE])
        if length < ICNS_HEADER_SIZE or pos + length > total:
            raise DecodeError(
                f"Element {ostype!r} at offset {pos} has invalid length {length}"
            )
        elements.append((ostype, data[pos + ICNS_HEADER_SIZE : pos + length]))
        pos += length
    return elements


def _encode_png(image: RasterImage) -> bytes:
    buffer = io.BytesIO()
    image.to_pil().save(buffer, format="PNG")
    return buffer.getvalue()


def _decode_png(payload: bytes, slot: IconSlot) -> RasterImage:
    try:
        with Image.open(io.BytesIO(payload)) as image:
            image.load()
            return RasterImage.from_pil(image)
    except (OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"Cannot decode {slot.name} PNG payload: {e}") from e


def _encode_rle24(slot: IconSlot, image: RasterImage) -> tuple[bytes, bytes]:
    """Return the RGB payload and the 8-bit mask for an RLE24 slot.

    Readers take a body of exactly 3 * width * height bytes to be
    uncompressed interleaved RGB, so a compressed body that happens to
    have that length is replaced by the raw pixels.
    """
    red, green, blue, alpha = image.planes()
    payload = b"".join(encode_rle(plane) for plane in (red, green, blue))
    if len(payload) == len(red) * 3:
        payload = image.to_pil().convert("RGB").tobytes()
    if slot is IconSlot.RGB24_128x128:
        payload = IT32_PREFIX + payload
    return payload, alpha


def _decode_rle24(
    slot: IconSlot, payload: bytes, mask: bytes | None
) -> RasterImage:
    size = slot.pixel_size
    plane_size = size * size
    offset = 0
    if slot is IconSlot.RGB24_128x128:
        if payload[:4] != IT32_PREFIX:
            raise DecodeError("it32 payload is missing its zero prefix")
        offset = len(IT32_PREFIX)
    if len(payload) - offset == plane_size * 3:
        # uncompressed, interleaved RGB
        raw = Image.frombytes("RGB", (size, size), payload[offset:])
        planes = [band.tobytes() for band in raw.split()]
    else:
        planes = []
        for _ in range(3):
            plane, offset = decode_rle(payload, plane_size, offset)
            planes.append(plane)
    if mask is None:
        mask = b"\xff" * plane_size
    elif len(mask) != plane_size:
        raise DecodeError(
            f"{slot.name} mask holds {len(mask)} bytes, expected {plane_size}"
        )
    bands = [Image.frombytes("L", (size, size), p) for p in planes + [mask]]
    return RasterImage.from_pil(Image.merge("RGBA", bands))


class IconFamily:
    """A collection of icon images keyed by slot, serializable as icns.

    The first image added for a slot wins; a second add for the same
    slot raises DuplicateSlot. Elements are written in IconSlot order so
    the output does not depend on insertion order. Once serialized the
    family no longer accepts images.

    Example:
        family = IconFamily()
        family.add(decode_image("icon_256.png"), IconSlot.RGBA32_256x256)
        with open("MyApp.icns", "wb") as f:
            family.write(f)
    """

    def __init__(self) -> None:
        self._icons: dict[IconSlot, RasterImage] = {}
        self._frozen = False
        self.log = logging.getLogger(self.__class__.__name__)

    def __len__(self) -> int:
        return len(self._icons)

    def __contains__(self, slot: object) -> bool:
        return slot in self._icons

    def is_empty(self) -> bool:
        return not self._icons

    def get(self, slot: IconSlot) -> RasterImage | None:
        return self._icons.get(slot)

    def slots(self) -> list[IconSlot]:
        """Occupied slots in serialization order."""
        return [slot for slot in IconSlot if slot in self._icons]

    def add(self, image: RasterImage, slot: IconSlot) -> None:
        """Add an image to an empty slot.

        Raises:
            DuplicateSlot: If the slot is already occupied
            IconError: If the image size does not fit the slot, or the
                family has already been serialized
        """
        if self._frozen:
            raise IconError("Icon family has already been serialized")
        if slot in self._icons:
            raise DuplicateSlot(slot)
        if image.size != (slot.pixel_size, slot.pixel_size):
            raise IconError(
                f"{image.width}x{image.height} image does not fit slot "
                f"{slot.name} ({slot.pixel_size}x{slot.pixel_size})"
            )
        self._icons[slot] = image
        self.log.debug("added %s as %s", image, slot.name)

    def elements(self) -> Iterator[tuple[bytes, bytes]]:
        """Yield the (ostype, payload) elements in serialization order."""
        for slot in self.slots():
            image = self._icons[slot]
            if slot.encoding is IconEncoding.PNG:
                yield slot.ostype, _encode_png(image)
            else:
                payload, mask = _encode_rle24(slot, image)
                yield slot.ostype, payload
                if slot.mask_ostype is not None:
                    yield slot.mask_ostype, mask

    def serialize(self) -> bytes:
        """Return the icns container bytes.

        Raises:
            NoUsableIcons: If the family is empty
        """
        if self.is_empty():
            raise NoUsableIcons("Icon family is empty; nothing to serialize")
        self._frozen = True
        body = bytearray()
        for ostype, payload in self.elements():
            body += ostype
            body += struct.pack(">I", len(payload) + ICNS_HEADER_SIZE)
            body += payload
        header = ICNS_MAGIC + struct.pack(">I", len(body) + ICNS_HEADER_SIZE)
        return header + bytes(body)

    def write(self, stream: BinaryIO) -> None:
        stream.write(self.serialize())

    @classmethod
    def parse(cls, data: bytes) -> "IconFamily":
        """Rebuild a family from icns container bytes.

        RLE24 slots decode to RGBA; PNG slots keep their stored format.
        Element types outside IconSlot are skipped.

        Raises:
            DecodeError: If the container or any known payload is malformed
        """
        family = cls()
        elements = read_icns_elements(data)
        masks = {
            ostype: payload
            for ostype, payload in elements
            if ostype in _MASK_OSTYPES
        }
        for ostype, payload in elements:
            slot = IconSlot.from_ostype(ostype)
            if slot is None:
                if ostype not in _MASK_OSTYPES:
                    family.log.debug("skipping element %r", ostype)
                continue
            if slot.encoding is IconEncoding.PNG:
                image = _decode_png(payload, slot)
            else:
                image = _decode_rle24(slot, payload, masks.get(slot.mask_ostype))
            try:
                family.add(image, slot)
            except IconError as e:
                raise DecodeError(f"Invalid {slot.name} element: {e}") from e
        return family


# ----------------------------------------------------------------------------
# Icon synthesis


class IconOutcome:
    """The result of processing one icon candidate.

    Args:
        path: The candidate file
        status: One of ADDED, COPIED or SKIPPED
        slot: The slot the image was added to (ADDED only)
        reason: The IconError that caused a skip (SKIPPED only)
        resampled_from: Original square dimension when the image was
            downsampled before classification
    """

    ADDED = "added"
    COPIED = "copied"
    SKIPPED = "skipped"

    def __init__(
        self,
        path: Pathlike,
        status: str,
        slot: IconSlot | None = None,
        reason: IconError | None = None,
        resampled_from: int | None = None,
    ):
        self.path = Path(path)
        self.status = status
        self.slot = slot
        self.reason = reason
        self.resampled_from = resampled_from

    @property
    def ok(self) -> bool:
        return self.status != self.SKIPPED

    def __repr__(self) -> str:
        detail = self.slot.name if self.slot else self.reason
        return f"IconOutcome({self.path.name}, {self.status}, {detail})"


class IconReport:
    """Ordered record of the outcome of every icon candidate touched.

    Candidates that were never opened, e.g. after an .icns file was
    chosen, have no entry.
    """

    def __init__(self) -> None:
        self.outcomes: list[IconOutcome] = []

    def __iter__(self) -> Iterator[IconOutcome]:
        return iter(self.outcomes)

    def __len__(self) -> int:
        return len(self.outcomes)

    def record(self, outcome: IconOutcome) -> IconOutcome:
        self.outcomes.append(outcome)
        return outcome

    @property
    def added(self) -> list[IconOutcome]:
        return [o for o in self.outcomes if o.status == IconOutcome.ADDED]

    @property
    def copied(self) -> list[IconOutcome]:
        return [o for o in self.outcomes if o.status == IconOutcome.COPIED]

    @property
    def skipped(self) -> list[IconOutcome]:
        return [o for o in self.outcomes if o.status == IconOutcome.SKIPPED]

    @property
    def attempted(self) -> list[Path]:
        return [o.path for o in self.outcomes]

    def raise_for_skipped(self) -> None:
        """Raise the reason of the first skipped candidate, if any."""
        for outcome in self.skipped:
            if outcome.reason is not None:
                raise outcome.reason

    def summary(self) -> str:
        return (
            f"{len(self.added)} added, {len(self.copied)} copied, "
            f"{len(self.skipped)} skipped"
        )


class IconSynthesizer:
    """Builds an IconFamily from candidate image files.

    Candidates are processed in input order, so the first image that
    classifies to a slot wins it. Each candidate is decoded, center-cropped
    to a square, and classified by size and density; an unmatched
    candidate is downsampled once to the next power of two and classified
    again. Per-candidate failures are recorded as skipped outcomes in the
    report rather than raised.

    Args:
        icon_paths: Candidate image files
        strict: If True, build() raises the first skip reason
        report: Report to record outcomes in (a new one by default)
    """

    def __init__(
        self,
        icon_paths: Iterable[Pathlike],
        strict: bool = False,
        report: IconReport | None = None,
    ):
        self.icon_paths = [Path(p) for p in icon_paths]
        self.strict = strict
        self.report = report if report is not None else IconReport()
        self.family = IconFamily()
        self.log = logging.getLogger(self.__class__.__name__)

    def _skip(self, path: Path, reason: IconError) -> IconOutcome:
        self.log.warning("skipping icon %s: %s", path, reason)
        return self.report.record(
            IconOutcome(path, IconOutcome.SKIPPED, reason=reason)
        )

    def add_candidate(self, path: Pathlike) -> IconOutcome:
        """Process a single candidate and record its outcome."""
        path = Path(path)
        density = density_for_path(path)
        try:
            image = decode_image(path).square()
        except (DecodeError, UnsupportedPixelFormat) as e:
            return self._skip(path, e)

        dimension = image.dimension
        resampled_from = None
        slot = classify(dimension, density)
        if slot is None:
            target = next_size_down(dimension)
            if target == dimension:
                return self._skip(
                    path, UnusableIconSize(dimension, density, path)
                )
            self.log.debug(
                "resampling %s from %d to %d", path, dimension, target
            )
            image = resample(image, target)
            resampled_from = dimension
            slot = classify(target, density)
            if slot is None:
                return self._skip(path, UnusableIconSize(target, density, path))

        try:
            self.family.add(image, slot)
        except DuplicateSlot as e:
            return self._skip(path, DuplicateSlot(e.slot, path))

        self.log.info("icon %s -> %s", path.name, slot.name)
        return self.report.record(
            IconOutcome(
                path,
                IconOutcome.ADDED,
                slot=slot,
                resampled_from=resampled_from,
            )
        )

    def build(self) -> IconFamily:
        """Process every candidate and return the resulting family.

        Raises:
            NoUsableIcons: If no candidate could be added
            IconError: In strict mode, the first skip reason
        """
        for path in self.icon_paths:
            self.add_candidate(path)
        self.log.info("icon candidates: %s", self.report.summary())
        if self.strict:
            self.report.raise_for_skipped()
        if self.family.is_empty():
            raise NoUsableIcons(
                f"No usable icon files found among {len(self.icon_paths)} "
                "candidate(s)"
            )
        return self.family


# ----------------------------------------------------------------------------
# Bundle folder and file helpers


class BundleFolder:
    """Manages a folder within the bundle structure."""

    def __init__(self, path: Pathlike):
        self.path = Path(path)

    def create(self) -> None:
        """Create the bundle folder if it doesn't exist.

        Raises:
            DirectoryError: If the folder cannot be created or a
                non-directory is in the way
        """
        try:
            self.path.mkdir(exist_ok=True, parents=True)
        except OSError as e:
            raise DirectoryError(
                f"Failed to create bundle directory {self.path}: {e}"
            ) from e
        if not self.path.is_dir():
            raise DirectoryError(f"{self.path} is not a directory")


def copy_file(src: Pathlike, dest: Pathlike) -> None:
    """Copy a regular file byte for byte, creating parent folders.

    Raises:
        CopyError: If src is not a regular file or the copy fails
    """
    src = Path(src)
    dest = Path(dest)
    if not src.is_file():
        raise CopyError(f"{src} does not exist or is not a regular file")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)
    except OSError as e:
        raise CopyError(f"Failed to copy {src} to {dest}: {e}") from e


def resource_relpath(path: Pathlike) -> Path:
    """Map a resource path to its relative location under Resources.

    ``..`` becomes ``_up_`` and the root of an absolute path becomes
    ``_root_``, so every resource lands inside the bundle.
    """
    path = Path(path)
    dest = Path()
    for part in path.parts:
        if part == path.anchor:
            dest /= "_root_"
        elif part == "..":
            dest /= "_up_"
        elif part != ".":
            dest /= part
    return dest


def _is_glob(pattern: str) -> bool:
    return any(c in pattern for c in "*?[")


def iter_resource_files(patterns: Iterable[Pathlike]) -> Iterator[Path]:
    """Expand resource entries into files.

    Each entry may be a file, a directory (walked recursively in sorted
    order) or a glob pattern.

    Raises:
        CopyError: If an entry does not exist or a pattern matches nothing
    """
    for pattern in patterns:
        pattern = str(pattern)
        if _is_glob(pattern):
            paths = [Path(p) for p in sorted(glob.glob(pattern, recursive=True))]
            if not paths:
                raise CopyError(f"Resource pattern matched no files: {pattern}")
        else:
            path = Path(pattern)
            if not path.exists():
                raise CopyError(f"Resource does not exist: {path}")
            paths = [path]
        for path in paths:
            if path.is_dir():
                yield from sorted(p for p in path.rglob("*") if p.is_file())
            else:
                yield path


# ----------------------------------------------------------------------------
# Bundle descriptor and Info.plist


class BundleDescriptor:
    """Metadata describing the bundle to build.

    Args:
        name: Bundle and display name (the bundle is ``<name>.app``)
        binary_name: File name of the executable inside Contents/MacOS
        identifier: Bundle identifier, e.g. ``com.example.myapp``
        version: Bundle version string
        copyright: Optional human-readable copyright notice
        min_system_version: Minimum macOS version
    """

    def __init__(
        self,
        name: str,
        binary_name: str,
        identifier: str,
        version: str,
        copyright: str | None = None,
        min_system_version: str = DEFAULT_MIN_SYSTEM_VERSION,
    ):
        for field, value in (
            ("name", name),
            ("binary_name", binary_name),
            ("identifier", identifier),
            ("version", version),
        ):
            if not value or not value.strip():
                raise ConfigurationError(f"Bundle {field} cannot be empty")
        if "/" in binary_name or "/" in name:
            raise ConfigurationError(
                "Bundle name and binary name cannot contain '/'"
            )
        self.name = name
        self.binary_name = binary_name
        self.identifier = identifier
        self.version = version
        self.copyright = copyright
        self.min_system_version = min_system_version

    @property
    def bundle_dirname(self) -> str:
        return self.name + DEFAULT_BUNDLE_EXT

    @property
    def icon_filename(self) -> str:
        return self.name + ICNS_EXTENSION


def render_info_plist(
    descriptor: BundleDescriptor, icon_file: Pathlike | None = None
) -> str:
    """Render the Info.plist for a bundle.

    Only the base name of icon_file is referenced.
    """
    icon_file_entry = ""
    if icon_file is not None:
        icon_file_entry = ICON_FILE_ENTRY_TMPL.format(
            icon_file=escape(Path(icon_file).name)
        )
    copyright_entry = ""
    if descriptor.copyright:
        copyright_entry = COPYRIGHT_ENTRY_TMPL.format(
            copyright=escape(descriptor.copyright)
        )
    return INFO_PLIST_TMPL.format(
        bundle_name=escape(descriptor.name),
        executable=escape(descriptor.binary_name),
        icon_file_entry=icon_file_entry,
        bundle_identifier=escape(descriptor.identifier),
        bundle_version=escape(descriptor.version),
        min_system_version=escape(descriptor.min_system_version),
        copyright_entry=copyright_entry,
    )


# ----------------------------------------------------------------------------
# Bundle assembly


class BundleAssembler:
    """Assembles a macOS application bundle.

    The bundle ``<output_root>/<name>.app`` is removed and rebuilt from
    scratch on every run:

        <name>.app/Contents/
            Info.plist
            PkgInfo
            MacOS/<binary_name>
            Resources/<icon>.icns
            Resources/<resources...>

    Args:
        descriptor: Bundle metadata
        icon_paths: Icon candidates; the first ``.icns`` file is used
            verbatim, otherwise the images are packed into a new container
        resource_paths: Files, directories or glob patterns to copy
            into Resources
        binary_path: The executable to bundle
        output_root: Directory that will hold the bundle
        strict: If True, any skipped icon candidate aborts the assembly
        dry_run: If True, only log what would be done

    Example:
        assembler = BundleAssembler(descriptor, ["icon.png"], [],
                                    "build/myapp", "dist")
        bundle_path = assembler.assemble()
    """

    def __init__(
        self,
        descriptor: BundleDescriptor,
        icon_paths: Iterable[Pathlike],
        resource_paths: Iterable[Pathlike],
        binary_path: Pathlike,
        output_root: Pathlike,
        strict: bool = False,
        dry_run: bool = False,
    ):
        self.descriptor = descriptor
        self.icon_paths = [Path(p) for p in icon_paths]
        self.resource_paths = [str(p) for p in resource_paths]
        self.binary_path = Path(binary_path)
        self.output_root = Path(output_root)
        self.strict = strict
        self.dry_run = dry_run
        self.report = IconReport()
        self.log = logging.getLogger(self.__class__.__name__)

        # Bundle structure paths
        self.bundle = self.output_root / descriptor.bundle_dirname
        self.contents = self.bundle / "Contents"
        self.macos = BundleFolder(self.contents / "MacOS")
        self.resources = BundleFolder(self.contents / "Resources")

        # Files
        self.info_plist = self.contents / "Info.plist"
        self.pkg_info = self.contents / "PkgInfo"
        self.executable = self.macos.path / descriptor.binary_name

    def validate_binary(self) -> None:
        """Check the executable before the old bundle is touched.

        Raises:
            CopyError: If the binary fails validation
        """
        try:
            validate_file(self.binary_path)
        except ValidationError as e:
            raise CopyError(
                f"Failed to copy binary from {self.binary_path}: {e}"
            ) from e

    def create_directories(self) -> None:
        """Remove any previous bundle and create a fresh tree.

        Raises:
            DirectoryError: If the old bundle cannot be removed or the new
                tree cannot be created
        """
        if self.bundle.exists() or self.bundle.is_symlink():
            if self.bundle.is_symlink() or not self.bundle.is_dir():
                raise DirectoryError(
                    f"Failed to remove old {self.bundle}: not a directory"
                )
            if self.dry_run:
                self.log.info("[DRY RUN] Would remove old %s", self.bundle)
            else:
                self.log.info("Removing old %s", self.bundle)
                try:
                    shutil.rmtree(self.bundle)
                except OSError as e:
                    raise DirectoryError(
                        f"Failed to remove old {self.bundle}: {e}"
                    ) from e

        if self.dry_run:
            self.log.info("[DRY RUN] Would create %s", self.contents)
            return
        self.macos.create()
        self.resources.create()

    def create_icon(self) -> Path | None:
        """Resolve the bundle icon and place it in Resources.

        Returns:
            Path of the icon file in the bundle, or None if the bundle
            has no icon
        """
        if not self.icon_paths:
            self.log.info("No icon files given; bundle will have no icon")
            return None

        # A ready-made container wins and nothing else is opened
        for icon_path in self.icon_paths:
            if icon_path.suffix.lower() == ICNS_EXTENSION:
                dest = self.resources.path / icon_path.name
                self.report.record(IconOutcome(icon_path, IconOutcome.COPIED))
                if self.dry_run:
                    self.log.info(
                        "[DRY RUN] Would copy icon %s to Resources", icon_path
                    )
                else:
                    copy_file(icon_path, dest)
                    self.log.info("Added icon: %s", icon_path.name)
                return dest

        synthesizer = IconSynthesizer(
            self.icon_paths, strict=self.strict, report=self.report
        )
        try:
            family = synthesizer.build()
        except NoUsableIcons as e:
            if self.strict:
                raise
            self.log.warning("%s; bundle will have no icon", e)
            return None

        dest = self.resources.path / self.descriptor.icon_filename
        if self.dry_run:
            self.log.info(
                "[DRY RUN] Would write %d icon(s) to %s", len(family), dest
            )
            return dest
        try:
            with open(dest, "wb") as fopen:
                family.write(fopen)
        except OSError as e:
            raise FileError(f"Failed to write icon file {dest}: {e}") from e
        self.log.info("Created icon %s with %d image(s)", dest.name, len(family))
        return dest

    def create_info_plist(self, icon_file: Path | None) -> None:
        """Create the Info.plist file."""
        content = render_info_plist(self.descriptor, icon_file)
        if self.dry_run:
            self.log.info("[DRY RUN] Would create %s", self.info_plist)
            return
        try:
            with open(self.info_plist, "w", encoding="utf-8") as fopen:
                fopen.write(content)
        except OSError as e:
            raise FileError(
                f"Failed to create {self.info_plist}: {e}"
            ) from e

    def create_pkg_info(self) -> None:
        """Create the PkgInfo file."""
        if self.dry_run:
            self.log.info("[DRY RUN] Would create %s", self.pkg_info)
            return
        try:
            with open(self.pkg_info, "w", encoding="utf-8") as fopen:
                fopen.write(PKG_INFO_CONTENT)
        except OSError as e:
            raise FileError(f"Failed to create {self.pkg_info}: {e}") from e

    def copy_resources(self, icon_file: Path | None = None) -> None:
        """Copy resource files into Resources, keeping relative paths.

        A resource whose destination is the bundle icon is skipped with a
        warning so the icon referenced by Info.plist is kept.
        """
        for src in iter_resource_files(self.resource_paths):
            dest = self.resources.path / resource_relpath(src)
            if icon_file is not None and dest == icon_file:
                self.log.warning(
                    "Skipping resource %s: it would overwrite the bundle icon %s",
                    src,
                    icon_file.name,
                )
                continue
            if self.dry_run:
                self.log.info("[DRY RUN] Would copy %s to %s", src, dest)
                continue
            self.log.debug("copying resource %s", src)
            copy_file(src, dest)

    def copy_binary(self) -> None:
        """Copy the executable into MacOS and set executable permissions."""
        if self.dry_run:
            self.log.info(
                "[DRY RUN] Would copy %s to %s",
                self.binary_path,
                self.executable,
            )
            return
        copy_file(self.binary_path, self.executable)
        try:
            oldmode = os.stat(self.executable).st_mode
            os.chmod(
                self.executable,
                oldmode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH,
            )
        except OSError as e:
            raise CopyError(
                f"Failed to make {self.executable} executable: {e}"
            ) from e

    def assemble(self) -> Path:
        """Build the complete bundle.

        Returns:
            Path to the bundle
        """
        if self.dry_run:
            self.log.info("[DRY RUN] Would bundle %s", self.bundle)
        else:
            self.log.info("Bundling %s", self.bundle)

        self.validate_binary()
        self.create_directories()
        icon_file = self.create_icon()
        self.create_info_plist(icon_file)
        self.create_pkg_info()
        self.copy_resources(icon_file)
        self.copy_binary()

        if self.dry_run:
            self.log.info("[DRY RUN] Bundle would be created at: %s", self.bundle)
        else:
            self.log.info("Bundle created successfully: %s", self.bundle)
        return self.bundle


# ----------------------------------------------------------------------------
# Functional API


def assemble(
    descriptor: BundleDescriptor,
    icon_paths: Iterable[Pathlike],
    resource_paths: Iterable[Pathlike],
    binary_path: Pathlike,
    output_root: Pathlike,
    strict: bool = False,
    dry_run: bool = False,
) -> Path:
    """Assemble a macOS application bundle.

    This is a convenience function that creates a BundleAssembler
    instance and calls assemble() on it.

    Returns:
        Path to the bundle

    Example:
        bundle_path = assemble(descriptor, ["icon.png"], ["assets/"],
                               "build/myapp", "dist")
    """
    assembler = BundleAssembler(
        descriptor,
        icon_paths,
        resource_paths,
        binary_path,
        output_root,
        strict=strict,
        dry_run=dry_run,
    )
    return assembler.assemble()


def make_icns(
    output: Pathlike, image_paths: Iterable[Pathlike], strict: bool = False
) -> IconReport:
    """Synthesize a standalone .icns file from image files.

    Returns:
        The report of every candidate processed

    Raises:
        NoUsableIcons: If no image could be used
        FileError: If the output file cannot be written
    """
    output = Path(output)
    synthesizer = IconSynthesizer(image_paths, strict=strict)
    family = synthesizer.build()
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "wb") as fopen:
            family.write(fopen)
    except OSError as e:
        raise FileError(f"Failed to write icon file {output}: {e}") from e
    return synthesizer.report


# ----------------------------------------------------------------------------
# Command-line interface


def _add_common_options(parser: argparse.ArgumentParser) -> None:
    """Add common options to a parser."""
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="enable verbose/debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="disable colored output",
    )


def _cmd_create(args: argparse.Namespace) -> None:
    """Handle 'create' subcommand."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("appbundler")

    config = load_config(Path(args.config) if args.config else None)

    binary = Path(args.binary)
    if not binary.exists():
        log.error("Binary does not exist: %s", binary)
        sys.exit(1)

    name = args.name or get_config_value(config, "bundle", "name") or binary.stem
    identifier = (
        args.identifier
        or get_config_value(config, "bundle", "identifier")
        or os.getenv(ENV_BUNDLE_ID)
        or f"{DEFAULT_BUNDLE_ID}.{name}"
    )
    version = (
        args.version
        or get_config_value(config, "bundle", "version")
        or DEFAULT_VERSION
    )
    copyright = (
        args.copyright
        or get_config_value(config, "bundle", "copyright")
        or os.getenv(ENV_COPYRIGHT)
    )
    min_system_version = (
        args.min_system_version
        or get_config_value(config, "bundle", "min_system_version")
        or DEFAULT_MIN_SYSTEM_VERSION
    )
    icons = args.icon or get_config_list(config, "bundle", "icons")
    resources = args.resource or get_config_list(config, "bundle", "resources")
    output = args.output or get_config_value(config, "bundle", "output") or "."

    descriptor = BundleDescriptor(
        name=name,
        binary_name=binary.name,
        identifier=identifier,
        version=version,
        copyright=copyright,
        min_system_version=min_system_version,
    )
    assembler = BundleAssembler(
        descriptor,
        icon_paths=icons,
        resource_paths=resources,
        binary_path=binary,
        output_root=output,
        strict=args.strict,
        dry_run=args.dry_run,
    )
    bundle_path = assembler.assemble()
    for outcome in assembler.report.skipped:
        log.warning("Skipped %s: %s", outcome.path, outcome.reason)
    log.info("Created: %s", bundle_path)


def _cmd_icns(args: argparse.Namespace) -> None:
    """Handle 'icns' subcommand."""
    setup_logging(args.verbose, not args.no_color)
    log = logging.getLogger("appbundler")

    report = make_icns(args.output, args.images, strict=args.strict)
    for outcome in report.added:
        log.info("%s -> %s", outcome.path, outcome.slot)
    log.info("Created: %s (%s)", args.output, report.summary())


def _cmd_inspect(args: argparse.Namespace) -> None:
    """Handle 'inspect' subcommand."""
    setup_logging(args.verbose, not args.no_color)

    path = Path(args.file)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise FileError(f"Cannot read {path}: {e}") from e

    for ostype, payload in read_icns_elements(data):
        slot = IconSlot.from_ostype(ostype)
        if slot is not None:
            size = slot.pixel_size
            desc = (
                f"{slot.name} {size}x{size} "
                f"@{slot.density.scale}x {slot.encoding.value}"
            )
        elif ostype in _MASK_OSTYPES:
            desc = "8-bit mask"
        else:
            desc = "unknown"
        tag = ostype.decode("latin-1")
        print(f"{tag}  {len(payload) + ICNS_HEADER_SIZE:>9}  {desc}")


def main() -> None:
    """Command line interface for appbundler."""
    try:
        parser = argparse.ArgumentParser(
            prog="appbundler",
            description="Create macOS app bundles and icns icon containers.",
            epilog=(
                "Examples:\n"
                "  appbundler create build/myapp --icon icon.png\n"
                "  appbundler icns MyApp.icns icon_128.png icon_256@2x.png\n"
                "  appbundler inspect MyApp.icns\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {__version__}",
        )

        subparsers = parser.add_subparsers(
            title="commands",
            dest="command",
            required=True,
        )

        # --- create subcommand ---
        create_parser = subparsers.add_parser(
            "create",
            help="create a new .app bundle from an executable",
            description="Create a new macOS .app bundle from an executable.",
            epilog=(
                "Examples:\n"
                "  appbundler create build/myapp\n"
                "  appbundler create build/myapp -n MyApp -i com.example.myapp\n"
                "  appbundler create build/myapp --icon icon.png --icon icon@2x.png -r assets/\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        create_parser.add_argument(
            "binary",
            help="path to the executable to bundle",
        )
        create_parser.add_argument(
            "-n",
            "--name",
            help="bundle name (default: executable name)",
        )
        create_parser.add_argument(
            "-i",
            "--identifier",
            help=f"bundle identifier (default: {DEFAULT_BUNDLE_ID}.<name>)",
        )
        create_parser.add_argument(
            "-v",
            "--bundle-version",
            dest="version",
            help=f"bundle version (default: {DEFAULT_VERSION})",
        )
        create_parser.add_argument(
            "--copyright",
            metavar="TEXT",
            help="human-readable copyright notice",
        )
        create_parser.add_argument(
            "--icon",
            action="append",
            metavar="FILE",
            help="icon candidate: .icns file or image (repeatable)",
        )
        create_parser.add_argument(
            "-r",
            "--resource",
            action="append",
            metavar="PATH",
            help="add resource file, directory or glob (repeatable)",
        )
        create_parser.add_argument(
            "-o",
            "--output",
            metavar="DIR",
            help="output directory (default: current directory)",
        )
        create_parser.add_argument(
            "--min-system-version",
            metavar="VERSION",
            help=f"minimum macOS version (default: {DEFAULT_MIN_SYSTEM_VERSION})",
        )
        create_parser.add_argument(
            "-c",
            "--config",
            metavar="FILE",
            help="path to config file (default: .appbundler.toml)",
        )
        create_parser.add_argument(
            "--strict",
            action="store_true",
            help="fail if any icon candidate is skipped",
        )
        create_parser.add_argument(
            "--dry-run",
            action="store_true",
            help="show what would be done without doing it",
        )
        _add_common_options(create_parser)
        create_parser.set_defaults(func=_cmd_create)

        # --- icns subcommand ---
        icns_parser = subparsers.add_parser(
            "icns",
            help="build an .icns file from images",
            description="Pack images into a multi-resolution .icns container.",
            epilog=(
                "Examples:\n"
                "  appbundler icns MyApp.icns icon_16.png icon_32.png icon_512@2x.png\n"
            ),
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        icns_parser.add_argument(
            "output",
            help="path of the .icns file to write",
        )
        icns_parser.add_argument(
            "images",
            nargs="+",
            help="candidate images (name@2x.png for double density)",
        )
        icns_parser.add_argument(
            "--strict",
            action="store_true",
            help="fail if any image is skipped",
        )
        _add_common_options(icns_parser)
        icns_parser.set_defaults(func=_cmd_icns)

        # --- inspect subcommand ---
        inspect_parser = subparsers.add_parser(
            "inspect",
            help="list the elements of an .icns file",
            description="List the elements of an .icns container.",
        )
        inspect_parser.add_argument(
            "file",
            help="path to the .icns file",
        )
        _add_common_options(inspect_parser)
        inspect_parser.set_defaults(func=_cmd_inspect)

        args = parser.parse_args()
        args.func(args)

    except BundlerError as e:
        logging.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logging.error("Unexpected error: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
