"""
Photo Integrity Service.

Structural and heuristic checks on check-in photos:
1. Decoding - Payload must be an image Pillow can read
2. Limits - File size and pixel count checked from the header before decoding,
   then dimensions and format allow-list
3. Quality - Aspect ratio, compression, resolution and blur penalties
4. Subject presence - Pluggable detector (no face recognition)
5. Manipulation - Editing/screenshot markers, repeated payload patterns, editor metadata

Blur and subject detection sit behind protocols so a stronger detector can be
dropped in without touching the scoring.
"""

import base64
import hashlib
import io
import math
from collections import Counter
from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

import structlog
from PIL import Image, ImageFilter, ImageStat, UnidentifiedImageError

from attendance_integrity.core.config import settings
from attendance_integrity.schemas.photo import (
    PhotoSubmission,
    PhotoVerificationResult,
    PhotoVerificationSummary,
)

logger = structlog.get_logger(__name__)

# Quality penalties
ASPECT_PENALTY = 0.2
COMPRESSION_PENALTY = 0.3
LOW_RESOLUTION_PENALTY = 0.4
BLUR_PENALTY_FACTOR = 0.5
EXPECTED_BYTES_PER_PIXEL = 0.1
MIN_ASPECT_RATIO = 0.5
MAX_ASPECT_RATIO = 2.0
RECOMMENDED_WIDTH = 640
RECOMMENDED_HEIGHT = 480

# Manipulation weights
EDIT_MARKER_WEIGHT = 0.3
SCREENSHOT_MARKER_WEIGHT = 0.5
REPEATED_PATTERN_WEIGHT = 0.2
EDITOR_METADATA_WEIGHT = 0.4
SCREENSHOT_METADATA_WEIGHT = 0.5
MANIPULATION_ERROR_THRESHOLD = 0.7
MANIPULATION_WARNING_THRESHOLD = 0.4

PATTERN_WINDOW = 10
REPEATED_PATTERN_RATIO = 0.3

EDIT_MARKERS = (b"edited", b"modified")
SCREENSHOT_MARKERS = (b"screenshot",)
EDITOR_SOFTWARE = (
    "photoshop",
    "gimp",
    "lightroom",
    "snapseed",
    "picsart",
    "facetune",
    "pixlr",
    "affinity",
    "paint.net",
)
SCREENSHOT_SOFTWARE = (
    "screenshot",
    "snipping",
    "screencapture",
    "greenshot",
    "lightshot",
    "spectacle",
)

EXIF_SOFTWARE_TAG = 305

FORMAT_ALIASES = {"jpg": "jpeg"}


def _normalize_format(fmt: str) -> str:
    fmt = fmt.strip().lower()
    if fmt.startswith("image/"):
        fmt = fmt[len("image/"):]
    return FORMAT_ALIASES.get(fmt, fmt)


# =============================================================================
# Pluggable detectors
# =============================================================================


@runtime_checkable
class BlurEstimator(Protocol):
    """Estimates blur in [0, 1], where 1 is fully blurred."""

    def estimate(self, image: Image.Image) -> float: ...


@runtime_checkable
class SubjectDetector(Protocol):
    """Decides whether an image contains a subject worth reviewing."""

    def detect(self, image: Image.Image) -> bool: ...


class EdgeEnergyBlurEstimator:
    """
    Blur estimate from mean edge response of the grayscale image.

    Sharp images produce strong edges; a flat or defocused image produces
    almost none. The mean is normalized against a reference edge energy.
    """

    def __init__(self, reference_energy: float = 20.0):
        self.reference_energy = reference_energy

    def estimate(self, image: Image.Image) -> float:
        edges = image.convert("L").filter(ImageFilter.FIND_EDGES)
        # Kernel filters pass border pixels through unchanged
        if edges.width > 2 and edges.height > 2:
            edges = edges.crop((1, 1, edges.width - 1, edges.height - 1))
        energy = ImageStat.Stat(edges).mean[0]
        return max(0.0, min(1.0, 1.0 - energy / self.reference_energy))


class ContrastSubjectDetector:
    """
    Content-presence check based on luminance spread.

    NOTE: this is not face detection. It only rejects frames with no
    discernible content (lens covered, blank screen, solid fill).
    """

    def __init__(self, min_stddev: float = 12.0):
        self.min_stddev = min_stddev

    def detect(self, image: Image.Image) -> bool:
        stddev = ImageStat.Stat(image.convert("L")).stddev[0]
        return stddev >= self.min_stddev


# =============================================================================
# Checker
# =============================================================================


class PhotoIntegrityChecker:
    """Validates photo submissions."""

    def __init__(
        self,
        blur_estimator: Optional[BlurEstimator] = None,
        subject_detector: Optional[SubjectDetector] = None,
        min_quality: Optional[float] = None,
        max_file_size: Optional[int] = None,
        allowed_formats: Optional[Iterable[str]] = None,
        require_face_detection: Optional[bool] = None,
        max_pixels: Optional[int] = None,
    ):
        self.blur_estimator = blur_estimator or EdgeEnergyBlurEstimator()
        self.subject_detector = subject_detector or ContrastSubjectDetector()
        self.min_quality = min_quality if min_quality is not None else settings.PHOTO_MIN_QUALITY
        self.max_file_size = max_file_size if max_file_size is not None else settings.PHOTO_MAX_FILE_SIZE
        self.max_pixels = max_pixels if max_pixels is not None else settings.PHOTO_MAX_PIXELS
        self.allowed_formats = {
            _normalize_format(f) for f in (allowed_formats or settings.photo_allowed_formats_list)
        }
        self.require_face_detection = (
            require_face_detection
            if require_face_detection is not None
            else settings.PHOTO_REQUIRE_FACE_DETECTION
        )
        self.min_width = settings.PHOTO_MIN_WIDTH
        self.min_height = settings.PHOTO_MIN_HEIGHT
        self.max_width = settings.PHOTO_MAX_WIDTH
        self.max_height = settings.PHOTO_MAX_HEIGHT
        self.analysis_max_side = settings.PHOTO_ANALYSIS_MAX_SIDE
        self.pattern_sample_bytes = settings.PHOTO_PATTERN_SAMPLE_BYTES

    def validate_photo(self, photo: PhotoSubmission) -> PhotoVerificationResult:
        """
        Validate a photo submission.

        Undecodable payloads produce a single error and no further checks.
        Oversized payloads are rejected from the image header alone, before
        any pixel data is decoded.
        """
        warnings: list[str] = []
        errors: list[str] = []
        file_size = photo.size

        try:
            image = Image.open(io.BytesIO(photo.data))
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            return self._undecodable(photo, e)

        # Header fields only; pixels are not decoded yet
        width, height = image.size
        decoded_format = _normalize_format(image.format or "")

        if file_size > self.max_file_size:
            errors.append(f"Photo too large: {file_size} bytes (max {self.max_file_size})")
        if width * height > self.max_pixels:
            errors.append(f"Photo has too many pixels: {width}x{height} (max {self.max_pixels})")
        if errors:
            logger.warning(
                "photo_rejected_before_decode",
                dimensions=f"{width}x{height}",
                file_size=file_size,
            )
            return PhotoVerificationResult(
                is_valid=False,
                width=width,
                height=height,
                file_size=file_size,
                format=decoded_format,
                errors=errors,
            )

        try:
            if decoded_format == "jpeg":
                # Let the JPEG decoder downscale towards the analysis size
                image.draft("RGB", (self.analysis_max_side, self.analysis_max_side))
            image.load()
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            return self._undecodable(photo, e)
        if width < self.min_width or height < self.min_height:
            errors.append(
                f"Photo dimensions too small: {width}x{height} (min {self.min_width}x{self.min_height})"
            )
        if width > self.max_width or height > self.max_height:
            warnings.append(
                f"Photo dimensions very large: {width}x{height} (max {self.max_width}x{self.max_height})"
            )
        if decoded_format not in self.allowed_formats:
            errors.append(f"Unsupported photo format: {decoded_format or 'unknown'}")

        declared = _normalize_format(photo.declared_format)
        if declared != decoded_format:
            warnings.append(f"Declared format {declared} does not match image content ({decoded_format})")
        if (photo.width is not None and photo.width != width) or (
            photo.height is not None and photo.height != height
        ):
            warnings.append("Declared dimensions do not match image content")

        analysis = self._analysis_image(image)
        blur_score = self.blur_estimator.estimate(analysis)
        quality = self.assess_quality(width, height, file_size, blur_score)
        if quality < self.min_quality:
            errors.append(f"Photo quality too low: {quality:.2f} (min {self.min_quality:.2f})")
        elif quality < self.min_quality + 0.1:
            warnings.append(f"Photo quality is marginal: {quality:.2f}")

        has_face = bool(self.subject_detector.detect(analysis))
        if not has_face:
            if self.require_face_detection:
                errors.append("No subject detected in photo")
            else:
                warnings.append("No subject detected in photo")

        manipulation_score = self.detect_manipulation(photo.data, image)
        if manipulation_score > MANIPULATION_ERROR_THRESHOLD:
            errors.append(f"Photo manipulation detected: {manipulation_score * 100:.1f}% confidence")
        elif manipulation_score > MANIPULATION_WARNING_THRESHOLD:
            warnings.append(f"Possible photo manipulation: {manipulation_score * 100:.1f}% confidence")

        result = PhotoVerificationResult(
            is_valid=not errors,
            quality=quality,
            has_face=has_face,
            width=width,
            height=height,
            file_size=file_size,
            format=decoded_format,
            blur_score=blur_score,
            manipulation_score=manipulation_score,
            warnings=warnings,
            errors=errors,
        )

        log = logger.warning if errors else logger.info
        log(
            "photo_validated",
            is_valid=result.is_valid,
            quality=round(quality, 3),
            dimensions=f"{width}x{height}",
            file_size=file_size,
            manipulation_score=manipulation_score,
        )
        return result

    def _undecodable(self, photo: PhotoSubmission, error: Exception) -> PhotoVerificationResult:
        logger.warning("photo_undecodable", file_size=photo.size, error=str(error))
        return PhotoVerificationResult(
            is_valid=False,
            file_size=photo.size,
            format=_normalize_format(photo.declared_format),
            errors=["Invalid image data"],
        )

    def _analysis_image(self, image: Image.Image) -> Image.Image:
        analysis = image.convert("RGB")
        analysis.thumbnail((self.analysis_max_side, self.analysis_max_side))
        return analysis

    @staticmethod
    def assess_quality(width: int, height: int, file_size: int, blur_score: float) -> float:
        """Heuristic quality in [0, 1], starting from 1.0 and applying penalties."""
        quality = 1.0

        if height > 0:
            aspect = width / height
            if aspect < MIN_ASPECT_RATIO or aspect > MAX_ASPECT_RATIO:
                quality -= ASPECT_PENALTY

        expected_size = width * height * EXPECTED_BYTES_PER_PIXEL
        if file_size < expected_size * 0.5:
            quality -= COMPRESSION_PENALTY

        if width < RECOMMENDED_WIDTH or height < RECOMMENDED_HEIGHT:
            quality -= LOW_RESOLUTION_PENALTY

        quality -= blur_score * BLUR_PENALTY_FACTOR
        return max(0.0, min(1.0, quality))

    # =========================================================================
    # Manipulation
    # =========================================================================

    def detect_manipulation(self, data: bytes, image: Optional[Image.Image] = None) -> float:
        """Manipulation score in [0, 1] from payload markers and metadata."""
        score = 0.0
        sample = self._bounded_sample(data)
        lowered = sample.lower()

        if any(marker in lowered for marker in EDIT_MARKERS):
            score += EDIT_MARKER_WEIGHT
        if any(marker in lowered for marker in SCREENSHOT_MARKERS):
            score += SCREENSHOT_MARKER_WEIGHT

        if self.repeated_pattern_ratio(sample) > REPEATED_PATTERN_RATIO:
            score += REPEATED_PATTERN_WEIGHT

        software = self.software_metadata(image) if image is not None else ""
        if software:
            if any(name in software for name in SCREENSHOT_SOFTWARE):
                score += SCREENSHOT_METADATA_WEIGHT
            elif any(name in software for name in EDITOR_SOFTWARE):
                score += EDITOR_METADATA_WEIGHT

        return round(min(1.0, score), 6)

    def _bounded_sample(self, data: bytes) -> bytes:
        limit = self.pattern_sample_bytes
        if len(data) <= limit:
            return data
        # Head and tail carry the container metadata
        half = limit // 2
        return data[:half] + data[-half:]

    @staticmethod
    def repeated_pattern_ratio(data: bytes) -> float:
        """Share of fixed-size base64 windows that repeat an earlier window."""
        encoded = base64.b64encode(data)
        windows = [
            encoded[i : i + PATTERN_WINDOW]
            for i in range(0, len(encoded) - PATTERN_WINDOW + 1, PATTERN_WINDOW)
        ]
        if not windows:
            return 0.0
        counts = Counter(windows)
        repeated = sum(count - 1 for count in counts.values() if count > 1)
        return repeated / len(windows)

    @staticmethod
    def software_metadata(image: Image.Image) -> str:
        """Lower-cased software name from EXIF or PNG text chunks, if any."""
        values: list[str] = []
        exif = image.getexif()
        software = exif.get(EXIF_SOFTWARE_TAG)
        if software:
            values.append(str(software))
        for key, value in (image.info or {}).items():
            if isinstance(key, str) and key.lower() == "software" and isinstance(value, str):
                values.append(value)
        return " ".join(values).lower()

    # =========================================================================
    # Duplicates and normalization
    # =========================================================================

    @staticmethod
    def generate_photo_hash(photo: PhotoSubmission) -> str:
        """Short content hash for duplicate detection."""
        return hashlib.sha256(photo.data).hexdigest()[:16]

    def is_duplicate_photo(self, photo: PhotoSubmission, previous_hashes: Iterable[str]) -> bool:
        return self.generate_photo_hash(photo) in set(previous_hashes)

    def compress_photo(
        self,
        photo: PhotoSubmission,
        max_size_bytes: int = 1024 * 1024,
        quality: int = 80,
    ) -> PhotoSubmission:
        """
        Re-encode as JPEG, downscaling proportionally to approach ``max_size_bytes``.

        Best effort: any failure returns the original submission unchanged.
        """
        original_size = photo.size
        try:
            img = Image.open(io.BytesIO(photo.data))

            # Convert to RGB (removes alpha channel if present)
            if img.mode in ("RGBA", "LA", "P"):
                if img.mode == "P":
                    img = img.convert("RGBA")
                rgb_img = Image.new("RGB", img.size, (255, 255, 255))
                rgb_img.paste(img, mask=img.split()[-1])
                img = rgb_img
            elif img.mode != "RGB":
                img = img.convert("RGB")

            if original_size > max_size_bytes:
                scale = math.sqrt(max_size_bytes / original_size)
                new_width = max(1, int(img.width * scale))
                new_height = max(1, int(img.height * scale))
                img = img.resize((new_width, new_height), Image.Resampling.LANCZOS)

            output = io.BytesIO()
            img.save(output, format="JPEG", quality=quality, optimize=True)
            compressed = output.getvalue()

            logger.info(
                "photo_compressed",
                original_size=original_size,
                compressed_size=len(compressed),
                dimensions=f"{img.width}x{img.height}",
            )
            return PhotoSubmission(
                data=compressed,
                declared_format="jpeg",
                width=img.width,
                height=img.height,
            )
        except Exception as e:
            logger.warning(
                "photo_compression_failed",
                error=str(e),
                original_size=original_size,
            )
            return photo

    @staticmethod
    def summarize(results: Sequence[PhotoVerificationResult]) -> PhotoVerificationSummary:
        if not results:
            return PhotoVerificationSummary()
        total = len(results)
        valid = sum(1 for r in results if r.is_valid)
        issues = Counter(issue for r in results for issue in (*r.errors, *r.warnings))
        return PhotoVerificationSummary(
            total_photos=total,
            valid_photos=valid,
            invalid_photos=total - valid,
            average_quality=sum(r.quality for r in results) / total,
            face_detection_rate=sum(1 for r in results if r.has_face) / total,
            common_issues=[issue for issue, _ in issues.most_common(5)],
        )
