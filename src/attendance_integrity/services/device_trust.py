"""
Device Trust Tracking Service.

Recognizes a student's devices across sessions:
1. Fingerprinting - Stable HMAC id over identity-bearing signals
2. Similarity - Weighted per-channel comparison of two snapshots
3. Device validation - New/changed device detection and per-user device limits
4. Client checks - Automation and virtual machine indicators
5. Sharing detection - Rapid switching between dissimilar devices

Comparisons are bounded: user agents and signal lists are truncated before
comparison so pathological inputs cannot cause latency spikes.
"""

import hashlib
import hmac
from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog

from attendance_integrity.core.config import settings
from attendance_integrity.schemas.device import (
    DeviceFingerprint,
    DeviceRecord,
    DeviceSharingResult,
    DeviceValidationResult,
    RawDeviceSignals,
)

logger = structlog.get_logger(__name__)


# Similarity channel weights (sum to 1.0)
USER_AGENT_WEIGHT = 0.20
SCREEN_WEIGHT = 0.15
HARDWARE_WEIGHT = 0.15
CANVAS_WEIGHT = 0.20
WEBGL_WEIGHT = 0.15
FONTS_WEIGHT = 0.10
PLUGINS_WEIGHT = 0.05

DPR_TOLERANCE = 0.1

# Risk contributions
NEW_DEVICE_RISK = 0.3
MANY_WARNINGS_RISK = 0.2
ERROR_RISK = 0.5
WEAK_MATCH_RISK = 0.4
WEAK_MATCH_SIMILARITY = 0.5
AUTOMATION_RISK = 0.6
VM_RISK = 0.4

# Client indicators, matched against lowercased signals
AUTOMATION_UA_MARKERS = ["bot", "crawler", "spider", "headless", "puppeteer", "playwright", "selenium"]
VM_UA_MARKERS = ["virtualbox", "vmware", "qemu", "xen", "hyper-v", "parallels", "docker", "container"]
VM_RENDERER_MARKERS = ["swiftshader", "llvmpipe", "virtualbox", "vmware", "parallels", "microsoft basic"]

# Sharing detection
SHARING_SWITCH_LIMIT = 2
SHARING_SWITCH_WEIGHT = 0.4
SHARING_UNIQUE_LIMIT = 2
SHARING_UNIQUE_WEIGHT = 0.3
SHARING_CONFIDENCE_THRESHOLD = 0.5


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with a two-row table."""
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1]."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def jaccard_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Set overlap. Two empty sets are identical."""
    set_a, set_b = set(a), set(b)
    if not set_a and not set_b:
        return 1.0
    return len(set_a & set_b) / len(set_a | set_b)


class DeviceTrustTracker:
    """
    Fingerprints devices and compares them against a user's known devices.

    Holds configuration only; device history is always passed in.
    """

    def __init__(
        self,
        salt: Optional[str] = None,
        match_threshold: Optional[float] = None,
        change_threshold: Optional[float] = None,
        max_devices_per_user: Optional[int] = None,
        active_window: Optional[timedelta] = None,
    ):
        self.salt = salt if salt is not None else settings.FINGERPRINT_SALT
        self.match_threshold = (
            match_threshold if match_threshold is not None else settings.DEVICE_MATCH_THRESHOLD
        )
        self.change_threshold = (
            change_threshold if change_threshold is not None else settings.DEVICE_CHANGE_THRESHOLD
        )
        self.max_devices_per_user = (
            max_devices_per_user if max_devices_per_user is not None else settings.DEVICE_MAX_PER_USER
        )
        self.active_window = active_window or timedelta(days=settings.DEVICE_ACTIVE_WINDOW_DAYS)
        self.max_ua_length = settings.DEVICE_MAX_UA_LENGTH
        self.max_list_items = settings.DEVICE_MAX_LIST_ITEMS

    # =========================================================================
    # Fingerprinting
    # =========================================================================

    def compute_fingerprint_id(self, raw: RawDeviceSignals) -> str:
        """Compute a stable fingerprint ID from identity-bearing attributes."""
        stable_data = "|".join(
            [
                raw.user_agent,
                str(raw.screen.width),
                str(raw.screen.height),
                str(raw.screen.color_depth),
                raw.language,
                raw.platform,
                str(raw.hardware.cores),
                repr(float(raw.hardware.device_pixel_ratio)),
            ]
        )
        # HMAC with salt to prevent fingerprint forgery
        return hmac.new(self.salt.encode(), stable_data.encode(), hashlib.sha256).hexdigest()

    def generate_fingerprint(self, raw: RawDeviceSignals) -> DeviceFingerprint:
        """Derive a DeviceFingerprint. Identical raw signals always yield the same id."""
        return DeviceFingerprint(id=self.compute_fingerprint_id(raw), **raw.model_dump(exclude={"id"}))

    # =========================================================================
    # Similarity
    # =========================================================================

    def calculate_similarity(self, a: RawDeviceSignals, b: RawDeviceSignals) -> float:
        """
        Weighted per-channel similarity in [0, 1].

        Symmetric in its arguments and 1.0 for identical snapshots.
        """
        ua = string_similarity(a.user_agent[: self.max_ua_length], b.user_agent[: self.max_ua_length])

        screen_checks = [
            a.screen.width == b.screen.width,
            a.screen.height == b.screen.height,
            a.screen.color_depth == b.screen.color_depth,
        ]
        screen = sum(screen_checks) / len(screen_checks)

        hardware_checks = [
            a.hardware.cores == b.hardware.cores,
            a.hardware.memory == b.hardware.memory,
            abs(a.hardware.device_pixel_ratio - b.hardware.device_pixel_ratio) < DPR_TOLERANCE,
        ]
        hardware = sum(hardware_checks) / len(hardware_checks)

        canvas = 1.0 if a.canvas == b.canvas else 0.0
        webgl = 1.0 if a.webgl == b.webgl else 0.0

        limit = self.max_list_items
        fonts = jaccard_similarity(a.fonts[:limit], b.fonts[:limit])
        plugins = jaccard_similarity(a.plugins[:limit], b.plugins[:limit])

        similarity = (
            ua * USER_AGENT_WEIGHT
            + screen * SCREEN_WEIGHT
            + hardware * HARDWARE_WEIGHT
            + canvas * CANVAS_WEIGHT
            + webgl * WEBGL_WEIGHT
            + fonts * FONTS_WEIGHT
            + plugins * PLUGINS_WEIGHT
        )
        # Float sums of the weights land a hair off 1.0
        return max(0.0, min(1.0, round(similarity, 9)))

    # =========================================================================
    # Validation
    # =========================================================================

    def active_records(
        self, records: Sequence[DeviceRecord], as_of: datetime
    ) -> list[DeviceRecord]:
        """Records seen within the active window before ``as_of``."""
        cutoff = as_of - self.active_window
        return [r for r in records if r.last_seen >= cutoff]

    def find_best_match(
        self, current: RawDeviceSignals, records: Sequence[DeviceRecord]
    ) -> tuple[Optional[DeviceRecord], float]:
        best: Optional[DeviceRecord] = None
        best_similarity = 0.0
        for record in records:
            similarity = self.calculate_similarity(current, record.fingerprint)
            if best is None or similarity > best_similarity:
                best, best_similarity = record, similarity
        return best, best_similarity

    def client_indicators(self, signals: RawDeviceSignals) -> tuple[bool, bool]:
        """Return (automated, virtual machine) flags from the user agent and WebGL renderer."""
        ua_lower = signals.user_agent[: self.max_ua_length].lower()
        renderer_lower = signals.webgl[: self.max_ua_length].lower()
        is_automated = any(marker in ua_lower for marker in AUTOMATION_UA_MARKERS)
        is_virtual = any(marker in ua_lower for marker in VM_UA_MARKERS) or any(
            marker in renderer_lower for marker in VM_RENDERER_MARKERS
        )
        return is_automated, is_virtual

    def validate_device(
        self,
        current: RawDeviceSignals,
        stored_records: Sequence[DeviceRecord],
        max_devices_per_user: Optional[int] = None,
    ) -> DeviceValidationResult:
        """
        Compare a device against the user's stored records.

        Args:
            current: Signals of the device making this attempt
            stored_records: The user's known devices
            max_devices_per_user: Override for the configured device limit

        Returns:
            DeviceValidationResult with risk and confidence in [0, 1]
        """
        max_devices = max_devices_per_user or self.max_devices_per_user
        warnings: list[str] = []
        errors: list[str] = []

        best, similarity = self.find_best_match(current, stored_records)
        matched = best is not None and similarity >= self.match_threshold
        is_new_device = not matched

        if matched and 1.0 - similarity > self.change_threshold:
            warnings.append("Significant device changes detected")

        if is_new_device:
            active = self.active_records(stored_records, current.timestamp)
            if len(active) >= max_devices:
                errors.append(f"Device limit reached ({len(active)}/{max_devices} active devices)")

        if not current.canvas:
            warnings.append("Canvas fingerprint unavailable")
        if not current.webgl:
            warnings.append("WebGL fingerprint unavailable")
        if not current.fonts:
            warnings.append("Font list unavailable")
        many_warnings = len(warnings) > 2

        is_automated, is_virtual = self.client_indicators(current)
        if is_automated:
            warnings.append("Automated client detected in user agent")
        if is_virtual:
            warnings.append("Virtual machine or emulator indicators detected")

        risk = 0.0
        if is_new_device:
            risk += NEW_DEVICE_RISK
        if many_warnings:
            risk += MANY_WARNINGS_RISK
        if is_automated:
            risk += AUTOMATION_RISK
        if is_virtual:
            risk += VM_RISK
        if errors:
            risk += ERROR_RISK
        if matched and similarity < WEAK_MATCH_SIMILARITY:
            risk += WEAK_MATCH_RISK
        risk = max(0.0, min(1.0, risk))

        result = DeviceValidationResult(
            is_valid=not errors,
            is_new_device=is_new_device,
            confidence=max(0.0, min(1.0, 1.0 - risk)),
            risk_score=risk,
            similarity=similarity,
            matched_fingerprint_id=best.fingerprint.id if matched and best is not None else None,
            warnings=warnings,
            errors=errors,
        )

        log = logger.warning if errors else logger.info
        log(
            "device_validated",
            is_valid=result.is_valid,
            is_new_device=is_new_device,
            similarity=round(similarity, 3),
            risk_score=risk,
            stored_devices=len(stored_records),
        )
        return result

    def update_device_record(
        self,
        current: DeviceFingerprint,
        matched: Optional[DeviceRecord],
        user_id: str,
    ) -> DeviceRecord:
        """The record the caller should persist after a validation."""
        if matched is not None:
            return matched.model_copy(update={"fingerprint": current, "last_seen": current.timestamp})
        return DeviceRecord(
            user_id=user_id,
            fingerprint=current,
            first_seen=current.timestamp,
            last_seen=current.timestamp,
        )

    # =========================================================================
    # Sharing
    # =========================================================================

    def detect_device_sharing(
        self,
        fingerprints: Sequence[DeviceFingerprint],
        window: Optional[timedelta] = None,
    ) -> DeviceSharingResult:
        """
        Detect rapid switching between dissimilar devices.

        A switch is a pair of consecutive snapshots closer than a quarter of
        the window whose similarity is below the match threshold.
        """
        window = window or timedelta(hours=settings.DEVICE_SHARING_WINDOW_HOURS)
        if len(fingerprints) < 2:
            return DeviceSharingResult(
                is_sharing=False,
                confidence=0.0,
                unique_devices=len({fp.id for fp in fingerprints}),
            )

        ordered = sorted(fingerprints, key=lambda fp: fp.timestamp)
        patterns: list[str] = []
        confidence = 0.0

        switches = 0
        for prev, curr in zip(ordered, ordered[1:]):
            if curr.timestamp - prev.timestamp < window / 4:
                if self.calculate_similarity(prev, curr) < self.match_threshold:
                    switches += 1

        if switches > SHARING_SWITCH_LIMIT:
            confidence += SHARING_SWITCH_WEIGHT
            patterns.append(f"Rapid device switching ({switches} switches)")

        latest = ordered[-1].timestamp
        unique_ids = {fp.id for fp in ordered if latest - fp.timestamp <= window}
        if len(unique_ids) > SHARING_UNIQUE_LIMIT:
            confidence += SHARING_UNIQUE_WEIGHT
            patterns.append(f"Multiple devices within window ({len(unique_ids)} devices)")

        confidence = round(min(confidence, 1.0), 6)
        is_sharing = confidence > SHARING_CONFIDENCE_THRESHOLD
        if is_sharing:
            logger.warning(
                "device_sharing_detected",
                switches=switches,
                unique_devices=len(unique_ids),
                confidence=confidence,
            )

        return DeviceSharingResult(
            is_sharing=is_sharing,
            confidence=confidence,
            switches=switches,
            unique_devices=len(unique_ids),
            patterns=patterns,
        )
