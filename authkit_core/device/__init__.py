"""
Device Trust
============
Device fingerprints, user-bound devices and the trust service.
"""

from .fingerprint import DeviceFingerprint, FingerprintComponents, compute_fingerprint_hash
from .models import Device
from .service import DeviceTrustService

__all__ = [
    # Fingerprint
    "DeviceFingerprint",
    "FingerprintComponents",
    "compute_fingerprint_hash",
    # Models
    "Device",
    # Service
    "DeviceTrustService",
]
