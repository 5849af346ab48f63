"""
Composite device fingerprint used only for distinct-device counting.
It is a heuristic, trivially forged by a motivated user, and never authenticates anyone.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from attendance.models import DeviceFingerprint

FINGERPRINT_FIELDS = (
    'canvas',
    'user_agent',
    'language',
    'platform',
    'screen',
    'timezone',
    'memory',
    'cores',
)


def generate_device_fingerprint(characteristics: Dict[str, Any],
                                issued_at: Optional[datetime] = None) -> DeviceFingerprint:
    """
    Derive an opaque identifier from environment characteristics.

    Args:
        characteristics: Rendering surface signature, user agent, locale, platform,
            screen geometry, timezone and hardware hints reported by the client.
            Missing fields count as 'unknown'; unknown keys are ignored.
        issued_at: When the fingerprint was taken (defaults to now)

    Returns:
        DeviceFingerprint whose value is a SHA-256 hex digest of the stable fields.
        The timestamp is kept next to the value so the same device keeps the same value.
    """
    payload = {
        name: str(characteristics.get(name)) if characteristics.get(name) not in (None, "") else 'unknown'
        for name in FINGERPRINT_FIELDS
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    digest = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
    return DeviceFingerprint(value=digest, issued_at=issued_at or datetime.now(timezone.utc))
