import re
from datetime import datetime, timezone

from anomaly.fingerprint import generate_device_fingerprint

DEVICE = {
    'canvas': 'data:image/png;base64,iVBORw0KGgo',
    'user_agent': 'Mozilla/5.0 (Linux; Android 13; SM-A536E)',
    'language': 'id-ID',
    'platform': 'Linux armv8l',
    'screen': '1080x2400',
    'timezone': 'Asia/Jakarta',
    'memory': 6,
    'cores': 8,
}


def test_value_is_sha256_hex():
    fingerprint = generate_device_fingerprint(DEVICE)
    assert re.fullmatch(r'[0-9a-f]{64}', fingerprint.value)


def test_same_device_same_value_at_different_times():
    first = generate_device_fingerprint(DEVICE, issued_at=datetime(2024, 1, 8, tzinfo=timezone.utc))
    second = generate_device_fingerprint(DEVICE, issued_at=datetime(2024, 2, 8, tzinfo=timezone.utc))
    assert first.value == second.value
    assert first.issued_at != second.issued_at


def test_different_devices_differ():
    other = dict(DEVICE, user_agent='Mozilla/5.0 (iPhone; CPU iPhone OS 17_0)')
    assert generate_device_fingerprint(DEVICE).value != generate_device_fingerprint(other).value


def test_missing_fields_count_as_unknown():
    partial = {'user_agent': DEVICE['user_agent']}
    explicit = dict.fromkeys(DEVICE, None)
    explicit['user_agent'] = DEVICE['user_agent']
    assert generate_device_fingerprint(partial).value == generate_device_fingerprint(explicit).value


def test_unknown_keys_are_ignored():
    noisy = dict(DEVICE, battery_level=0.42)
    assert generate_device_fingerprint(noisy).value == generate_device_fingerprint(DEVICE).value
