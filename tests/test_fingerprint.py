from qr_attendance.services import DeviceFingerprint
from qr_attendance.services.fingerprint import FALLBACK_PREFIX


def test_fingerprint_is_stable_for_the_same_device():
    fingerprint = DeviceFingerprint()

    first = fingerprint.get_fingerprint()

    assert first == fingerprint.get_fingerprint()
    assert len(first) == 32


def test_fingerprint_differs_between_devices():
    laptop = DeviceFingerprint(lambda: ["Linux", "laptop"])
    phone = DeviceFingerprint(lambda: ["Android", "phone"])

    assert laptop.get_fingerprint() != phone.get_fingerprint()


def test_fingerprint_never_fails():
    def broken():
        raise OSError("no hardware info")

    value = DeviceFingerprint(broken).get_fingerprint()

    assert value.startswith(FALLBACK_PREFIX)
