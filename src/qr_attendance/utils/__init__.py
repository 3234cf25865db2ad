from .geo import InvalidCoordinates, distance_meters, parse_coordinates
from .images import InvalidQrImage, decode_data_url, load_qr_image, save_qr_image
from .time import format_countdown, is_expired, parse_timestamp, utc_now

__all__ = [
    "InvalidCoordinates",
    "InvalidQrImage",
    "decode_data_url",
    "distance_meters",
    "format_countdown",
    "is_expired",
    "load_qr_image",
    "parse_coordinates",
    "parse_timestamp",
    "save_qr_image",
    "utc_now",
]
