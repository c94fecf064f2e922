import time

import shortuuid

SERIAL_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_short_token(length: int = 12) -> str:
    return shortuuid.ShortUUID().random(length=length)


def _timestamp_digits(now_ms: int | None = None) -> str:
    value = now_ms if now_ms is not None else int(time.time() * 1000)
    return str(value)[-6:]


def generate_invoice_serial(now_ms: int | None = None) -> str:
    return f"INV-{_timestamp_digits(now_ms)}"


def generate_deal_serial(now_ms: int | None = None) -> str:
    suffix = shortuuid.ShortUUID(alphabet=SERIAL_ALPHABET).random(length=3)
    return f"SP-{_timestamp_digits(now_ms)}{suffix}"
