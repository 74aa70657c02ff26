import json
import math
from decimal import Decimal

# ---------------------------------------------------------------------------
# Ear side routing for a frequency channel
# ---------------------------------------------------------------------------

EAR_LEFT = 0
EAR_RIGHT = 1
EAR_BOTH = 2
EAR_SIDES = (EAR_LEFT, EAR_RIGHT, EAR_BOTH)

# The web client formats numbers like JavaScript: plain notation for
# magnitudes below 1e21, exponent notation above.
_PLAIN_EXPONENT_LIMIT = 21


class InvalidJSONError(ValueError):
    """Raised when a request body cannot be decoded as JSON."""


def is_number(value) -> bool:
    """True for JSON numbers (int/float), never for booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_valid_ear_side(value) -> bool:
    return is_number(value) and value in EAR_SIDES


def is_valid_frequency(freq) -> bool:
    """
    A frequency descriptor is a mapping with a numeric "frequency" and an
    "earSide" of 0 (left), 1 (right) or 2 (both).
    """
    if not isinstance(freq, dict):
        return False
    return is_number(freq.get("frequency")) and is_valid_ear_side(freq.get("earSide"))


def is_valid_frequencies(frequencies) -> bool:
    if not isinstance(frequencies, list):
        return False
    return all(is_valid_frequency(f) for f in frequencies)


def normalize_ear_side(value) -> int:
    return int(value)


def _js_float_text(value: float) -> str:
    # Same digits as repr (shortest round-trip), laid out the way
    # Number.prototype.toString does: plain from 1e-7 up to 1e21,
    # exponent form ("1e-7", "1.5e+21") outside.
    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digit_tuple)
    k = len(digits)
    n = k + exponent

    if k <= n <= _PLAIN_EXPONENT_LIMIT:
        text = digits + "0" * (n - k)
    elif 0 < n <= _PLAIN_EXPONENT_LIMIT:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return sign + text


def frequency_to_string(value) -> str:
    """
    Convert a frequency value to the text form used by the web client.

        45.3  -> "45.3"
        100.0 -> "100"
        1e-7  -> "1e-7"
        nan   -> "NaN"
        inf   -> "Infinity"

    Non-numeric values (only reachable via the legacy /frequency route)
    are stringified the same way the client would: strings pass through,
    None -> "null", booleans -> "true"/"false".
    """
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value == 0:
            return "0"
        return _js_float_text(value)
    return json.dumps(value, separators=(",", ":"))


def parse_json_body(raw: str) -> dict:
    """
    Decode a request body. An empty body reads as {} and so does any JSON
    value that is not an object, letting each route report its own
    missing-field error.
    """
    if not raw or not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise InvalidJSONError(str(exc)) from exc
    if not isinstance(data, dict):
        return {}
    return data


def is_loopback_origin(origin) -> bool:
    """True for Origin headers pointing at localhost or 127.0.0.1."""
    return bool(origin) and ("localhost" in origin or "127.0.0.1" in origin)
