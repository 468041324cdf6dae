"""MAHC (Model Aquatic Health Code) chemical standards for public pools.

``min``/``max`` are the compliance bounds: a value outside them is critical.
``ideal`` is the good band; values between the ideal band and the
compliance bounds are warnings. Bounds are inclusive on the passing side.

Two optional keys adjust the generic rule for a parameter:
``emergency_min`` - below it the pool must be closed,
``above_max_status`` - status used above ``max`` instead of critical.
"""
from types import MappingProxyType

from errors import UnknownParameterError

_STANDARDS = {
    "free_chlorine": {
        "min": 1.0, "max": 5.0,
        "ideal": {"min": 1.0, "max": 3.0},
        "unit": "ppm",
        "emergency_min": 0.5,
        "above_max_status": "warning",
        "description": "Free Available Chlorine",
        "regulation": "MAHC 5.7.3.1.1",
    },
    "total_chlorine": {
        "min": 0.5, "max": 6.0,
        "ideal": {"min": 1.0, "max": 4.0},
        "unit": "ppm",
        "description": "Total Available Chlorine",
        "regulation": "MAHC 5.7.3.1.2",
    },
    "ph": {
        "min": 7.0, "max": 8.0,
        "ideal": {"min": 7.2, "max": 7.6},
        "unit": "",
        "description": "pH Level",
        "regulation": "MAHC 5.7.3.2",
    },
    "alkalinity": {
        "min": 60, "max": 180,
        "ideal": {"min": 80, "max": 120},
        "unit": "ppm",
        "description": "Total Alkalinity",
        "regulation": "MAHC 5.7.3.3",
    },
    "cyanuric_acid": {
        "min": 10, "max": 100,
        "ideal": {"min": 30, "max": 50},
        "unit": "ppm",
        "description": "Cyanuric Acid (Stabilizer)",
        "regulation": "MAHC 5.7.3.4",
    },
    "calcium": {
        "min": 150, "max": 500,
        "ideal": {"min": 200, "max": 400},
        "unit": "ppm",
        "description": "Calcium Hardness",
        "regulation": "MAHC 5.7.3.5",
    },
    "temperature": {
        "min": 75, "max": 90,
        "ideal": {"min": 78, "max": 84},
        "unit": "°F",
        "description": "Water Temperature",
        "regulation": "MAHC 4.7.3.1",
    },
}


def _freeze(entry):
    frozen = dict(entry)
    frozen["ideal"] = MappingProxyType(dict(entry["ideal"]))
    return MappingProxyType(frozen)


MAHC_STANDARDS = MappingProxyType({key: _freeze(value) for key, value in _STANDARDS.items()})

# Order in which a reading's parameters are checked.
TRACKED_PARAMETERS = (
    "free_chlorine", "ph", "alkalinity", "temperature",
    "total_chlorine", "cyanuric_acid", "calcium",
)

PARAMETER_ALIASES = {
    "freeChlorine": "free_chlorine",
    "chlorine": "free_chlorine",
    "totalChlorine": "total_chlorine",
    "pH": "ph",
    "totalAlkalinity": "alkalinity",
    "total_alkalinity": "alkalinity",
    "cyanuricAcid": "cyanuric_acid",
    "calciumHardness": "calcium",
    "calcium_hardness": "calcium",
    "temp": "temperature",
}


def normalize_parameter(name):
    name = str(name).strip()
    return PARAMETER_ALIASES.get(name, name)


def get_standard(parameter):
    """Look up the standard for ``parameter``; never falls back to a default."""
    try:
        return MAHC_STANDARDS[normalize_parameter(parameter)]
    except KeyError:
        raise UnknownParameterError(parameter) from None
