"""Classify chemical readings against the MAHC standards."""
import math
from dataclasses import dataclass
from typing import Optional

from thresholds import get_standard, normalize_parameter

GOOD = "good"
WARNING = "warning"
CRITICAL = "critical"
EMERGENCY = "emergency"

_SEVERITY = {GOOD: "low", WARNING: "medium", CRITICAL: "high", EMERGENCY: "critical"}
_COLOR = {GOOD: "green", WARNING: "orange", CRITICAL: "red", EMERGENCY: "darkred"}

RECOMMENDATIONS = {
    "free_chlorine": {
        "low": "Add liquid chlorine or granular chlorine. Check chlorine feeder operation.",
        "high": "Reduce chlorine dosing. Allow natural dissipation or add sodium thiosulfate.",
    },
    "total_chlorine": {
        "low": "Increase chlorine levels. Check for chloramine formation.",
        "high": "Shock treatment may be needed to break chloramines. Test combined chlorine levels.",
    },
    "ph": {
        "low": "Add sodium carbonate (soda ash) to raise pH. Check alkalinity first.",
        "high": "Add muriatic acid or sodium bisulfate to lower pH. Test in small increments.",
    },
    "alkalinity": {
        "low": "Add sodium bicarbonate (baking soda) to increase alkalinity.",
        "high": "Add muriatic acid to lower alkalinity. Monitor pH changes closely.",
    },
    "cyanuric_acid": {
        "low": "Add cyanuric acid (stabilizer). Only needed for outdoor pools with chlorine.",
        "high": "Partial drain and refill required. Cannot be chemically reduced.",
    },
    "calcium": {
        "low": "Add calcium chloride to increase hardness. Prevents equipment corrosion.",
        "high": "Partial drain and refill required. Check for scale formation on surfaces.",
    },
    "temperature": {
        "low": "Check heater operation. Adjust thermostat settings.",
        "high": "Check cooling system. Reduce heater temperature or increase circulation.",
    },
}

CLOSURE_RECOMMENDATION = "Immediate pool closure required. Contact facility manager."

# Higher is more urgent.
_BASE_PRIORITY = {
    "free_chlorine": 10,
    "ph": 9,
    "total_chlorine": 8,
    "alkalinity": 6,
    "cyanuric_acid": 4,
    "calcium": 3,
    "temperature": 2,
}
_STATUS_MULTIPLIER = {EMERGENCY: 4, CRITICAL: 3, WARNING: 2, GOOD: 1}


@dataclass(frozen=True)
class ValidationResult:
    parameter: str
    value: float
    unit: str
    status: str
    message: str
    color: str
    severity: str
    recommendation: Optional[str] = None
    requires_action: bool = False
    requires_closure: bool = False

    @property
    def is_alert(self):
        return self.status in (CRITICAL, EMERGENCY)


def format_value(value, parameter):
    """Format a value with its unit: pH and chlorine to one decimal, the rest to integers."""
    key = normalize_parameter(parameter)
    standard = get_standard(key)
    precision = 1 if key in ("ph", "free_chlorine", "total_chlorine") else 0
    return f"{value:.{precision}f} {standard['unit']}".strip()


def acceptable_range(parameter):
    standard = get_standard(parameter)
    return f"{standard['min']}-{standard['max']} {standard['unit']}".strip()


def ideal_range(parameter):
    standard = get_standard(parameter)
    ideal = standard["ideal"]
    return f"{ideal['min']}-{ideal['max']} {standard['unit']}".strip()


def _result(key, value, standard, status, message, recommendation=None):
    return ValidationResult(
        parameter=key,
        value=value,
        unit=standard["unit"],
        status=status,
        message=message,
        color=_COLOR[status],
        severity=_SEVERITY[status],
        recommendation=recommendation,
        requires_action=status != GOOD,
        requires_closure=status == EMERGENCY,
    )


def classify(value, parameter):
    """Grade ``value`` for ``parameter``.

    Rules are checked in order and the first match wins: emergency floor,
    compliance bounds, ideal band, and finally the warning band in between.
    A value sitting exactly on a boundary belongs to the passing side.

    Raises UnknownParameterError if the parameter is not in the catalog and
    ValueError if the value is not a finite number.
    """
    key = normalize_parameter(parameter)
    standard = get_standard(key)
    value = float(value)
    if not math.isfinite(value):
        raise ValueError(f"{key} value must be a finite number, got {value!r}")
    name = standard["description"]
    shown = format_value(value, key)
    advice = RECOMMENDATIONS[key]

    emergency_min = standard.get("emergency_min")
    if emergency_min is not None and value < emergency_min:
        return _result(key, value, standard, EMERGENCY,
                       f"EMERGENCY: {name} critically low ({shown}) - pool closure required",
                       CLOSURE_RECOMMENDATION)

    if value < standard["min"]:
        return _result(key, value, standard, CRITICAL,
                       f"CRITICAL: {name} below safe range ({shown})",
                       advice["low"])

    if value > standard["max"]:
        status = standard.get("above_max_status", CRITICAL)
        return _result(key, value, standard, status,
                       f"{status.upper()}: {name} above safe range ({shown})",
                       advice["high"])

    ideal = standard["ideal"]
    if ideal["min"] <= value <= ideal["max"]:
        return _result(key, value, standard, GOOD,
                       f"GOOD: {name} within ideal range ({shown})")

    direction = "low" if value < ideal["min"] else "high"
    return _result(key, value, standard, WARNING,
                   f"WARNING: {name} outside ideal range ({shown})",
                   advice[direction])


def chemical_priority(parameter, result):
    return _BASE_PRIORITY[normalize_parameter(parameter)] * _STATUS_MULTIPLIER[result.status]


def compliance_report(values):
    """Validate a mapping of parameter -> value and summarise compliance.

    ``None`` values are skipped. Unknown parameters raise UnknownParameterError.
    """
    details = []
    counts = {GOOD: 0, WARNING: 0, CRITICAL: 0, EMERGENCY: 0}
    recommendations = []
    required_actions = []

    for parameter, value in values.items():
        if value is None:
            continue
        result = classify(value, parameter)
        details.append(result)
        counts[result.status] += 1
        if result.status == WARNING:
            recommendations.append(result.recommendation)
        elif result.status == CRITICAL:
            required_actions.append(result.recommendation)
        elif result.status == EMERGENCY:
            required_actions.append("IMMEDIATE POOL CLOSURE REQUIRED")
            required_actions.append(result.recommendation)

    if counts[EMERGENCY]:
        overall = "emergency"
    elif counts[CRITICAL]:
        overall = "non-compliant"
    elif counts[WARNING]:
        overall = "warning"
    else:
        overall = "compliant"

    return {
        "overall": overall,
        "total_tests": len(details),
        "passed_tests": counts[GOOD],
        "warning_tests": counts[WARNING],
        "critical_tests": counts[CRITICAL],
        "emergency_tests": counts[EMERGENCY],
        "details": details,
        "recommendations": list(dict.fromkeys(r for r in recommendations if r)),
        "required_actions": list(dict.fromkeys(a for a in required_actions if a)),
    }


def should_close_pool(values):
    reasons = []
    for parameter, value in values.items():
        if value is None:
            continue
        result = classify(value, parameter)
        if result.requires_closure:
            reasons.append(f"{get_standard(parameter)['description']}: {result.message}")
    return {"should_close": bool(reasons), "reasons": reasons}
