"""Classify openHAB item types into sensor categories.

Rules are checked in order; the first whose predicate matches the
declared type wins. Unmatched types fall back to DEFAULT_SENSOR_CATEGORY.
"""

from collections.abc import Callable

from twinsync.storage.entities import SensorCategory

DEFAULT_SENSOR_CATEGORY = SensorCategory.TEMPERATURE


def _contains(fragment: str) -> Callable[[str], bool]:
    return lambda declared_type: fragment in declared_type


CLASSIFICATION_RULES: list[tuple[Callable[[str], bool], SensorCategory]] = [
    (_contains("Temperature"), SensorCategory.TEMPERATURE),
    (_contains("Pressure"), SensorCategory.PRESSURE),
    (_contains("Humidity"), SensorCategory.HUMIDITY),
    (_contains("Flow"), SensorCategory.FLOW),
]


def classify(declared_type: str | None) -> SensorCategory:
    """Map a declared item type such as ``Number:Temperature`` to a category."""
    if declared_type:
        for predicate, category in CLASSIFICATION_RULES:
            if predicate(declared_type):
                return category
    return DEFAULT_SENSOR_CATEGORY
