"""
Debounce state machine for threshold alerts.

Each limit a rule sets (temperature, AQI) has its own counter. A breaching
measurement increments it, a non-breaching one resets it to 0. When it
reaches the limit an alert fires and the counter starts over, so a sustained
breach alerts once every `limit` evaluations:

    NORMAL(count < limit) --breach--> NORMAL(count + 1)
    NORMAL(count = limit - 1) --breach--> fire, NORMAL(0)
    NORMAL(any) --no breach--> NORMAL(0)

A rule's weather condition is not a trigger of its own. It narrows both
limits: a reading only breaches while its condition matches (case-insensitive).

Everything here is pure: the evaluator decides what to persist and whom to notify.
"""

from dataclasses import dataclass, replace

from climawatch.models import AlertEvent, AlertKind, Measurement, Threshold

BREACH_LIMIT = 2


@dataclass(frozen=True)
class Rule:
    threshold_id: int
    city: str
    email: str
    temperature_threshold: float | None = None
    aqi_threshold: float | None = None
    weather_condition: str | None = None

    @classmethod
    def of(cls, threshold: Threshold) -> "Rule":
        return cls(
            threshold_id=threshold.id,
            city=threshold.city,
            email=threshold.email,
            temperature_threshold=threshold.temperature_threshold,
            aqi_threshold=threshold.aqi_threshold,
            weather_condition=threshold.weather_condition,
        )

    def matches_condition(self, condition: str) -> bool:
        """True when the rule has no condition or the reading's condition equals it."""
        if not self.weather_condition:
            return True
        return condition.casefold() == self.weather_condition.casefold()


@dataclass(frozen=True)
class BreachState:
    temperature: int = 0
    aqi: int = 0
    alert_triggered: bool = False
    last_measurement_id: int | None = None

    @classmethod
    def of(cls, threshold: Threshold) -> "BreachState":
        return cls(
            temperature=threshold.temperature_breach_count,
            aqi=threshold.aqi_breach_count,
            alert_triggered=threshold.alert_triggered,
            last_measurement_id=threshold.last_measurement_id,
        )


@dataclass(frozen=True)
class Transition:
    state: BreachState
    alerts: tuple[AlertEvent, ...] = ()
    # True when the measurement had already been counted
    skipped: bool = False


def step(count: int, breached: bool, limit: int = BREACH_LIMIT) -> tuple[int, bool]:
    """Advance one counter. Returns (new_count, fired)."""
    if not breached:
        return 0, False
    count += 1
    if count >= limit:
        return 0, True
    return count, False


def advance(
    state: BreachState, rule: Rule, measurement: Measurement, limit: int = BREACH_LIMIT
) -> Transition:
    """Apply one measurement to a rule's state."""
    if measurement.id is not None and measurement.id == state.last_measurement_id:
        return Transition(state=state, skipped=True)

    alerts: list[AlertEvent] = []
    counts = {"temperature": state.temperature, "aqi": state.aqi}
    in_breach = False
    gate_open = rule.matches_condition(measurement.condition)

    def check(counter: str, kind: AlertKind, breached: bool, value: float, bound: float) -> None:
        nonlocal in_breach
        breached = breached and gate_open
        in_breach = in_breach or breached
        counts[counter], fired = step(counts[counter], breached, limit)
        if fired:
            alerts.append(
                AlertEvent(
                    threshold_id=rule.threshold_id,
                    city=rule.city,
                    email=rule.email,
                    kind=kind,
                    value=value,
                    limit=bound,
                    measured_at=measurement.captured_at,
                )
            )

    if rule.temperature_threshold is not None:
        check(
            "temperature",
            AlertKind.TEMP,
            measurement.temperature > rule.temperature_threshold,
            measurement.temperature,
            rule.temperature_threshold,
        )

    aqi = measurement.aqi
    if rule.aqi_threshold is not None and aqi is not None:
        check("aqi", AlertKind.AQI, aqi > rule.aqi_threshold, aqi, rule.aqi_threshold)

    if alerts:
        alert_triggered = True
    elif in_breach:
        alert_triggered = state.alert_triggered
    else:
        alert_triggered = False

    next_state = replace(
        state,
        temperature=counts["temperature"],
        aqi=counts["aqi"],
        alert_triggered=alert_triggered,
        last_measurement_id=measurement.id,
    )
    return Transition(state=next_state, alerts=tuple(alerts))
