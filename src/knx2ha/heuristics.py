"""Name keyword rules, DPT-to-sensor-type table and the single-address fallback classifier."""

import logging
import re

from .dpt import DptNormalizer, dpt_major, normalize_dpt_to_dot
from .types import (
    Domain,
    GroupAddress,
    HaBinarySensor,
    HaCover,
    HaDate,
    HaDateTime,
    HaLight,
    HaScene,
    HaSensor,
    HaSwitch,
    HaTime,
    MappedEntity,
    StrategyContext,
    StrategyResult,
    UnknownEntity,
)

logger = logging.getLogger(__name__)

RE_STATUS = re.compile(r"\bstatus\b", re.IGNORECASE)
RE_LA = re.compile(r"^LA\d+", re.IGNORECASE)
RE_LIGHT_WORDS = re.compile(r"(licht|light|lamp|dim)", re.IGNORECASE)
RE_COVER_LIKE = re.compile(r"(rolluik|jaloezie|lamel|screen|blind|shutter|cover|gordijn|raam)", re.IGNORECASE)
RE_SENSOR_WORDS = re.compile(
    r"(temp|temperatuur|temperature|hum|co2|lux|druk|pressure|wind|rain|flow)", re.IGNORECASE
)
RE_SWITCH_WORDS = re.compile(r"\b(aan|uit|on|off|switch|schakel|central|centraal)\b", re.IGNORECASE)
RE_DOOR = re.compile(r"(deur|door|poort|gate|garage)", re.IGNORECASE)
RE_SCENE_WORDS = re.compile(r"\b(scene|szene|scène|sfeer)\b", re.IGNORECASE)
RE_STOP = re.compile(r"\bstop\b", re.IGNORECASE)

RE_TIME_HINT = re.compile(r"(tijd|time|clock|rtc|uur|zeit|uhr|hora|heure|ntp|utc)", re.IGNORECASE)
RE_DATE_HINT = re.compile(r"(datum|date|calendar|kalender|fecha|jour|giorno)", re.IGNORECASE)
RE_DATETIME_HINT = re.compile(r"(datetime|date[\s_/-]*time|tijdstempel|timestamp|zeitstempel)", re.IGNORECASE)

_DIGITS = re.compile(r"\d+")

MOVEMENT_DPTS = frozenset({"1.007", "1.008", "1.010"})
SENSOR_MAJORS = frozenset({5, 6, 7, 8, 9, 12, 13, 14})

# Normalized dot DPT -> HA KNX sensor type; bare majors cover unlisted minors
DPT_TO_SENSOR_TYPE: dict[str, str] = {
    "5": "1byte_unsigned",
    "5.001": "percent",
    "5.003": "angle",
    "5.004": "percentU8",
    "5.005": "decimal_factor",
    "5.006": "tariff",
    "5.010": "pulse",
    "6": "1byte_signed",
    "6.001": "percentV8",
    "6.010": "counter_pulses",
    "7": "2byte_unsigned",
    "7.001": "pulse_2byte",
    "7.002": "time_period_msec",
    "7.003": "time_period_10msec",
    "7.004": "time_period_100msec",
    "7.005": "time_period_sec",
    "7.006": "time_period_min",
    "7.007": "time_period_hrs",
    "7.011": "length_mm",
    "7.012": "current",
    "7.013": "brightness",
    "7.600": "color_temperature",
    "8": "2byte_signed",
    "8.001": "pulse_2byte_signed",
    "8.002": "delta_time_ms",
    "8.003": "delta_time_10ms",
    "8.004": "delta_time_100ms",
    "8.005": "delta_time_sec",
    "8.006": "delta_time_min",
    "8.007": "delta_time_hrs",
    "8.010": "percentV16",
    "8.011": "rotation_angle",
    "8.012": "length_m",
    "9": "2byte_float",
    "9.001": "temperature",
    "9.002": "temperature_difference_2byte",
    "9.003": "temperature_a",
    "9.004": "illuminance",
    "9.005": "wind_speed_ms",
    "9.006": "pressure_2byte",
    "9.007": "humidity",
    "9.008": "ppm",
    "9.009": "air_flow",
    "9.010": "time_1",
    "9.011": "time_2",
    "9.020": "voltage",
    "9.021": "curr",
    "9.022": "power_density",
    "9.023": "kelvin_per_percent",
    "9.024": "power_2byte",
    "9.025": "volume_flow",
    "9.026": "rain_amount",
    "9.027": "temperature_f",
    "9.028": "wind_speed_kmh",
    "9.029": "absolute_humidity",
    "9.030": "concentration_ugm3",
    "12": "4byte_unsigned",
    "12.001": "pulse_4_ucount",
    "12.100": "long_time_period_sec",
    "12.101": "long_time_period_min",
    "13": "4byte_signed",
    "13.010": "active_energy",
    "13.013": "active_energy_kwh",
    "14": "4byte_float",
    "14.019": "electric_current",
    "14.027": "electric_potential",
    "14.033": "frequency",
    "14.056": "power",
}

# First match wins
NAME_SENSOR_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"temp|temperatuur", re.IGNORECASE), "temperature"),
    (re.compile(r"hum|humidity|\brv\b", re.IGNORECASE), "humidity"),
    (re.compile(r"lux|illuminance|lichtsterkte", re.IGNORECASE), "illuminance"),
    (re.compile(r"\bppm\b|co2", re.IGNORECASE), "ppm"),
    (re.compile(r"volt|spanning|voltage", re.IGNORECASE), "voltage"),
    (re.compile(r"(^|\W)(amp|stroom|current|ma|a)($|\W)", re.IGNORECASE), "curr"),
    (re.compile(r"power|vermogen|watt|kw\b", re.IGNORECASE), "power_2byte"),
    (re.compile(r"press|druk", re.IGNORECASE), "pressure_2byte"),
    (re.compile(r"wind.*km/?h", re.IGNORECASE), "wind_speed_kmh"),
    (re.compile(r"wind|windsnelheid", re.IGNORECASE), "wind_speed_ms"),
    (re.compile(r"rain|regen", re.IGNORECASE), "rain_amount"),
    (re.compile(r"flow|debiet", re.IGNORECASE), "volume_flow"),
)


def is_la(name: str) -> bool:
    return bool(RE_LA.match(name.strip()))


def is_status_name(name: str) -> bool:
    return bool(RE_STATUS.search(name))


def is_cover_like(name: str) -> bool:
    return bool(RE_COVER_LIKE.search(name))


def is_scene_name(name: str) -> bool:
    return bool(RE_SCENE_WORDS.search(name))


def sensor_type_from_name(name: str | None) -> str | None:
    if not name:
        return None
    for pattern, sensor_type in NAME_SENSOR_PATTERNS:
        if pattern.search(name):
            return sensor_type
    return None


def dpt_to_sensor_type(dot: str | None, name: str | None = None) -> str | None:
    """Exact DPT, then bare major, then name patterns."""
    if dot:
        if dot in DPT_TO_SENSOR_TYPE:
            return DPT_TO_SENSOR_TYPE[dot]
        major = dot.split(".")[0]
        if major in DPT_TO_SENSOR_TYPE:
            return DPT_TO_SENSOR_TYPE[major]
    return sensor_type_from_name(name)


def scene_number_from_name(name: str, default: int = 1) -> int:
    m = _DIGITS.search(name)
    if not m:
        return default
    return int(m.group(0)) or default


def _time_like(major: int, name: str) -> Domain | None:
    """Time/date/datetime DPTs yield to a switch-like name without a matching hint."""
    switch_like = bool(RE_SWITCH_WORDS.search(name))
    time_hint = bool(RE_TIME_HINT.search(name))
    date_hint = bool(RE_DATE_HINT.search(name))
    if major == 19:
        if RE_DATETIME_HINT.search(name) or (time_hint and date_hint) or not switch_like:
            return Domain.DATETIME
    elif major == 10:
        if time_hint or not switch_like:
            return Domain.TIME
    elif major == 11:
        if date_hint or not switch_like:
            return Domain.DATE
    return None


def guess_domain(dpt: str | None, name: str, normalizer: DptNormalizer | None = None) -> Domain:
    """DPT-first dispatch, then keyword rules over the name, else UNKNOWN."""
    dot = normalizer.to_dot(dpt) if normalizer is not None else normalize_dpt_to_dot(dpt)
    major = dpt_major(dot)

    if major in (10, 11, 19):
        timed = _time_like(major, name)
        if timed is not None:
            return timed
    elif major is not None:
        if major in (17, 18):
            return Domain.SCENE
        if dot in MOVEMENT_DPTS:
            return Domain.SWITCH if RE_DOOR.search(name) else Domain.COVER
        if major == 1:
            if is_scene_name(name):
                return Domain.SCENE
            return Domain.BINARY_SENSOR if is_status_name(name) else Domain.SWITCH
        if major == 2:
            return Domain.SWITCH
        if major == 3:
            return Domain.LIGHT
        if dot == "5.001":
            if not is_la(name) and is_cover_like(name):
                return Domain.COVER
            return Domain.LIGHT
        if dot == "5.003":
            return Domain.COVER if is_cover_like(name) else Domain.SENSOR
        if major in SENSOR_MAJORS:
            return Domain.SENSOR

    if is_la(name) or RE_LIGHT_WORDS.search(name):
        return Domain.LIGHT
    if is_cover_like(name):
        return Domain.COVER
    if RE_SENSOR_WORDS.search(name):
        return Domain.SENSOR
    if is_status_name(name):
        return Domain.BINARY_SENSOR
    if RE_SWITCH_WORDS.search(name):
        return Domain.SWITCH
    return Domain.UNKNOWN


def classify_group_address(ga: GroupAddress, normalizer: DptNormalizer) -> MappedEntity:
    """Map one group address to an entity of the domain guess_domain picks."""
    domain = guess_domain(ga.dpt, ga.name, normalizer)
    dot = normalizer.to_dot(ga.dpt)
    ids = frozenset({ga.id})

    if domain is Domain.SWITCH:
        return MappedEntity(domain, HaSwitch(name=ga.name, address=ga.address, source_ids=ids))
    if domain is Domain.BINARY_SENSOR:
        return MappedEntity(domain, HaBinarySensor(name=ga.name, state_address=ga.address, source_ids=ids))
    if domain is Domain.LIGHT:
        light = HaLight(name=ga.name, address=ga.address, source_ids=ids)
        if dot == "5.001":
            light.brightness_address = ga.address
        return MappedEntity(domain, light)
    if domain is Domain.SENSOR:
        sensor_type = dpt_to_sensor_type(dot, ga.name) or "sensor"
        return MappedEntity(domain, HaSensor(name=ga.name, state_address=ga.address, type=sensor_type, source_ids=ids))
    if domain is Domain.TIME:
        return MappedEntity(domain, HaTime(name=ga.name, address=ga.address, state_address=ga.address, source_ids=ids))
    if domain is Domain.DATE:
        return MappedEntity(domain, HaDate(name=ga.name, address=ga.address, state_address=ga.address, source_ids=ids))
    if domain is Domain.DATETIME:
        return MappedEntity(
            domain, HaDateTime(name=ga.name, address=ga.address, state_address=ga.address, source_ids=ids)
        )
    if domain is Domain.COVER:
        cover = HaCover(name=ga.name, source_ids=ids)
        if dot == "5.001":
            cover.position_address = ga.address
        elif dot == "5.003":
            cover.angle_address = ga.address
        elif dot == "1.007":
            cover.move_short_address = ga.address
        elif dot == "1.010" and RE_STOP.search(ga.name):
            cover.stop_address = ga.address
        else:
            cover.move_long_address = ga.address
        return MappedEntity(domain, cover)
    if domain is Domain.SCENE:
        return MappedEntity(
            domain,
            HaScene(name=ga.name, address=ga.address, scene_number=scene_number_from_name(ga.name), source_ids=ids),
        )
    return MappedEntity(Domain.UNKNOWN, UnknownEntity(name=ga.name, address=ga.address, dpt=ga.dpt, source_ids=ids))


def fallback_strategy(remaining: list[GroupAddress], ctx: StrategyContext) -> StrategyResult:
    """Last resort: every remaining address becomes exactly one entity."""
    result = StrategyResult()
    for ga in remaining:
        entity = classify_group_address(ga, ctx.normalizer)
        result.entities.append(entity)
        result.consumed.add(ga.id)
    logger.debug("Fallback classified %d addresses", len(remaining))
    return result
