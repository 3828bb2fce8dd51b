# tripsync/Services/telemetry_core/ignition.py
"""
Ignition Resolution Module
==========================
Determina el estado de ignición (ACC) de un punto y la confianza asociada.

Orden de resolución (puro y determinista, la primera regla que decide gana):
1. Texto de estado con tokens ACC ON/OFF  → confianza 0.9, 'string_parse'
2. Bitfield de estado JT808 (score >= 0.5) → score,         'status_bit'
3. Inferencia por velocidad                 → 0.4 / 0.5,     'speed_inference'
4. Sin señal                                → None, 0.0,     'unknown'

Funciones:
- parse_acc_text(): tokens ACC del texto crudo del vendor
- score_status_bits(): scoring JT808
- resolve_ignition(): aplica el orden completo
"""

import re
from typing import NamedTuple, Optional


# ==========================================================
# CONSTANTES
# ==========================================================

STRING_PARSE_CONFIDENCE = 0.9

JT808_ACC_BIT = 1 << 0
JT808_EXT_ACC_BIT = 1 << 16
JT808_ACC_WEIGHT = 0.6
JT808_EXT_ACC_WEIGHT = 0.2
JT808_MOVING_WEIGHT = 0.2
JT808_MOVING_SPEED_KMH = 3.0
STATUS_BIT_MIN_SCORE = 0.5

SPEED_ON_KMH = 5.0
SPEED_ON_CONFIDENCE = 0.4
SPEED_OFF_KMH = 3.0
SPEED_OFF_CONFIDENCE = 0.5

# "ACC ON", "ACC:ON", "ACC_ON", "ACC=ON", "acc on" ...
_ACC_ON_RE = re.compile(r"ACC\s*[:_=]?\s*ON\b", re.IGNORECASE)
_ACC_OFF_RE = re.compile(r"ACC\s*[:_=]?\s*OFF\b", re.IGNORECASE)
# GPS51 chino: "ACC开" / "ACC关"
_ACC_ON_CN_RE = re.compile(r"ACC\s*[:：]?\s*开", re.IGNORECASE)
_ACC_OFF_CN_RE = re.compile(r"ACC\s*[:：]?\s*关", re.IGNORECASE)


class IgnitionReading(NamedTuple):
    ignition_on: Optional[bool]
    confidence: float
    method: str


UNKNOWN = IgnitionReading(None, 0.0, "unknown")


# ==========================================================
# REGLA 1: TEXTO
# ==========================================================

def parse_acc_text(status_text: Optional[str]) -> Optional[bool]:
    """
    Busca tokens ACC explícitos en el texto de estado.

    OFF tiene prioridad sobre ON cuando ambos aparecen.

    Examples:
        >>> parse_acc_text("Moving,ACC ON,GPS fixed")
        True
        >>> parse_acc_text("ACC关,静止")
        False
        >>> parse_acc_text("GPS fixed")
        None
    """
    if not status_text:
        return None

    if _ACC_OFF_RE.search(status_text) or _ACC_OFF_CN_RE.search(status_text):
        return False
    if _ACC_ON_RE.search(status_text) or _ACC_ON_CN_RE.search(status_text):
        return True
    return None


# ==========================================================
# REGLA 2: BITFIELD JT808
# ==========================================================

def score_status_bits(status_bits: Optional[int], speed_kmh: Optional[float]) -> float:
    """
    Score de ignición a partir del status word JT808.

    bit 0 (ACC base) suma 0.6, bit 16 (ACC extendido) suma 0.2 y una
    velocidad > 3 km/h suma 0.2. Tope en 1.0.
    """
    if status_bits is None:
        return 0.0

    score = 0.0
    if status_bits & JT808_ACC_BIT:
        score += JT808_ACC_WEIGHT
    if status_bits & JT808_EXT_ACC_BIT:
        score += JT808_EXT_ACC_WEIGHT
    if speed_kmh is not None and speed_kmh > JT808_MOVING_SPEED_KMH:
        score += JT808_MOVING_WEIGHT

    return round(min(score, 1.0), 2)


# ==========================================================
# ORQUESTACIÓN
# ==========================================================

def resolve_ignition(
    status_text: Optional[str],
    status_bits: Optional[int],
    speed_kmh: Optional[float]
) -> IgnitionReading:
    """
    Resuelve (ignition_on, confidence, method) para un punto.

    Args:
        status_text: Texto crudo del vendor (strstatus)
        status_bits: Status word JT808, si existe
        speed_kmh: Velocidad ya normalizada (km/h, clamped)

    Returns:
        IgnitionReading
    """
    from_text = parse_acc_text(status_text)
    if from_text is not None:
        return IgnitionReading(from_text, STRING_PARSE_CONFIDENCE, "string_parse")

    score = score_status_bits(status_bits, speed_kmh)
    if score >= STATUS_BIT_MIN_SCORE:
        return IgnitionReading(True, score, "status_bit")

    if speed_kmh is not None:
        if speed_kmh > SPEED_ON_KMH:
            return IgnitionReading(True, SPEED_ON_CONFIDENCE, "speed_inference")
        if speed_kmh <= SPEED_OFF_KMH:
            return IgnitionReading(False, SPEED_OFF_CONFIDENCE, "speed_inference")

    return UNKNOWN
