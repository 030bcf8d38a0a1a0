from typing import Callable, Dict, List, Sequence, Tuple

from marketpulse.models import Candle, Direction, PatternMatch


DOJI = "Doji"
DRAGONFLY_DOJI = "Dragonfly Doji"
GRAVESTONE_DOJI = "Gravestone Doji"
LONG_LEGGED_DOJI = "Long-Legged Doji"
HAMMER = "Hammer"
SHOOTING_STAR = "Shooting Star"
BULLISH_ENGULFING = "Bullish Engulfing"
BEARISH_ENGULFING = "Bearish Engulfing"
MORNING_STAR = "Morning Star"
EVENING_STAR = "Evening Star"


# --- Géométrie d'une bougie ---
def body(c: Candle) -> float:
    return abs(c.close - c.open)


def upper_shadow(c: Candle) -> float:
    return c.high - max(c.open, c.close)


def lower_shadow(c: Candle) -> float:
    return min(c.open, c.close) - c.low


def candle_range(c: Candle) -> float:
    return c.high - c.low


def is_bullish(c: Candle) -> bool:
    return c.close > c.open


def is_bearish(c: Candle) -> bool:
    return c.close < c.open


def detect_doji(candles: Sequence[Candle]) -> List[PatternMatch]:
    matches = []
    for c in candles:
        rng = candle_range(c)
        if rng <= 0 or body(c) > rng * 0.1:
            continue
        up, low = upper_shadow(c), lower_shadow(c)

        if low > rng * 0.6 and up < rng * 0.1:
            label, direction, confidence = DRAGONFLY_DOJI, Direction.BULLISH, 80
        elif up > rng * 0.6 and low < rng * 0.1:
            label, direction, confidence = GRAVESTONE_DOJI, Direction.BEARISH, 80
        elif up > rng * 0.3 and low > rng * 0.3:
            label, direction, confidence = LONG_LEGGED_DOJI, Direction.BULLISH, 75
        else:
            label, direction, confidence = DOJI, Direction.BULLISH, 70

        matches.append(PatternMatch(
            time=c.time,
            label=label,
            direction=direction,
            confidence=confidence,
            description=f"{label} : indécision, retournement de tendance possible",
        ))
    return matches


def detect_hammer(candles: Sequence[Candle]) -> List[PatternMatch]:
    matches = []
    for c in candles:
        rng = candle_range(c)
        if rng <= 0:
            continue
        if body(c) <= rng * 0.3 and lower_shadow(c) >= rng * 0.6 and upper_shadow(c) <= rng * 0.1:
            matches.append(PatternMatch(
                time=c.time,
                label=HAMMER,
                direction=Direction.BULLISH,
                confidence=85 if is_bullish(c) else 75,
                description="Retournement haussier : petit corps et longue mèche basse",
            ))
    return matches


def detect_shooting_star(candles: Sequence[Candle]) -> List[PatternMatch]:
    matches = []
    for c in candles:
        rng = candle_range(c)
        if rng <= 0:
            continue
        if body(c) <= rng * 0.3 and upper_shadow(c) >= rng * 0.6 and lower_shadow(c) <= rng * 0.1:
            matches.append(PatternMatch(
                time=c.time,
                label=SHOOTING_STAR,
                direction=Direction.BEARISH,
                confidence=85 if is_bearish(c) else 75,
                description="Retournement baissier : petit corps et longue mèche haute",
            ))
    return matches


def _engulfing_confidence(prev: Candle, curr: Candle) -> int:
    ratio = body(curr) / body(prev)
    return round(min(90.0, 50.0 + (ratio - 1.0) * 20.0))


def detect_engulfing(candles: Sequence[Candle]) -> List[PatternMatch]:
    matches = []
    for i in range(1, len(candles)):
        prev, curr = candles[i - 1], candles[i]
        if candle_range(curr) <= 0 or candle_range(prev) <= 0:
            continue

        if is_bearish(prev) and is_bullish(curr) and curr.open <= prev.close and curr.close >= prev.open:
            matches.append(PatternMatch(
                time=curr.time,
                label=BULLISH_ENGULFING,
                direction=Direction.BULLISH,
                confidence=_engulfing_confidence(prev, curr),
                description="Une grande bougie haussière englobe la bougie baissière précédente",
            ))
        elif is_bullish(prev) and is_bearish(curr) and curr.open >= prev.close and curr.close <= prev.open:
            matches.append(PatternMatch(
                time=curr.time,
                label=BEARISH_ENGULFING,
                direction=Direction.BEARISH,
                confidence=_engulfing_confidence(prev, curr),
                description="Une grande bougie baissière englobe la bougie haussière précédente",
            ))
    return matches


def detect_stars(candles: Sequence[Candle]) -> List[PatternMatch]:
    matches = []
    for i in range(2, len(candles)):
        first, second, third = candles[i - 2], candles[i - 1], candles[i]
        first_body = body(first)
        first_range = candle_range(first)
        if first_range <= 0 or candle_range(third) <= 0:
            continue
        # Première bougie : grand corps
        if first_body < first_range * 0.5:
            continue
        if body(second) >= first_body * 0.5 or body(third) <= first_body * 0.6:
            continue

        if is_bearish(first) and is_bullish(third):
            matches.append(PatternMatch(
                time=third.time,
                label=MORNING_STAR,
                direction=Direction.BULLISH,
                confidence=85,
                description="Retournement haussier fort sur trois bougies",
            ))
        elif is_bullish(first) and is_bearish(third):
            matches.append(PatternMatch(
                time=third.time,
                label=EVENING_STAR,
                direction=Direction.BEARISH,
                confidence=85,
                description="Retournement baissier fort sur trois bougies",
            ))
    return matches


DETECTORS: Tuple[Callable[[Sequence[Candle]], List[PatternMatch]], ...] = (
    detect_doji,
    detect_hammer,
    detect_shooting_star,
    detect_engulfing,
    detect_stars,
)


def detect_all(candles: Sequence[Candle]) -> List[PatternMatch]:
    """
    Lance tous les détecteurs.
    Résultat trié par temps, au plus un match par couple (time, label).
    Rien en dessous de 3 bougies.
    """
    if len(candles) < 3:
        return []
    unique: Dict[Tuple[int, str], PatternMatch] = {}
    for detector in DETECTORS:
        for match in detector(candles):
            unique.setdefault((match.time, match.label), match)
    return sorted(unique.values(), key=lambda m: (m.time, m.label))


def detect_recent(candles: Sequence[Candle], bars: int = 3) -> List[PatternMatch]:
    """
    Patterns terminés sur les `bars` dernières bougies.
    Deux bougies de contexte supplémentaires sont scannées pour les figures à trois bougies.
    """
    if bars <= 0:
        return []
    window = list(candles[-(bars + 2):])
    if len(window) < 3:
        return []
    recent_times = {c.time for c in window[-bars:]}
    return [m for m in detect_all(window) if m.time in recent_times]
