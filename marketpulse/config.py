from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Chargement des variables d'environnement depuis le fichier .env
load_dotenv()

# Intervalles d'agrégation acceptés (secondes), alignés sur les intervalles OHLC de Kraken
SUPPORTED_INTERVALS = (60, 300, 900, 1800, 3600, 14400, 86400)


class ConfigurationError(ValueError):
    """Configuration invalide détectée au démarrage (avant toute ingestion)."""


class Settings(BaseSettings):
    """
    Configuration centralisée du moteur d'analyse.
    Chaque attribut peut être surchargé par la variable d'environnement du même nom.
    """

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=True)

    SYMBOLS: str = "XRP/USD"
    FEED_URL: str = "wss://ws.kraken.com"
    REST_URL: str = "https://api.kraken.com"

    # Agrégation
    CANDLE_INTERVAL_S: int = 60
    CANDLE_BUFFER_SIZE: int = 10_000

    # Connectivité
    HEARTBEAT_INTERVAL_S: float = 30.0
    PONG_TIMEOUT_S: float = 10.0
    MAX_RECONNECT_ATTEMPTS: int = 5
    BACKOFF_BASE_S: float = 1.0
    BACKOFF_CAP_S: float = 30.0
    SYNTHETIC_TICK_INTERVAL_S: float = 1.0

    # Génération de signaux
    SIGNAL_INTERVAL_S: float = 300.0
    SIGNAL_TTL_S: float = 8 * 60 * 60
    MAX_ACTIVE_SIGNALS_PER_SYMBOL: int = 2
    MIN_CANDLES_FOR_SIGNAL: int = 100
    SIGNAL_SCORE_THRESHOLD: float = 0.3
    CONFIDENCE_WEIGHT_WIN_RATE: float = 40.0
    CONFIDENCE_WEIGHT_SCORE: float = 30.0
    CONFIDENCE_WEIGHT_REGIME: float = 20.0
    CONFIDENCE_WEIGHT_SHARPE: float = 10.0
    CONFIDENCE_MIN: float = 25.0
    CONFIDENCE_MAX: float = 85.0

    # Warm-up & persistance
    WARMUP_FROM_EXCHANGE: bool = True
    WARMUP_CANDLES: int = 500
    PERFORMANCE_STATE_PATH: str = "data/performance_state.json"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def pairs(self) -> List[str]:
        """Paires au format de l'exchange (ex: XRP/USD)."""
        return [s.strip().upper() for s in self.SYMBOLS.split(",") if s.strip()]

    @property
    def symbols(self) -> List[str]:
        """Clés internes des instruments (ex: XRPUSD)."""
        return [normalize_symbol(p) for p in self.pairs]

    @property
    def state_path(self) -> Optional[str]:
        return self.PERFORMANCE_STATE_PATH.strip() or None

    @model_validator(mode="after")
    def _check(self) -> "Settings":
        if not self.pairs:
            raise ValueError("La liste SYMBOLS est vide.")
        if self.CANDLE_INTERVAL_S not in SUPPORTED_INTERVALS:
            raise ValueError(
                f"CANDLE_INTERVAL_S={self.CANDLE_INTERVAL_S} non supporté (attendu: {SUPPORTED_INTERVALS})"
            )
        if self.CANDLE_BUFFER_SIZE < self.MIN_CANDLES_FOR_SIGNAL:
            raise ValueError("CANDLE_BUFFER_SIZE doit contenir au moins MIN_CANDLES_FOR_SIGNAL bougies.")
        if self.HEARTBEAT_INTERVAL_S <= 0 or self.PONG_TIMEOUT_S <= 0:
            raise ValueError("HEARTBEAT_INTERVAL_S et PONG_TIMEOUT_S doivent être positifs.")
        if self.MAX_RECONNECT_ATTEMPTS < 0:
            raise ValueError("MAX_RECONNECT_ATTEMPTS doit être >= 0.")
        if self.BACKOFF_BASE_S <= 0 or self.BACKOFF_CAP_S < self.BACKOFF_BASE_S:
            raise ValueError("Backoff invalide: 0 < BACKOFF_BASE_S <= BACKOFF_CAP_S requis.")
        if not 0 <= self.CONFIDENCE_MIN < self.CONFIDENCE_MAX <= 100:
            raise ValueError("Bornes de confiance invalides: 0 <= CONFIDENCE_MIN < CONFIDENCE_MAX <= 100.")
        if self.SIGNAL_TTL_S <= 0 or self.SIGNAL_INTERVAL_S <= 0:
            raise ValueError("SIGNAL_TTL_S et SIGNAL_INTERVAL_S doivent être positifs.")
        if self.MAX_ACTIVE_SIGNALS_PER_SYMBOL < 1:
            raise ValueError("MAX_ACTIVE_SIGNALS_PER_SYMBOL doit être >= 1.")
        return self


def normalize_symbol(pair: str) -> str:
    """XRP/USD -> XRPUSD"""
    return pair.strip().upper().replace("/", "").replace("-", "")


def load_config(**overrides) -> Settings:
    """
    Charge et valide la configuration au démarrage.
    Lève ConfigurationError si une valeur est invalide.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise ConfigurationError(messages) from e
