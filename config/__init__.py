"""Pyramid Guard Configuration Module"""
from pathlib import Path
import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings
from typing import List, Optional, Union
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Config directory
CONFIG_DIR = Path(__file__).parent
CONFIG_FILE = CONFIG_DIR / "settings.yaml"


class TradingSettings(BaseModel):
    """General trading settings"""
    instruments: List[str] = ["BTC/USD", "ETH/USD"]
    reference_instrument: str = "BTC/USD"
    check_interval_seconds: float = 60.0
    stop_loss_pct: float = 0.05       # 5% below entry
    profit_target_pct: float = 0.10   # 10% above entry
    paper_trading: bool = True
    account_balance: float = 10000.0
    data_dir: str = "data"
    activity_feed_size: int = 100


class GateSettings(BaseModel):
    """Entry gate thresholds (stages 1-3)"""
    # Stage 1: chop avoidance
    min_adx_for_entry: float = 20.0
    adx_choppy_threshold: float = 20.0
    adx_weak_threshold: float = 30.0
    adx_strong_threshold: float = 35.0
    # Stage 2: drop protection
    reference_dump_threshold_1h: float = -0.015
    volume_spike_max: float = 3.0
    spread_widening_pct: float = 0.005
    # Stage 3: entry quality
    rsi_extreme: float = 85.0
    near_high_ratio: float = 0.995
    momentum_floor: float = 0.005
    breakout_volume_ratio: float = 1.3


class ValidationSettings(BaseModel):
    """External validation settings (stage 4)"""
    min_confidence: float = 70.0
    max_calls_per_hour: int = 300
    cache_minutes: float = 15.0


class CostSettings(BaseModel):
    """Cost analysis settings (stage 5)"""
    exchange_fee_pct: float = 0.002   # Per side
    slippage_pct: float = 0.0001
    min_profit_multiplier: float = 3.0
    min_risk_reward_ratio: float = 2.0


class SizingSettings(BaseModel):
    """Position sizing settings"""
    dynamic_sizing_enabled: bool = True
    min_risk_per_trade: float = 0.01
    max_risk_per_trade: float = 0.10
    kelly_fraction: float = 0.25      # Quarter Kelly
    risk_per_trade_pct: float = 0.05  # Fixed-fraction fallback
    min_confidence: float = 50.0
    max_confidence: float = 95.0
    max_open_risk_pct: float = 0.05


class PyramidSettings(BaseModel):
    """Pyramiding settings"""
    enabled: bool = True
    max_levels: int = 2
    l1_trigger_pct: float = 0.045
    l2_trigger_pct: float = 0.08
    l1_add_size_pct: float = 0.35     # Of initial volume
    l2_add_size_pct: float = 0.50
    l1_confidence_min: float = 85.0
    l2_confidence_min: float = 90.0
    erosion_cap_choppy: float = 0.006
    erosion_cap_trend: float = 0.008


class MomentumFailureSettings(BaseModel):
    """Momentum failure exit settings"""
    enabled: bool = True
    min_profit: float = 0.02
    momentum_1h_threshold: float = -0.003
    momentum_4h_threshold: float = -0.005
    volume_exhaustion_1h: float = 0.9
    volume_exhaustion_4h: float = 1.0
    htf_weakening: float = 0.005
    near_peak_ratio: float = 0.98
    required_signals: int = 2


class LoggingSettings(BaseModel):
    """Logging settings"""
    level: str = "INFO"
    file: Optional[str] = "logs/trading.log"
    rotation: str = "10 MB"
    retention: str = "7 days"
    json_format: bool = False


class Settings(BaseSettings):
    """Main configuration class"""
    trading: TradingSettings = Field(default_factory=TradingSettings)
    gates: GateSettings = Field(default_factory=GateSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    costs: CostSettings = Field(default_factory=CostSettings)
    sizing: SizingSettings = Field(default_factory=SizingSettings)
    pyramid: PyramidSettings = Field(default_factory=PyramidSettings)
    momentum_failure: MomentumFailureSettings = Field(default_factory=MomentumFailureSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        env_prefix = ""
        case_sensitive = False


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if not value:
        return default
    return value.lower() == "true"


def load_config(config_file: Optional[Union[str, Path]] = None) -> Settings:
    """Load configuration from YAML and environment variables"""
    settings = Settings()
    config_file = Path(config_file) if config_file else CONFIG_FILE

    # Load from YAML if exists
    if config_file.exists():
        with open(config_file) as f:
            yaml_config = yaml.safe_load(f)
            if yaml_config:
                # Update settings from YAML
                for section, values in yaml_config.items():
                    if hasattr(settings, section) and isinstance(values, dict):
                        section_obj = getattr(settings, section)
                        for key, value in values.items():
                            if hasattr(section_obj, key):
                                setattr(section_obj, key, value)

    # Override with environment variables
    trading = settings.trading
    instruments = os.getenv("INSTRUMENTS")
    if instruments:
        trading.instruments = [i.strip() for i in instruments.split(",") if i.strip()]
    trading.reference_instrument = os.getenv("REFERENCE_INSTRUMENT", trading.reference_instrument)
    trading.check_interval_seconds = _env_float("CHECK_INTERVAL_SECONDS", trading.check_interval_seconds)
    trading.stop_loss_pct = _env_float("STOP_LOSS_PCT", trading.stop_loss_pct)
    trading.profit_target_pct = _env_float("PROFIT_TARGET_PCT", trading.profit_target_pct)
    trading.paper_trading = _env_bool("PAPER_TRADING", trading.paper_trading)
    trading.account_balance = _env_float("ACCOUNT_BALANCE", trading.account_balance)
    trading.data_dir = os.getenv("DATA_DIR", trading.data_dir)

    gates = settings.gates
    gates.min_adx_for_entry = _env_float("MIN_ADX_FOR_ENTRY", gates.min_adx_for_entry)
    gates.adx_choppy_threshold = _env_float("ADX_CHOPPY_THRESHOLD", gates.adx_choppy_threshold)
    gates.adx_strong_threshold = _env_float("ADX_STRONG_THRESHOLD", gates.adx_strong_threshold)
    gates.reference_dump_threshold_1h = _env_float(
        "REFERENCE_DUMP_THRESHOLD_1H", gates.reference_dump_threshold_1h
    )
    gates.volume_spike_max = _env_float("VOLUME_SPIKE_MAX", gates.volume_spike_max)
    gates.spread_widening_pct = _env_float("SPREAD_WIDENING_PCT", gates.spread_widening_pct)

    validation = settings.validation
    validation.min_confidence = _env_float("AI_MIN_CONFIDENCE", validation.min_confidence)
    validation.max_calls_per_hour = _env_int("AI_MAX_CALLS_PER_HOUR", validation.max_calls_per_hour)
    validation.cache_minutes = _env_float("AI_CACHE_MINUTES", validation.cache_minutes)

    costs = settings.costs
    costs.exchange_fee_pct = _env_float("EXCHANGE_FEE_PCT", costs.exchange_fee_pct)
    costs.slippage_pct = _env_float("SLIPPAGE_PCT", costs.slippage_pct)
    costs.min_profit_multiplier = _env_float("MIN_PROFIT_MULTIPLIER", costs.min_profit_multiplier)
    costs.min_risk_reward_ratio = _env_float("MIN_RISK_REWARD_RATIO", costs.min_risk_reward_ratio)

    sizing = settings.sizing
    sizing.dynamic_sizing_enabled = _env_bool("DYNAMIC_SIZING_ENABLED", sizing.dynamic_sizing_enabled)
    sizing.min_risk_per_trade = _env_float("MIN_RISK_PER_TRADE", sizing.min_risk_per_trade)
    sizing.max_risk_per_trade = _env_float("MAX_RISK_PER_TRADE", sizing.max_risk_per_trade)
    sizing.kelly_fraction = _env_float("KELLY_FRACTION", sizing.kelly_fraction)
    sizing.risk_per_trade_pct = _env_float("RISK_PER_TRADE_PCT", sizing.risk_per_trade_pct)
    sizing.max_open_risk_pct = _env_float("MAX_OPEN_RISK_PCT", sizing.max_open_risk_pct)

    pyramid = settings.pyramid
    pyramid.enabled = _env_bool("PYRAMIDING_ENABLED", pyramid.enabled)
    pyramid.l1_trigger_pct = _env_float("PYRAMID_L1_TRIGGER_PCT", pyramid.l1_trigger_pct)
    pyramid.l2_trigger_pct = _env_float("PYRAMID_L2_TRIGGER_PCT", pyramid.l2_trigger_pct)
    pyramid.l1_add_size_pct = _env_float("PYRAMID_ADD_SIZE_PCT_L1", pyramid.l1_add_size_pct)
    pyramid.l2_add_size_pct = _env_float("PYRAMID_ADD_SIZE_PCT_L2", pyramid.l2_add_size_pct)
    pyramid.l1_confidence_min = _env_float("PYRAMID_L1_CONFIDENCE_MIN", pyramid.l1_confidence_min)
    pyramid.l2_confidence_min = _env_float("PYRAMID_L2_CONFIDENCE_MIN", pyramid.l2_confidence_min)
    pyramid.erosion_cap_choppy = _env_float("PYRAMID_EROSION_CAP_CHOPPY", pyramid.erosion_cap_choppy)
    pyramid.erosion_cap_trend = _env_float("PYRAMID_EROSION_CAP_TREND", pyramid.erosion_cap_trend)

    momentum = settings.momentum_failure
    momentum.enabled = _env_bool("MOMENTUM_FAILURE_ENABLED", momentum.enabled)
    momentum.min_profit = _env_float("MOMENTUM_FAILURE_MIN_PROFIT", momentum.min_profit)
    momentum.required_signals = _env_int(
        "MOMENTUM_FAILURE_REQUIRED_SIGNALS", momentum.required_signals
    )

    settings.logging.level = os.getenv("LOG_LEVEL", settings.logging.level).upper()
    settings.logging.file = os.getenv("LOG_FILE_PATH", settings.logging.file)
    settings.logging.json_format = _env_bool("LOG_JSON", settings.logging.json_format)

    return settings


# Global config instance
config = load_config()
