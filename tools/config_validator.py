"""
Configuration Validation Module

Validates config/agent.yaml against Pydantic schemas before the agent starts.

Usage:
    from tools.config_validator import validate_config_file

    errors = validate_config_file("config/agent.yaml")
    if errors:
        for error in errors:
            print(f"ERROR: {error}")
        sys.exit(1)
"""
import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)


class AppConfig(BaseModel):
    """Process-level settings"""
    name: str = Field(default="ada-trader", min_length=1)
    mode: Literal["DRY_RUN", "PAPER"] = Field(default="PAPER", description="DRY_RUN rejects every order")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    file: Optional[str] = Field(default="logs/ada-trader.log", description="Log file; null disables file logging")


class ExitLevelConfig(BaseModel):
    gain_pct: float = Field(gt=0, lt=1, description="Move from entry that triggers the level")
    fraction: float = Field(gt=0, le=1, description="Fraction of the position released")


class ExitsConfig(BaseModel):
    """Stop-loss and take-profit ladder"""
    stop_loss_pct: float = Field(default=0.06, gt=0, lt=1)
    take_profit_levels: List[ExitLevelConfig] = Field(
        default_factory=lambda: [
            ExitLevelConfig(gain_pct=0.10, fraction=0.5),
            ExitLevelConfig(gain_pct=0.15, fraction=0.3),
            ExitLevelConfig(gain_pct=0.20, fraction=0.2),
        ]
    )

    @field_validator("take_profit_levels")
    @classmethod
    def validate_ladder(cls, v: List[ExitLevelConfig]) -> List[ExitLevelConfig]:
        """Fractions sum to 1 and gains strictly increase"""
        if not v:
            raise ValueError("at least one take-profit level is required")
        total = math.fsum(level.fraction for level in v)
        if not math.isclose(total, 1.0, abs_tol=1e-9):
            raise ValueError(f"take-profit fractions must sum to 1.0, got {total}")
        gains = [level.gain_pct for level in v]
        if any(b <= a for a, b in zip(gains, gains[1:])):
            raise ValueError("take-profit gains must be strictly increasing")
        return v


class StrategyConfig(BaseModel):
    """Sizing, filtering and exit parameters"""
    name: str = Field(default="momentum_reversal", min_length=1)
    max_position_fraction: float = Field(default=0.10, gt=0, le=1)
    beta_alpha: int = Field(default=2, ge=1)
    beta_beta: int = Field(default=5, ge=1)
    confidence_floor: float = Field(default=0.0, ge=0, lt=1)
    breakout_threshold: float = Field(default=0.4, ge=0, le=1)
    breakout_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "volume_surge": 0.25,
            "price_momentum": 0.25,
            "volatility_breakout": 0.20,
            "market_sentiment": 0.15,
            "technical_strength": 0.15,
        }
    )
    high_confidence_boost: float = Field(default=0.1, ge=0, le=1)
    high_confidence_level: float = Field(default=0.8, ge=0, le=1)
    exits: ExitsConfig = Field(default_factory=ExitsConfig)

    @field_validator("breakout_weights")
    @classmethod
    def validate_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Weights are non-negative and sum to 1"""
        expected = {"volume_surge", "price_momentum", "volatility_breakout", "market_sentiment", "technical_strength"}
        if set(v) != expected:
            raise ValueError(f"breakout_weights must define exactly {sorted(expected)}")
        if any(w < 0 for w in v.values()):
            raise ValueError("breakout weights must be non-negative")
        if not math.isclose(sum(v.values()), 1.0, abs_tol=1e-6):
            raise ValueError(f"breakout weights must sum to 1.0, got {sum(v.values()):.4f}")
        return v


class ScheduleConfig(BaseModel):
    daily_run: str = Field(default="06:00", pattern=r"^\d{2}:\d{2}$")
    daily_summary: Optional[str] = Field(default="17:00", pattern=r"^\d{2}:\d{2}$")
    resync_interval_seconds: float = Field(default=300, gt=0)


class WorkflowConfig(BaseModel):
    """Trading window, market polling and critical error classification"""
    timezone: str = Field(default="America/New_York")
    start_hour: int = Field(default=6, ge=0, le=23)
    end_hour: int = Field(default=17, ge=1, le=24)
    weekdays: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    market_poll_seconds: float = Field(default=60, gt=0)
    critical_keywords: List[str] = Field(
        default_factory=lambda: ["CRITICAL", "API_ERROR", "AUTHENTICATION", "NETWORK"]
    )
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @field_validator("weekdays")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        if not v or any(d < 0 or d > 6 for d in v):
            raise ValueError("weekdays must be a non-empty list of 0 (Mon) .. 6 (Sun)")
        return v

    @model_validator(mode="after")
    def validate_hours(self) -> "WorkflowConfig":
        if self.start_hour >= self.end_hour:
            raise ValueError(f"start_hour ({self.start_hour}) must be before end_hour ({self.end_hour})")
        return self


class AiConfig(BaseModel):
    """Planning service"""
    provider: Literal["mock", "anthropic", "openai"] = "mock"
    model: Optional[str] = None
    api_key_env: str = Field(default="AI_API_KEY")
    timeout_s: float = Field(default=30.0, gt=0)
    max_tokens: int = Field(default=2000, gt=0)
    max_trades: int = Field(default=5, gt=0)

    @model_validator(mode="after")
    def validate_model(self) -> "AiConfig":
        if self.provider != "mock" and not self.model:
            raise ValueError(f"ai.model is required for provider {self.provider}")
        return self


class GovernorConfig(BaseModel):
    """Daily caps on the metered planning service"""
    daily_request_limit: int = Field(default=50, gt=0)
    max_daily_cost_usd: float = Field(default=5.0, gt=0)
    min_request_interval_seconds: float = Field(default=1.0, ge=0)
    cost_per_1k_tokens: float = Field(default=0.003, ge=0)
    warn_threshold: float = Field(default=0.8, gt=0, le=1)


class StateConfig(BaseModel):
    state_file: str = Field(default="data/agent_state.json")
    sqlite_path: str = Field(default="data/agent.db", min_length=1)
    instance_lock_dir: str = Field(default="data")


class PaperConfig(BaseModel):
    starting_balance: float = Field(default=100_000.0, gt=0)
    slippage_bps: float = Field(default=5.0, ge=0)


class MarketDataConfig(BaseModel):
    snapshot_file: str = Field(default="config/market_snapshot.yaml")


class MonitoringConfig(BaseModel):
    alerts_enabled: bool = False
    alerts: Dict[str, Any] = Field(default_factory=dict)
    metrics_enabled: bool = False
    metrics_port: int = Field(default=9100, ge=0, le=65535)
    control_enabled: bool = True
    control_port: int = Field(default=8089, ge=0, le=65535)


class AgentConfig(BaseModel):
    """Root schema for config/agent.yaml"""
    app: AppConfig = Field(default_factory=AppConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    ai: AiConfig = Field(default_factory=AiConfig)
    governor: GovernorConfig = Field(default_factory=GovernorConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    market_data: MarketDataConfig = Field(default_factory=MarketDataConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    def api_key(self) -> Optional[str]:
        return os.getenv(self.ai.api_key_env) or None


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning {} for an empty document."""
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: top level must be a mapping")
    return data


def load_config(path: str = "config/agent.yaml") -> AgentConfig:
    """
    Load and validate the agent configuration.

    Raises:
        FileNotFoundError, yaml.YAMLError, pydantic.ValidationError
    """
    return AgentConfig(**load_yaml_file(Path(path)))


def validate_config_file(path: str = "config/agent.yaml") -> List[str]:
    """
    Validate agent.yaml against the schema.

    Returns:
        List of error messages (empty if valid)
    """
    errors: List[str] = []
    config_path = Path(path)
    name = config_path.name

    try:
        AgentConfig(**load_yaml_file(config_path))
        logger.info(f"✅ {name} validation passed")
    except FileNotFoundError as e:
        errors.append(f"{name}: {e}")
    except yaml.YAMLError as e:
        errors.append(f"{name}: Invalid YAML - {e}")
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            errors.append(f"{name}: {field}: {error['msg']}")
    except ValueError as e:
        errors.append(str(e))

    return errors


if __name__ == "__main__":
    import sys

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    config_file = sys.argv[1] if len(sys.argv) > 1 else "config/agent.yaml"
    problems = validate_config_file(config_file)
    for problem in problems:
        print(f"ERROR: {problem}")
    sys.exit(1 if problems else 0)
