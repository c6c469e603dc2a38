"""Configuration loading and validation for the CFO assistant."""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Optional

import yaml

from cfo_assistant.exceptions import ValidationError
from cfo_assistant.models.category import DEFAULT_RULE_PRIORITY, Category, CategoryRule
from cfo_assistant.utils.logging_config import DEFAULT_LOG_FILE, get_logger

logger = get_logger(__name__)


class ConfigError(ValidationError):
    """Exception raised for configuration errors."""

    pass


def _decimal_setting(data: dict[str, object], key: str, default: str) -> Decimal:
    if key not in data:
        return Decimal(default)
    try:
        return Decimal(str(data[key]))
    except ArithmeticError as e:
        raise ConfigError(f"'{key}' must be a number, got {data[key]!r}") from e


def _section(data: dict[str, object], key: str) -> Optional[dict[str, object]]:
    section = data.get(key)
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigError(f"'{key}' must be a mapping, got {type(section).__name__}")
    return section


@dataclass
class ForecastConfig:
    """Configuration for cash-flow forecasting.

    Attributes:
        days: Default forecast horizon in days.
        low_balance_threshold: Balances below this raise LOW_BALANCE.
        significant_outflow_threshold: Daily outflows above this raise
            SIGNIFICANT_OUTFLOW.
        base_payment_probability: Starting probability (%) that an
            outstanding invoice is paid on its due date.
        repeating_invoice_probability: Probability (%) for repeating invoices.
        repeating_bill_probability: Probability (%) for repeating bills.
        page_size: Provider page size for document fetches.
    """

    days: int = 90
    low_balance_threshold: Decimal = field(default_factory=lambda: Decimal("5000"))
    significant_outflow_threshold: Decimal = field(default_factory=lambda: Decimal("10000"))
    base_payment_probability: int = 80
    repeating_invoice_probability: int = 80
    repeating_bill_probability: int = 100
    page_size: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ForecastConfig":
        """Create from dictionary."""
        return cls(
            days=int(data.get("days", 90)),  # type: ignore[call-overload]
            low_balance_threshold=_decimal_setting(data, "low_balance_threshold", "5000"),
            significant_outflow_threshold=_decimal_setting(
                data, "significant_outflow_threshold", "10000"
            ),
            base_payment_probability=int(data.get("base_payment_probability", 80)),  # type: ignore[call-overload]
            repeating_invoice_probability=int(data.get("repeating_invoice_probability", 80)),  # type: ignore[call-overload]
            repeating_bill_probability=int(data.get("repeating_bill_probability", 100)),  # type: ignore[call-overload]
            page_size=int(data.get("page_size", 100)),  # type: ignore[call-overload]
        )


@dataclass
class AnomalyConfig:
    """Configuration for anomaly detection.

    Attributes:
        window_months: Default scan window ending today.
        transaction_stddev_multiplier: Outlier threshold for bank transactions.
        invoice_stddev_multiplier: Outlier threshold for invoice totals.
        expense_stddev_multiplier: Outlier threshold per expense account.
        expense_min_data_points: Accounts with fewer line items are skipped.
        duplicate_similarity_threshold: Minimum string similarity for duplicates.
        duplicate_window_days: Maximum days between duplicate candidates.
        overdue_days_threshold: Invoices overdue longer than this are flagged.
        margin_decline_points: Month-over-month margin drop that is flagged.
        page_size: Provider page size for document fetches.
    """

    window_months: int = 3
    transaction_stddev_multiplier: float = 3.0
    invoice_stddev_multiplier: float = 3.0
    expense_stddev_multiplier: float = 2.5
    expense_min_data_points: int = 3
    duplicate_similarity_threshold: float = 0.7
    duplicate_window_days: int = 7
    overdue_days_threshold: int = 60
    margin_decline_points: float = 5.0
    page_size: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "AnomalyConfig":
        """Create from dictionary."""
        return cls(
            window_months=int(data.get("window_months", 3)),  # type: ignore[call-overload]
            transaction_stddev_multiplier=float(data.get("transaction_stddev_multiplier", 3.0)),  # type: ignore[arg-type]
            invoice_stddev_multiplier=float(data.get("invoice_stddev_multiplier", 3.0)),  # type: ignore[arg-type]
            expense_stddev_multiplier=float(data.get("expense_stddev_multiplier", 2.5)),  # type: ignore[arg-type]
            expense_min_data_points=int(data.get("expense_min_data_points", 3)),  # type: ignore[call-overload]
            duplicate_similarity_threshold=float(data.get("duplicate_similarity_threshold", 0.7)),  # type: ignore[arg-type]
            duplicate_window_days=int(data.get("duplicate_window_days", 7)),  # type: ignore[call-overload]
            overdue_days_threshold=int(data.get("overdue_days_threshold", 60)),  # type: ignore[call-overload]
            margin_decline_points=float(data.get("margin_decline_points", 5.0)),  # type: ignore[arg-type]
            page_size=int(data.get("page_size", 100)),  # type: ignore[call-overload]
        )


@dataclass
class ReconciliationConfig:
    """Configuration for reconciliation matching and bank sync.

    Attributes:
        amount_tolerance: Allowed difference for an exact amount match.
        candidate_page_size: Maximum candidate documents fetched per side.
        date_proximity_days: Largest day gap that still earns a date bonus.
        sync_days: Default bank sync window in days.
    """

    amount_tolerance: Decimal = field(default_factory=lambda: Decimal("0.01"))
    candidate_page_size: int = 20
    date_proximity_days: int = 7
    sync_days: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ReconciliationConfig":
        """Create from dictionary."""
        return cls(
            amount_tolerance=_decimal_setting(data, "amount_tolerance", "0.01"),
            candidate_page_size=int(data.get("candidate_page_size", 20)),  # type: ignore[call-overload]
            date_proximity_days=int(data.get("date_proximity_days", 7)),  # type: ignore[call-overload]
            sync_days=int(data.get("sync_days", 30)),  # type: ignore[call-overload]
        )


@dataclass
class CategorizationConfig:
    """Configuration for rule-based categorization.

    Attributes:
        batch_limit: Maximum transactions processed per rule run.
        default_rule_priority: Priority given to rules without one.
        stats_days: Default window for categorization stats.
    """

    batch_limit: int = 100
    default_rule_priority: int = DEFAULT_RULE_PRIORITY
    stats_days: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "CategorizationConfig":
        """Create from dictionary."""
        return cls(
            batch_limit=int(data.get("batch_limit", 100)),  # type: ignore[call-overload]
            default_rule_priority=int(data.get("default_rule_priority", DEFAULT_RULE_PRIORITY)),  # type: ignore[call-overload]
            stats_days=int(data.get("stats_days", 30)),  # type: ignore[call-overload]
        )


@dataclass
class KPIConfig:
    """Configuration for KPI calculation.

    Attributes:
        window_months: Profit-and-loss window ending at the report date.
    """

    window_months: int = 3

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "KPIConfig":
        """Create from dictionary."""
        return cls(window_months=int(data.get("window_months", 3)))  # type: ignore[call-overload]


@dataclass
class OutputConfig:
    """Configuration for output generation.

    Attributes:
        currency_symbol: Currency symbol for display.
        decimal_places: Number of decimal places.
    """

    currency_symbol: str = "$"
    decimal_places: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "OutputConfig":
        """Create from dictionary."""
        return cls(
            currency_symbol=str(data.get("currency_symbol", "$")),
            decimal_places=int(data.get("decimal_places", 2)),  # type: ignore[call-overload]
        )


@dataclass
class LoggingConfig:
    """Configuration for logging.

    Attributes:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Path to log file.
    """

    level: str = "INFO"
    file: str = DEFAULT_LOG_FILE

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "LoggingConfig":
        """Create from dictionary."""
        return cls(
            level=str(data.get("level", "INFO")),
            file=str(data.get("file", DEFAULT_LOG_FILE)),
        )


@dataclass
class Config:
    """Main configuration container.

    Attributes:
        forecast: Cash-flow forecast configuration.
        anomaly: Anomaly detection configuration.
        reconciliation: Reconciliation configuration.
        categorization: Categorization configuration.
        kpi: KPI configuration.
        output: Output generation configuration.
        logging: Logging configuration.
        categories: Categories loaded from categories.yaml.
        category_rules: Rules loaded from categories.yaml (ascending priority).
    """

    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    kpi: KPIConfig = field(default_factory=KPIConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    categories: list[Category] = field(default_factory=list)
    category_rules: list[CategoryRule] = field(default_factory=list)


def load_yaml_file(path: Path) -> dict[str, object]:
    """Load a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ConfigError: If the file is invalid YAML or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not content:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(content).__name__}")
    return content


def load_settings(path: Path, config: Optional[Config] = None) -> Config:
    """Load settings from settings.yaml into a Config.

    Args:
        path: Path to settings.yaml.
        config: Config to update (a fresh one if None).

    Returns:
        The updated Config.
    """
    data = load_yaml_file(path)
    config = config or Config()

    sections = (
        ("forecast", "forecast", ForecastConfig),
        ("anomaly_detection", "anomaly", AnomalyConfig),
        ("reconciliation", "reconciliation", ReconciliationConfig),
        ("categorization", "categorization", CategorizationConfig),
        ("kpi", "kpi", KPIConfig),
        ("output", "output", OutputConfig),
        ("logging", "logging", LoggingConfig),
    )
    for key, attr, section_cls in sections:
        section = _section(data, key)
        if section is not None:
            try:
                setattr(config, attr, section_cls.from_dict(section))  # type: ignore[attr-defined]
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid '{key}' settings in {path}: {e}") from e

    return config


def load_categories(
    path: Path,
    default_priority: int = DEFAULT_RULE_PRIORITY,
) -> tuple[list[Category], list[CategoryRule]]:
    """Load categories and rules from categories.yaml.

    Args:
        path: Path to categories.yaml.
        default_priority: Priority for rules that do not set one.

    Returns:
        Tuple of (categories list, rules list sorted by ascending priority).
    """
    data = load_yaml_file(path)

    categories: list[Category] = []
    if "categories" in data and data["categories"] is not None:
        cat_list = data["categories"]
        if not isinstance(cat_list, list):
            raise ConfigError(f"'categories' must be a list, got {type(cat_list).__name__}")
        for cat_data in cat_list:
            if not isinstance(cat_data, dict):
                raise ConfigError(f"Category entry must be a mapping, got {cat_data!r}")
            categories.append(Category.from_dict(cat_data))

    rules: list[CategoryRule] = []
    if "rules" in data and data["rules"] is not None:
        rule_list = data["rules"]
        if not isinstance(rule_list, list):
            raise ConfigError(f"'rules' must be a list, got {type(rule_list).__name__}")
        for rule_data in rule_list:
            if not isinstance(rule_data, dict):
                raise ConfigError(f"Rule entry must be a mapping, got {rule_data!r}")
            rules.append(CategoryRule.from_dict(rule_data, default_priority=default_priority))

    # Lowest priority number is evaluated first
    rules.sort(key=lambda r: r.priority)

    return categories, rules


def load_config(
    settings_path: Optional[Path] = None,
    categories_path: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> Config:
    """Load complete configuration from all config files.

    Missing files fall back to defaults.

    Args:
        settings_path: Path to settings.yaml (or None to use default).
        categories_path: Path to categories.yaml (or None to use default).
        config_dir: Base config directory (default: ./config).

    Returns:
        Complete Config object.

    Raises:
        ConfigError: If a config file is malformed.
    """
    if config_dir is None:
        config_dir = Path("config")

    if settings_path is None:
        settings_path = config_dir / "settings.yaml"
    if categories_path is None:
        categories_path = config_dir / "categories.yaml"

    config = Config()

    if settings_path.exists():
        load_settings(settings_path, config)
        logger.info(f"Loaded settings from {settings_path}")
    else:
        logger.warning(f"Settings file not found: {settings_path}, using defaults")

    if categories_path.exists():
        config.categories, config.category_rules = load_categories(
            categories_path, default_priority=config.categorization.default_rule_priority
        )
        logger.info(
            f"Loaded {len(config.categories)} categories and "
            f"{len(config.category_rules)} rules from {categories_path}"
        )
    else:
        logger.warning(f"Categories file not found: {categories_path}")

    return config
