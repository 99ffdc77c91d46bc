"""
Typed configuration for selectors, estimators and update rules.

Every option has a default; a TOML table only needs the keys it overrides.
Validation happens once, when a config dataclass is constructed, and fails
fast with ConfigurationError naming the offending table and key.

TOML layout:

    [selector]
    type = "epsilon_greedy"
    seed = 0
    epsilon_min = 0.05

    [estimator]
    kind = "nnx"
    num_actions = 3
    feature_size = 4

    [update]
    algorithm = "ppo"
    update_cycle = 3
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import StrEnum

from errors import ConfigurationError
from toml_io import TomlValue


class SelectorType(StrEnum):
    """Executable action-selection strategies."""

    GREEDY = "greedy"
    EPSILON_GREEDY = "epsilon_greedy"
    NOISY = "noisy"
    WEIGHTED_RANDOM = "weighted_random"
    NOISY_NEXT_BEST = "noisy_next_best"
    MULTINOMIAL = "multinomial"
    SAMPLED = "sampled"
    ENTROPY_GREEDY = "entropy_greedy"
    ENTROPY_NOISY_NEXT_BEST = "entropy_noisy_next_best"
    OU_NOISE = "ou_noise"
    MCTS = "mcts"


class EstimatorKind(StrEnum):
    """Concrete function estimators shipped with the core."""

    NNX = "nnx"
    TABULAR = "tabular"


class UpdateAlgorithm(StrEnum):
    """Policy-gradient update rules."""

    VANILLA = "vanilla"
    PPO = "ppo"
    MCTS = "mcts"


def _require(condition: bool, message: str) -> None:
    """Raise ConfigurationError unless `condition` holds."""
    if not condition:
        raise ConfigurationError(message)


@dataclass(frozen=True, slots=True)
class EpsilonGreedyConfig:
    """Epsilon-greedy exploration schedule."""

    epsilon_initial: float = 1.0
    epsilon_min: float = 0.1
    epsilon_decay_rate: float = 0.999
    epsilon_decay_by_episode: bool = False

    def __post_init__(self) -> None:
        _require(
            0.0 <= self.epsilon_min <= self.epsilon_initial <= 1.0,
            "epsilon_greedy: need 0 <= epsilon_min <= epsilon_initial <= 1",
        )
        _require(
            0.0 < self.epsilon_decay_rate <= 1.0,
            "epsilon_greedy: epsilon_decay_rate must be in (0, 1]",
        )


@dataclass(frozen=True, slots=True)
class NoisyConfig:
    """Gaussian score noise; `exploration_noise` is a variance."""

    exploration_noise: float = 0.2
    min_exploration_noise: float = 0.1
    exploration_noise_decay: float = 0.9999

    def __post_init__(self) -> None:
        _require(
            0.0 <= self.min_exploration_noise <= self.exploration_noise,
            "noisy: need 0 <= min_exploration_noise <= exploration_noise",
        )
        _require(
            0.0 < self.exploration_noise_decay <= 1.0,
            "noisy: exploration_noise_decay must be in (0, 1]",
        )


@dataclass(frozen=True, slots=True)
class NoisyNextBestConfig:
    """Probability of taking the runner-up action, with decay."""

    initial_exploration_noise: float = 1.0
    min_exploration_noise: float = 0.2
    exploration_noise_decay: float = 0.999

    def __post_init__(self) -> None:
        _require(
            0.0
            <= self.min_exploration_noise
            <= self.initial_exploration_noise
            <= 1.0,
            "noisy_next_best: need 0 <= min <= initial exploration noise <= 1",
        )
        _require(
            0.0 < self.exploration_noise_decay <= 1.0,
            "noisy_next_best: exploration_noise_decay must be in (0, 1]",
        )


@dataclass(frozen=True, slots=True)
class OUNoiseConfig:
    """Ornstein-Uhlenbeck score noise; sigma decays once per episode."""

    mu: float = 0.0
    theta: float = 0.1
    sigma: float = 0.5
    min_sigma: float = 0.01
    sigma_decay: float = 0.9999

    def __post_init__(self) -> None:
        _require(self.theta >= 0.0, "ou_noise: theta must be non-negative")
        _require(
            0.0 <= self.min_sigma <= self.sigma,
            "ou_noise: need 0 <= min_sigma <= sigma",
        )
        _require(
            0.0 < self.sigma_decay <= 1.0,
            "ou_noise: sigma_decay must be in (0, 1]",
        )


@dataclass(frozen=True, slots=True)
class MultinomialConfig:
    """Categorical sampling over legal scores."""

    number_of_trials: int = 1

    def __post_init__(self) -> None:
        _require(
            self.number_of_trials >= 1,
            "multinomial: number_of_trials cannot be less than 1",
        )


@dataclass(frozen=True, slots=True)
class SampledConfig:
    """Cumulative-threshold sampling schedule."""

    threshold_initial: float = 1.0
    threshold_min: float = 0.2
    threshold_decay: float = 0.999

    def __post_init__(self) -> None:
        _require(
            0.0 <= self.threshold_min <= self.threshold_initial <= 1.0,
            "sampled: need 0 <= threshold_min <= threshold_initial <= 1",
        )
        _require(
            0.0 < self.threshold_decay <= 1.0,
            "sampled: threshold_decay must be in (0, 1]",
        )


@dataclass(frozen=True, slots=True)
class TreeSearchConfig:
    """PUCT tree-search hyperparameters."""

    c_puct: float = 2.5
    alpha: float = 0.6
    epsilon: float = 0.8
    tau: float = 1.1
    reset_cycle: int = 0

    def __post_init__(self) -> None:
        _require(self.c_puct >= 0.0, "mcts: c_puct must be non-negative")
        _require(self.alpha > 0.0, "mcts: alpha must be positive")
        _require(0.0 <= self.epsilon <= 1.0, "mcts: epsilon must be in [0, 1]")
        _require(self.tau > 0.0, "mcts: tau must be positive")
        _require(self.reset_cycle >= 0, "mcts: reset_cycle must be >= 0")


type SelectorOptions = (
    EpsilonGreedyConfig
    | NoisyConfig
    | NoisyNextBestConfig
    | OUNoiseConfig
    | MultinomialConfig
    | SampledConfig
    | TreeSearchConfig
)

# Option dataclass per selector type; None means the type takes no options.
SELECTOR_OPTIONS: dict[SelectorType, type[SelectorOptions] | None] = {
    SelectorType.GREEDY: None,
    SelectorType.EPSILON_GREEDY: EpsilonGreedyConfig,
    SelectorType.NOISY: NoisyConfig,
    SelectorType.WEIGHTED_RANDOM: None,
    SelectorType.NOISY_NEXT_BEST: NoisyNextBestConfig,
    SelectorType.MULTINOMIAL: MultinomialConfig,
    SelectorType.SAMPLED: SampledConfig,
    SelectorType.ENTROPY_GREEDY: None,
    SelectorType.ENTROPY_NOISY_NEXT_BEST: None,
    SelectorType.OU_NOISE: OUNoiseConfig,
    SelectorType.MCTS: TreeSearchConfig,
}


@dataclass(frozen=True, slots=True)
class SelectorConfig:
    """Selector type, shared settings and type-specific options."""

    type: SelectorType = SelectorType.GREEDY
    seed: int = 0
    as_softmax: bool = False
    options: SelectorOptions | None = None

    def __post_init__(self) -> None:
        expected = SELECTOR_OPTIONS[self.type]
        if self.options is None:
            return
        _require(
            expected is not None and isinstance(self.options, expected),
            f"selector: {type(self.options).__name__} does not configure "
            f"selector type {self.type.value!r}",
        )


@dataclass(frozen=True, slots=True)
class EstimatorConfig:
    """Settings for the concrete estimators."""

    num_actions: int
    kind: EstimatorKind = EstimatorKind.NNX
    feature_size: int = 0
    hidden_sizes: tuple[int, ...] = (64,)
    state_action_value: bool = False
    learning_rate: float = 1e-3
    tau: float = 1e-3
    number_of_iterations: int = 1
    buffer_capacity: int = 10_000
    seed: int = 0

    def __post_init__(self) -> None:
        _require(self.num_actions >= 1, "estimator: num_actions must be >= 1")
        if self.kind is EstimatorKind.NNX:
            _require(
                self.feature_size >= 1,
                "estimator: feature_size must be >= 1 for the nnx estimator",
            )
        _require(
            all(size >= 1 for size in self.hidden_sizes),
            "estimator: hidden_sizes entries must be >= 1",
        )
        _require(
            self.learning_rate > 0.0,
            "estimator: learning_rate must be positive",
        )
        _require(0.0 <= self.tau <= 1.0, "estimator: tau must be in [0, 1]")
        _require(
            self.number_of_iterations >= 1,
            "estimator: number_of_iterations must be at least 1",
        )
        _require(
            self.buffer_capacity >= 1,
            "estimator: buffer_capacity must be at least 1",
        )


@dataclass(frozen=True, slots=True)
class VanillaPolicyGradientConfig:
    """Entropy regularization for the vanilla policy gradient."""

    apply_entropy: bool = True
    entropy_coefficient: float = 0.01

    def __post_init__(self) -> None:
        _require(
            self.entropy_coefficient >= 0.0,
            "vanilla: entropy_coefficient must be non-negative",
        )


@dataclass(frozen=True, slots=True)
class ProximalPolicyConfig:
    """Clipping range and reference refresh cadence."""

    epsilon: float = 0.2
    update_cycle: int = 1

    def __post_init__(self) -> None:
        _require(0.0 <= self.epsilon < 1.0, "ppo: epsilon must be in [0, 1)")
        _require(self.update_cycle >= 1, "ppo: update_cycle must be >= 1")


type RuleOptions = VanillaPolicyGradientConfig | ProximalPolicyConfig

RULE_OPTIONS: dict[UpdateAlgorithm, type[RuleOptions] | None] = {
    UpdateAlgorithm.VANILLA: VanillaPolicyGradientConfig,
    UpdateAlgorithm.PPO: ProximalPolicyConfig,
    UpdateAlgorithm.MCTS: None,
}


@dataclass(frozen=True, slots=True)
class UpdateConfig:
    """Update engine settings."""

    algorithm: UpdateAlgorithm = UpdateAlgorithm.VANILLA
    chronological: bool = False
    options: RuleOptions | None = None

    def __post_init__(self) -> None:
        expected = RULE_OPTIONS[self.algorithm]
        if self.options is None:
            return
        _require(
            expected is not None and isinstance(self.options, expected),
            f"update: {type(self.options).__name__} does not configure "
            f"algorithm {self.algorithm.value!r}",
        )


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Root configuration: selector + estimator + optional update rule."""

    estimator: EstimatorConfig
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    update: UpdateConfig | None = None

    def __post_init__(self) -> None:
        if self.update is None:
            return
        uses_tree = self.selector.type is SelectorType.MCTS
        wants_tree = self.update.algorithm is UpdateAlgorithm.MCTS
        _require(
            uses_tree == wants_tree,
            "update: algorithm 'mcts' must be paired with selector type "
            "'mcts' (and only with it)",
        )


def parse_config(data: dict[str, TomlValue]) -> PolicyConfig:
    """Build a validated PolicyConfig from a loaded TOML document.

    Args:
        data: Root TOML table with `estimator` and optional `selector` and
            `update` tables.

    Returns:
        PolicyConfig.

    Raises:
        ConfigurationError: On unknown tables/keys, wrong types or
            out-of-range values.
    """
    _check_keys(data, {"selector", "estimator", "update"}, "root")
    estimator = parse_estimator_config(_get_table(data, "estimator"))
    selector_table = _get_table_optional(data, "selector")
    selector = parse_selector_config(selector_table or {})
    update_table = _get_table_optional(data, "update")
    update = None if update_table is None else parse_update_config(update_table)
    return PolicyConfig(estimator=estimator, selector=selector, update=update)


def parse_selector_config(table: dict[str, TomlValue]) -> SelectorConfig:
    """Parse the `[selector]` table."""
    kind = _get_enum(
        table, "type", SelectorType, SelectorType.GREEDY, "selector"
    )
    options_cls = SELECTOR_OPTIONS[kind]
    common = {"type", "seed", "as_softmax"}
    allowed = common | _field_names(options_cls)
    _check_keys(table, allowed, "selector")
    option_table = {k: v for k, v in table.items() if k not in common}
    options = (
        None
        if options_cls is None
        else _parse_options(options_cls, option_table, "selector")
    )
    return SelectorConfig(
        type=kind,
        seed=_get_int(table, "seed", 0, "selector"),
        as_softmax=_get_bool(table, "as_softmax", False, "selector"),
        options=options,
    )


def parse_estimator_config(table: dict[str, TomlValue]) -> EstimatorConfig:
    """Parse the `[estimator]` table."""
    _check_keys(table, _field_names(EstimatorConfig), "estimator")
    if "num_actions" not in table:
        raise ConfigurationError("estimator: missing key 'num_actions'")
    kind = _get_enum(
        table, "kind", EstimatorKind, EstimatorKind.NNX, "estimator"
    )
    rest = {k: v for k, v in table.items() if k != "kind"}
    defaults = EstimatorConfig(num_actions=1, kind=EstimatorKind.TABULAR)
    values: dict[str, object] = {}
    for f in fields(EstimatorConfig):
        if f.name == "kind" or f.name not in rest:
            continue
        values[f.name] = _get_typed(
            rest, f.name, getattr(defaults, f.name), "estimator"
        )
    return EstimatorConfig(kind=kind, **values)  # type: ignore[arg-type]


def parse_update_config(table: dict[str, TomlValue]) -> UpdateConfig:
    """Parse the `[update]` table."""
    algorithm = _get_enum(
        table, "algorithm", UpdateAlgorithm, UpdateAlgorithm.VANILLA, "update"
    )
    options_cls = RULE_OPTIONS[algorithm]
    common = {"algorithm", "chronological"}
    _check_keys(table, common | _field_names(options_cls), "update")
    option_table = {k: v for k, v in table.items() if k not in common}
    options = (
        None
        if options_cls is None
        else _parse_options(options_cls, option_table, "update")
    )
    return UpdateConfig(
        algorithm=algorithm,
        chronological=_get_bool(table, "chronological", False, "update"),
        options=options,
    )


def to_toml(cfg: PolicyConfig) -> dict[str, TomlValue]:
    """Render a resolved config (defaults filled in) as a TOML table."""
    selector: dict[str, TomlValue] = {
        "type": cfg.selector.type.value,
        "seed": cfg.selector.seed,
        "as_softmax": cfg.selector.as_softmax,
    }
    selector_options = cfg.selector.options
    options_cls = SELECTOR_OPTIONS[cfg.selector.type]
    if selector_options is None and options_cls is not None:
        selector_options = options_cls()
    if selector_options is not None:
        selector.update(_options_to_toml(selector_options))

    data: dict[str, TomlValue] = {
        "selector": selector,
        "estimator": _options_to_toml(cfg.estimator),
    }
    if cfg.update is not None:
        update: dict[str, TomlValue] = {
            "algorithm": cfg.update.algorithm.value,
            "chronological": cfg.update.chronological,
        }
        rule_options = cfg.update.options
        rule_cls = RULE_OPTIONS[cfg.update.algorithm]
        if rule_options is None and rule_cls is not None:
            rule_options = rule_cls()
        if rule_options is not None:
            update.update(_options_to_toml(rule_options))
        data["update"] = update
    return data


def _options_to_toml(options: object) -> dict[str, TomlValue]:
    """Render a flat options dataclass into TOML scalars."""
    rendered: dict[str, TomlValue] = {}
    for f in fields(options):  # type: ignore[arg-type]
        value = getattr(options, f.name)
        if isinstance(value, StrEnum):
            rendered[f.name] = value.value
        elif isinstance(value, tuple):
            rendered[f.name] = list(value)
        else:
            rendered[f.name] = value
    return rendered


def _field_names(cls: type | None) -> set[str]:
    """Return dataclass field names, or an empty set for None."""
    if cls is None:
        return set()
    return {f.name for f in fields(cls)}


def _parse_options[T](
    cls: type[T], table: dict[str, TomlValue], section: str
) -> T:
    """Instantiate an all-defaults options dataclass from a TOML table."""
    defaults = cls()
    values = {
        name: _get_typed(table, name, getattr(defaults, name), section)
        for name in _field_names(cls)
        if name in table
    }
    return cls(**values)


def _check_keys(
    table: dict[str, TomlValue], allowed: set[str], section: str
) -> None:
    """Reject keys that no option of `section` recognizes."""
    unknown = sorted(set(table) - allowed)
    if unknown:
        raise ConfigurationError(
            f"{section}: unknown option(s): {', '.join(unknown)}"
        )


def _get_typed(
    table: dict[str, TomlValue], key: str, default: object, section: str
) -> object:
    """Fetch `key` with the same type as its default."""
    if isinstance(default, bool):
        return _get_bool(table, key, default, section)
    if isinstance(default, int):
        return _get_int(table, key, default, section)
    if isinstance(default, float):
        return _get_float(table, key, default, section)
    if isinstance(default, tuple):
        return _get_int_tuple(table, key, default, section)
    raise ConfigurationError(f"{section}: unsupported option type for {key}")


def _get_int(
    table: dict[str, TomlValue], key: str, default: int, section: str
) -> int:
    """Fetch an optional integer from a TOML table.

    Raises:
        ConfigurationError: If the key is present but not an int.
    """
    value = table.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{section}: {key} must be an integer")
    return value


def _get_float(
    table: dict[str, TomlValue], key: str, default: float, section: str
) -> float:
    """Fetch an optional float from a TOML table (ints coerced to float).

    Raises:
        ConfigurationError: If the key is present but not a number.
    """
    value = table.get(key, default)
    if isinstance(value, bool):
        raise ConfigurationError(f"{section}: {key} must be a number")
    if isinstance(value, int):
        return float(value)
    if not isinstance(value, float):
        raise ConfigurationError(f"{section}: {key} must be a number")
    return value


def _get_bool(
    table: dict[str, TomlValue], key: str, default: bool, section: str
) -> bool:
    """Fetch an optional boolean from a TOML table."""
    value = table.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{section}: {key} must be a boolean")
    return value


def _get_int_tuple(
    table: dict[str, TomlValue],
    key: str,
    default: tuple[int, ...],
    section: str,
) -> tuple[int, ...]:
    """Fetch an optional list of integers as a tuple."""
    value = table.get(key, list(default))
    if not isinstance(value, list) or not all(
        isinstance(item, int) and not isinstance(item, bool) for item in value
    ):
        raise ConfigurationError(f"{section}: {key} must be a list of integers")
    return tuple(int(item) for item in value)  # type: ignore[arg-type]


def _get_enum[E: StrEnum](
    table: dict[str, TomlValue],
    key: str,
    enum_cls: type[E],
    default: E,
    section: str,
) -> E:
    """Fetch an optional enum value given by its string name."""
    value = table.get(key, default.value)
    if not isinstance(value, str):
        raise ConfigurationError(f"{section}: {key} must be a string")
    try:
        return enum_cls(value)
    except ValueError as exc:
        choices = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(
            f"{section}: unknown {key} {value!r} (expected one of {choices})"
        ) from exc


def _get_table(data: dict[str, TomlValue], key: str) -> dict[str, TomlValue]:
    """Fetch a required TOML table."""
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigurationError(f"Missing TOML table: {key}")
    return value


def _get_table_optional(
    data: dict[str, TomlValue], key: str
) -> dict[str, TomlValue] | None:
    """Fetch an optional TOML table."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigurationError(f"{key} must be a TOML table")
    return value
