"""
Selector construction from configuration.
"""

from __future__ import annotations

from config import SelectorConfig, SelectorType
from selection.base import ActionSelector
from selection.greedy import EpsilonGreedySelector, GreedySelector
from selection.noisy import (
    EntropyGreedySelector,
    EntropyNoisyNextBestSelector,
    NoisyNextBestSelector,
    NoisySelector,
    OUNoiseSelector,
    WeightedRandomSelector,
)
from selection.sampling import MultinomialSelector, SampledSelector
from selection.tree_search import TreeSearchSelector

SELECTORS: dict[SelectorType, type[ActionSelector]] = {
    SelectorType.GREEDY: GreedySelector,
    SelectorType.EPSILON_GREEDY: EpsilonGreedySelector,
    SelectorType.NOISY: NoisySelector,
    SelectorType.WEIGHTED_RANDOM: WeightedRandomSelector,
    SelectorType.NOISY_NEXT_BEST: NoisyNextBestSelector,
    SelectorType.MULTINOMIAL: MultinomialSelector,
    SelectorType.SAMPLED: SampledSelector,
    SelectorType.ENTROPY_GREEDY: EntropyGreedySelector,
    SelectorType.ENTROPY_NOISY_NEXT_BEST: EntropyNoisyNextBestSelector,
    SelectorType.OU_NOISE: OUNoiseSelector,
    SelectorType.MCTS: TreeSearchSelector,
}


def create_selector(cfg: SelectorConfig) -> ActionSelector:
    """Instantiate the selector named by `cfg.type` with its options."""
    cls = SELECTORS[cfg.type]
    return cls(cfg.options, seed=cfg.seed, as_softmax=cfg.as_softmax)
