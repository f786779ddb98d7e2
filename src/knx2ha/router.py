"""Entity router: strategy precedence as an ordered fold over the remaining addresses."""

import logging
from dataclasses import dataclass
from typing import Callable

from .aggregate import address_light_strategy, cover_strategy, la_light_strategy, link_light_strategy, switch_strategy
from .dpt import DptNormalizer
from .heuristics import fallback_strategy
from .mapping import structured_mapping
from .types import (
    Catalog,
    GroupAddress,
    HaEntities,
    Link,
    MappedEntity,
    StrategyContext,
    StrategyResult,
)

logger = logging.getLogger(__name__)

Strategy = Callable[[list[GroupAddress], StrategyContext], StrategyResult]

# First one that emits or consumes anything wins; the rest are skipped
LIGHT_STRATEGIES: tuple[Strategy, ...] = (link_light_strategy, address_light_strategy, la_light_strategy)
FLAT_STRATEGIES: tuple[Strategy, ...] = (switch_strategy, cover_strategy)

RESERVE_NAME = "reserve"


@dataclass
class RouterOptions:
    drop_reserve: bool = False
    sweep_unbound: bool = True


def links_by_group_address(links: list[Link]) -> dict[str, list[Link]]:
    out: dict[str, list[Link]] = {}
    for link in links:
        out.setdefault(link.group_address_id, []).append(link)
    return out


def is_reserve(entity: MappedEntity) -> bool:
    name = entity.payload.name
    return isinstance(name, str) and name.strip().lower() == RESERVE_NAME


def drop_reserve(entities: HaEntities) -> HaEntities:
    """New HaEntities without any entity named "Reserve", in every domain."""
    out = HaEntities()
    for entity in entities:
        if not is_reserve(entity):
            out.add(entity)
    return out


def apply_strategy(
    strategy: Strategy,
    remaining: list[GroupAddress],
    ctx: StrategyContext,
) -> tuple[StrategyResult, list[GroupAddress]]:
    """Run one strategy and return its result with the still-unclaimed addresses."""
    result = strategy(remaining, ctx)
    left = [ga for ga in remaining if ga.id not in result.consumed]
    logger.debug(
        "%s: %d entities, %d consumed, %d left",
        getattr(strategy, "__name__", strategy),
        len(result.entities),
        len(result.consumed),
        len(left),
    )
    return result, left


class EntityRouter:
    """Chooses the structured or flat path and folds addresses through strategies."""

    def __init__(self, options: RouterOptions | None = None, normalizer: DptNormalizer | None = None) -> None:
        self.options = options or RouterOptions()
        self.normalizer = normalizer or DptNormalizer()

    def route(self, catalog: Catalog) -> HaEntities:
        ctx = StrategyContext(normalizer=self.normalizer, links_by_ga=links_by_group_address(catalog.links))
        remaining = list(catalog.group_addresses)

        emitted = self._structured(catalog, remaining, ctx)
        if emitted is None:
            emitted = self._flat(remaining, ctx)

        entities = HaEntities()
        for entity in emitted:
            entities.add(entity)
        if self.options.drop_reserve:
            entities = drop_reserve(entities)
        logger.info("Routed %d group addresses into %d entities", len(catalog.group_addresses), len(entities))
        return entities

    def _structured(
        self,
        catalog: Catalog,
        remaining: list[GroupAddress],
        ctx: StrategyContext,
    ) -> list[MappedEntity] | None:
        if not catalog.is_rich:
            return None
        result = structured_mapping(catalog, ctx)
        if not result.entities:
            logger.debug("Structured mapping produced nothing; using flat strategies")
            return None
        emitted = list(result.entities)
        if self.options.sweep_unbound:
            left = [ga for ga in remaining if ga.id not in result.consumed]
            swept, _ = apply_strategy(fallback_strategy, left, ctx)
            emitted.extend(swept.entities)
        return emitted

    def _flat(self, remaining: list[GroupAddress], ctx: StrategyContext) -> list[MappedEntity]:
        emitted: list[MappedEntity] = []
        for strategy in LIGHT_STRATEGIES:
            result, left = apply_strategy(strategy, remaining, ctx)
            if result.entities or result.consumed:
                emitted.extend(result.entities)
                remaining = left
                break
        for strategy in FLAT_STRATEGIES + (fallback_strategy,):
            result, remaining = apply_strategy(strategy, remaining, ctx)
            emitted.extend(result.entities)
        return emitted


def build_entities(
    catalog: Catalog,
    options: RouterOptions | None = None,
    normalizer: DptNormalizer | None = None,
) -> HaEntities:
    """Route a catalog into HaEntities with a fresh router."""
    return EntityRouter(options, normalizer).route(catalog)
