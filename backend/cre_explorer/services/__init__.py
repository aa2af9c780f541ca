from cre_explorer.services.distress import score_distress
from cre_explorer.services.opportunity import score_opportunity, rank_opportunities
from cre_explorer.services.comps import find_comps
from cre_explorer.services.owners import aggregate_owners, rank_distressed_owners, detect_entity_type
from cre_explorer.services.heatmap import build_heatmap, GridAccumulator
from cre_explorer.services.filters import filter_properties, PropertyFilter, PropertyQueryParams

__all__ = [
    "score_distress",
    "score_opportunity",
    "rank_opportunities",
    "find_comps",
    "aggregate_owners",
    "rank_distressed_owners",
    "detect_entity_type",
    "build_heatmap",
    "GridAccumulator",
    "filter_properties",
    "PropertyFilter",
    "PropertyQueryParams",
]
