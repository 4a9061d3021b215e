"""Coarse venue category groups used to filter a session's ranked venues"""

from typing import Dict, Iterable, List

ALL_CATEGORIES = 'all'
OTHER_CATEGORY = 'other'

CATEGORY_GROUPS = {
    'dining': ('restaurant', 'cafe', 'coffee', 'food', 'fast_food', 'pizza', 'bakery'),
    'bars': ('bar', 'pub', 'nightclub', 'brewery', 'wine_bar'),
    'gas': ('gas_station', 'fuel', 'ev_charging'),
}

SELECTABLE_CATEGORIES = (ALL_CATEGORIES,) + tuple(CATEGORY_GROUPS)


def simplify_category(raw_category: str) -> str:
    """Map a provider category label onto dining/bars/gas, or 'other'"""
    lower = (raw_category or '').lower()
    for group, keywords in CATEGORY_GROUPS.items():
        if any(keyword in lower for keyword in keywords):
            return group
    return OTHER_CATEGORY


def filter_venues(venues: Iterable[Dict], category: str) -> List[Dict]:
    """Keep the venue dicts whose simplified category matches; 'all' keeps everything"""
    if category == ALL_CATEGORIES:
        return list(venues)
    return [venue for venue in venues if simplify_category(venue.get('category')) == category]
