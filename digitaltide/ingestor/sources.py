"""Source registry loaded from YAML."""
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from digitaltide.analytics.credibility import CredibilityScorer
from digitaltide.core.logging import get_logger
from digitaltide.core.models import SourceProfile
from digitaltide.core.settings import get_settings
from digitaltide.ingestor.adapters import NewsAPIAdapter, RSSAdapter, SourceAdapter
from digitaltide.ingestor.rss import RSSFetcher

logger = get_logger(__name__)

SourceEntry = Tuple[SourceProfile, SourceAdapter]


def profile_from_dict(data: Dict[str, Any], scorer: Optional[CredibilityScorer] = None) -> SourceProfile:
    """Create a SourceProfile; credibility and tier default to the scorer's tier table."""
    name = data.get('name')
    domain = data.get('domain')
    if not name or not domain:
        raise ValueError("source needs 'name' and 'domain'")

    base_credibility = data.get('base_credibility')
    tier = data.get('tier')
    if base_credibility is None or tier is None:
        result = (scorer or CredibilityScorer()).calculate_credibility({'domain': domain})
        base_credibility = result.score if base_credibility is None else base_credibility
        tier = result.tier if tier is None else tier

    return SourceProfile(
        name=name,
        domain=domain,
        type=data.get('type', 'rss'),
        base_credibility=float(base_credibility),
        tier=tier,
        quota_limit=data.get('quota_limit'),
        cost_per_request=float(data.get('cost_per_request', 0.0)),
        categories=list(data.get('categories', [])),
        countries=list(data.get('countries', [])),
        languages=list(data.get('languages', [])),
        enabled=data.get('enabled', True),
    )


def adapter_from_dict(data: Dict[str, Any], fetcher: Optional[RSSFetcher] = None) -> SourceAdapter:
    source_type = data.get('type', 'rss')
    if source_type == 'rss':
        feeds = data.get('feeds') or []
        if not feeds:
            raise ValueError(f"rss source '{data.get('name')}' has no feeds")
        return RSSAdapter(data['name'], feeds, fetcher=fetcher)
    if source_type == 'api':
        api_key = data.get('api_key') or get_settings().newsapi_key
        if not api_key and data.get('enabled', True):
            raise ValueError(f"api source '{data.get('name')}' has no api key")
        kwargs = {'base_url': data['base_url']} if data.get('base_url') else {}
        return NewsAPIAdapter(data['name'], api_key, **kwargs)
    raise ValueError(f"unknown source type '{source_type}'")


def load_sources(path: Optional[str] = None, scorer: Optional[CredibilityScorer] = None,
                 fetcher: Optional[RSSFetcher] = None) -> List[SourceEntry]:
    """
    Load the source registry.

    Invalid entries are logged and skipped. Disabled sources are kept so they
    show up in ``get_source_info``; the aggregator never selects them.
    """
    config_path = Path(path or get_settings().sources_config_path)
    if not config_path.exists():
        logger.warning(f"Sources config file not found: {config_path}")
        return []

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading sources config: {e}")
        return []

    if not config_data or 'sources' not in config_data:
        logger.warning("No sources configuration found in YAML")
        return []

    entries: List[SourceEntry] = []
    for source_data in config_data['sources']:
        try:
            profile = profile_from_dict(source_data, scorer)
            adapter = adapter_from_dict(source_data, fetcher)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Error parsing source config: {e}")
            continue
        entries.append((profile, adapter))

    logger.info(f"Loaded {len(entries)} sources from {config_path}")
    return entries
