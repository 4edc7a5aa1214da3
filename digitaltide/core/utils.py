"""
Text and URL utilities shared by the scoring engines.

Tokens are lowercase ASCII word characters.
"""

import re
import hashlib
from typing import Iterable, List, Optional, Set
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

# English stopwords used by keyword extraction and duplicate blocking
STOPWORDS = frozenset({
    'a', 'about', 'above', 'after', 'again', 'against', 'all', 'also', 'am',
    'an', 'and', 'any', 'are', 'as', 'at', 'be', 'because', 'been', 'before',
    'being', 'below', 'between', 'both', 'but', 'by', 'can', 'could', 'did',
    'do', 'does', 'doing', 'down', 'during', 'each', 'few', 'for', 'from',
    'further', 'had', 'has', 'have', 'having', 'he', 'her', 'here', 'hers',
    'him', 'his', 'how', 'i', 'if', 'in', 'into', 'is', 'it', 'its', 'just',
    'may', 'me', 'might', 'more', 'most', 'must', 'my', 'new', 'no', 'nor',
    'not', 'now', 'of', 'off', 'on', 'once', 'only', 'or', 'other', 'our',
    'out', 'over', 'own', 'says', 'said', 'same', 'she', 'should', 'so',
    'some', 'such', 'than', 'that', 'the', 'their', 'them', 'then', 'there',
    'these', 'they', 'this', 'those', 'through', 'to', 'too', 'under',
    'until', 'up', 'very', 'was', 'we', 'were', 'what', 'when', 'where',
    'which', 'while', 'who', 'whom', 'why', 'will', 'with', 'would', 'you',
    'your', 'yours', 'amid', 'via', 'get', 'gets', 'got', 'make', 'makes',
})

# Query parameters that never identify content
TRACKING_PARAMS = frozenset({
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'fbclid', 'gclid', 'msclkid', 'twclid', '_ga', '_gl',
    'ref', 'referrer', 'source', 'campaign_id', 'ad_id',
    'cmpid', 'cid', 'eid', 'ncid', 'mc_cid', 'mc_eid'
})

_WORD_RE = re.compile(r"[a-z0-9]+")


def tokenize(text: Optional[str]) -> List[str]:
    """Lowercase ``text`` and split it into alphanumeric tokens."""
    if not text:
        return []
    return _WORD_RE.findall(text.lower())


def content_tokens(text: Optional[str], min_length: int = 3) -> List[str]:
    """Tokens with stopwords and short words removed."""
    return [t for t in tokenize(text) if len(t) >= min_length and t not in STOPWORDS]


def word_shingles(tokens: List[str], size: int = 3) -> Set[str]:
    """
    Build the set of ``size``-word shingles for a token list.

    Texts shorter than ``size`` words yield their single joined phrase so
    that short snippets still compare equal to themselves.
    """
    if not tokens:
        return set()
    if len(tokens) < size:
        return {" ".join(tokens)}
    return {" ".join(tokens[i:i + size]) for i in range(len(tokens) - size + 1)}


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard overlap of two collections (0.0 when both are empty)."""
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def dice(a: Iterable[str], b: Iterable[str]) -> float:
    """Sørensen-Dice coefficient of two collections."""
    set_a, set_b = set(a), set(b)
    total = len(set_a) + len(set_b)
    if not total:
        return 0.0
    return 2 * len(set_a & set_b) / total


def normalize_url(url: Optional[str]) -> str:
    """
    Normalize URL by removing tracking parameters, fragments, and sorting query params.

    Scheme and host are lowercased, a leading ``www.`` and a trailing slash on
    the path are dropped so that trivially different links compare equal.
    """
    if not url:
        return ""

    try:
        parsed = urlparse(url.strip())
        netloc = parsed.netloc.lower()
        if netloc.startswith("www."):
            netloc = netloc[4:]
        path = parsed.path.rstrip("/") if parsed.path != "/" else ""

        query = ""
        if parsed.query:
            params = parse_qs(parsed.query, keep_blank_values=False)
            filtered = {k: v for k, v in params.items() if k.lower() not in TRACKING_PARAMS}
            if filtered:
                query = urlencode(sorted(filtered.items()), doseq=True)

        return urlunparse((parsed.scheme.lower(), netloc, path, parsed.params, query, ""))
    except ValueError:
        return url.strip()


def extract_domain(url: Optional[str]) -> Optional[str]:
    """
    Extract the host of ``url`` without a leading ``www.``.

    Returns None for anything that does not parse as an absolute http(s) URL.
    """
    if not url or not isinstance(url, str):
        return None
    try:
        parsed = urlparse(url.strip())
        host = (parsed.hostname or "").lower()
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not host or "." not in host:
        return None
    if host.startswith("www."):
        host = host[4:]
    return host


def validate_url(url: Optional[str]) -> bool:
    """Check that ``url`` is an absolute http(s) URL with a dotted host."""
    return extract_domain(url) is not None


def sha1_hex(value: str) -> str:
    """SHA1 hex digest of a UTF-8 string."""
    return hashlib.sha1(value.encode("utf-8")).hexdigest()
