"""
Registered forum origins, grouped by category.

Tier 1 origins are refreshed on every scheduled cycle, tier 2 by default
as well, tier 3 only on explicit full refreshes (e.g. ``refresh --tier 3``).
"""

from forum_tracker.ingestion.schemas import Origin
from forum_tracker.ingestion.url import normalize_url

# Crypto governance forums
CRYPTO_ORIGINS = [
    Origin(name="Uniswap", url="https://gov.uniswap.org", tier=1, category="crypto"),
    Origin(name="Arbitrum", url="https://forum.arbitrum.foundation", tier=1, category="crypto"),
    Origin(name="Optimism", url="https://gov.optimism.io", tier=1, category="crypto"),
    Origin(name="Aave", url="https://governance.aave.com", tier=1, category="crypto"),
    Origin(name="ENS", url="https://discuss.ens.domains", tier=2, category="crypto"),
    Origin(name="Compound", url="https://www.comp.xyz", tier=2, category="crypto"),
    Origin(name="Gnosis", url="https://forum.gnosis.io", tier=3, category="crypto"),
]

# AI research and tooling communities
AI_ORIGINS = [
    Origin(name="OpenAI Community", url="https://community.openai.com", tier=1, category="ai"),
    Origin(name="Hugging Face", url="https://discuss.huggingface.co", tier=1, category="ai"),
    Origin(name="PyTorch", url="https://discuss.pytorch.org", tier=2, category="ai"),
    Origin(name="fast.ai", url="https://forums.fast.ai", tier=3, category="ai"),
]

# Open-source language and infrastructure communities
OSS_ORIGINS = [
    Origin(name="Python", url="https://discuss.python.org", tier=1, category="oss"),
    Origin(name="Rust Users", url="https://users.rust-lang.org", tier=1, category="oss"),
    Origin(name="NixOS", url="https://discourse.nixos.org", tier=2, category="oss"),
    Origin(name="Julia", url="https://discourse.julialang.org", tier=2, category="oss"),
    Origin(name="Elixir", url="https://elixirforum.com", tier=3, category="oss"),
]

ORIGIN_CATEGORIES: dict[str, list[Origin]] = {
    "crypto": CRYPTO_ORIGINS,
    "ai": AI_ORIGINS,
    "oss": OSS_ORIGINS,
}

ALL_ORIGINS = CRYPTO_ORIGINS + AI_ORIGINS + OSS_ORIGINS


def get_origins(tiers: list[int] | None = None) -> list[Origin]:
    """Return registered origins, optionally restricted to the given tiers."""
    if not tiers:
        return list(ALL_ORIGINS)
    return [o for o in ALL_ORIGINS if o.tier in tiers]


def find_origin(url: str) -> Origin | None:
    """Look up a registered origin by (normalized) URL."""
    key = normalize_url(url)
    for origin in ALL_ORIGINS:
        if origin.key == key:
            return origin
    return None
