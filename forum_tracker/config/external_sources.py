"""
Registered non-forum sources: ForumMagnum sites (EA Forum, LessWrong),
GitHub Discussions and Snapshot spaces.

They are refreshed after the forum cycle and cached under ``external:<id>``
keys in the in-process map and Redis. They are not persisted to the
durable tier.
"""

from dataclasses import dataclass
from enum import Enum

from forum_tracker.config.settings import Settings, get_settings

EXTERNAL_KEY_PREFIX = "external:"


class SourceType(str, Enum):
    EA_FORUM = "ea-forum"
    LESSWRONG = "lesswrong"
    GITHUB = "github"
    SNAPSHOT = "snapshot"


@dataclass(frozen=True)
class ExternalSource:
    """
    One non-forum source.

    ``repo_ref`` ("owner/repo") is required for GitHub sources and
    ``space`` for Snapshot sources.
    """

    id: str
    name: str
    source_type: SourceType
    category: str
    tier: int = 1
    enabled: bool = True
    repo_ref: str | None = None
    space: str | None = None

    @property
    def key(self) -> str:
        """Cache key; never collides with a forum URL."""
        return f"{EXTERNAL_KEY_PREFIX}{self.id}"

    @property
    def url(self) -> str:
        """Public home of the source, used as the topics' origin URL."""
        if self.source_type == SourceType.EA_FORUM:
            return "https://forum.effectivealtruism.org"
        if self.source_type == SourceType.LESSWRONG:
            return "https://www.lesswrong.com"
        if self.source_type == SourceType.GITHUB:
            return f"https://github.com/{self.repo_ref}"
        return f"https://snapshot.org/#/{self.space}"


def _github(source_id: str, name: str, repo_ref: str, category: str, tier: int) -> ExternalSource:
    return ExternalSource(
        id=source_id,
        name=name,
        source_type=SourceType.GITHUB,
        category=category,
        tier=tier,
        repo_ref=repo_ref,
    )


EXTERNAL_SOURCES = [
    ExternalSource(id="ea-forum", name="EA Forum", source_type=SourceType.EA_FORUM, category="ai"),
    # LessWrong's GraphQL endpoint rejects server-side clients
    ExternalSource(
        id="lesswrong",
        name="LessWrong",
        source_type=SourceType.LESSWRONG,
        category="ai",
        enabled=False,
    ),
    _github("github-ethereum-eips", "Ethereum EIPs", "ethereum/EIPs", "crypto", 1),
    _github("github-ethereum-pm", "Ethereum PM", "ethereum/pm", "crypto", 2),
    _github("github-pytorch", "PyTorch", "pytorch/pytorch", "ai", 1),
    _github(
        "github-huggingface-transformers",
        "HuggingFace Transformers",
        "huggingface/transformers",
        "ai",
        1,
    ),
    _github("github-langchain", "LangChain", "langchain-ai/langchain", "ai", 2),
    _github("github-rust-rfcs", "Rust RFCs", "rust-lang/rfcs", "oss", 1),
    _github("github-nextjs", "Next.js", "vercel/next.js", "oss", 1),
    _github("github-nodejs", "Node.js", "nodejs/node", "oss", 2),
    _github("github-godot-proposals", "Godot Proposals", "godotengine/godot-proposals", "oss", 2),
]


def snapshot_sources(settings: Settings | None = None) -> list[ExternalSource]:
    """One tier-1 source per configured SNAPSHOT_SPACES entry."""
    settings = settings or get_settings()
    return [
        ExternalSource(
            id=f"snapshot-{space}",
            name=space,
            source_type=SourceType.SNAPSHOT,
            category="crypto",
            space=space,
        )
        for space in settings.snapshot_space_ids
    ]


def get_external_sources(
    tiers: list[int] | None = None,
    settings: Settings | None = None,
) -> list[ExternalSource]:
    """Enabled sources (registered plus configured Snapshot spaces), optionally by tier."""
    sources = [s for s in EXTERNAL_SOURCES if s.enabled] + snapshot_sources(settings)
    if not tiers:
        return sources
    return [s for s in sources if s.tier in tiers]


def find_external_source(key: str) -> ExternalSource | None:
    """Look up an enabled source by id or ``external:<id>`` key."""
    source_id = key.removeprefix(EXTERNAL_KEY_PREFIX)
    for source in get_external_sources():
        if source.id == source_id:
            return source
    return None
