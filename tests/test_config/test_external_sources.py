"""Tests for the external source registry."""

from forum_tracker.config.external_sources import (
    EXTERNAL_SOURCES,
    SourceType,
    find_external_source,
    get_external_sources,
    snapshot_sources,
)
from forum_tracker.config.settings import Settings
from forum_tracker.scheduler.config import SchedulerConfig


class TestExternalSources:
    def test_keys_are_prefixed_and_unique(self):
        keys = [s.key for s in EXTERNAL_SOURCES]
        assert all(k.startswith("external:") for k in keys)
        assert len(set(keys)) == len(keys)

    def test_github_sources_have_repo(self):
        github = [s for s in EXTERNAL_SOURCES if s.source_type == SourceType.GITHUB]
        assert github
        assert all(s.repo_ref and "/" in s.repo_ref for s in github)

    def test_urls(self):
        ea_forum = find_external_source("ea-forum")
        eips = find_external_source("external:github-ethereum-eips")

        assert ea_forum.url == "https://forum.effectivealtruism.org"
        assert eips.url == "https://github.com/ethereum/EIPs"

    def test_disabled_sources_excluded(self):
        assert all(s.enabled for s in get_external_sources())
        assert find_external_source("lesswrong") is None

    def test_tier_filter(self):
        tier_two = get_external_sources([2])
        assert tier_two
        assert all(s.tier == 2 for s in tier_two)

    def test_snapshot_spaces_from_settings(self):
        settings = Settings(snapshot_spaces=" aave.eth, ,ens.eth ")

        sources = snapshot_sources(settings)

        assert [s.id for s in sources] == ["snapshot-aave.eth", "snapshot-ens.eth"]
        assert sources[0].url == "https://snapshot.org/#/aave.eth"
        assert sources[1] in get_external_sources(settings=settings)

    def test_no_snapshot_spaces_by_default(self, test_settings):
        assert snapshot_sources(test_settings) == []

    def test_scheduler_delay_from_settings(self):
        settings = Settings(external_delay_seconds=0.5)
        assert SchedulerConfig.from_settings(settings).external_delay_seconds == 0.5
