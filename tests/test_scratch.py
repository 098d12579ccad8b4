import pytest

from conftest import touch
from srrcount.functions.scratch import run_in_scratch, run_with_fallback


@pytest.fixture
def inputs(tmp_path):
    return [touch(tmp_path / "in" / "S1_1.fq.gz", "r1"), touch(tmp_path / "in" / "S1_2.fq.gz", "r2")]


@pytest.fixture
def tiers(tmp_path):
    primary, secondary = tmp_path / "ssd", tmp_path / "hdd"
    primary.mkdir()
    secondary.mkdir()
    return primary, secondary


def leftovers(*dirs):
    return [p for d in dirs for p in d.iterdir()]


class TestRunWithFallback:

    def test_primary_success(self, tool, inputs, tiers):
        seen = []

        def attempt(staged, tier):
            seen.append(tier)
            assert [p.read_text() for p in staged] == ["r1", "r2"]
            assert all(p.parent == tier / "S1" for p in staged)
            return 0

        assert run_with_fallback("S1", inputs, *tiers, attempt, tool) is True
        assert seen == [tiers[0]]
        assert leftovers(*tiers) == []

    def test_falls_back_to_secondary(self, tool, inputs, tiers):
        seen = []

        def attempt(staged, tier):
            seen.append(tier)
            return 1 if tier == tiers[0] else 0

        assert run_with_fallback("S1", inputs, *tiers, attempt, tool) is True
        assert seen == list(tiers)
        assert leftovers(*tiers) == []

    def test_both_tiers_fail(self, tool, inputs, tiers):
        attempts = []
        assert run_with_fallback("S1", inputs, *tiers, lambda s, t: attempts.append(t) or 1, tool) is False
        assert attempts == list(tiers)
        assert leftovers(*tiers) == []

    def test_copy_failure_counts_as_failed_attempt(self, tool, tmp_path, tiers):
        attempts = []
        missing = [tmp_path / "in" / "absent.fq.gz"]
        assert run_with_fallback("S1", missing, *tiers, lambda s, t: attempts.append(t) or 0, tool) is False
        assert attempts == []
        assert leftovers(*tiers) == []

    def test_exception_in_attempt_is_cleaned_up(self, tool, inputs, tiers):
        def attempt(staged, tier):
            if tier == tiers[0]:
                raise RuntimeError("disk full")
            return 0

        assert run_with_fallback("S1", inputs, *tiers, attempt, tool) is True
        assert leftovers(*tiers) == []

    def test_no_secondary_tier(self, tool, inputs, tiers):
        assert run_with_fallback("S1", inputs, tiers[0], None, lambda s, t: 1, tool) is False


class TestRunInScratch:

    def test_interrupt_still_cleans_up(self, tool, inputs, tiers):
        def attempt(staged, tier):
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            run_in_scratch("S1", inputs, tiers[0], attempt, tool)
        assert leftovers(tiers[0]) == []
