from pathlib import Path

import pytest

from conftest import touch
from srrcount.functions.sample_lock import SampleLock, SampleLocked
from srrcount.functions.task_runner import Stage, TaskResult, process, run_samples


class FakeStage(Stage):
    """Input <work>/<s>/in.txt, output <work>/<s>/out.txt, behaviour set per test."""

    name = "fake"

    def __init__(self, configure, paths, tool, behaviour="succeed"):
        super().__init__(configure, paths, tool)
        self.behaviour = behaviour
        self.calls = []

    def required_inputs(self, sample):
        return [self.sample_dir(sample) / "in.txt"]

    def expected_outputs(self, sample):
        return [self.sample_dir(sample) / "out.txt"]

    def run(self, sample):
        self.calls.append(sample)
        assert SampleLock(self.lock_dir, sample).exists()
        if self.behaviour == "raise":
            raise RuntimeError("tool crashed")
        if self.behaviour == "interrupt":
            raise KeyboardInterrupt
        if self.behaviour == "fail":
            return False
        touch(self.expected_outputs(sample)[0], "done")
        return True


@pytest.fixture
def stage(configure, tool):
    return FakeStage(configure, {}, tool)


def lock_file(stage, sample) -> Path:
    return stage.lock_dir / f"{sample}.lock"


class TestProcess:

    def test_success_creates_output_and_releases_lock(self, stage):
        touch(stage.sample_dir("S1") / "in.txt")
        assert process(stage, "S1") is TaskResult.SUCCEEDED
        assert (stage.sample_dir("S1") / "out.txt").read_text() == "done"
        assert not lock_file(stage, "S1").exists()

    def test_held_lock_is_a_conflict_and_leaves_sample_alone(self, stage):
        touch(stage.sample_dir("S1") / "in.txt")
        with SampleLock(stage.lock_dir, "S1"):
            assert process(stage, "S1") is TaskResult.SKIPPED_LOCKED
            # the holder's marker is untouched
            assert lock_file(stage, "S1").exists()
        assert stage.calls == []
        assert not (stage.sample_dir("S1") / "out.txt").exists()

    def test_stale_marker_file_blocks_processing(self, stage):
        touch(stage.sample_dir("S1") / "in.txt")
        touch(lock_file(stage, "S1"), "")
        assert process(stage, "S1") is TaskResult.SKIPPED_LOCKED
        assert lock_file(stage, "S1").exists()
        assert stage.calls == []

    def test_missing_input(self, stage):
        assert process(stage, "S1") is TaskResult.SKIPPED_MISSING_INPUT
        assert stage.calls == []
        assert not lock_file(stage, "S1").exists()

    def test_already_done(self, stage):
        touch(stage.sample_dir("S1") / "in.txt")
        touch(stage.sample_dir("S1") / "out.txt", "old")
        assert process(stage, "S1") is TaskResult.SKIPPED_DONE
        assert stage.calls == []
        assert (stage.sample_dir("S1") / "out.txt").read_text() == "old"
        assert not lock_file(stage, "S1").exists()

    def test_empty_output_is_not_done(self, stage):
        touch(stage.sample_dir("S1") / "in.txt")
        touch(stage.sample_dir("S1") / "out.txt", "")
        assert process(stage, "S1") is TaskResult.SUCCEEDED

    @pytest.mark.parametrize("behaviour", ["fail", "raise"])
    def test_failures_release_lock(self, configure, tool, behaviour):
        stage = FakeStage(configure, {}, tool, behaviour)
        touch(stage.sample_dir("S1") / "in.txt")
        assert process(stage, "S1") is TaskResult.FAILED
        assert stage.calls == ["S1"]
        assert not lock_file(stage, "S1").exists()

    def test_interrupt_propagates_and_releases_lock(self, configure, tool):
        stage = FakeStage(configure, {}, tool, "interrupt")
        touch(stage.sample_dir("S1") / "in.txt")
        with pytest.raises(KeyboardInterrupt):
            process(stage, "S1")
        assert not lock_file(stage, "S1").exists()

    def test_lock_creation_failure(self, stage):
        touch(stage.sample_dir("S1") / "in.txt")
        # lock directory path is occupied by a regular file
        touch(stage.lock_dir, "")
        assert process(stage, "S1") is TaskResult.FAILED
        assert stage.calls == []


class TestSampleLock:

    def test_second_acquire_conflicts(self, tmp_path):
        first = SampleLock(tmp_path, "S1")
        first.acquire()
        try:
            with pytest.raises(SampleLocked):
                SampleLock(tmp_path, "S1").acquire()
        finally:
            first.release()
        assert not first.exists()
        with SampleLock(tmp_path, "S1") as again:
            assert again.exists()


class TestRunSamples:

    def test_sequential_results_per_sample(self, stage):
        touch(stage.sample_dir("A") / "in.txt")
        touch(stage.sample_dir("B") / "in.txt")
        touch(stage.sample_dir("B") / "out.txt")
        results = run_samples(stage, ["A", "B", "C"], pool_size=1)
        assert results == {
            "A": TaskResult.SUCCEEDED,
            "B": TaskResult.SKIPPED_DONE,
            "C": TaskResult.SKIPPED_MISSING_INPUT,
        }
        assert list(stage.lock_dir.glob("*.lock")) == []
