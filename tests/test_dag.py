from __future__ import annotations

import pytest

from deployflow.dag import JobGraph
from deployflow.dsl import job, step
from deployflow.errors import CycleError, DuplicateJob, UnknownDependency
from deployflow.model import RunTests


def _job(name, needs=()):
    return job(name, step("noop", RunTests(command="true")), needs=list(needs))


class TestAddJob:
    def test_rejects_unknown_dependency(self):
        g = JobGraph()
        with pytest.raises(UnknownDependency) as err:
            g.add_job("deploy", ["build"])
        assert err.value.dependency == "build"
        assert "deploy" not in g

    def test_rejects_self_dependency(self):
        g = JobGraph()
        with pytest.raises(CycleError):
            g.add_job("a", ["a"])
        assert len(g) == 0

    def test_cycle_leaves_graph_unchanged(self):
        g = JobGraph()
        g.add_job("a")
        g.add_job("b", ["a"])
        g.add_job("c", ["b"])
        before = list(g.topological_order())

        with pytest.raises(CycleError) as err:
            g.add_job("a", ["c"])

        assert err.value.path[0] == "a" and err.value.path[-1] == "a"
        assert g.needs_of("a") == set()
        assert g.dependents_of("c") == set()
        assert list(g.topological_order()) == before

    def test_adding_edges_to_existing_job(self):
        g = JobGraph()
        g.add_job("a")
        g.add_job("b")
        g.add_job("c", ["a"])
        g.add_job("c", ["b"])
        assert g.needs_of("c") == {"a", "b"}


class TestTopologicalOrder:
    def test_tiers_follow_dependencies(self):
        g = JobGraph.from_jobs([
            _job("snyk"),
            _job("security", ["snyk"]),
            _job("deploy", ["security", "snyk"]),
        ])
        assert list(g.topological_order()) == [["snyk"], ["security"], ["deploy"]]

    def test_every_job_after_its_needs(self):
        g = JobGraph.from_jobs([
            _job("e", ["c", "d"]),
            _job("a"),
            _job("d", ["b"]),
            _job("b", ["a"]),
            _job("c", ["a"]),
            _job("f"),
        ])
        tier_of = {}
        for idx, tier in enumerate(g.topological_order()):
            for name in tier:
                tier_of[name] = idx
        assert set(tier_of) == set(g.jobs())
        for name in g.jobs():
            for dep in g.needs_of(name):
                assert tier_of[dep] < tier_of[name]

    def test_independent_jobs_share_a_tier(self):
        g = JobGraph.from_jobs([_job("b"), _job("a"), _job("c", ["a", "b"])])
        assert list(g.topological_order())[0] == ["a", "b"]

    def test_each_call_is_a_fresh_walk(self):
        g = JobGraph.from_jobs([_job("a"), _job("b", ["a"])])
        assert list(g.topological_order()) == list(g.topological_order())


class TestFromJobs:
    def test_duplicate_names(self):
        with pytest.raises(DuplicateJob) as err:
            JobGraph.from_jobs([_job("a"), _job("a")])
        assert err.value.names == ["a"]

    def test_dangling_need(self):
        with pytest.raises(UnknownDependency) as err:
            JobGraph.from_jobs([_job("a"), _job("b", ["missing"])])
        assert err.value.job == "b"

    def test_cycle_between_declared_jobs(self):
        with pytest.raises(CycleError) as err:
            JobGraph.from_jobs([_job("x"), _job("a", ["b"]), _job("b", ["a"])])
        assert set(err.value.path) == {"a", "b"}
