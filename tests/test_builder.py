"""Tests for build orchestration."""

import pytest

from agentbundler.builder import Builder
from agentbundler.config import Config
from agentbundler.errors import DuplicateResourceId
from agentbundler.models import EntryKind, TargetReport, TargetState
from agentbundler.serializer import start_marker

from conftest import agent_md, task_md, write_files

CONFIG = """
[core]
root = "core"

[packs]
root = "expansion-packs"

[build]
output = "dist"
workers = 2
"""


@pytest.fixture
def project(tmp_path, core_root):
    """A project around the shared core tree plus one expansion pack."""
    (tmp_path / "agentbundle.toml").write_text(CONFIG)
    write_files(
        tmp_path / "expansion-packs" / "game-dev",
        {
            "config.yaml": "name: game-dev\nversion: 1.0.0\n",
            "agents/game-designer.md": agent_md(
                "game-designer",
                {"tasks": ["create-next-story.md"], "templates": ["gdd-tmpl.yaml"]},
            ),
            "tasks/create-next-story.md": task_md("Create Game Story"),
            "templates/gdd-tmpl.yaml": "template:\n  id: gdd\n",
            "agent-teams/game-team.yaml": (
                "bundle:\n  name: Game Team\nagents:\n  - game-designer\n  - sm\n"
            ),
        },
    )
    return tmp_path


def builder_for(path):
    return Builder(Config(path / "agentbundle.toml"))


class TestDiscoverTargets:
    """Test build target enumeration."""

    def test_all_targets(self, project):
        targets = builder_for(project).discover_targets()

        assert [(t.pack, t.kind, t.name) for t in targets] == [
            ("core", EntryKind.AGENT, "qa"),
            ("core", EntryKind.AGENT, "sm"),
            ("core", EntryKind.TEAM, "team-all"),
            ("game-dev", EntryKind.AGENT, "game-designer"),
            ("game-dev", EntryKind.TEAM, "game-team"),
        ]

    def test_without_packs(self, project):
        targets = builder_for(project).discover_targets(include_packs=False)

        assert {t.pack for t in targets} == {"core"}

    def test_filters(self, project):
        builder = builder_for(project)

        agents = builder.discover_targets(agent="sm")
        teams = builder.discover_targets(team="game-team")

        assert [(t.kind, t.name) for t in agents] == [(EntryKind.AGENT, "sm")]
        assert [(t.kind, t.name) for t in teams] == [(EntryKind.TEAM, "game-team")]

    def test_broken_pack_targets_carry_error(self, project):
        (project / "expansion-packs" / "game-dev" / "config.yaml").write_text(
            "priority: [oops\n"
        )

        targets = builder_for(project).discover_targets()

        broken = [t for t in targets if t.pack == "game-dev"]
        assert [t.name for t in broken] == ["game-designer", "game-team"]
        assert all(t.context is None for t in broken)
        assert all("invalid YAML" in str(t.error) for t in broken)
        assert all(t.error is None for t in targets if t.pack == "core")

    def test_shared_overlay_collision_still_raises(self, project):
        (project / "agentbundle.toml").write_text(
            CONFIG
            + '\n[[overlays]]\nid = "a"\npath = "a"\npriority = 1\n'
            + '\n[[overlays]]\nid = "b"\npath = "b"\npriority = 1\n'
        )

        with pytest.raises(DuplicateResourceId):
            builder_for(project).discover_targets()


class TestBuild:
    """Test building and writing bundles."""

    def test_build_writes_every_target(self, project):
        report = builder_for(project).build()

        assert report.ok
        assert report.succeeded == 5
        assert report.failed == 0
        assert all(t.state is TargetState.WRITTEN for t in report.targets)

        dist = project / "dist"
        assert (dist / "agents" / "sm.txt").exists()
        assert (dist / "agents" / "qa.txt").exists()
        assert (dist / "teams" / "team-all.txt").exists()
        assert (dist / "expansion-packs" / "game-dev" / "agents" / "game-designer.txt").exists()
        assert (dist / "expansion-packs" / "game-dev" / "teams" / "game-team.txt").exists()

    def test_pack_shadows_core(self, project):
        builder_for(project).build()

        pack_bundle = (
            project / "dist" / "expansion-packs" / "game-dev" / "agents" / "game-designer.txt"
        ).read_text()
        core_bundle = (project / "dist" / "agents" / "sm.txt").read_text()

        assert "# Create Game Story" in pack_bundle
        assert start_marker("templates/gdd-tmpl") in pack_bundle
        assert "# Create Next Story" in core_bundle
        assert "gdd" not in core_bundle

    def test_pack_team_uses_core_agents(self, project):
        report = builder_for(project).build(team="game-team")

        (target,) = report.targets
        assert target.state is TargetState.WRITTEN
        text = (
            project / "dist" / "expansion-packs" / "game-dev" / "teams" / "game-team.txt"
        ).read_text()
        assert start_marker("agents/sm") in text
        assert start_marker("agents/game-designer") in text

    def test_rebuild_is_byte_identical(self, project):
        first = builder_for(project).build()
        sm_first = (project / "dist" / "agents" / "sm.txt").read_bytes()
        second = builder_for(project).build()
        sm_second = (project / "dist" / "agents" / "sm.txt").read_bytes()

        assert sm_first == sm_second
        assert [t.fingerprint for t in first.targets] == [
            t.fingerprint for t in second.targets
        ]

    def test_failing_target_does_not_block_others(self, project):
        write_files(
            project / "core",
            {
                "agents/broken.md": agent_md(
                    "broken", {"tasks": ["nope-1", "nope-2"], "data": ["nope-3"]}
                ),
                "agents/garbled.md": "```yaml\nagent: [unterminated\n```\n",
            },
        )

        report = builder_for(project).build(include_packs=False)

        by_name = {t.name: t for t in report.targets}
        assert not report.ok
        # The wildcard team now pulls in both broken agents as well.
        assert report.failed == 3
        assert report.succeeded == 2
        assert by_name["team-all"].state is TargetState.FAILED
        assert by_name["broken"].state is TargetState.FAILED
        assert len(by_name["broken"].errors) == 3
        assert "missing dependency tasks/nope-1" in by_name["broken"].errors[0]
        assert by_name["garbled"].state is TargetState.FAILED
        assert "invalid YAML" in by_name["garbled"].errors[0]
        assert by_name["sm"].state is TargetState.WRITTEN
        assert not (project / "dist" / "agents" / "broken.txt").exists()

    def test_pack_priority_collision_fails_only_that_pack(self, project):
        (project / "agentbundle.toml").write_text(
            CONFIG
            + '\n[[overlays]]\nid = "company"\npath = "company"\npriority = 5\n'
        )
        (project / "expansion-packs" / "game-dev" / "config.yaml").write_text(
            "priority: 5\n"
        )

        report = builder_for(project).build()

        by_name = {t.name: t for t in report.targets}
        assert report.failed == 2
        for name in ("qa", "sm", "team-all"):
            assert by_name[name].state is TargetState.WRITTEN
        for name in ("game-designer", "game-team"):
            assert by_name[name].state is TargetState.FAILED
            assert by_name[name].pack == "game-dev"
            assert "duplicate priority 5" in by_name[name].errors[0]
        assert (project / "dist" / "agents" / "sm.txt").exists()

    def test_malformed_pack_config_fails_only_that_pack(self, project):
        (project / "expansion-packs" / "game-dev" / "config.yaml").write_text(
            "priority: [oops\n"
        )

        report = builder_for(project).build()

        by_name = {t.name: t for t in report.targets}
        assert report.succeeded == 3
        assert by_name["game-designer"].state is TargetState.FAILED
        assert "invalid YAML" in by_name["game-designer"].errors[0]
        assert (project / "dist" / "agents" / "sm.txt").exists()

    def test_non_string_title_fails_only_its_agent(self, project):
        write_files(
            project / "core", {"agents/bad.md": "```yaml\nagent:\n  title: 42\n```\n"}
        )

        report = builder_for(project).build(include_packs=False)

        by_name = {t.name: t for t in report.targets}
        assert by_name["bad"].state is TargetState.FAILED
        assert "'title' must be a string" in by_name["bad"].errors[0]
        # The wildcard team reaches the bad agent too.
        assert by_name["team-all"].state is TargetState.FAILED
        assert by_name["sm"].state is TargetState.WRITTEN
        assert by_name["qa"].state is TargetState.WRITTEN

    def test_unreferenced_undecodable_file_is_ignored(self, project):
        (project / "core" / "tasks" / "latin1.md").write_bytes(b"caf\xe9\n")

        report = builder_for(project).build(include_packs=False)

        assert report.ok
        assert report.succeeded == 3

    def test_undecodable_dependency_fails_only_its_targets(self, project):
        (project / "core" / "tasks" / "latin1.md").write_bytes(b"caf\xe9\n")
        write_files(
            project / "core", {"agents/dev.md": agent_md("dev", {"tasks": ["latin1"]})}
        )

        report = builder_for(project).build(include_packs=False, agent="dev")
        (dev,) = report.targets
        assert dev.state is TargetState.FAILED
        assert "cannot decode" in dev.errors[0]

        report = builder_for(project).build(include_packs=False, agent="sm")
        assert report.ok

    def test_undecodable_agent_fails_as_its_own_target(self, project):
        (project / "core" / "agents" / "dev.md").write_bytes(b"\xff\xfe agent\n")

        report = builder_for(project).build(include_packs=False)

        by_name = {t.name: t for t in report.targets}
        assert by_name["dev"].state is TargetState.FAILED
        assert "cannot decode" in by_name["dev"].errors[0]
        assert by_name["sm"].state is TargetState.WRITTEN

    def test_new_agent_changes_wildcard_team(self, project):
        builder_for(project).build(team="team-all", include_packs=False)
        before = (project / "dist" / "teams" / "team-all.txt").read_text()

        write_files(project / "core", {"agents/analyst.md": agent_md("analyst")})
        builder_for(project).build(team="team-all", include_packs=False)
        after = (project / "dist" / "teams" / "team-all.txt").read_text()

        assert start_marker("agents/analyst") not in before
        assert start_marker("agents/analyst") in after


class TestValidate:
    """Test resolution without output."""

    def test_validate_writes_nothing(self, project):
        report = builder_for(project).validate()

        assert report.ok
        assert all(t.state is TargetState.RESOLVED for t in report.targets)
        assert not (project / "dist").exists()

    def test_resource_counts(self, project):
        report = builder_for(project).validate(include_packs=False)

        counts = {t.name: t.resource_count for t in report.targets}
        assert counts == {"qa": 3, "sm": 3, "team-all": 6}


class TestTargetReport:
    """Test the target state machine."""

    def test_forward_transitions(self):
        report = TargetReport(name="sm", kind=EntryKind.AGENT)

        for state in (
            TargetState.RESOLVING,
            TargetState.RESOLVED,
            TargetState.SERIALIZED,
            TargetState.WRITTEN,
        ):
            report.advance(state)

        assert report.state is TargetState.WRITTEN

    def test_no_regression(self):
        report = TargetReport(name="sm", kind=EntryKind.AGENT)
        report.advance(TargetState.RESOLVED)

        with pytest.raises(ValueError):
            report.advance(TargetState.RESOLVING)

    def test_failed_is_terminal(self):
        report = TargetReport(name="sm", kind=EntryKind.AGENT)
        report.advance(TargetState.RESOLVING)
        report.fail(["boom"])

        assert report.failed
        assert report.errors == ["boom"]
        with pytest.raises(ValueError):
            report.advance(TargetState.RESOLVED)
