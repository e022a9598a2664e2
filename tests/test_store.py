from __future__ import annotations

from pathlib import Path

import pytest

from conftest import CI_WORKFLOW, write_workflow
from triggerci.dsl import job, sh, workflow
from triggerci.errors import DefinitionError
from triggerci.store import DefinitionStore, file_stem


def _simple(name: str, on="push"):
    return workflow(name, on=on, build=job("build", sh("Compile", "make")))


def test_load_creates_missing_directory(tmp_path: Path):
    store = DefinitionStore(tmp_path / "nested" / ".workflows")
    assert store.load() == 0
    assert (tmp_path / "nested" / ".workflows").is_dir()


def test_load_reads_yml_and_yaml_and_skips_malformed(workflows_dir: Path):
    write_workflow(workflows_dir, "ci.yml", CI_WORKFLOW)
    write_workflow(workflows_dir, "nightly.yaml", "name: nightly\non: schedule\njobs:\n  a:\n    steps:\n      - run: x\n")
    write_workflow(workflows_dir, "broken.yml", "name: broken\non: push\njobs:\n  a:\n    steps:\n      - {}\n")
    write_workflow(workflows_dir, "notes.txt", "not a workflow")

    store = DefinitionStore(workflows_dir)
    assert store.load() == 2
    assert store.names() == ["ci", "nightly"]
    assert "broken" not in store
    assert list(store.errors()) == [workflows_dir / "broken.yml"]
    assert "exactly one of 'run' or 'uses'" in store.errors()[workflows_dir / "broken.yml"]


def test_reload_replaces_previous_contents(workflows_dir: Path):
    path = write_workflow(workflows_dir, "ci.yml", CI_WORKFLOW)
    store = DefinitionStore(workflows_dir)
    store.load()

    path.unlink()
    write_workflow(workflows_dir, "other.yml", CI_WORKFLOW.replace("name: ci", "name: other"))
    assert store.load() == 1
    assert store.names() == ["other"]
    assert store.errors() == {}


def test_same_name_in_two_files_later_file_wins(workflows_dir: Path):
    write_workflow(workflows_dir, "a.yml", CI_WORKFLOW)
    write_workflow(workflows_dir, "b.yml", CI_WORKFLOW.replace("on: push", "on: pull_request"))

    store = DefinitionStore(workflows_dir)
    assert store.load() == 1
    assert store.get("ci").on == "pull_request"
    assert store.path_for("ci") == workflows_dir / "b.yml"


def test_create_then_load_round_trip(workflows_dir: Path):
    original = workflow(
        "Deploy Site",
        on=["push", "workflow_dispatch"],
        description="Ships the site",
        build=job("Build", sh("Version", "echo 2.0", id="version"), outputs={"v": "${{ steps.version.output }}"}),
        deploy=job("Deploy", sh("Ship", "ship ${{ jobs.build.outputs.v }}"), needs="build", if_="true"),
    )

    store = DefinitionStore(workflows_dir)
    store.create("Deploy Site", original)
    assert (workflows_dir / "Deploy-Site.yml").exists()

    fresh = DefinitionStore(workflows_dir)
    assert fresh.load() == 1
    assert fresh.get("Deploy Site") == original


def test_create_uses_the_given_name(workflows_dir: Path):
    store = DefinitionStore(workflows_dir)
    registered = store.create("renamed", _simple("template"))
    assert registered.name == "renamed"
    assert store.get("renamed") == registered
    assert store.get("template") is None


def test_create_replaces_existing_workflow_and_its_file(workflows_dir: Path):
    write_workflow(workflows_dir, "legacy-name.yml", CI_WORKFLOW)
    store = DefinitionStore(workflows_dir)
    store.load()

    store.create("ci", _simple("ci", on="pull_request"))

    assert not (workflows_dir / "legacy-name.yml").exists()
    assert (workflows_dir / "ci.yml").exists()
    assert store.get("ci").on == "pull_request"
    assert len(store) == 1


def test_names_sharing_a_file_stem_get_separate_files(workflows_dir: Path):
    store = DefinitionStore(workflows_dir)
    store.create("a b", _simple("a b"))
    store.create("a-b", _simple("a-b", on="pull_request"))

    assert store.path_for("a b") == workflows_dir / "a-b.yml"
    assert store.path_for("a-b") == workflows_dir / "a-b-2.yml"

    fresh = DefinitionStore(workflows_dir)
    assert fresh.load() == 2
    assert fresh.names() == ["a b", "a-b"]
    assert fresh.get("a-b").on == "pull_request"


def test_create_never_overwrites_a_file_owned_by_another_workflow(workflows_dir: Path):
    write_workflow(workflows_dir, "deploy.yml", CI_WORKFLOW.replace("name: ci", "name: release"))
    store = DefinitionStore(workflows_dir)
    store.load()

    store.create("deploy", _simple("deploy"))

    assert store.names() == ["deploy", "release"]
    assert store.path_for("release") == workflows_dir / "deploy.yml"
    assert store.path_for("deploy") == workflows_dir / "deploy-2.yml"
    assert "name: release" in (workflows_dir / "deploy.yml").read_text()

    fresh = DefinitionStore(workflows_dir)
    assert fresh.load() == 2
    assert fresh.names() == ["deploy", "release"]


def test_create_leaves_unloadable_files_alone(workflows_dir: Path):
    broken = write_workflow(workflows_dir, "ci.yml", "name: ci\non: push\njobs: {}\n")
    store = DefinitionStore(workflows_dir)
    assert store.load() == 0

    store.create("ci", _simple("ci"))

    assert broken.read_text() == "name: ci\non: push\njobs: {}\n"
    assert store.path_for("ci") == workflows_dir / "ci-2.yml"


def test_delete_keeps_a_file_another_workflow_still_uses(workflows_dir: Path):
    store = DefinitionStore(workflows_dir)
    store.create("a b", _simple("a b"))
    store.create("a-b", _simple("a-b"))

    assert store.delete("a-b") is True
    assert (workflows_dir / "a-b.yml").exists()
    assert not (workflows_dir / "a-b-2.yml").exists()
    assert store.names() == ["a b"]

    assert store.delete("a b") is True
    assert list(workflows_dir.iterdir()) == []


def test_create_rejects_invalid_definition_without_writing(workflows_dir: Path):
    bad = workflow(
        "loop",
        on="push",
        a=job("a", sh("a", "a"), needs="b"),
        b=job("b", sh("b", "b"), needs="a"),
    )
    store = DefinitionStore(workflows_dir)
    with pytest.raises(DefinitionError):
        store.create("loop", bad)
    assert list(workflows_dir.iterdir()) == []
    assert "loop" not in store


def test_delete(workflows_dir: Path):
    store = DefinitionStore(workflows_dir)
    store.create("ci", _simple("ci"))

    assert store.delete("ci") is True
    assert "ci" not in store
    assert not (workflows_dir / "ci.yml").exists()


def test_delete_unknown_returns_false(workflows_dir: Path):
    store = DefinitionStore(workflows_dir)
    assert store.delete("nope") is False


def test_delete_when_file_already_gone(workflows_dir: Path):
    store = DefinitionStore(workflows_dir)
    store.create("ci", _simple("ci"))
    (workflows_dir / "ci.yml").unlink()

    assert store.delete("ci") is True
    assert store.get("ci") is None


@pytest.mark.parametrize(
    "name, stem",
    [("ci", "ci"), ("My CI", "My-CI"), ("a/b", "a-b"), ("...", "workflow")],
)
def test_file_stem(name, stem):
    assert file_stem(name) == stem
