"""Tests for the command template engine."""

import itertools
import shlex

import pytest

from fleet_deployer.models import Target
from fleet_deployer.orchestrator import DeploymentOrchestrator
from fleet_deployer.fleet import StaticInventory, TargetResolver
from fleet_deployer.templates import (
    BUILTIN_TEMPLATES,
    CommandTemplate,
    MissingBinding,
    RenderError,
    check_bindings,
    render,
)

DEPLOY = CommandTemplate(
    name="deploy",
    body="docker pull {{ image_ref }}\nmkdir -p {{deploy_path}}\necho {{ image_ref }}\n",
)


class TestPlaceholders:
    def test_placeholders_are_unique_and_ordered(self):
        assert DEPLOY.placeholders == ("image_ref", "deploy_path")

    def test_template_without_placeholders(self):
        assert CommandTemplate("noop", "true").placeholders == ()


class TestRender:
    def test_substitutes_all_occurrences(self):
        rendered = render(DEPLOY, {"image_ref": "registry/app:1.2", "deploy_path": "/opt/app"})
        assert rendered.script == "docker pull registry/app:1.2\nmkdir -p /opt/app\necho registry/app:1.2\n"
        assert rendered.template_name == "deploy"
        assert rendered.encoded == rendered.script.encode("utf-8")

    def test_missing_binding_is_reported(self):
        with pytest.raises(RenderError) as excinfo:
            render(DEPLOY, {"image_ref": "registry/app:1.2"})
        assert excinfo.value.reason == MissingBinding("deploy_path")
        assert excinfo.value.missing == [MissingBinding("deploy_path")]
        assert excinfo.value.template_name == "deploy"

    def test_all_missing_bindings_listed_in_template_order(self):
        with pytest.raises(RenderError) as excinfo:
            render(DEPLOY, {})
        assert [m.name for m in excinfo.value.missing] == ["image_ref", "deploy_path"]

    def test_extra_bindings_are_ignored(self):
        rendered = render(
            DEPLOY,
            {"image_ref": "app:1", "deploy_path": "/srv", "unused": "x", "also_unused": 3},
        )
        assert "unused" not in rendered.script

    def test_render_succeeds_iff_every_placeholder_bound(self):
        keys = ["image_ref", "deploy_path", "extra"]
        for size in range(len(keys) + 1):
            for subset in itertools.combinations(keys, size):
                bindings = {k: "v" for k in subset}
                complete = {"image_ref", "deploy_path"} <= set(subset)
                if complete:
                    render(DEPLOY, bindings)
                else:
                    with pytest.raises(RenderError):
                        render(DEPLOY, bindings)

    def test_values_are_shell_quoted(self):
        hostile = "app:1; rm -rf / #"
        rendered = render(DEPLOY, {"image_ref": hostile, "deploy_path": "/opt/my app"})
        assert f"docker pull {shlex.quote(hostile)}" in rendered.script
        assert shlex.split(rendered.script.splitlines()[0]) == ["docker", "pull", hostile]
        assert shlex.split(rendered.script.splitlines()[1]) == ["mkdir", "-p", "/opt/my app"]

    def test_none_and_numbers(self):
        template = CommandTemplate("t", "run {{ port }} {{ flag }} {{ empty }}")
        rendered = render(template, {"port": 8080, "flag": True, "empty": None})
        assert rendered.script == "run 8080 true ''"

    def test_rendering_is_pure(self):
        bindings = {"image_ref": "app:1", "deploy_path": "/srv"}
        assert render(DEPLOY, bindings) == render(DEPLOY, bindings)
        assert bindings == {"image_ref": "app:1", "deploy_path": "/srv"}


def test_check_bindings_matches_render():
    check_bindings(DEPLOY, {"image_ref": "a", "deploy_path": "b"})
    with pytest.raises(RenderError):
        check_bindings(DEPLOY, {"deploy_path": "b"})


def test_builtin_templates_are_fully_bound_by_orchestrator():
    orchestrator = DeploymentOrchestrator(TargetResolver(StaticInventory([])), client=None)  # type: ignore[arg-type]
    bindings = orchestrator.build_bindings(Target(id="web-01"), "registry/app:2.0", "run123")
    assert set(BUILTIN_TEMPLATES) == {"dependency_check", "artifact_pull", "deploy_swap", "health_check"}
    for template in BUILTIN_TEMPLATES.values():
        check_bindings(template, bindings)
        script = render(template, bindings).script
        assert "{{" not in script
