"""Tests de la CLI con providers simulados (--mock) y estado en tmp_path."""

import io
import json
import textwrap

import pytest
from rich.console import Console
from typer.testing import CliRunner

from forja.cli.app import app
from forja.cli.render import render_result
from forja.core.errors import OperationCancelled
from forja.core.project.executor import ApplyResult
from forja.core.runtime.state import StateStore
from forja.core.values import NodeId
from tests.conftest import EXAMPLE_VARS, INFERENCE_STACK


runner = CliRunner()

# Rich ajusta tablas al ancho de la terminal; con ancho amplio no se cortan los ids
ENV = {"COLUMNS": "200"}


def invoke(*args, input=None):
    return runner.invoke(app, [str(a) for a in args], input=input, env=ENV)


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "inference.mock.state.json"


@pytest.fixture
def common(state_file):
    return ["--var-file", EXAMPLE_VARS, "--state", state_file, "--mock"]


@pytest.fixture
def applied(common, state_file):
    result = invoke("apply", INFERENCE_STACK, *common, "-y")
    assert result.exit_code == 0, result.output
    return state_file


class TestValidate:
    def test_valid_stack(self):
        result = invoke("validate", INFERENCE_STACK, "--var-file", EXAMPLE_VARS, "--mock")
        assert result.exit_code == 0, result.output
        assert "Stack válido" in result.output

    def test_missing_required_variables(self):
        result = invoke("validate", INFERENCE_STACK, "--mock")
        assert result.exit_code == 1
        assert "project_id" in result.output

    def test_invalid_var_flag(self):
        result = invoke("validate", INFERENCE_STACK, "--var-file", EXAMPLE_VARS, "--var", "sin-igual")
        assert result.exit_code == 1
        assert "--var inválido" in result.output

    def test_cycle_is_reported(self, tmp_path):
        (tmp_path / "stack.yaml").write_text(textwrap.dedent("""
            version: 1
            resources:
              - type: google_compute_network
                name: a
                attributes:
                  peer: ${google_compute_network.b.id}
              - type: google_compute_network
                name: b
                attributes:
                  peer: ${google_compute_network.a.id}
        """))
        result = invoke("validate", tmp_path, "--mock")
        assert result.exit_code == 1
        assert "Ciclo de dependencias" in result.output


class TestPlanAndApply:
    def test_plan_on_empty_state_only_creates(self, common, state_file):
        result = invoke("plan", INFERENCE_STACK, *common)
        assert result.exit_code == 0, result.output
        assert "0 actualizar, 0 reemplazar, 0 destruir" in result.output
        assert not state_file.exists()

    def test_apply_then_plan_is_clean(self, applied, common):
        store = StateStore(applied)
        assert NodeId.parse("google_container_cluster.main") in store
        assert NodeId.parse("helm_release.ingress_nginx") in store

        result = invoke("plan", INFERENCE_STACK, *common)
        assert result.exit_code == 0, result.output
        assert "Sin cambios" in result.output

    def test_apply_prints_outputs_masking_sensitive(self, common):
        result = invoke("apply", INFERENCE_STACK, *common, "-y")
        assert result.exit_code == 0, result.output
        assert "Apply completado" in result.output
        assert "gs://" in result.output
        assert "(sensitive)" in result.output
        assert "change-me" not in result.output

    def test_declined_confirmation_applies_nothing(self, common, state_file):
        result = invoke("apply", INFERENCE_STACK, *common, input="n\n")
        assert result.exit_code == 1
        assert "no se aplicó nada" in result.output
        assert len(StateStore(state_file)) == 0

    def test_variable_change_plans_update(self, applied, common):
        result = invoke("plan", INFERENCE_STACK, *common, "--var", "api_replicas=3")
        assert result.exit_code == 0, result.output
        assert "kubernetes_deployment.api" in result.output
        assert "1 actualizar" in result.output

    def test_refresh_reports_clean_mock_state(self, applied):
        result = invoke("refresh", INFERENCE_STACK, "--state", applied, "--mock")
        assert result.exit_code == 0, result.output
        assert "No se detectó drift" in result.output

    def test_plan_rejects_unknown_resource_type(self, tmp_path):
        stack = tmp_path / "bogus"
        stack.mkdir()
        (stack / "stack.yaml").write_text(textwrap.dedent("""
            version: 1
            resources:
              - type: google_bogus_thing
                name: x
                attributes:
                  name: x
        """))
        state_file = tmp_path / "bogus.state.json"
        result = invoke("plan", stack, "--state", state_file, "--mock")
        assert result.exit_code == 1
        assert "google_bogus_thing.x" in result.output
        assert "Plan:" not in result.output

        result = invoke("apply", stack, "--state", state_file, "--mock", "-y")
        assert result.exit_code == 1
        assert not state_file.exists()


class TestRenderResult:
    def _render(self, result):
        console = Console(file=io.StringIO(), width=200)
        render_result(console, result)
        return console.file.getvalue()

    def test_cancelled_before_any_node_omits_node_line(self):
        output = self._render(ApplyResult(error=OperationCancelled("ejecución cancelada")))
        assert "Apply detenido" in output
        assert "ejecución cancelada" in output
        assert "Nodo:" not in output

    def test_failed_node_is_shown(self):
        node = NodeId.parse("google_container_cluster.main")
        output = self._render(ApplyResult(failed=node, error=OperationCancelled("ejecución cancelada", node=node)))
        assert "Nodo: google_container_cluster.main" in output


class TestOutputs:
    def test_single_output_value(self, applied, common):
        result = invoke("output", "model_bucket", "--stack", INFERENCE_STACK, *common)
        assert result.exit_code == 0, result.output
        assert result.output.strip().endswith("/")
        assert "gs://" in result.output

    def test_json_masks_sensitive_unless_requested(self, applied, common):
        result = invoke("output", "--stack", INFERENCE_STACK, *common, "--json")
        assert result.exit_code == 0, result.output
        values = json.loads(result.output[result.output.index("{"):])
        assert values["database_url"] == "(sensitive)"
        assert values["app_url"] == "http://inference.example.com"

        shown = invoke("output", "database_url", "--stack", INFERENCE_STACK, *common, "--show-sensitive")
        assert "postgresql://" in shown.output
        assert "change-me" in shown.output

    def test_outputs_unknown_before_apply(self, common):
        result = invoke("output", "ingress_ip", "--stack", INFERENCE_STACK, *common)
        assert result.exit_code == 0, result.output
        assert "conocido tras aplicar" in result.output

    def test_undeclared_output(self, applied, common):
        result = invoke("output", "nope", "--stack", INFERENCE_STACK, *common)
        assert result.exit_code == 1
        assert "Output no declarado" in result.output


class TestState:
    def test_list(self, applied):
        result = invoke("state", "list", INFERENCE_STACK, "--state", applied)
        assert result.exit_code == 0, result.output
        assert "google_compute_network.vpc" in result.output

    def test_list_empty(self, state_file):
        result = invoke("state", "list", INFERENCE_STACK, "--state", state_file)
        assert result.exit_code == 0
        assert "vacío" in result.output

    def test_show_masks_sensitive_attributes(self, applied):
        result = invoke("state", "show", "google_sql_user.app", "--state", applied)
        assert result.exit_code == 0, result.output
        assert "(sensitive)" in result.output
        assert "change-me" not in result.output

        shown = invoke("state", "show", "google_sql_user.app", "--state", applied, "--show-sensitive")
        assert "change-me" in shown.output

    def test_show_unknown_node(self, applied):
        result = invoke("state", "show", "google_compute_network.nope", "--state", applied)
        assert result.exit_code == 1


class TestDestroy:
    def test_data_bearing_resources_need_confirmation(self, applied):
        before = len(StateStore(applied))
        result = invoke("destroy", INFERENCE_STACK, "--state", applied, "--mock", "-y")
        assert result.exit_code == 1
        assert "--allow-destructive" in result.output
        assert len(StateStore(applied)) == before

    def test_destroy_everything(self, applied):
        result = invoke("destroy", INFERENCE_STACK, "--state", applied, "--mock", "-y", "--allow-destructive")
        assert result.exit_code == 0, result.output
        assert len(StateStore(applied)) == 0


class TestGraphAndVersion:
    def test_graph_dot(self):
        result = invoke("graph", INFERENCE_STACK, "--var-file", EXAMPLE_VARS, "--dot")
        assert result.exit_code == 0, result.output
        assert result.output.startswith("digraph forja {")
        assert '"google_container_cluster.main" -> "google_container_node_pool.gpu";' in result.output

    def test_graph_table(self):
        result = invoke("graph", INFERENCE_STACK, "--var-file", EXAMPLE_VARS)
        assert result.exit_code == 0, result.output
        assert "Orden de aplicación" in result.output

    def test_version(self):
        result = invoke("version")
        assert result.exit_code == 0
        assert "forja" in result.output
