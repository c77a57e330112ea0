"""Tests del loader: documentos YAML, variables y su precedencia."""

import textwrap

import pytest

from forja.core.errors import ConfigError, ValidationError
from forja.core.project.loader import StackLoader
from forja.core.values import NodeId, Reference


def write(path, text):
    path.write_text(textwrap.dedent(text))
    return path


@pytest.fixture
def stack_dir(tmp_path):
    write(tmp_path / "a_variables.yaml", """
        version: 1
        variables:
          region:
            type: string
            default: us-central1
          replicas:
            type: number
            default: 1
          preemptible:
            type: bool
            default: false
          token:
            type: string
            sensitive: true
    """)
    write(tmp_path / "b_resources.yaml", """
        version: 1
        resources:
          - type: test_net
            name: vpc
            attributes:
              region: ${var.region}
          - type: test_cluster
            name: main
            depends_on: [test_net.vpc]
            lifecycle:
              create_before_destroy: true
            attributes:
              network: ${test_net.vpc.id}
              replicas: ${var.replicas}
              preemptible: ${var.preemptible}
        outputs:
          network_id:
            value: ${test_net.vpc.id}
    """)
    return tmp_path


class TestStackLoader:
    def test_loads_nodes_in_declaration_order(self, stack_dir):
        stack = StackLoader(stack_dir).load(var_values={"token": "t"}, environ={})
        assert stack.ids == [NodeId("test_net", "vpc"), NodeId("test_cluster", "main")]
        cluster = stack.node(NodeId("test_cluster", "main"))
        assert cluster.provider == "test"
        assert cluster.index == 1
        assert cluster.lifecycle.create_before_destroy is True
        assert cluster.attributes["network"] == Reference(NodeId("test_net", "vpc"), ("id",))
        assert cluster.dependencies == {NodeId("test_net", "vpc")}
        assert stack.sensitive_variables == {"token"}
        assert "network_id" in stack.outputs

    def test_node_attributes_are_read_only(self, stack_dir):
        stack = StackLoader(stack_dir).load(var_values={"token": "t"}, environ={})
        with pytest.raises(TypeError):
            stack.nodes[0].attributes["region"] = "other"

    def test_variable_precedence(self, stack_dir):
        (stack_dir / "forja.vars.yaml").write_text("region: from-file\nreplicas: 2\ntoken: f\n")
        environ = {"FORJA_VAR_region": "from-env", "FORJA_VAR_replicas": "3"}
        stack = StackLoader(stack_dir).load(var_values={"replicas": "4"}, environ=environ)
        assert stack.variables["region"] == "from-env"
        assert stack.variables["replicas"] == 4
        assert stack.variables["token"] == "f"

    def test_values_are_coerced_to_declared_type(self, stack_dir):
        stack = StackLoader(stack_dir).load(var_values={"token": "t", "preemptible": "true"}, environ={})
        cluster = stack.node(NodeId("test_cluster", "main"))
        assert cluster.attributes["preemptible"] is True
        assert cluster.attributes["replicas"] == 1

    def test_missing_required_variable(self, stack_dir):
        with pytest.raises(ConfigError, match="token"):
            StackLoader(stack_dir).load(environ={})

    def test_null_and_empty_defaults_are_optional(self, stack_dir):
        write(stack_dir / "c_optional.yaml", """
            version: 1
            variables:
              suffix:
                type: string
                default: ""
              labels:
                type: map
                default: null
        """)
        stack = StackLoader(stack_dir).load(var_values={"token": "t"}, environ={})
        assert stack.variables["suffix"] == ""
        assert stack.variables["labels"] is None

    def test_unknown_explicit_variable(self, stack_dir):
        with pytest.raises(ConfigError, match="no declarada"):
            StackLoader(stack_dir).load(var_values={"token": "t", "nope": "x"}, environ={})

    def test_invalid_number(self, stack_dir):
        with pytest.raises(ConfigError, match="numérica"):
            StackLoader(stack_dir).load(var_values={"token": "t", "replicas": "many"}, environ={})

    def test_explicit_var_file_must_exist(self, stack_dir):
        with pytest.raises(ConfigError, match="no encontrado"):
            StackLoader(stack_dir).load(var_file=stack_dir / "missing.yaml", environ={})

    def test_var_files_are_not_documents(self, stack_dir):
        (stack_dir / "prod.vars.yaml").write_text("token: p\n")
        stack = StackLoader(stack_dir).load(var_file=stack_dir / "prod.vars.yaml", environ={})
        assert stack.variables["token"] == "p"

    def test_duplicate_resource(self, stack_dir):
        write(stack_dir / "c_dup.yaml", """
            version: 1
            resources:
              - type: test_net
                name: vpc
        """)
        with pytest.raises(ConfigError, match="duplicado"):
            StackLoader(stack_dir).load(var_values={"token": "t"}, environ={})

    def test_unknown_field_is_validation_error(self, stack_dir):
        write(stack_dir / "c_bad.yaml", """
            version: 1
            resources:
              - type: test_net
                name: other
                atributes: {}
        """)
        with pytest.raises(ValidationError):
            StackLoader(stack_dir).load(var_values={"token": "t"}, environ={})

    def test_unsupported_document_version(self, stack_dir):
        write(stack_dir / "c_v2.yaml", "version: 2\n")
        with pytest.raises(ValidationError):
            StackLoader(stack_dir).load(var_values={"token": "t"}, environ={})

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigError, match="no encontrado"):
            StackLoader(tmp_path / "nope").load(environ={})
