"""Unit tests for the stage graph and the builder registry."""

import pytest
from datadog_operator.controller import STAGES, Stage, validate_graph, build
from datadog_operator.controller.registry import (
    AGENT,
    CLUSTER_AGENT,
    AGENT_CLUSTER_ROLE,
    AGENT_SERVICE_ACCOUNT,
    AGENT_CLUSTER_ROLE_BINDING,
    CLUSTER_AGENT_SECRET,
    CLUSTER_AGENT_METRICS_SERVICE,
    Identity,
)
from datadog_operator.controller.stages import StageGraphError
from datadog_operator.resources import NodeAgent
from datadog_operator.types.schemas import DatadogAgentSpecSchema
from datadog_operator.utils.errors import BuilderError
from conftest import NAME, NAMESPACE, node_agent_spec, datadog_agent_body


def replace_stage(name, **changes):
    return tuple(s._replace(**changes) if s.name == name else s for s in STAGES)


class TestValidateGraph:
    """Tests for `validate_graph`."""

    def test_declared_graph_is_valid(self):
        """Test the shipped stage graph passes validation."""
        validate_graph(STAGES)

    def test_single_final_stage_is_last(self):
        """Test only the node agent workload ends a pass early."""
        finals = [s for s in STAGES if s.final]
        assert [s.name for s in finals] == ["agent-daemonset"]
        assert STAGES[-1] is finals[0]

    def test_duplicate_stage(self):
        """Test a stage declared twice is rejected."""
        with pytest.raises(StageGraphError):
            validate_graph(STAGES + (STAGES[0],))

    def test_requirement_must_run_earlier(self):
        """Test a prerequisite declared after its dependent is rejected."""
        stages = replace_stage("agent-rbac", requires=("agent-daemonset",))
        with pytest.raises(StageGraphError):
            validate_graph(stages)

    def test_identity_of_another_component(self):
        """Test a stage cannot apply another component's identity."""
        stages = replace_stage(
            "cluster-agent-secret",
            identities=(CLUSTER_AGENT_SECRET, AGENT_SERVICE_ACCOUNT),
        )
        with pytest.raises(StageGraphError):
            validate_graph(stages)

    def test_binding_before_its_role(self):
        """Test a binding cannot be applied before the role it references."""
        stages = replace_stage(
            "agent-rbac",
            identities=(AGENT_CLUSTER_ROLE_BINDING, AGENT_CLUSTER_ROLE, AGENT_SERVICE_ACCOUNT),
        )
        with pytest.raises(StageGraphError):
            validate_graph(stages)

    def test_unregistered_identity(self):
        """Test an identity outside the registry is rejected."""
        stages = STAGES + (Stage("extra", AGENT, (Identity("Ingress", "agent"),)),)
        with pytest.raises(StageGraphError):
            validate_graph(stages)

    def test_identity_never_applied(self):
        """Test every registered identity must be applied by some stage."""
        stages = replace_stage(
            "cluster-agent-services", identities=(Identity("Service", "cluster-agent"),)
        )
        with pytest.raises(StageGraphError):
            validate_graph(stages)


class TestBuild:
    """Tests for the identity registry."""

    def components(self, **agent):
        spec_dict = {"agent": node_agent_spec(**agent)}
        spec = DatadogAgentSpecSchema().load(spec_dict)
        return {
            AGENT: NodeAgent.from_spec(
                NAME, NAMESPACE, spec, datadog_agent_body(spec_dict), {}
            )
        }

    def test_builds_manifest(self):
        """Test an identity resolves to its component's builder."""
        role = build(AGENT_CLUSTER_ROLE, self.components())
        assert role.metadata.name == "foo-agent"

    def test_disabled_component(self):
        """Test identities of an absent component build nothing."""
        assert build(CLUSTER_AGENT_METRICS_SERVICE, self.components()) is None

    def test_unknown_identity(self):
        """Test an identity outside the registry raises KeyError."""
        with pytest.raises(KeyError):
            build(Identity("Ingress", "agent"), self.components())

    def test_value_error_becomes_builder_error(self, monkeypatch):
        """Test malformed input surfaces as a BuilderError."""

        def broken(self):
            raise ValueError("bad input")

        monkeypatch.setattr(NodeAgent, "prepare_agent_cluster_role", broken)
        with pytest.raises(BuilderError):
            build(AGENT_CLUSTER_ROLE, self.components())

    def test_components_are_known(self):
        """Test every stage belongs to a known component."""
        assert {s.component for s in STAGES} == {AGENT, CLUSTER_AGENT, "cluster-checks-runner"}
