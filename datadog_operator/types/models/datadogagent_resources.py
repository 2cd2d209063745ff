class DatadogAgentResources:
    """Encapsulates the naming scheme used for the resources which the Datadog Operator
    manages for a DatadogAgent of the given name."""

    @classmethod
    def agent_name(self, name: str):
        """Returns the name shared by the node agent RBAC objects."""
        return f"{name}-agent"

    @classmethod
    def agent_daemonset_name(self, name: str, override: str = None):
        """Returns the name of the node agent DaemonSet (or ExtendedDaemonSet)."""
        return override or name

    @classmethod
    def agent_service_account_name(self, name: str, override: str = None):
        return override or self.agent_name(name)

    @classmethod
    def system_probe_config_name(self, name: str):
        return f"{name}-system-probe-config"

    @classmethod
    def system_probe_seccomp_name(self, name: str):
        return f"{name}-system-probe-seccomp"

    @classmethod
    def custom_config_name(self, name: str):
        """Returns the name of the ConfigMap carrying a user supplied `datadog.yaml`."""
        return f"{name}-datadog-yaml"

    @classmethod
    def cluster_agent_name(self, name: str):
        return f"{name}-cluster-agent"

    @classmethod
    def cluster_agent_deployment_name(self, name: str, override: str = None):
        return override or self.cluster_agent_name(name)

    @classmethod
    def cluster_agent_service_account_name(self, name: str, override: str = None):
        return override or self.cluster_agent_name(name)

    @classmethod
    def cluster_agent_secret_name(self, name: str):
        """Returns the name of the Secret holding the cluster agent auth token."""
        return self.cluster_agent_name(name)

    @classmethod
    def cluster_agent_service_name(self, name: str):
        return self.cluster_agent_name(name)

    @classmethod
    def metrics_server_service_name(self, name: str):
        return f"{self.cluster_agent_name(name)}-metrics-server"

    @classmethod
    def auth_delegator_name(self, name: str):
        return f"{self.cluster_agent_name(name)}-auth-delegator"

    @classmethod
    def cluster_agent_custom_config_name(self, name: str):
        return f"{self.cluster_agent_name(name)}-datadog-yaml"

    @classmethod
    def cluster_checks_runner_name(self, name: str):
        return f"{name}-cluster-checks-runner"

    @classmethod
    def cluster_checks_runner_custom_config_name(self, name: str):
        return f"{self.cluster_checks_runner_name(name)}-datadog-yaml"

    @classmethod
    def cluster_checks_runner_deployment_name(self, name: str, override: str = None):
        return override or self.cluster_checks_runner_name(name)

    @classmethod
    def cluster_checks_runner_service_account_name(
        self, name: str, override: str = None
    ):
        return override or self.cluster_checks_runner_name(name)

    @classmethod
    def cluster_scoped_names(self, name: str):
        """Returns (kind, name) of every cluster-scoped object created for a DatadogAgent.

        Cluster-scoped objects cannot be garbage collected through an owner
        reference to a namespaced owner, so they are removed explicitly on deletion.
        """
        return [
            ("ClusterRoleBinding", self.agent_name(name)),
            ("ClusterRole", self.agent_name(name)),
            ("ClusterRoleBinding", self.cluster_agent_name(name)),
            ("ClusterRoleBinding", self.auth_delegator_name(name)),
            ("ClusterRole", self.cluster_agent_name(name)),
            ("ClusterRoleBinding", self.cluster_checks_runner_name(name)),
        ]
