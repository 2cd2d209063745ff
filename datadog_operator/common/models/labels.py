from typing import Dict


class ResourceLabels:
    DATADOG_DOMAIN: str = "agent.datadoghq.com/"

    DATADOG_NAME_LABEL = DATADOG_DOMAIN + "name"

    DATADOG_COMPONENT_LABEL = DATADOG_DOMAIN + "component"


class Labels(ResourceLabels):
    KUBERNETES_DOMAIN = "app.kubernetes.io/"

    KUBERNETES_NAME_LABEL = KUBERNETES_DOMAIN + "name"

    KUBERNETES_INSTANCE_LABEL = KUBERNETES_DOMAIN + "instance"

    KUBERNETES_PART_OF_LABEL = KUBERNETES_DOMAIN + "part-of"

    KUBERNETES_MANAGED_BY_LABEL = KUBERNETES_DOMAIN + "managed-by"

    KUBERNETES_VERSION_LABEL = KUBERNETES_DOMAIN + "version"

    APPLICATION_NAME = "datadog-agent-deployment"

    _labels: Dict[str, str]

    def __init__(self, labels: Dict[str, str] = None) -> None:
        self._labels = dict(labels) if labels else dict()

    def update(self, labels: Dict[str, str]) -> "Labels":
        self._labels.update((labels or {}).copy())
        return self

    def as_dict(self) -> Dict[str, str]:
        """Return labels as dictionary."""
        return self._labels.copy()

    def as_str(self):
        """Return labels as comma separated string."""
        return ",".join([f"{k}={v}" for k, v in self._labels.items()])

    def include(self, label: str, value: str) -> "Labels":
        self.update({label: value})
        return self

    def include_datadog_name(self, name: str) -> "Labels":
        return self.include(self.DATADOG_NAME_LABEL, name)

    def include_datadog_component(self, component: str) -> "Labels":
        return self.include(self.DATADOG_COMPONENT_LABEL, component)

    def include_kubernetes_name(self, name: str) -> "Labels":
        return self.include(self.KUBERNETES_NAME_LABEL, name)

    def include_kubernetes_instance(self, instance_name: str) -> "Labels":
        return self.include(
            self.KUBERNETES_INSTANCE_LABEL,
            self.get_or_valid_instance_label_value(instance_name),
        )

    def include_kubernetes_part_of(self, name: str) -> "Labels":
        return self.include(
            self.KUBERNETES_PART_OF_LABEL,
            self.get_or_valid_instance_label_value(name),
        )

    def include_kubernetes_managed_by(self, operator_name: str) -> "Labels":
        return self.include(self.KUBERNETES_MANAGED_BY_LABEL, operator_name)

    def include_kubernetes_version(self, version: str) -> "Labels":
        return self.include(
            self.KUBERNETES_VERSION_LABEL,
            self.get_or_valid_instance_label_value(version),
        )

    def get_or_valid_instance_label_value(self, instance: str):
        """Validates the instance name and if needed modifies it to make it a valid Label value:
        * (([A-Za-z0-9][-A-Za-z0-9_.]*)?[A-Za-z0-9])?
        * 63 characters max
        """
        if not instance:
            return ""
        value = instance[:63]
        while value and value[-1] in (".", "-", "_"):
            value = value[:-1]
        return value

    def contains(self, other: "Labels"):
        """Returns True if all labels in `other` are contained."""
        return all(
            key in self._labels and self._labels[key] == value
            for key, value in other.as_dict().items()
        )

    def selector(self) -> "Labels":
        """Labels used by workload selectors. They never change for a given
        component, unlike user supplied labels."""
        keys = [self.DATADOG_NAME_LABEL, self.DATADOG_COMPONENT_LABEL]
        return Labels({key: self._labels[key] for key in keys if key in self._labels})

    def __str__(self):
        return f"Labels<{self._labels}>"

    @classmethod
    def empty(cls) -> "Labels":
        return Labels({})

    @classmethod
    def generate_default_labels(
        cls,
        owner_name: str,
        component: str,
        resource_name: str,
        version: str,
        managed_by: str,
    ) -> "Labels":
        labels = Labels()
        return (
            labels.include_datadog_name(owner_name)
            .include_datadog_component(component)
            .include_kubernetes_name(cls.APPLICATION_NAME)
            .include_kubernetes_instance(resource_name)
            .include_kubernetes_part_of(owner_name)
            .include_kubernetes_managed_by(managed_by)
            .include_kubernetes_version(version)
        )
