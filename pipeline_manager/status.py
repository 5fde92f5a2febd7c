"""Deployment rollout status from the Kubernetes API."""

import os
from pathlib import Path

from pydantic import BaseModel

from pipeline_manager.exceptions import KubernetesError
from pipeline_manager.logging_config import get_logger

logger = get_logger(__name__)


class DeploymentStatus(BaseModel):
    """Replica counts of a Deployment."""

    name: str
    namespace: str
    desired: int
    ready: int = 0
    updated: int = 0
    available: int = 0

    @property
    def healthy(self) -> bool:
        return self.desired == self.ready == self.updated == self.available

    @property
    def pod_count(self) -> str:
        return f"{self.ready}/{self.desired}"


def load_kube_client(kubeconfig: str | Path | None = None):
    """Load a kubeconfig and return an AppsV1Api client.

    Raises:
        KubernetesError: If the kubeconfig cannot be loaded
    """
    from kubernetes import client, config

    kubeconfig = kubeconfig or os.environ.get("KUBECONFIG", "~/.kube/config")
    path = Path(kubeconfig).expanduser()
    if not path.exists():
        raise KubernetesError(
            f"Kubeconfig not found: {path}",
            "Run the deploy stage with eks_cluster_name set, or point KUBECONFIG at a valid file",
        )
    try:
        config.load_kube_config(config_file=str(path))
    except Exception as e:
        raise KubernetesError(f"Failed to load kubeconfig {path}: {e}")
    return client.AppsV1Api()


def fetch_deployment_statuses(
    apps_api, namespace: str, names: list[str] | None = None
) -> list[DeploymentStatus]:
    """Read Deployment replica counts in a namespace.

    Args:
        apps_api: kubernetes AppsV1Api client
        namespace: Namespace to query
        names: If given, only these deployments are returned

    Raises:
        KubernetesError: If the API call fails
    """
    from kubernetes.client.rest import ApiException
    from urllib3.exceptions import HTTPError

    try:
        response = apps_api.list_namespaced_deployment(namespace)
    except ApiException as e:
        raise KubernetesError(f"Failed to list deployments in {namespace}: {e.reason}")
    except HTTPError as e:
        logger.error(f"Kubernetes API unreachable: {e}")
        raise KubernetesError(
            "Cannot reach the Kubernetes API server",
            f"{e}\nCheck the cluster endpoint in the kubeconfig and your network access",
        )

    statuses = []
    for deployment in response.items:
        if names and deployment.metadata.name not in names:
            continue
        status = deployment.status
        statuses.append(
            DeploymentStatus(
                name=deployment.metadata.name,
                namespace=deployment.metadata.namespace or namespace,
                desired=deployment.spec.replicas if deployment.spec.replicas is not None else 1,
                ready=status.ready_replicas or 0,
                updated=status.updated_replicas or 0,
                available=status.available_replicas or 0,
            )
        )
    logger.debug(f"Fetched {len(statuses)} deployment statuses from {namespace}")
    return sorted(statuses, key=lambda s: s.name)
