"""
Kubernetes client configuration for the GMSA webhook.
"""

import logging

from kubernetes import client, config

logger = logging.getLogger(__name__)


def get_kubernetes_client() -> client.ApiClient:
    """
    Get configured Kubernetes API client.

    Uses the in-cluster configuration when running in a pod, and falls back
    to the local kubeconfig for development.

    Raises:
        kubernetes.config.ConfigException: If neither configuration is available
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise

    return client.ApiClient()
