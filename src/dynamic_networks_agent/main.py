"""Entry point for the dynamic networks controller."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path
from threading import Event

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config import ConfigException

from dynamic_networks import PodNetworksController

from .clients import (
    CrictlRuntime,
    KubeEventRecorder,
    KubePodClient,
    MultusClient,
    NetworkAttachmentDefinitionClient,
)
from .config import AgentConfig, load_config
from .watchers import PodInformer

LOG = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("/etc/dynamic-networks-controller/dynamic-networks-config.json")
CACHE_SYNC_TIMEOUT = 60.0


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _load_kube_config(config: AgentConfig) -> None:
    if config.kubernetes.kubeconfig:
        k8s_config.load_kube_config(config_file=str(config.kubernetes.kubeconfig))
        return
    try:
        k8s_config.load_incluster_config()
    except ConfigException:
        LOG.info("not running in a cluster, falling back to the default kubeconfig")
        k8s_config.load_kube_config()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the dynamic networks controller")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to the controller configuration file",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    config = load_config(args.config)
    _load_kube_config(config)

    core_api = k8s_client.CoreV1Api()
    custom_api = k8s_client.CustomObjectsApi()

    stop_event = Event()

    informer = PodInformer(
        core_api,
        stop_event,
        node_name=config.kubernetes.node_name,
        pod_client=KubePodClient(core_api),
    )
    multus = MultusClient(
        config.multus_socket_path, timeout=config.controller.delegate_timeout
    )
    controller = PodNetworksController(
        pods=informer,
        definitions=NetworkAttachmentDefinitionClient(custom_api),
        runtime=CrictlRuntime(config.cri_socket_path, config.cri_type),
        delegate=multus,
        recorder=KubeEventRecorder(core_api, host=config.kubernetes.node_name),
        max_retries=config.controller.max_retries,
        status_update_attempts=config.controller.status_update_attempts,
    )

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, shutting down", signum)
        informer.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    informer.start()
    if not informer.wait_for_sync(CACHE_SYNC_TIMEOUT):
        LOG.warning("pod cache not synced after %.0fs; starting anyway", CACHE_SYNC_TIMEOUT)

    try:
        controller.run(stop_event, workers=config.controller.workers)
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        stop_event.set()
    finally:
        informer.stop()
        informer.join(timeout=5.0)
        multus.close()

    LOG.info("dynamic networks controller stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
