"""Operator entry point for the audit extension.

Runs a single lifecycle operation for one tenant cluster and exits; the
surrounding controller decides when to run it again.

Environment Variables:
    NAMESPACE: The tenant's namespace in the seed (required)
    ACTION: reconcile, delete, restore or migrate (default: reconcile)
    PROVIDER_CONFIG_FILE: JSON/YAML provider configuration (default: empty)
    GENERIC_KUBECONFIG_SECRET: Generic shoot kubeconfig Secret name

Exit codes: 0 success, 1 failure, 3 deletion timeout.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from datetime import UTC
from pathlib import Path

from kubernetes import config as kube_config
from kubernetes.config.config_exception import ConfigException

from .actuator import DEFAULT_GENERIC_KUBECONFIG_SECRET_NAME, Actuator, ClusterContext
from .config import ConfigurationError, ControllerConfig
from .credentials import SecretsManager
from .errors import AuditExtensionError, DeletionTimeoutError, DependencyError, InputError
from .images import ImageVector
from .kube import KubernetesCredentialStore, ManagedResourceInstaller

ACTIONS = ("reconcile", "delete", "restore", "migrate")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 3


def setup_logging() -> None:
    """Configure structured logging with JSON output for production."""
    import json
    from datetime import datetime

    reserved = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
        "message",
        "taskName",
    }

    class JsonFormatter(logging.Formatter):
        """Format logs as JSON for structured logging."""

        def format(self, record: logging.LogRecord) -> str:
            log_data = {
                "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "message": record.getMessage(),
                "logger": record.name,
            }

            # Add extra fields from the record
            for key, value in record.__dict__.items():
                if key not in reserved:
                    log_data[key] = value

            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_data, default=str)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Reduce noise from the Kubernetes client
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def load_kubernetes_config() -> None:
    """Use the in-cluster service account, or the local kubeconfig outside a pod."""
    try:
        kube_config.load_incluster_config()
    except ConfigException:
        kube_config.load_kube_config()


def read_provider_config(path: str | None) -> bytes | None:
    if not path:
        return None
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Failed to read provider config {path}: {e}") from e


async def main() -> int:
    """Run one lifecycle operation.

    Returns:
        Exit code.
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    namespace = os.environ.get("NAMESPACE", "")
    action = os.environ.get("ACTION", "reconcile").lower()

    try:
        if not namespace:
            raise ConfigurationError("NAMESPACE must be set")
        if action not in ACTIONS:
            raise ConfigurationError(f"ACTION must be one of {', '.join(ACTIONS)}: {action}")
        config = ControllerConfig.from_env()
        provider_config = read_provider_config(os.environ.get("PROVIDER_CONFIG_FILE"))
        image_vector = (
            ImageVector.from_file(config.image_vector_path)
            if config.image_vector_path
            else ImageVector()
        )
    except (ConfigurationError, DependencyError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_FAILURE

    cluster = ClusterContext(
        namespace=namespace,
        generic_kubeconfig_secret_name=os.environ.get(
            "GENERIC_KUBECONFIG_SECRET", DEFAULT_GENERIC_KUBECONFIG_SECRET_NAME
        ),
    )

    try:
        load_kubernetes_config()
    except ConfigException as e:
        logger.error("Failed to load Kubernetes configuration", extra={"error": str(e)})
        return EXIT_FAILURE

    actuator = Actuator(
        config,
        SecretsManager(KubernetesCredentialStore(namespace)),
        ManagedResourceInstaller(namespace),
        image_vector,
    )

    logger.info(
        "Starting audit extension operation",
        extra={"action": action, "namespace": namespace},
    )

    # Cancel the operation on SIGTERM/SIGINT
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        if task is not None:
            task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        if action == "delete":
            await actuator.delete(cluster)
        elif action == "restore":
            await actuator.restore(provider_config, cluster)
        elif action == "migrate":
            await actuator.migrate(provider_config, cluster)
        else:
            await actuator.reconcile(provider_config, cluster)
    except asyncio.CancelledError:
        logger.warning("Operation cancelled", extra={"action": action})
        return EXIT_FAILURE
    except DeletionTimeoutError as e:
        logger.error(
            "Timed out waiting for resource sets to be removed",
            extra={"error": str(e), "pending": e.pending},
        )
        return EXIT_TIMEOUT
    except InputError as e:
        logger.error("Invalid provider configuration", extra={"error": str(e)})
        return EXIT_FAILURE
    except AuditExtensionError as e:
        logger.error(
            "Operation failed",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return EXIT_FAILURE
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return EXIT_FAILURE

    logger.info("Operation completed", extra={"action": action, "namespace": namespace})
    return EXIT_OK


def run() -> None:
    """Entry point for the operator."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
