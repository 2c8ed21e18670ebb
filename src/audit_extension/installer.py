"""Resource installer interface and the bounded removal wait.

An installer owns named slots. Installing a slot replaces whatever the slot
held before with the given object set; removing a slot deletes everything it
held. Removal is asynchronous on the cluster side, so callers poll
``is_removed`` until the slot is gone.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from .errors import AuditExtensionError, DeletionTimeoutError, InstallerError
from .objects import ObjectSet

logger = logging.getLogger(__name__)


class ResourceInstaller(Protocol):
    """Installs and removes object sets under slot names."""

    def install_set(self, slot: str, objects: ObjectSet) -> None: ...

    def remove_set(self, slot: str) -> None: ...

    def is_removed(self, slot: str) -> bool: ...


async def run_installer_call(func: Callable[..., Any], *args: Any) -> Any:
    """Run a blocking installer call in the default executor.

    Raises:
        InstallerError: If the call fails with anything but an
            AuditExtensionError.
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, functools.partial(func, *args))
    except AuditExtensionError:
        raise
    except Exception as e:
        raise InstallerError(f"resource installer failed: {e}") from e


async def wait_until_removed(
    installer: ResourceInstaller,
    slots: Sequence[str],
    *,
    timeout_seconds: float,
    poll_interval_seconds: float,
) -> None:
    """Poll until every slot is removed or the deadline expires.

    Returns as soon as all slots report removed, without sleeping when they
    already are. Cancellation of the calling task interrupts the wait
    immediately.

    Raises:
        DeletionTimeoutError: If slots are still present after
            ``timeout_seconds``. ``pending`` lists them.
        InstallerError: If a removal check fails.
    """
    pending = list(slots)

    async def poll() -> None:
        while True:
            # pending only ever holds slots not yet confirmed removed
            for slot in list(pending):
                if await run_installer_call(installer.is_removed, slot):
                    pending.remove(slot)

            if not pending:
                return

            logger.debug(
                "Waiting for resource sets to be removed",
                extra={"pending": list(pending)},
            )
            await asyncio.sleep(poll_interval_seconds)

    try:
        await asyncio.wait_for(poll(), timeout=timeout_seconds)
    except TimeoutError as e:
        raise DeletionTimeoutError(
            f"resource sets not removed within {timeout_seconds}s: {', '.join(pending)}",
            pending=list(pending),
        ) from e
