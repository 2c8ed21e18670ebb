"""Fake resource installer.

Slots are kept in a dict. Removal is immediate by default; a slot can be
made to linger for a number of ``is_removed`` checks, or forever.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field

from audit_extension.objects import Manifest, ObjectSet


@dataclass
class InstalledSet:
    """Snapshot of an installed slot."""

    name: str
    objects: list[Manifest]
    install_count: int = 1


@dataclass
class FakeInstaller:
    """In-memory ResourceInstaller with failure injection."""

    fail_install: bool = False
    fail_install_slots: set[str] = field(default_factory=set)
    fail_remove: bool = False
    fail_is_removed: bool = False
    # Slots that never report removed
    stuck_slots: set[str] = field(default_factory=set)
    # Number of is_removed checks a removed slot still reports present
    removal_delay_checks: int = 0

    sets: dict[str, InstalledSet] = field(default_factory=dict)
    removing: dict[str, int] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def install_set(self, slot: str, objects: ObjectSet) -> None:
        with self._lock:
            self.calls.append(("install", slot))
            if self.fail_install or slot in self.fail_install_slots:
                raise RuntimeError(f"simulated install failure for {slot}")
            previous = self.sets.get(slot)
            self.sets[slot] = InstalledSet(
                name=objects.name,
                objects=copy.deepcopy(objects.objects),
                install_count=previous.install_count + 1 if previous else 1,
            )
            self.removing.pop(slot, None)

    def remove_set(self, slot: str) -> None:
        with self._lock:
            self.calls.append(("remove", slot))
            if self.fail_remove:
                raise RuntimeError(f"simulated remove failure for {slot}")
            if slot in self.sets and slot not in self.removing:
                self.removing[slot] = self.removal_delay_checks

    def is_removed(self, slot: str) -> bool:
        with self._lock:
            self.calls.append(("is_removed", slot))
            if self.fail_is_removed:
                raise RuntimeError(f"simulated lookup failure for {slot}")
            if slot not in self.sets:
                return True
            if slot in self.stuck_slots or slot not in self.removing:
                return False
            if self.removing[slot] > 0:
                self.removing[slot] -= 1
                return False
            del self.sets[slot]
            del self.removing[slot]
            return True

    # Helpers for assertions

    def installed_slots(self) -> list[str]:
        return sorted(self.sets)

    def objects(self, slot: str) -> list[Manifest]:
        return self.sets[slot].objects

    def find(self, slot: str, kind: str, name: str) -> Manifest | None:
        for obj in self.sets[slot].objects:
            if obj["kind"] == kind and obj["metadata"]["name"] == name:
                return obj
        return None

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)
