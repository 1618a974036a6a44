from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class CodeGenerationSnapshot:
    total_attempts: int
    collisions: int
    exhausted: int

    @property
    def collision_rate(self) -> float:
        if not self.total_attempts:
            return 0.0
        return self.collisions / self.total_attempts

    def as_dict(self) -> Dict[str, float | int]:
        return {
            "total_attempts": self.total_attempts,
            "collisions": self.collisions,
            "exhausted": self.exhausted,
            "collision_rate": round(self.collision_rate, 6),
        }


@dataclass
class RedemptionSnapshot:
    codes: CodeGenerationSnapshot
    activations: Dict[str, int]
    validations: Dict[str, int]
    reversals: int
    swept: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "codes": self.codes.as_dict(),
            "activations": dict(self.activations),
            "validations": dict(self.validations),
            "reversals": self.reversals,
            "swept": self.swept,
        }


class RedemptionObservabilityStore:
    """Process-local redemption telemetry; advisory only, never a source of truth."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._code_attempts = 0
        self._code_collisions = 0
        self._code_exhausted = 0
        self._activations: Dict[str, int] = defaultdict(int)
        self._validations: Dict[str, int] = defaultdict(int)
        self._reversals = 0
        self._swept = 0

    def record_code_attempt(self, *, collided: bool) -> None:
        with self._lock:
            self._code_attempts += 1
            if collided:
                self._code_collisions += 1

    def record_code_exhausted(self) -> None:
        with self._lock:
            self._code_exhausted += 1

    def record_activation(self, outcome: str) -> None:
        with self._lock:
            self._activations[outcome] += 1

    def record_validation(self, outcome: str) -> None:
        with self._lock:
            self._validations[outcome] += 1

    def record_reversal(self) -> None:
        with self._lock:
            self._reversals += 1

    def record_swept(self, count: int) -> None:
        with self._lock:
            self._swept += count

    def code_snapshot(self) -> CodeGenerationSnapshot:
        with self._lock:
            return CodeGenerationSnapshot(
                total_attempts=self._code_attempts,
                collisions=self._code_collisions,
                exhausted=self._code_exhausted,
            )

    def snapshot(self) -> RedemptionSnapshot:
        with self._lock:
            codes = CodeGenerationSnapshot(
                total_attempts=self._code_attempts,
                collisions=self._code_collisions,
                exhausted=self._code_exhausted,
            )
            return RedemptionSnapshot(
                codes=codes,
                activations=dict(self._activations),
                validations=dict(self._validations),
                reversals=self._reversals,
                swept=self._swept,
            )

    def reset(self) -> None:
        with self._lock:
            self._code_attempts = 0
            self._code_collisions = 0
            self._code_exhausted = 0
            self._activations.clear()
            self._validations.clear()
            self._reversals = 0
            self._swept = 0


_STORE = RedemptionObservabilityStore()


def get_redemption_store() -> RedemptionObservabilityStore:
    return _STORE


__all__ = [
    "CodeGenerationSnapshot",
    "RedemptionObservabilityStore",
    "RedemptionSnapshot",
    "get_redemption_store",
]
