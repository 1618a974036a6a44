"""Six-digit redemption codes shown to staff and typed into POS terminals."""

from __future__ import annotations

import re
import secrets
from typing import Awaitable, Callable

from loguru import logger

from zvest_api.core.exceptions import CollisionExhausted
from zvest_api.observability.redemptions import RedemptionObservabilityStore, get_redemption_store

CODE_LENGTH = 6
CODE_SPACE = 10**CODE_LENGTH
DEFAULT_MAX_ATTEMPTS = 10

_CODE_PATTERN = re.compile(r"^\d{6}$")
_NON_DIGITS = re.compile(r"[^0-9]")

ActiveCodeCheck = Callable[[str], Awaitable[bool]]


def normalize_code(code: str) -> str:
    """Strip display separators: ``"394-750"`` -> ``"394750"``."""

    return _NON_DIGITS.sub("", code or "")


def is_valid_code_format(code: str) -> bool:
    return bool(_CODE_PATTERN.match(code or ""))


def format_code_for_display(code: str) -> str:
    if not is_valid_code_format(code):
        return code
    return f"{code[:3]}-{code[3:]}"


class CodeGenerator:
    """Draws zero-padded codes and filters them against currently active redemptions."""

    def __init__(
        self,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        store: RedemptionObservabilityStore | None = None,
        randbelow: Callable[[int], int] | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.max_attempts = max_attempts
        self._store = store or get_redemption_store()
        self._randbelow = randbelow or secrets.randbelow

    def generate(self) -> str:
        return str(self._randbelow(CODE_SPACE)).zfill(CODE_LENGTH)

    async def generate_unique(self, is_active: ActiveCodeCheck) -> str:
        """Return the first draw with no active collision, or raise ``CollisionExhausted``."""

        for attempt in range(1, self.max_attempts + 1):
            code = self.generate()
            collided = await is_active(code)
            self._store.record_code_attempt(collided=collided)
            if not collided:
                logger.debug("Generated redemption code", attempt=attempt)
                return code
            logger.info("Redemption code collided with an active redemption", attempt=attempt)

        self._store.record_code_exhausted()
        logger.error("Redemption code generation exhausted", max_attempts=self.max_attempts)
        raise CollisionExhausted(
            f"Failed to generate a unique redemption code after {self.max_attempts} attempts",
            details={"max_attempts": self.max_attempts},
        )


__all__ = [
    "ActiveCodeCheck",
    "CODE_LENGTH",
    "CodeGenerator",
    "format_code_for_display",
    "is_valid_code_format",
    "normalize_code",
]
