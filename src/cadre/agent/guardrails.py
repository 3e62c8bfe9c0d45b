"""Input and output guardrails.

A guardrail is a pair of pure functions. Each looks at a value and answers
with a :class:`GuardrailResult` (or ``None`` to let it through unchanged).
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from cadre.errors import InvalidInput, InvalidOutput, RunWarning, WarningCode

logger = logging.getLogger(__name__)


class GuardrailAction(StrEnum):
    PASS = "pass"
    REWRITE = "rewrite"
    REJECT = "reject"


@dataclass(frozen=True)
class GuardrailResult:
    action: GuardrailAction
    content: Any = None
    reason: str = ""

    @classmethod
    def passed(cls) -> "GuardrailResult":
        return cls(GuardrailAction.PASS)

    @classmethod
    def rewrite(cls, content: Any, reason: str = "") -> "GuardrailResult":
        return cls(GuardrailAction.REWRITE, content=content, reason=reason)

    @classmethod
    def reject(cls, reason: str) -> "GuardrailResult":
        return cls(GuardrailAction.REJECT, reason=reason)


Validator = Callable[[Any], GuardrailResult | None]


@dataclass
class Guardrail:
    """Validators applied to run input and final output.

    Args:
        name: Identifier used in warnings and errors
        check_input: Validator for the run input
        check_output: Validator for the final output
        fatal: Whether a rejection fails the run (otherwise it is a warning)
    """

    name: str
    check_input: Validator | None = None
    check_output: Validator | None = None
    fatal: bool = True


def apply_guardrails(
    guardrails: Sequence[Guardrail],
    value: Any,
    side: Literal["input", "output"],
) -> tuple[Any, list[RunWarning]]:
    """Run every guardrail for one side in order.

    Rewrites feed the next guardrail.

    Returns:
        The possibly rewritten value and the warnings raised

    Raises:
        InvalidInput: A fatal input guardrail rejected the value
        InvalidOutput: A fatal output guardrail rejected the value
    """
    warnings: list[RunWarning] = []
    for guardrail in guardrails:
        check = guardrail.check_input if side == "input" else guardrail.check_output
        if check is None:
            continue

        outcome = check(value)
        if outcome is None or outcome.action == GuardrailAction.PASS:
            continue

        if outcome.action == GuardrailAction.REWRITE:
            logger.info("Guardrail '%s' rewrote the %s", guardrail.name, side)
            value = outcome.content
            warnings.append(
                RunWarning(
                    WarningCode.GUARDRAIL_TRIGGERED,
                    f"Guardrail '{guardrail.name}' rewrote the {side}: {outcome.reason}".rstrip(": "),
                )
            )
            continue

        message = f"Guardrail '{guardrail.name}' rejected the {side}: {outcome.reason}"
        if guardrail.fatal:
            if side == "input":
                raise InvalidInput(message)
            raise InvalidOutput(message)

        logger.warning(message)
        warnings.append(RunWarning(WarningCode.GUARDRAIL_TRIGGERED, message))

    return value, warnings
