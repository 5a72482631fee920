"""Single owned phase value consulted by every observer."""

from __future__ import annotations

from consentdiff.models import evidence
from consentdiff.utils import errors, logger

log = logger.create_logger("Phase")

_POST_PHASES: dict[evidence.PathMode, evidence.Phase] = {
    "accept": "post_accept",
    "reject": "post_reject",
}


def phase_for_path(path_mode: evidence.PathMode) -> evidence.Phase:
    """Return the post-consent phase for *path_mode*."""
    return _POST_PHASES[path_mode]


class PhaseController:
    """Monotonic ``pre -> post_accept | post_reject`` state holder."""

    def __init__(self) -> None:
        self._current: evidence.Phase = "pre"

    @property
    def current(self) -> evidence.Phase:
        """The phase that newly received events are attributed to."""
        return self._current

    def advance(self, to: evidence.Phase) -> None:
        """Move from ``pre`` to a post phase.

        Raises:
            InvalidPhaseTransition: On any reverse or repeated move.
        """
        if self._current != "pre" or to == "pre":
            raise errors.InvalidPhaseTransition(f"Cannot move from {self._current!r} to {to!r}")
        log.info("Phase switched", {"from": self._current, "to": to})
        self._current = to
