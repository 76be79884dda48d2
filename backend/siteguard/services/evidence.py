from __future__ import annotations

import logging
from dataclasses import dataclass

from siteguard.core.exceptions import CaptureError
from siteguard.schemas.analysis import Violation
from siteguard.services.frame_capture import DecoderHandle, FrameCaptureEngine
from siteguard.services.session import AnalysisSession

logger = logging.getLogger(__name__)


@dataclass
class BindingOutcome:
    attempted: int = 0
    captured: int = 0
    failed: int = 0
    hard_failures: int = 0
    applied: bool = True


class EvidenceBinder:
    """Attaches a JPEG frame to every violation whose thumbnail is still pending.

    Captures run one at a time against a single decoder. Violations that already
    carry a captured or failed thumbnail are left untouched, so running the
    binder twice does no extra work.
    """

    def __init__(self, engine: FrameCaptureEngine) -> None:
        self.engine = engine

    async def bind(self, violations: list[Violation], handle: DecoderHandle) -> tuple[list[Violation], BindingOutcome]:
        outcome = BindingOutcome()
        pending = [i for i, v in enumerate(violations) if v.is_thumbnail_pending]
        if not pending:
            return list(violations), outcome

        updated = list(violations)
        if not await self.engine.wait_for_metadata(handle):
            logger.warning("Video metadata unavailable; marking %d thumbnail(s) failed", len(pending))
            for i in pending:
                updated[i] = updated[i].with_failed_thumbnail()
            outcome.attempted = outcome.failed = len(pending)
            return updated, outcome

        for i in pending:
            violation = updated[i]
            outcome.attempted += 1
            try:
                image = await self.engine.capture_frame(handle, violation.start_time_seconds)
            except CaptureError as exc:
                logger.warning("Thumbnail capture failed at %.2fs: %s", violation.start_time_seconds, exc)
                outcome.hard_failures += 1
                image = None

            if image:
                updated[i] = violation.with_captured_thumbnail(image)
                outcome.captured += 1
            else:
                updated[i] = violation.with_failed_thumbnail()
                outcome.failed += 1

        logger.info(
            "Thumbnail generation complete: %d captured, %d failed (%d decoder errors)",
            outcome.captured,
            outcome.failed,
            outcome.hard_failures,
        )
        return updated, outcome

    async def bind_session(self, session: AnalysisSession, handle: DecoderHandle) -> BindingOutcome:
        """Bind evidence for whatever the session is displaying right now.

        Results are written back only if the same target is still displayed
        when capture finishes.
        """
        target = session.display
        if target is None:
            return BindingOutcome(applied=False)

        violations, outcome = await self.bind(target.violations, handle)
        if outcome.attempted:
            outcome.applied = session.apply_evidence(target, violations)
        return outcome
