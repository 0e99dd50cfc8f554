"""
Continuum Biometric Capture

Async wrappers that bound camera / platform-ceremony capture with a timeout,
honour user cancellation and always release the capture resource.

Cancellation is not an error: the wrappers return None and leave any prior
enrollment untouched. Timeouts surface as CaptureTimeout, an empty capture
as CaptureFailed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from core.models.biometric import (
    BiometricEnrollment,
    BiometricError,
    BiometricService,
    CaptureFailed,
    CaptureTimeout,
    NotEnrolled,
)
from core.scheduler import FaceDetectionLoop
from core.schemas.inputs import Modality


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_capture(
    capture: Callable[[], Awaitable[T]],
    *,
    timeout: float,
    cancel_event: Optional[asyncio.Event] = None,
    release: Optional[Callable[[], Any]] = None,
) -> Optional[T]:
    """
    Run one capture attempt.

    Args:
        capture: coroutine factory producing the captured sample
        timeout: upper bound in seconds
        cancel_event: set by the caller to abandon the attempt
        release: invoked on every exit path (camera stop, ceremony abort)

    Returns:
        The captured sample, or None if cancelled.

    Raises:
        CaptureTimeout: the bound elapsed first
        CaptureFailed: the capture raised a non-biometric error or
            produced no sample
    """
    capture_task = asyncio.ensure_future(capture())
    waiters = {capture_task}
    cancel_task: Optional[asyncio.Future] = None
    if cancel_event is not None:
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )

        if capture_task in done:
            try:
                sample = capture_task.result()
            except BiometricError:
                raise
            except Exception as e:
                raise CaptureFailed(f"Capture failed: {e}") from e
            if sample is None:
                raise CaptureFailed("No face detected")
            return sample

        if cancel_task is not None and cancel_task in done:
            logger.info("Capture cancelled by user")
            return None

        raise CaptureTimeout(f"Capture timed out after {timeout:.0f}s")

    finally:
        for task in waiters:
            if not task.done():
                task.cancel()
        if release is not None:
            outcome = release()
            if inspect.isawaitable(outcome):
                await outcome


def capture_timeout(service: BiometricService, modality: Modality) -> float:
    if Modality(modality) == Modality.FACE:
        return service.policy.camera_timeout
    return service.policy.ceremony_timeout


def face_capture(
    service: BiometricService,
    detect: Callable[[], Awaitable[Optional[Sequence[float]]]],
) -> Callable[[], Awaitable[Sequence[float]]]:
    """Capture factory that polls `detect` at the policy's detection interval."""
    return FaceDetectionLoop(detect, interval=service.policy.detection_interval).wait_for_face


async def enroll_with_capture(
    service: BiometricService,
    user_id: str,
    modality: Modality,
    capture: Callable[[], Awaitable[Any]],
    *,
    cancel_event: Optional[asyncio.Event] = None,
    release: Optional[Callable[[], Any]] = None,
    display_name: Optional[str] = None,
) -> Optional[BiometricEnrollment]:
    """Capture a sample and enroll it; None if the user cancelled."""
    sample = await run_capture(
        capture,
        timeout=capture_timeout(service, modality),
        cancel_event=cancel_event,
        release=release,
    )
    if sample is None:
        return None
    return service.enroll(user_id, modality, sample, display_name=display_name)


async def verify_with_capture(
    service: BiometricService,
    user_id: str,
    modality: Modality,
    capture: Callable[[], Awaitable[Any]],
    *,
    cancel_event: Optional[asyncio.Event] = None,
    release: Optional[Callable[[], Any]] = None,
) -> Optional[bool]:
    """
    Capture a live sample and verify it; None if the user cancelled.

    NotEnrolled is raised before the capture is started.
    """
    if not service.is_enrolled(user_id, modality):
        raise NotEnrolled(f"No {Modality(modality).value} enrolled for this account")

    sample = await run_capture(
        capture,
        timeout=capture_timeout(service, modality),
        cancel_event=cancel_event,
        release=release,
    )
    if sample is None:
        return None
    return service.verify(user_id, modality, sample)
