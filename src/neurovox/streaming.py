"""
Frame bookkeeping and live spike streams.

A frame ``k`` covers the time window ``[k*dt, k*dt + duration)``. Static
sources derive their frame range from the report time span. Streamed spikes
only make a frame available once the stream proves that no further spike can
land inside its window; ``FrameWindow`` tracks that proof and publishes a
frame range that never shrinks.
"""

from enum import Enum
from typing import List, Optional, Sequence, Tuple
import logging
import math
import threading

import numpy as np
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

# Quotients closer than this to an integer are treated as that integer
SNAP_TOLERANCE = 1e-6


def _snap(x: float) -> float:
    nearest = round(x)
    return float(nearest) if abs(x - nearest) < SNAP_TOLERANCE else x


def frame_index(time: float, dt: float) -> int:
    """Index of the frame whose window starts at or before ``time``."""
    return int(math.floor(_snap(time / dt)))


def static_frame_range(
    start_time: float, end_time: float, dt: float, duration: float
) -> Tuple[int, int]:
    """
    Frames whose whole window lies inside ``[start_time, end_time]``.

    Args:
        start_time: First available time (ms)
        end_time: End of the available data (ms)
        dt: Time between frames (ms)
        duration: Window length of one frame (ms)

    Returns:
        Half-open (start, end) frame indices
    """
    start = max(0, frame_index(start_time, dt))
    x = _snap((end_time - duration) / dt)
    end = int(math.floor(x)) + 1 if x >= 0 else 0
    return start, max(start, end)


class FrameState(Enum):
    """Completeness of one streamed frame."""
    UNKNOWN = "unknown"
    PENDING = "pending"
    COMPLETE = "complete"


class FrameWindow:
    """
    Completeness state machine of a streamed source.

    The stream reader advances in ``dt`` steps and holds back the step it is
    reading until a later timestamp arrives, so its cursor trails the newest
    timestamp by one step. Frame ``k`` is complete once that cursor strictly
    passes the window's upper bound ``k*dt + duration``. Closing the stream
    completes every frame whose window ends at or before the newest timestamp.

    The published range ``[0, end)`` is monotonically non-decreasing. Updates
    and reads may come from different threads.
    """

    def __init__(self, dt: float, duration: float) -> None:
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        if duration <= 0:
            raise ValueError(f"duration must be positive, got {duration}")
        self.dt = dt
        self.duration = duration
        self._cond = threading.Condition()
        self._latest: Optional[float] = None
        self._closed = False
        self._end = 0

    @property
    def frame_range(self) -> Tuple[int, int]:
        with self._cond:
            return 0, self._end

    @property
    def latest_time(self) -> Optional[float]:
        with self._cond:
            return self._latest

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def observe(self, timestamp: float) -> None:
        """Record that the stream delivered data up to ``timestamp``."""
        with self._cond:
            if self._latest is None or timestamp > self._latest:
                self._latest = float(timestamp)
            self._advance()

    def close(self, end_time: Optional[float] = None) -> None:
        """Mark the stream terminated; every observed window becomes final."""
        with self._cond:
            if end_time is not None:
                if self._latest is None or end_time > self._latest:
                    self._latest = float(end_time)
            self._closed = True
            self._advance()

    def state(self, frame: int) -> FrameState:
        with self._cond:
            if 0 <= frame < self._end:
                return FrameState.COMPLETE
            if (frame >= 0 and self._latest is not None
                    and frame * self.dt <= self._latest):
                return FrameState.PENDING
            return FrameState.UNKNOWN

    def is_complete(self, frame: int) -> bool:
        return self.state(frame) == FrameState.COMPLETE

    def wait_for(self, frame: int, timeout: Optional[float] = None) -> bool:
        """
        Block until ``frame`` is complete or the stream closed without it.

        Args:
            frame: Frame index to wait for
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            True if the frame is complete
        """
        with self._cond:
            self._cond.wait_for(
                lambda: frame < self._end or self._closed, timeout=timeout
            )
            return 0 <= frame < self._end

    def _complete_count(self) -> int:
        if self._latest is None:
            return 0
        if self._closed:
            x = _snap((self._latest - self.duration) / self.dt)
            return int(math.floor(x)) + 1 if x >= 0 else 0
        x = _snap((self._latest - self.dt - self.duration) / self.dt)
        return int(math.ceil(x)) if x > 0 else 0

    def _advance(self) -> None:
        end = max(self._end, self._complete_count())
        if end != self._end:
            logger.debug(f"Frame range advanced to [0, {end})")
            self._end = end
            self._cond.notify_all()
        elif self._closed:
            self._cond.notify_all()


class SpikeStream:
    """
    Live spike feed written in time-ordered batches.

    Only the completeness contract is implemented: each batch and the final
    close are forwarded to every subscribed ``FrameWindow``. Transport is the
    writer's business.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._times = np.empty(0)
        self._gids = np.empty(0, dtype=np.int64)
        self._windows: List[FrameWindow] = []
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._times)

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def start_time(self) -> float:
        return 0.0

    @property
    def end_time(self) -> float:
        """Newest delivered timestamp (ms)."""
        with self._lock:
            return float(self._times[-1]) if len(self._times) else 0.0

    def subscribe(self, window: FrameWindow) -> None:
        """Forward arrivals to ``window``, replaying what was already delivered."""
        with self._lock:
            self._windows.append(window)
            if len(self._times):
                window.observe(float(self._times[-1]))
            if self._closed:
                window.close()

    def write_spikes(self, times: Sequence[float], gids: Sequence[int]) -> None:
        """
        Append a batch of spikes.

        Raises:
            RuntimeError: The stream is closed
            ValueError: The batch is not time ordered or goes back in time
        """
        times = np.asarray(times, dtype=float).reshape(-1)
        gids = np.asarray(gids, dtype=np.int64).reshape(-1)
        if len(times) != len(gids):
            raise ValueError("times and gids differ in length")
        if len(times) == 0:
            return
        with self._lock:
            if self._closed:
                raise RuntimeError("cannot write to a closed spike stream")
            if np.any(np.diff(times) < 0):
                raise ValueError("spike batch is not sorted by time")
            if len(self._times) and times[0] < self._times[-1]:
                raise ValueError(
                    f"spike at {times[0]} ms precedes delivered spikes "
                    f"(newest {self._times[-1]} ms)"
                )
            self._times = np.concatenate((self._times, times))
            self._gids = np.concatenate((self._gids, gids))
            newest = float(times[-1])
            for window in self._windows:
                window.observe(newest)

    def close(self) -> None:
        """Terminate the stream; subscribed windows finalize every frame."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for window in self._windows:
                window.close()
        logger.info(f"Spike stream closed after {len(self._times)} spikes")

    def spikes_between(
        self, start: float, end: float
    ) -> Tuple[NDArray[np.float64], NDArray[np.int64]]:
        """Delivered spikes with start <= t < end."""
        with self._lock:
            times, gids = self._times, self._gids
        lo = np.searchsorted(times, start, side="left")
        hi = np.searchsorted(times, end, side="left")
        return times[lo:hi], gids[lo:hi]
