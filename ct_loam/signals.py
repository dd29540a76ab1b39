"""Per-ring point buffers, scalar signals and kernel scores."""
import numpy as np

from .errors import OrderingViolation, UnrecognizedKernel
from .types import Kernel, Signal

LOAM_KERNEL = np.array([1.0, 1.0, 1.0, 1.0, 1.0, -10.0, 1.0, 1.0, 1.0, 1.0, 1.0])

LOG_KERNEL = np.array([
    0.000232391821040, 0.001842097682135, 0.034270489647107,
    0.166944943945706, 0.009954755288609, -0.417308930684658,
    0.009954755288609, 0.166944943945706, 0.034270489647107,
    0.001842097682135, 0.000232391821040])

FOG_KERNEL = np.array([0.0001, 0.0022, 0.0270, 0.1060, 0.0,
                       -0.1060, -0.0270, -0.0022, -0.0001])

KERNEL_SIGNAL = {
    Kernel.LOAM: Signal.RANGE,
    Kernel.LOG: Signal.INTENSITY,
    Kernel.FOG: Signal.INTENSITY,
    Kernel.RNG_VAR: Signal.RANGE,
    Kernel.INT_VAR: Signal.INTENSITY,
}


class ScanBuffer:
    """Points of the current window, kept per ring in arrival order."""

    def __init__(self, n_ring: int):
        self.n_ring = n_ring
        self.clear()

    def clear(self):
        self._xyz = [[] for _ in range(self.n_ring)]
        self._intensity = [[] for _ in range(self.n_ring)]
        self._ticks = [[] for _ in range(self.n_ring)]

    def append(self, ring: int, xyz, intensity: float, tick: int):
        ticks = self._ticks[ring]
        if ticks and tick < ticks[-1]:
            raise OrderingViolation(
                f"Ring {ring}: tick {tick} follows tick {ticks[-1]}")
        self._xyz[ring].append(xyz)
        self._intensity[ring].append(intensity)
        ticks.append(tick)

    def ring(self, ring: int):
        """Arrays (xyz (N, 3), intensity (N,), ticks (N,)) of one ring."""
        n = len(self._ticks[ring])
        if n == 0:
            return np.zeros((0, 3)), np.zeros(0), np.zeros(0, dtype=np.int64)
        return (np.array(self._xyz[ring], dtype=np.float64).reshape(n, 3),
                np.array(self._intensity[ring], dtype=np.float64),
                np.array(self._ticks[ring], dtype=np.int64))

    def __len__(self):
        return sum(len(t) for t in self._ticks)


def extract_signals(xyz: np.ndarray, intensity: np.ndarray) -> dict:
    """Range and intensity signals, index-aligned to the ring's points."""
    return {
        Signal.RANGE: np.sqrt(np.sum(xyz ** 2, axis=1)),
        Signal.INTENSITY: np.asarray(intensity, dtype=np.float64),
    }


class ScoreComputer:
    """Correlates ring signals with the fixed score kernels.

    ``scores[kernel][i]`` belongs to point ``i + half_width(kernel)``.
    """

    def __init__(self, variance_window: int = 11):
        self.variance_window = int(variance_window)

    def kernel_length(self, kernel: Kernel) -> int:
        if kernel == Kernel.LOAM:
            return len(LOAM_KERNEL)
        if kernel == Kernel.LOG:
            return len(LOG_KERNEL)
        if kernel == Kernel.FOG:
            return len(FOG_KERNEL)
        if kernel in (Kernel.RNG_VAR, Kernel.INT_VAR):
            return self.variance_window
        raise UnrecognizedKernel(f"Unknown kernel '{kernel}'")

    def half_width(self, kernel: Kernel) -> int:
        return self.kernel_length(kernel) // 2

    def score(self, kernel: Kernel, signal: np.ndarray):
        """Score one signal, or None when the signal is not longer than the kernel."""
        length = self.kernel_length(kernel)
        if len(signal) <= length:
            return None
        if kernel == Kernel.LOAM:
            return np.correlate(signal, LOAM_KERNEL, mode='valid')
        if kernel == Kernel.LOG:
            return np.correlate(signal, LOG_KERNEL, mode='valid')
        if kernel == Kernel.FOG:
            return np.correlate(signal, FOG_KERNEL, mode='valid')
        return self.sample_variance(signal, length)

    @staticmethod
    def sample_variance(signal: np.ndarray, length: int) -> np.ndarray:
        """Sliding sample variance, (E[x^2] - E[x]^2) * N / (N - 1)."""
        box = np.full(length, 1.0 / length)
        mean = np.correlate(signal, box, mode='valid')
        mean_sq = np.correlate(signal * signal, box, mode='valid')
        return np.maximum(mean_sq - mean * mean, 0.0) * (length / (length - 1.0))

    def compute(self, signals: dict) -> dict:
        """Scores of every kernel for one ring's signals."""
        return {kernel: self.score(kernel, signals[KERNEL_SIGNAL[kernel]])
                for kernel in Kernel}
