"""
A minimal, energy-based Voice Activity Detection (VAD) module.

Classifies fixed-size frames as voiced/silent by RMS energy. Temporal
smoothing (debounce on onset, hangover on release) is tracked as run
lengths so the segmenter can apply its own policy.
"""
import numpy as np

from audio.pcm import rms


class EnergyVAD:
    """
    Simple energy-based Voice Activity Detector.

    For each observed frame the RMS energy is compared against a fixed
    threshold. The detector keeps the length of the current run of
    consecutive voiced frames and of consecutive silent frames; a single
    noisy frame never counts as sustained speech on its own.
    """
    def __init__(self, threshold: float):
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self._threshold = threshold
        self.voiced_run = 0
        self.silent_run = 0

    def observe(self, f32: np.ndarray) -> bool:
        """
        Classify one frame and update the run counters.

        Args:
            f32:
                1D float32 samples of one analysis frame.

        Returns:
            True if this frame is voiced.
        """
        voiced = rms(f32) >= self._threshold
        if voiced:
            self.voiced_run += 1
            self.silent_run = 0
        else:
            self.silent_run += 1
            self.voiced_run = 0
        return voiced

    def reset(self) -> None:
        """Clear both run counters."""
        self.voiced_run = 0
        self.silent_run = 0
