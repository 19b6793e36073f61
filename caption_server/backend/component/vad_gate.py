"""Voice activity detection helpers."""

from __future__ import annotations

from dataclasses import dataclass

from caption_server.errors import CaptionError, ErrorCode
from caption_server.utils import audio


@dataclass(frozen=True)
class VADDecision:
    accepted: bool
    mean_amplitude: float
    threshold: float


class VoiceActivityGate:
    """Energy gate over PCM16 segments.

    A segment passes when its mean absolute amplitude (raw int16 units) is
    strictly greater than ``energy_threshold``. The gate keeps no state between
    calls, so the pre-queue check and the pre-provider check always agree on
    the same payload.
    """

    def __init__(self, energy_threshold: float) -> None:
        if energy_threshold < 0:
            raise CaptionError(ErrorCode.VAD_THRESHOLD_NEGATIVE)
        self.energy_threshold = float(energy_threshold)

    def evaluate(self, pcm: bytes) -> VADDecision:
        amplitude = audio.mean_abs_amplitude(pcm)
        return VADDecision(
            accepted=bool(pcm) and amplitude > self.energy_threshold,
            mean_amplitude=amplitude,
            threshold=self.energy_threshold,
        )

    def accepts(self, pcm: bytes) -> bool:
        return self.evaluate(pcm).accepted
