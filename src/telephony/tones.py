from __future__ import annotations

import numpy as np

from telephony.g711 import ulaw_encode


def beep_ulaw(
    *,
    ms: int = 250,
    freq: float = 1000.0,
    sample_rate: int = 8000,
    level: float = 0.3,
    fade_ms: float = 5.0,
) -> bytes:
    """Generate a sine beep as mu-law bytes.

    1 kHz carries well over PSTN. A short linear fade at both ends avoids clicks.
    """

    total = int(sample_rate * ms / 1000)
    if total <= 0:
        return b""

    n = np.arange(total, dtype=np.float64)
    fade = max(1, int(sample_rate * fade_ms / 1000))
    envelope = np.minimum(1.0, np.minimum(n / fade, (total - 1 - n) / fade))

    wave = np.sin(2 * np.pi * freq * n / sample_rate) * level * envelope
    pcm = (np.clip(wave, -1.0, 1.0) * 32767).astype(np.int16)
    return ulaw_encode(pcm)
