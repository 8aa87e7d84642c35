#backend/processors/audio_processor.py
import logging
from typing import Optional, Dict, Any

import numpy as np

logger = logging.getLogger(__name__)


class AudioEngine:
    """
    Rút gọn khung phổ (getByteFrequencyData, 0..255 mỗi bin) thành biên độ trung bình
    và tần số trội. Khi engine dừng, các khung đến sau bị bỏ qua.
    """

    def __init__(self, sample_rate: int = 48000, fft_size: int = 2048):
        self.sample_rate = sample_rate
        self.fft_size = fft_size
        self.running = False
        self.last_valid_data = {"amplitude": 0, "dominant_frequency_hz": 0.0}
        logger.info(f"AudioEngine init: {sample_rate}Hz, FFT {fft_size}")

    def start(self):
        self.running = True

    def stop(self):
        self.running = False

    def process(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.running:
            return None

        try:
            bins = payload.get('frequency') or payload.get('bins')

            if bins:
                data = np.clip(np.asarray(bins, dtype=float), 0, 255)
                amplitude = int(round(float(data.mean())))
                sample_rate = float(payload.get('sample_rate') or self.sample_rate)
                # frequencyBinCount = fftSize / 2
                bin_width = sample_rate / (2 * len(data))
                dominant = float(np.argmax(data)) * bin_width if data.max() > 0 else 0.0
            elif payload.get('amplitude') is not None:
                amplitude = int(round(float(payload['amplitude'])))
                dominant = float(payload.get('dominant_frequency_hz') or self.last_valid_data['dominant_frequency_hz'])
            else:
                return self.last_valid_data.copy()

            result = {
                "amplitude": max(0, min(255, amplitude)),
                "dominant_frequency_hz": round(dominant, 1)
            }
            self.last_valid_data = result
            return result.copy()

        except (ValueError, TypeError) as e:
            logger.error(f"Error processing audio frame: {e}")
            return self.last_valid_data.copy()
