"""
Voice Conversation - Ring Buffer
================================

Circular buffers for audio capture.
Used for:
- Holding the current utterance while the VAD listens (bounded, keeps newest)
- Aligning variable-size device chunks into fixed-size frames
"""

import numpy as np
from typing import Iterator, Optional


class RingBuffer:
    """
    Circular buffer for audio data.

    When full, new samples overwrite the oldest ones, so the buffer always
    holds the most recent `capacity` samples.

    Usage:
        buffer = RingBuffer(capacity=16000 * 30)  # 30 seconds at 16kHz
        buffer.push(frame)
        utterance = buffer.get_all()
    """

    def __init__(self, capacity: int, dtype=np.float32):
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.dtype = dtype
        self._buffer = np.zeros(capacity, dtype=dtype)
        self._write_pos = 0
        self._size = 0
        self._overwritten = 0

    def push(self, data: np.ndarray) -> int:
        """
        Add samples to buffer, overwriting the oldest samples when full.

        Args:
            data: Audio samples to add

        Returns:
            Number of samples pushed
        """
        data = np.asarray(data, dtype=self.dtype).flatten()
        n = len(data)

        if n == 0:
            return 0

        # More data than capacity: only the tail survives
        if n > self.capacity:
            self._overwritten += n - self.capacity
            data = data[-self.capacity:]

        to_write = len(data)
        end_pos = (self._write_pos + to_write) % self.capacity

        if end_pos > self._write_pos:
            self._buffer[self._write_pos:end_pos] = data
        else:
            first_part = self.capacity - self._write_pos
            self._buffer[self._write_pos:] = data[:first_part]
            self._buffer[:end_pos] = data[first_part:]

        overflow = max(0, self._size + to_write - self.capacity)
        self._overwritten += overflow
        self._write_pos = end_pos
        self._size = min(self.capacity, self._size + to_write)

        return n

    def get_all(self) -> np.ndarray:
        """Return a copy of the buffered samples, oldest first."""
        if self._size == 0:
            return np.zeros(0, dtype=self.dtype)

        start = (self._write_pos - self._size) % self.capacity
        if start < self._write_pos:
            return self._buffer[start:self._write_pos].copy()
        return np.concatenate([self._buffer[start:], self._buffer[:self._write_pos]])

    def clear(self) -> None:
        """Clear all data from buffer."""
        self._write_pos = 0
        self._size = 0
        self._overwritten = 0

    @property
    def size(self) -> int:
        """Number of samples currently in buffer."""
        return self._size

    @property
    def overwritten(self) -> int:
        """Samples dropped since the last clear because the buffer was full."""
        return self._overwritten

    @property
    def is_empty(self) -> bool:
        return self._size == 0

    @property
    def is_full(self) -> bool:
        return self._size == self.capacity


class FrameAligner:
    """
    Aligns variable-size audio chunks into fixed-size frames.

    Usage:
        aligner = FrameAligner(frame_size=320)

        for chunk in audio_stream:
            aligner.push(chunk)
            for frame in aligner.pop_all():
                process(frame)
    """

    def __init__(self, frame_size: int, dtype=np.float32):
        self.frame_size = frame_size
        self._buffer = np.zeros(0, dtype=dtype)
        self.dtype = dtype

    def push(self, data: np.ndarray) -> None:
        """Add audio data to buffer."""
        data = np.asarray(data, dtype=self.dtype).flatten()
        self._buffer = np.concatenate([self._buffer, data])

    def pop(self) -> Optional[np.ndarray]:
        """
        Pop one frame if available.

        Returns:
            Frame of exactly frame_size samples, or None
        """
        if len(self._buffer) < self.frame_size:
            return None

        frame = self._buffer[:self.frame_size]
        self._buffer = self._buffer[self.frame_size:]
        return frame

    def pop_all(self) -> Iterator[np.ndarray]:
        """Generator that yields all available frames."""
        while True:
            frame = self.pop()
            if frame is None:
                break
            yield frame

    def clear(self) -> None:
        """Clear buffer."""
        self._buffer = np.zeros(0, dtype=self.dtype)

    @property
    def buffered_samples(self) -> int:
        """Number of samples in buffer."""
        return len(self._buffer)
