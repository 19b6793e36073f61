import threading
from collections import defaultdict
from typing import Dict


class Metrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active_peers = 0
        self._open_sessions = 0
        self._jobs_enqueued = 0
        self._jobs_dropped = 0
        self._jobs_gated = 0
        self._segments_gated = 0
        self._transcripts_ok = 0
        self._transcripts_filtered = 0
        self._latency_count = 0
        self._latency_total = 0.0
        self._latency_max = 0.0
        self._error_counts: Dict[str, int] = defaultdict(int)

    def peer_added(self) -> None:
        with self._lock:
            self._active_peers += 1

    def peer_removed(self) -> None:
        with self._lock:
            if self._active_peers > 0:
                self._active_peers -= 1

    def session_opened(self) -> None:
        with self._lock:
            self._open_sessions += 1

    def session_closed(self) -> None:
        with self._lock:
            if self._open_sessions > 0:
                self._open_sessions -= 1

    def record_enqueued(self) -> None:
        with self._lock:
            self._jobs_enqueued += 1

    def record_dropped(self) -> None:
        with self._lock:
            self._jobs_dropped += 1

    def record_segment_gated(self) -> None:
        with self._lock:
            self._segments_gated += 1

    def record_job_gated(self) -> None:
        with self._lock:
            self._jobs_gated += 1

    def record_filtered(self) -> None:
        with self._lock:
            self._transcripts_filtered += 1

    def record_transcript(self, latency_sec: float) -> None:
        with self._lock:
            self._transcripts_ok += 1
            self._latency_count += 1
            self._latency_total += latency_sec
            self._latency_max = max(self._latency_max, latency_sec)

    def record_error(self, code: str) -> None:
        with self._lock:
            self._error_counts[code] += 1

    def render(self) -> str:
        with self._lock:
            lines = [
                f"active_peers {self._active_peers}",
                f"open_room_sessions {self._open_sessions}",
                f"jobs_enqueued_total {self._jobs_enqueued}",
                f"jobs_dropped_total {self._jobs_dropped}",
                f"segments_gated_total {self._segments_gated}",
                f"jobs_gated_total {self._jobs_gated}",
                f"transcripts_total {self._transcripts_ok}",
                f"transcripts_filtered_total {self._transcripts_filtered}",
                f"transcription_latency_total {self._latency_total:.6f}",
                f"transcription_latency_count {self._latency_count}",
                f"transcription_latency_max {self._latency_max:.6f}",
            ]
            for code, count in self._error_counts.items():
                lines.append(f'error_count{{code="{code}"}} {count}')
            return "\n".join(lines) + "\n"

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            latency_avg = (
                (self._latency_total / self._latency_count)
                if self._latency_count
                else 0.0
            )
            return {
                "active_peers": self._active_peers,
                "open_room_sessions": self._open_sessions,
                "jobs_enqueued": self._jobs_enqueued,
                "jobs_dropped": self._jobs_dropped,
                "segments_gated": self._segments_gated,
                "jobs_gated": self._jobs_gated,
                "transcripts": self._transcripts_ok,
                "transcripts_filtered": self._transcripts_filtered,
                "transcription_latency_avg": latency_avg,
                "transcription_latency_max": self._latency_max,
                "errors": sum(self._error_counts.values()),
            }
