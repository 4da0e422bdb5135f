from __future__ import annotations

import hashlib


def normalize_transcript(transcript: str) -> str:
    return transcript.strip()


def content_hash(transcript: str) -> str:
    """SHA-256 hex digest of the trimmed transcript, used as the resubmission key."""
    return hashlib.sha256(normalize_transcript(transcript).encode("utf-8")).hexdigest()
