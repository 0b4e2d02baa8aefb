"""
Video verdicts by cross-frame identity consensus.

Each sampled frame is analysed independently into a FrameObservation; the
observations are then folded into per-identity tallies. An identity is only
trusted when it recurs in at least VIDEO_CONSENSUS_THRESHOLD frames, which
discards single-frame misidentifications.
"""

import structlog
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from app.config import MAX_MATCHES, VIDEO_CONSENSUS_THRESHOLD
from app.core.reference_store import ReferenceStore
from app.models.similarity import Match, Verdict
from app.services.embedding import SignatureExtractor
from app.services.identity import extract_identity_name
from app.services.matcher import find_by_identity_name
from app.services.video_processing import DEFAULT_FFMPEG_TIMEOUT, extract_key_frames

logger = structlog.get_logger()


@dataclass(frozen=True)
class FrameObservation:
    identity: Optional[str] = None
    matches: List[Match] = field(default_factory=list)


@dataclass
class IdentityTally:
    name: str
    occurrences: int = 0
    matches: List[Match] = field(default_factory=list)


def identity_key(name: str) -> str:
    return " ".join(name.lower().split())


def observe_frame(frame: bytes, extractor: SignatureExtractor, store: ReferenceStore) -> FrameObservation:
    """Identity and name matches for one frame. No shared state is touched."""
    _, description = extractor.extract_with_description(frame)
    identity = extract_identity_name(description)
    if not identity:
        return FrameObservation()
    return FrameObservation(identity=identity, matches=find_by_identity_name(store, identity))


def tally_observations(observations: Iterable[FrameObservation]) -> Dict[str, IdentityTally]:
    """Count identity occurrences, keeping the first non-empty match set per identity."""
    tallies: Dict[str, IdentityTally] = {}
    for observation in observations:
        if not observation.identity:
            continue
        key = identity_key(observation.identity)
        tally = tallies.setdefault(key, IdentityTally(name=observation.identity))
        tally.occurrences += 1
        if not tally.matches and observation.matches:
            tally.matches = list(observation.matches)
    return tallies


def decide_video(observations: Iterable[FrameObservation],
                 consensus_threshold: int = VIDEO_CONSENSUS_THRESHOLD) -> Verdict:
    tallies = tally_observations(observations)
    confirmed = [tally for tally in tallies.values() if tally.occurrences >= consensus_threshold]

    for tally in tallies.values():
        if tally.occurrences < consensus_threshold:
            logger.info("Discarding unconfirmed identity", identity=tally.name, occurrences=tally.occurrences)

    matches: List[Match] = []
    seen = set()
    for tally in confirmed:
        for match in tally.matches:
            if match.reference_id not in seen:
                seen.add(match.reference_id)
                matches.append(match)

    if not matches:
        return Verdict.safe()
    return Verdict.flagged(matches[:MAX_MATCHES])


def analyze_video(video: bytes, extractor: SignatureExtractor, store: ReferenceStore,
                  frame_workers: int = 1, ffmpeg_timeout: float = DEFAULT_FFMPEG_TIMEOUT) -> Verdict:
    """
    Sample key frames and flag the video only on a recurring identity.

    There is no embedding-similarity fallback for video: anonymous subjects
    are never flagged.
    """
    frames = extract_key_frames(video, timeout=ffmpeg_timeout)

    if frame_workers > 1:
        with ThreadPoolExecutor(max_workers=frame_workers) as executor:
            # map preserves frame order, so "first match set" stays deterministic
            observations = list(executor.map(lambda frame: observe_frame(frame, extractor, store), frames))
    else:
        observations = [observe_frame(frame, extractor, store) for frame in frames]

    verdict = decide_video(observations)
    logger.info("Video analysis completed",
               frames_analyzed=len(observations),
               identities_seen=sorted({identity_key(o.identity) for o in observations if o.identity}),
               status=verdict.status.value,
               matches_found=len(verdict.matches))
    return verdict
