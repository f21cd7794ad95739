"""Match command: score one image against reference photos."""

import json
import logging

import cv2

from liveface.config import VerificationConfig
from liveface.errors import ReferenceDecodeError, ReferenceDownloadError, ReferenceFaceError
from liveface.matcher import MatchEngine, decide_match
from liveface.store import MemoryPhotoStore

logger = logging.getLogger(__name__)


def run_match(args) -> int:
    """Compare the face in ``args.image`` with each of ``args.references``."""
    from liveface.backends.mediapipe import MediaPipeFaceDetector

    image = cv2.imread(args.image)
    if image is None:
        print(f"Error: cannot read image: {args.image}")
        return 2

    config = VerificationConfig.from_env()
    detector = MediaPipeFaceDetector()
    engine = MatchEngine(MemoryPhotoStore(), detector, config=config.match)

    try:
        try:
            probe = engine.image_signature(image)
        except ReferenceFaceError as e:
            print(f"Error: {args.image}: {e}")
            return 2

        scores = {}
        best = 0.0
        download_failures = extraction_failures = 0
        for url in args.references:
            try:
                similarity = engine.compare_reference(url, probe)
            except ReferenceFaceError as e:
                logger.warning("No face in %s: %s", url, e)
                extraction_failures += 1
                scores[url] = None
                continue
            except (ReferenceDownloadError, ReferenceDecodeError) as e:
                logger.warning("%s", e)
                download_failures += 1
                scores[url] = None
                continue
            scores[url] = similarity
            best = max(best, similarity)

        compared = sum(1 for s in scores.values() if s is not None)
        result = decide_match(
            best, compared, len(args.references),
            download_failures, extraction_failures, config.match,
        )
    finally:
        detector.cleanup()

    if args.json:
        print(json.dumps({"result": result.to_dict(), "scores": scores}, indent=2))
    else:
        for url, score in scores.items():
            shown = f"{score:.4f}" if score is not None else "n/a"
            print(f"  {shown}  {url}")
        print(f"\n{result.message} (confidence {result.confidence:.3f})")
    return 0 if result.success else 1
