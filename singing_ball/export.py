import logging
import os
import time
import zipfile
from typing import Optional, Sequence

from .capture import CaptureArtifact

log = logging.getLogger(__name__)


def _stamp() -> int:
    return int(time.time() * 1000)


def save_artifact(artifact: CaptureArtifact, out_dir: str, name: Optional[str] = None) -> str:
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, name or f"simulation-{_stamp()}{artifact.extension}")
    with open(path, "wb") as f:
        f.write(artifact.data)
    log.info("Saved %s (%d bytes)", path, artifact.size)
    return path


def bundle_artifacts(artifacts: Sequence[CaptureArtifact], out_dir: str, name: Optional[str] = None) -> str:
    """Write all artifacts into one zip as simulation-1.ext, simulation-2.ext, ..."""
    os.makedirs(out_dir, exist_ok=True)
    path = os.path.join(out_dir, name or f"simulations-{_stamp()}.zip")
    # Encoded video doesn't compress; store it
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as zf:
        for i, artifact in enumerate(artifacts, 1):
            zf.writestr(f"simulation-{i}{artifact.extension}", artifact.data)
    log.info("Bundled %d recording(s) into %s", len(artifacts), path)
    return path
