"""Credential prompt helper used by sudo when brew needs elevated rights."""

from __future__ import annotations

import logging
import os
import textwrap
from pathlib import Path

logger = logging.getLogger(__name__)

ASKPASS_PATH = Path("/tmp/brewdeck-askpass.sh")

_SCRIPT = textwrap.dedent(
    """
    #!/bin/bash
    osascript \\
      -e 'display dialog "BrewDeck needs administrator privileges to complete this action. Please enter your password:" default answer "" with title "Privileged Action" with hidden answer' \\
      -e 'text returned of result'
    """
).lstrip()


def install_askpass_helper(path: Path = ASKPASS_PATH) -> bool:
    """Write the helper script and mark it executable."""

    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        tmp_path.write_text(_SCRIPT, encoding="utf-8")
        os.chmod(tmp_path, 0o755)
        os.replace(tmp_path, path)
    except OSError as exc:
        logger.error("Failed to set up askpass helper at %s: %s", path, exc)
        return False

    logger.debug("Installed askpass helper at %s", path)
    return True
