from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from ..errors import ConfigError

logger = logging.getLogger(__name__)

SETCAP_HELP = "sudo setcap cap_net_bind_service,cap_sys_chroot=ep"


def drop_privileges(path: str, *, log: Optional[logging.Logger] = None) -> None:
    """Brief: Confine the process to ``path`` with chroot(2).

    Inputs:
      - path: target directory.
      - log: optional logger used for the permission hint.

    Outputs:
      - None; the working directory is '/' inside the new root afterwards.

    Raises:
      - ConfigError when chroot is unsupported or fails.
    """
    log = log or logger
    chroot = getattr(os, "chroot", None)
    if chroot is None:
        raise ConfigError(f"chroot is not supported on this platform ({sys.platform})")
    try:
        chroot(path)
    except PermissionError as e:
        log.error(
            "Permission error, perhaps '%s %s' or --chroot '' will help?",
            SETCAP_HELP,
            sys.argv[0],
        )
        raise ConfigError(f"Cannot chroot to {path!r}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot chroot to {path!r}: {e}") from e
    try:
        os.chdir("/")
    except OSError as e:
        raise ConfigError(f"Cannot change to chrooted directory {path!r}: {e}") from e
