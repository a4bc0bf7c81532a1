"""
Path substitution for configured file paths.

Every path read from the network config goes through `subst` before it is
opened. `${NAME}` is replaced by the environment variable NAME, or by an
empty string when the variable is unset. A leading `~` expands to the home
directory.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

_VARIABLE = re.compile(r"\$\{([^}]+)\}")


def subst(path: str, variables: Mapping[str, str] | None = None) -> str:
    """
    Expand `${VAR}` references in `path`.

    `variables` takes priority over the process environment.
    """
    if not path:
        return path
    lookup = os.environ if variables is None else {**os.environ, **variables}
    expanded = _VARIABLE.sub(lambda m: lookup.get(m.group(1), ""), path)
    return os.path.expanduser(expanded)
