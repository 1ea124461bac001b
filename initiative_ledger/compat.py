"""Python 3.10/3.11+ compatibility shims."""

import enum
import sys

# Python 3.11+ has enum.StrEnum; on 3.10, provide a backport
if sys.version_info >= (3, 11):
    from enum import StrEnum
else:

    class StrEnum(str, enum.Enum):
        """Backport of StrEnum for Python 3.10."""

        def __str__(self) -> str:
            return str(self.value)
