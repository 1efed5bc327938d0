"""
Archive Rebuilder — Write a fresh, valid ZIP from recovered entries.

The output never depends on the damage in the source: every entry gets a
new local header, a new central-directory record and a correct CRC.
Entry order is exactly the input order.  Timestamps and attributes are
fixed, so the same input always yields byte-identical output.
"""

from __future__ import annotations

import io
import logging
import warnings
import zipfile
from typing import Iterable

from .signatures import CompressionMethod

logger = logging.getLogger(__name__)

# Earliest DOS timestamp
FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FILE_ATTR = 0o100644 << 16
DEFAULT_COMPRESS_LEVEL = 6


def rebuild(entries: Iterable, compress_level: int = DEFAULT_COMPRESS_LEVEL
            ) -> bytes:
    """Compose a ZIP archive from RecoveredEntry values.

    Entries whose original method was Deflate are deflated again; all
    others (Store, Unknown) are stored.  Zero entries give an empty
    archive (a bare end-of-central-directory record).
    """
    buf = io.BytesIO()
    count = 0
    with zipfile.ZipFile(buf, "w") as zf:
        for entry in entries:
            info = zipfile.ZipInfo(entry.path, date_time=FIXED_DATE_TIME)
            info.create_system = 3
            info.external_attr = _FILE_ATTR
            if entry.method is CompressionMethod.DEFLATE:
                info.compress_type = zipfile.ZIP_DEFLATED
            else:
                info.compress_type = zipfile.ZIP_STORED
            with warnings.catch_warnings():
                # Repeated names are kept: no recovered entry is dropped
                warnings.simplefilter("ignore", UserWarning)
                zf.writestr(info, entry.content, compresslevel=compress_level)
            count += 1
    data = buf.getvalue()
    logger.debug("Rebuilt archive: %d entries, %d bytes", count, len(data))
    return data
