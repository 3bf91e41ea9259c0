"""
JSON writer for ArrayPoll results.
"""

import json
import logging
import os
import sys
from typing import Optional, TextIO

from arraypoll.models.result import CanonicalResult
from arraypoll.writer.base import Writer

# Initialize logger
LOG = logging.getLogger(__name__)


class JsonWriter(Writer):
    """
    Writer that outputs one result document as JSON, to a file or to stdout.
    """

    def __init__(self, output_file: Optional[str] = None, indent: int = 2, stream: Optional[TextIO] = None):
        """
        Initialize the JSON writer.

        Args:
            output_file: File to write; None writes to stream (stdout by default)
            indent: JSON indentation
            stream: Stream used when no output file is given
        """
        self.output_file = output_file
        self.indent = indent
        self.stream = stream
        if output_file:
            output_dir = os.path.dirname(output_file)
            if output_dir:
                os.makedirs(output_dir, exist_ok=True)
            LOG.info(f"JSON Writer initialized with output file: {output_file}")

    def write(self, result: CanonicalResult) -> bool:
        document = json.dumps(result.model_dump(mode='json'), indent=self.indent, ensure_ascii=False)

        if not self.output_file:
            stream = self.stream or sys.stdout
            stream.write(document + "\n")
            stream.flush()
            return True

        tmp_path = f"{self.output_file}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                f.write(document)
                f.write("\n")
            os.replace(tmp_path, self.output_file)
        except OSError as e:
            LOG.error(f"Failed to write result to {self.output_file}: {e}")
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            return False

        LOG.info(f"Wrote {result.vendor} result for {result.host} to {self.output_file} "
                 f"({len(result.components)} components, {len(result.failures)} failed steps)")
        return True
