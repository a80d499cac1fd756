#!/usr/bin/env python3
"""Generate JSON schemas for agentbundler report models."""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from agentbundler.models import export_json_schemas  # noqa: E402

if __name__ == "__main__":
    output = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("docs/schemas")
    export_json_schemas(output)
