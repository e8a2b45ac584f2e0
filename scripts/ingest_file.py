from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from referral_intake.core.errors import ReferralIntakeError
from referral_intake.core.logging import setup_logging
from referral_intake.dependencies import Container


class _LocalUpload:
    def __init__(self, path: Path, content_type: str) -> None:
        self.filename = path.name
        self.content_type = content_type
        self._path = path

    async def read(self) -> bytes:
        return self._path.read_bytes()


async def main() -> int:
    parser = argparse.ArgumentParser(description="Run one referral document through the ingestion pipeline.")
    parser.add_argument("path", type=Path)
    parser.add_argument("--mime-type", default="", help="declared media type; inferred from the extension when omitted")
    args = parser.parse_args()

    setup_logging()
    container = Container()
    try:
        out = await container.pipeline.ingest(_LocalUpload(args.path, args.mime_type))
    except ReferralIntakeError as exc:
        print(f"ingestion failed: {exc}", file=sys.stderr)
        return 1
    finally:
        await container.close()

    record = dict(out["record"])
    if record["file_path"].startswith("data:"):
        record["file_path"] = record["file_path"][:64] + "..."
    print(json.dumps({**out, "record": record}, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
