# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# BUILD JOURNAL - THE FLIGHT RECORDER
# -----------------------------------------------------------------------------
# Responsibility: Record every step of an image build, pass or fail.
#
# When a log directory is configured, each build gets a folder with:
# - request.json: requested packages, options and resolved load order
# - build_log.json: complete event log
#
# Without a log directory the journal only keeps events in memory, which is
# enough for the forge to report what happened.
# -----------------------------------------------------------------------------

import json
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console

console = Console()


@dataclass
class JournalEntry:
    """A single entry in the build journal."""

    timestamp: str
    event: str
    details: str | None = None


class BuildJournal:
    """
    Evidence pack for one image build.

    Entries are kept in memory; with a log directory, request.json and
    build_log.json are written under log_dir/build_id.
    """

    def __init__(self, log_dir: Path | None = None, build_id: str | None = None) -> None:
        self.build_id = build_id or uuid.uuid4().hex[:12]
        self.folder = Path(log_dir) / self.build_id if log_dir else None
        self.entries: list[JournalEntry] = []

        if self.folder is not None:
            self.folder.mkdir(parents=True, exist_ok=True)
            console.print(f"[cyan][JOURNAL] Build log folder: {self.folder}[/cyan]")

    def log(self, event: str, details: str | None = None) -> None:
        """Record an event."""
        entry = JournalEntry(
            timestamp=datetime.now(timezone.utc).isoformat(), event=event, details=details
        )
        self.entries.append(entry)

    def events(self) -> list[str]:
        return [e.event for e in self.entries]

    def save_request(self, request: dict) -> None:
        """Save request.json."""
        if self.folder is None:
            return
        path = self.folder / "request.json"
        with open(path, "w") as f:
            json.dump(request, f, indent=2, default=str)
        self.log("REQUEST_SAVED", str(path))

    def finalize(self) -> Path | None:
        """Save build_log.json. Returns its path, if written."""
        if self.folder is None:
            return None
        path = self.folder / "build_log.json"
        with open(path, "w") as f:
            json.dump([asdict(e) for e in self.entries], f, indent=2)
        console.print(f"[green][JOURNAL] Build log saved: {path}[/green]")
        return path
