"""
Pytest Configuration and Fixtures
"""

import asyncio
import json
import sys
import tempfile
from pathlib import Path
from typing import Generator, List, Optional

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from docgov_core.hosts.memory import InMemoryDocumentHost
from docgov_core.models import DefinitionKind
from docgov_core.resilience import RetryConfig, RetryPolicy


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


def build_host(
    nodes_per_binding: Optional[dict] = None,
    unbound: int = 0,
    page: str = "page-1",
) -> InMemoryDocumentHost:
    """
    Host with definitions A, B, C (styles) and T1, T2 (tokens).

    ``nodes_per_binding`` maps a binding id to a node count; node ids are
    ``<binding>-<n>`` in insertion order.
    """
    host = InMemoryDocumentHost(document_id="doc-1", name="Brand kit")
    host.add_definition("A", path=("Heading", "A"))
    host.add_definition("B", path=("Heading", "B"))
    host.add_definition("C", path=("Body", "C"), source="Core Library")
    host.add_definition("T1", path=("color", "primary"), kind=DefinitionKind.TOKEN)
    host.add_definition("T2", path=("color", "secondary"), kind=DefinitionKind.TOKEN)
    host.add_container(page)

    for binding, count in (nodes_per_binding or {}).items():
        for i in range(count):
            host.add_node(f"{binding}-{i}", binding=binding, parent=page)
    for i in range(unbound):
        host.add_node(f"raw-{i}", binding=None, parent=page)
    return host


async def wait_for(predicate, attempts: int = 200) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeper: SleepRecorder) -> RetryPolicy:
    """Default 3-attempt 1s/2s/4s policy that never really sleeps."""
    return RetryPolicy(RetryConfig(), sleep=sleeper)


@pytest.fixture
def host() -> InMemoryDocumentHost:
    return build_host({"A": 12, "B": 5, "T1": 3, "ghost": 2}, unbound=4)


@pytest.fixture
def sample_document(temp_dir: Path) -> Path:
    """JSON document on disk for host and CLI tests."""
    doc = {
        "id": "doc-json",
        "name": "Sample",
        "editable": True,
        "definitions": [
            {"id": "h1-old", "path": ["Heading", "H1 (old)"], "kind": "style"},
            {"id": "h1", "path": ["Heading", "H1"], "kind": "style"},
            {"id": "brand", "path": ["color", "brand"], "kind": "token"},
        ],
        "containers": [{"id": "page-1", "parent": None}, {"id": "frame-1", "parent": "page-1"}],
        "nodes": (
            [{"id": f"n{i}", "parent": "frame-1", "binding": "h1-old"} for i in range(30)]
            + [{"id": "n-locked", "parent": "frame-1", "binding": "h1-old", "locked": True}]
            + [{"id": "n-brand", "parent": "page-1", "binding": "brand"}]
            + [{"id": "n-raw", "parent": "page-1", "binding": None}]
        ),
    }
    path = temp_dir / "sample.json"
    path.write_text(json.dumps(doc), encoding="utf-8")
    return path
