"""
assistant-core test fixtures

Temporary store and workspace fixtures shared across test packages.
Model fakes live in ``tests/fakes.py``.
"""

import os
import tempfile

import pytest

from assistant_core.context.assembler import ContextAssembler
from assistant_core.context.token_budget import TokenBudget
from assistant_core.context.token_counter import TokenCounter
from assistant_core.memory.sqlite_store import SQLiteMemoryStore
from assistant_core.tools.registry import ToolRegistry
from assistant_core.tools.router import ToolRouter
from assistant_core.workspace.registry import WorkspaceRegistry


@pytest.fixture
def counter():
    return TokenCounter(model=None)


@pytest.fixture
def budget(counter):
    return TokenBudget(counter)


@pytest.fixture
async def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        s = SQLiteMemoryStore(db_path=os.path.join(tmpdir, "test.db"))
        await s.initialize()
        yield s
        await s.close()


@pytest.fixture
def sessions_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "sessions")


@pytest.fixture
def workspaces(sessions_root):
    return WorkspaceRegistry(sessions_root)


@pytest.fixture
def tools():
    return ToolRegistry.with_builtin_tools()


@pytest.fixture
def router(workspaces, tools, store):
    return ToolRouter(workspaces=workspaces, tools=tools, store=store)


@pytest.fixture
def assembler(store, budget):
    return ContextAssembler(store=store, token_budget=budget)
