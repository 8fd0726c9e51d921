"""Shared fixtures for autograph tests."""

import pytest

from autograph.coordinator import IncrementalCoordinator
from autograph.store import GraphStore


@pytest.fixture
def store():
    """An open in-memory graph store."""
    graph = GraphStore(":memory:").open()
    yield graph
    graph.close()


class Workspace:
    """A throwaway workspace directory."""

    def __init__(self, root):
        self.root = root

    def write(self, relative, text):
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    def remove(self, relative):
        (self.root / relative).unlink()


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    root.mkdir()
    return Workspace(root)


@pytest.fixture
def coordinator(store, workspace):
    """Coordinator over the ``workspace`` fixture, backed by the ``store`` fixture."""
    return IncrementalCoordinator(store, workspace.root)


@pytest.fixture
def nest_project(workspace):
    """A small NestJS-style project with classes, interfaces and imports."""
    workspace.write(
        "src/users/user.entity.ts",
        "/** A registered user. */\n"
        "export class User {\n"
        "  id: number;\n"
        "  profile?: Profile;\n"
        "}\n"
        "\n"
        "export interface Profile {\n"
        "  displayName: string;\n"
        "}\n",
    )
    workspace.write(
        "src/users/users.service.ts",
        "import { User } from './user.entity';\n"
        "\n"
        "export class UsersService {\n"
        "  constructor(private readonly repo: UserRepository) {}\n"
        "\n"
        "  findAll(): Promise<User[]> {\n"
        "    return this.repo.find();\n"
        "  }\n"
        "}\n"
        "\n"
        "export class UserRepository {\n"
        "  find(): User[] {\n"
        "    return [];\n"
        "  }\n"
        "}\n",
    )
    workspace.write(
        "src/app.module.ts",
        "import { UsersService } from './users/users.service';\n"
        "\n"
        "@Module({\n"
        "  providers: [UsersService],\n"
        "})\n"
        "export class AppModule {}\n",
    )
    workspace.write(
        "node_modules/lib/index.ts",
        "export class Vendor {}\n",
    )
    return workspace
