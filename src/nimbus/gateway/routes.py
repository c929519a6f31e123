"""Route tree construction for REST gateways.

A gateway exposes one resource per distinct path prefix. Endpoints sharing a
prefix share its resource, so ``GET /a/b`` and ``POST /a/c`` need three
resources under the root (``/a``, ``/a/b`` and ``/a/c``), not four.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping

from nimbus.lib.naming import normalize_path

ROOT_PATH = "/"

CreateNode = Callable[[str, str], str]
"""Create a child resource: ``(parent_id, path_part) -> resource_id``."""


def iter_prefixes(path: str) -> Iterator[tuple[str, str]]:
    """Yield ``(prefix, segment)`` for each segment of a path.

    ``/users/:id`` yields ``("/users", "users")`` then
    ``("/users/{id}", "{id}")``.
    """
    prefix = ""
    for segment in normalize_path(path).split("/"):
        if not segment:
            continue
        prefix = f"{prefix}/{segment}"
        yield prefix, segment


class RouteTree:
    """Map from full path to gateway resource id, seeded with the root.

    Nodes already present remotely can be passed in ``existing`` so that a
    re-deploy only creates what is missing.
    """

    def __init__(
        self,
        root_id: str,
        create: CreateNode,
        existing: Mapping[str, str] | None = None,
    ) -> None:
        self._create = create
        self._nodes: dict[str, str] = dict(existing or {})
        self._nodes[ROOT_PATH] = root_id
        self.created: list[str] = []

    @property
    def nodes(self) -> dict[str, str]:
        """Every known path and its resource id, root included."""
        return dict(self._nodes)

    def __contains__(self, path: object) -> bool:
        return path in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def resolve(self, path: str) -> str:
        """Return the resource id for a path, creating missing prefixes.

        Args:
            path: Route path in ``{param}`` or ``:param`` notation

        Returns:
            Resource id of the deepest node
        """
        parent_id = self._nodes[ROOT_PATH]
        for prefix, segment in iter_prefixes(path):
            node_id = self._nodes.get(prefix)
            if node_id is None:
                node_id = self._create(parent_id, segment)
                self._nodes[prefix] = node_id
                self.created.append(prefix)
            parent_id = node_id
        return parent_id
