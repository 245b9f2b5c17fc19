# File: backend/formula_dependencies.py
#
# Reference extraction, dependency map, cycle detection, evaluation order.
# A dependency map is id -> set of ids it directly references. It is always
# derived from the current formulas, never stored.

from collections import deque

from formula_parser import (
    BinaryExpression,
    CallExpression,
    NumberLiteral,
    Reference,
    UnaryExpression,
)


def _walk(node):
    """Yield every node of the tree (pre-order, iterative)."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        if isinstance(current, UnaryExpression):
            stack.append(current.argument)
        elif isinstance(current, BinaryExpression):
            stack.append(current.right)
            stack.append(current.left)
        elif isinstance(current, CallExpression):
            stack.extend(reversed(current.arguments))
        elif not isinstance(current, (NumberLiteral, Reference)):
            raise TypeError(f"Unknown AST node: {current!r}")


def collect_references(node):
    """Names of every Reference in the tree. Call names are functions, not data."""
    return {n.name for n in _walk(node) if isinstance(n, Reference)}


def collect_calls(node):
    """(callee, argument count) for every call in the tree."""
    return [(n.callee, len(n.arguments)) for n in _walk(node) if isinstance(n, CallExpression)]


def build_dependency_map(formulas, leaf_ids=()):
    """
    formulas : {id: AST}
    leaf_ids : ids with no formula (plain metrics); recorded with no dependencies
    """
    dependency_map = {}
    for leaf in leaf_ids:
        if leaf not in formulas:
            dependency_map[leaf] = set()
    for node_id, ast in formulas.items():
        dependency_map[node_id] = collect_references(ast)
    return dependency_map


_EXHAUSTED = object()


def detect_circular_dependencies(dependency_map):
    """
    Every id that sits on a reference cycle, self-references included.

    Depth-first search keeping a stack of ids still being explored (Tarjan's
    strongly connected components, iterative). An edge back onto that stack
    closes a cycle; the low-link bookkeeping makes sure ids that only reach
    the cycle through an already-finished branch are reported too, so the
    caller gets a complete list rather than the first offender.
    Ids come back in the order the search first met them.
    """
    index_of = {}
    low = {}
    stack = []
    on_stack = set()
    in_cycle = set()

    def deps(node_id):
        return sorted(dependency_map.get(node_id, ()))

    def discover(node_id):
        index_of[node_id] = low[node_id] = len(index_of)
        stack.append(node_id)
        on_stack.add(node_id)

    for root in dependency_map:
        if root in index_of:
            continue
        discover(root)
        work = [(root, iter(deps(root)))]

        while work:
            node_id, pending = work[-1]
            dependency = next(pending, _EXHAUSTED)

            if dependency is not _EXHAUSTED:
                if dependency not in index_of:
                    discover(dependency)
                    work.append((dependency, iter(deps(dependency))))
                elif dependency in on_stack:
                    low[node_id] = min(low[node_id], index_of[dependency])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node_id])

            if low[node_id] == index_of[node_id]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node_id:
                        break
                if len(component) > 1 or node_id in dependency_map.get(node_id, ()):
                    in_cycle.update(component)

    return sorted(in_cycle, key=index_of.get)


def topological_sort(dependency_map):
    """
    Kahn's algorithm: every id comes after everything it depends on.
    A FIFO queue and sorted dependency iteration keep the order identical
    across calls (and across interpreter hash seeds). Ids caught in a cycle
    never reach in-degree zero and are left out.
    """
    in_degree = {}
    dependents = {}

    for node_id, dependencies in dependency_map.items():
        in_degree.setdefault(node_id, 0)
        for dependency in sorted(dependencies):
            in_degree[node_id] += 1
            dependents.setdefault(dependency, []).append(node_id)
            in_degree.setdefault(dependency, 0)

    queue = deque(node_id for node_id, degree in in_degree.items() if degree == 0)
    order = []
    while queue:
        node_id = queue.popleft()
        order.append(node_id)
        for dependent in dependents.get(node_id, ()):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    return order
