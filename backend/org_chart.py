# org_chart.py — Builds the reporting forest from flat member records
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Set

from models import MemberRole

ROLE_RANK = {
    MemberRole.OWNER.value: 0,
    MemberRole.ADMIN.value: 1,
    MemberRole.MANAGER.value: 2,
    MemberRole.MEMBER.value: 3,
    MemberRole.GUEST.value: 4,
    MemberRole.READONLY.value: 5,
}


@dataclass
class OrgNode:
    id: str
    display_name: str
    role: str
    title: str = ""
    department: str = ""
    manager_id: Optional[str] = None
    in_cycle: bool = False
    children: List["OrgNode"] = field(default_factory=list)

    @classmethod
    def from_member(cls, member: Dict[str, Any], in_cycle: bool = False) -> "OrgNode":
        return cls(
            id=member["id"],
            display_name=member.get("display_name") or "",
            role=member.get("role") or MemberRole.MEMBER.value,
            title=member.get("title") or "",
            department=member.get("department") or "",
            manager_id=member.get("manager_id") or None,
            in_cycle=in_cycle,
        )

    @property
    def sort_key(self):
        return (ROLE_RANK.get(self.role, len(ROLE_RANK)), self.display_name.lower())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role": self.role,
            "title": self.title,
            "department": self.department,
            "manager_id": self.manager_id,
            "in_cycle": self.in_cycle,
            "children": [c.to_dict() for c in self.children],
        }


def _manager_map(members: List[Dict[str, Any]]) -> Dict[str, Optional[str]]:
    return {m["id"]: (m.get("manager_id") or None) for m in members}


def find_manager_cycles(members: List[Dict[str, Any]]) -> Set[str]:
    """Ids of members whose manager chain loops back onto itself"""
    parent = _manager_map(members)
    on_cycle: Set[str] = set()
    done: Set[str] = set()
    for start in parent:
        path: List[str] = []
        position: Dict[str, int] = {}
        node: Optional[str] = start
        while node is not None and node in parent and node not in done and node not in position:
            position[node] = len(path)
            path.append(node)
            node = parent[node]
        if node is not None and node in position:
            on_cycle.update(path[position[node]:])
        done.update(path)
    return on_cycle


def would_create_cycle(members: List[Dict[str, Any]], member_id: str, manager_id: Optional[str]) -> bool:
    """True if giving ``member_id`` the manager ``manager_id`` closes a reporting loop"""
    if not manager_id:
        return False
    if manager_id == member_id:
        return True
    parent = _manager_map(members)
    parent[member_id] = manager_id
    seen: Set[str] = set()
    node: Optional[str] = manager_id
    while node is not None and node not in seen:
        if node == member_id:
            return True
        seen.add(node)
        node = parent.get(node)
    return False


def _sort(nodes: List[OrgNode]) -> None:
    nodes.sort(key=lambda n: n.sort_key)
    for node in nodes:
        _sort(node.children)


def build_org_tree(members: List[Dict[str, Any]]) -> List[OrgNode]:
    """Return the roots of the org chart.

    A member is a root when it has no manager, its manager is not in the list,
    or it sits on a manager cycle. Everyone else hangs under their manager, so
    each member appears exactly once.
    """
    cycles = find_manager_cycles(members)
    nodes: Dict[str, OrgNode] = {}
    for member in members:
        nodes[member["id"]] = OrgNode.from_member(member, in_cycle=member["id"] in cycles)

    roots: List[OrgNode] = []
    for node_id, node in nodes.items():
        manager_id = node.manager_id
        if manager_id and manager_id in nodes and node_id not in cycles:
            nodes[manager_id].children.append(node)
        else:
            roots.append(node)
    _sort(roots)
    return roots


def iter_tree(roots: List[OrgNode]) -> Iterator[OrgNode]:
    for node in roots:
        yield node
        yield from iter_tree(node.children)
