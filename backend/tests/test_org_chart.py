# tests/test_org_chart.py — Org tree builder and cycle detection
from org_chart import build_org_tree, find_manager_cycles, would_create_cycle, iter_tree


def member(mid, name, role="member", manager=None):
    return {"id": mid, "display_name": name, "role": role, "manager_id": manager}


def ids(nodes):
    return [n.id for n in nodes]


def test_simple_hierarchy():
    members = [
        member("ceo", "Carla", "owner"),
        member("m1", "Mike", "manager", "ceo"),
        member("e1", "Eve", "member", "m1"),
        member("e2", "Dan", "member", "m1"),
    ]
    roots = build_org_tree(members)
    assert ids(roots) == ["ceo"]
    assert ids(roots[0].children) == ["m1"]
    # siblings sorted by display name within the same role
    assert ids(roots[0].children[0].children) == ["e2", "e1"]


def test_missing_manager_becomes_root():
    roots = build_org_tree([member("a", "Ann", manager="ghost"), member("b", "Bob")])
    assert sorted(ids(roots)) == ["a", "b"]


def test_siblings_sorted_by_role_rank_then_name():
    members = [
        member("g", "Aaron", "guest"),
        member("m", "Zed", "member"),
        member("a", "Yara", "admin"),
        member("o", "Xavi", "owner"),
        member("m2", "Bea", "member"),
    ]
    assert ids(build_org_tree(members)) == ["o", "a", "m2", "m", "g"]


def test_cycle_members_become_roots_and_everyone_appears_once():
    members = [
        member("a", "Ann", manager="b"),
        member("b", "Bob", manager="a"),
        member("c", "Cid", manager="a"),
        member("d", "Dee"),
    ]
    assert find_manager_cycles(members) == {"a", "b"}
    roots = build_org_tree(members)
    assert sorted(ids(roots)) == ["a", "b", "d"]
    assert sorted(n.id for n in iter_tree(roots)) == ["a", "b", "c", "d"]
    ann = next(n for n in roots if n.id == "a")
    assert ann.in_cycle
    assert ids(ann.children) == ["c"]


def test_self_managed_member_is_a_cycle():
    members = [member("a", "Ann", manager="a")]
    assert find_manager_cycles(members) == {"a"}
    assert ids(build_org_tree(members)) == ["a"]


def test_tail_leading_into_cycle_is_not_marked():
    members = [
        member("x", "Xia", manager="y"),
        member("y", "Yan", manager="z"),
        member("z", "Zoe", manager="y"),
    ]
    assert find_manager_cycles(members) == {"y", "z"}


def test_would_create_cycle():
    members = [
        member("ceo", "Carla"),
        member("m1", "Mike", manager="ceo"),
        member("e1", "Eve", manager="m1"),
    ]
    assert would_create_cycle(members, "ceo", "e1") is True
    assert would_create_cycle(members, "e1", "e1") is True
    assert would_create_cycle(members, "e1", "ceo") is False
    assert would_create_cycle(members, "m1", None) is False


def test_would_create_cycle_ignores_unrelated_existing_loop():
    members = [
        member("a", "Ann", manager="b"),
        member("b", "Bob", manager="a"),
        member("c", "Cid"),
    ]
    assert would_create_cycle(members, "c", "a") is False


def test_to_dict_is_recursive():
    tree = build_org_tree([member("ceo", "Carla", "owner"), member("e1", "Eve", manager="ceo")])
    data = tree[0].to_dict()
    assert data["id"] == "ceo"
    assert data["children"][0]["id"] == "e1"
    assert data["children"][0]["children"] == []
