"""Tests for content hashing and change detection."""

from treemirror.model import Node, Vector3
from treemirror.producer import ChangeDetector, content_hash


def make_node(path, type_="Part", **properties):
    name = path.rsplit(".", 1)[-1]
    parent = path.rsplit(".", 1)[0] if "." in path else None
    return Node(
        id=f"id-{path}",
        name=name,
        type=type_,
        path=path,
        parent_path=parent,
        properties=properties,
    )


class TestContentHash:
    """Tests for the content hash."""

    def test_hash_is_16_hex_chars(self):
        digest = content_hash(make_node("game.A", v=1))
        assert len(digest) == 16
        int(digest, 16)

    def test_property_order_does_not_matter(self):
        a = make_node("game.A")
        a.properties = {"x": 1, "y": {"b": 2, "a": 1}}
        b = make_node("game.A")
        b.properties = {"y": {"a": 1, "b": 2}, "x": 1}

        assert content_hash(a) == content_hash(b)

    def test_administrative_properties_ignored(self):
        plain = make_node("game.A", v=1)
        with_admin = make_node("game.A", v=1, Name="A", ClassName="Part", Parent="game")

        assert content_hash(plain) == content_hash(with_admin)

    def test_content_changes_hash(self):
        base = content_hash(make_node("game.A", v=1))

        assert content_hash(make_node("game.A", v=2)) != base
        assert content_hash(make_node("game.A", type_="Model", v=1)) != base
        assert content_hash(make_node("game.A", v=1, Position=Vector3(0, 1, 0))) != base

    def test_id_and_child_names_not_hashed(self):
        a = make_node("game.A", v=1)
        b = make_node("game.A", v=1)
        b.id = "other"
        b.child_names = ["X"]

        assert content_hash(a) == content_hash(b)


class TestChangeDetector:
    """Tests for ChangeDetector.detect."""

    def test_first_run_reports_everything_added(self):
        detector = ChangeDetector()
        nodes = [make_node("game"), make_node("game.A")]

        delta = detector.detect(nodes)

        assert [n.path for n in delta.added] == ["game", "game.A"]
        assert delta.modified == []
        assert delta.removed == []
        assert detector.known_paths == 2

    def test_idempotent_on_unchanged_snapshot(self):
        detector = ChangeDetector()
        nodes = [make_node("game"), make_node("game.A", v=1)]
        detector.detect(nodes)

        assert detector.detect(nodes).is_empty
        assert detector.detect(nodes).is_empty

    def test_classifies_added_modified_removed(self):
        detector = ChangeDetector()
        detector.detect([make_node("game"), make_node("game.A", v=1), make_node("game.B")])

        delta = detector.detect(
            [make_node("game"), make_node("game.A", v=2), make_node("game.C")]
        )

        assert [n.path for n in delta.added] == ["game.C"]
        assert [n.path for n in delta.modified] == ["game.A"]
        assert delta.removed == ["game.B"]

    def test_rename_is_remove_plus_add(self):
        detector = ChangeDetector()
        detector.detect([make_node("game.Old", v=1)])

        delta = detector.detect([make_node("game.New", v=1)])

        assert [n.path for n in delta.added] == ["game.New"]
        assert delta.removed == ["game.Old"]

    def test_table_replaced_even_when_empty(self):
        detector = ChangeDetector()
        detector.detect([make_node("game.A")])

        assert detector.detect([]).removed == ["game.A"]
        assert detector.known_paths == 0
        assert detector.detect([]).is_empty

    def test_duplicate_path_last_wins(self):
        detector = ChangeDetector()
        delta = detector.detect([make_node("game.A", v=1), make_node("game.A", v=2)])

        assert len(delta.added) == 1
        assert delta.added[0].properties == {"v": 2}

    def test_prime_and_reset(self):
        detector = ChangeDetector()
        nodes = [make_node("game"), make_node("game.A")]

        detector.prime(nodes)
        assert detector.detect(nodes).is_empty

        detector.reset()
        assert detector.known_paths == 0
        assert len(detector.detect(nodes).added) == 2

    def test_starts_from_given_table(self):
        node = make_node("game.A", v=1)
        detector = ChangeDetector({"game.A": content_hash(node)})

        assert detector.detect([node]).is_empty
        assert detector.hashes() == {"game.A": content_hash(node)}
