import unittest

from resolve_relationships import (
    Cardinality,
    Side,
    entity_fields,
    iter_entity_fields,
    join_name,
    joinable_relationships,
    resolve_field,
)
from schema_model import (
    ClassificationError,
    Column,
    ConfigurationError,
    Relationship,
    RelationshipType,
    Schema,
    Table,
    relate,
    type_from_sql,
)


def table(schema: Schema, name: str, *columns: str) -> Table:
    t = schema.add_table(Table(name=name))
    t.columns = [Column(c, type_from_sql("BIGINT"), primary_key=(c == "id")) for c in columns]
    return t


class TestResolveRelationships(unittest.TestCase):
    def setUp(self) -> None:
        self.schema = Schema(name="library")
        self.author = table(self.schema, "author", "id")
        self.book = table(self.schema, "book", "id", "author_id")

    def test_one_to_many_default_names(self) -> None:
        rel = relate(RelationshipType.ONE_TO_MANY, self.author, self.book)

        fields = resolve_field(self.author, rel, Side.OWNER)
        self.assertEqual([f.name for f in fields], ["books"])
        self.assertIs(fields[0].cardinality, Cardinality.COLLECTION)
        self.assertIs(fields[0].related, self.book)

        fields = resolve_field(self.book, rel, Side.INVERSE)
        self.assertEqual([f.name for f in fields], ["author"])
        self.assertIs(fields[0].cardinality, Cardinality.SINGLE)

    def test_one_to_many_name_overrides(self) -> None:
        rel = relate(RelationshipType.ONE_TO_MANY, self.author, self.book, owner_name="writer", inversed_name="works")
        self.assertEqual(resolve_field(self.author, rel, Side.OWNER)[0].name, "works")
        self.assertEqual(resolve_field(self.book, rel, Side.INVERSE)[0].name, "writer")

    def test_many_to_one_default_names(self) -> None:
        rel = relate(
            RelationshipType.MANY_TO_ONE,
            self.book,
            self.author,
            owner_columns=[self.book.column("author_id")],
            inversed_columns=[self.author.column("id")],
        )
        self.assertEqual(resolve_field(self.book, rel, Side.OWNER)[0].name, "author")
        self.assertEqual(resolve_field(self.author, rel, Side.INVERSE)[0].name, "books")
        self.assertIs(resolve_field(self.author, rel, Side.INVERSE)[0].cardinality, Cardinality.COLLECTION)

    def test_one_to_one_both_sides_single(self) -> None:
        profile = table(self.schema, "profile", "id", "author_id")
        rel = relate(RelationshipType.ONE_TO_ONE, profile, self.author, [profile.column("author_id")], [self.author.column("id")])
        owner = resolve_field(profile, rel, Side.OWNER)[0]
        inverse = resolve_field(self.author, rel, Side.INVERSE)[0]
        self.assertEqual((owner.name, owner.cardinality), ("author", Cardinality.SINGLE))
        self.assertEqual((inverse.name, inverse.cardinality), ("profile", Cardinality.SINGLE))

    def test_many_to_many_side_is_chosen_by_identity(self) -> None:
        tag = table(self.schema, "tag", "id")
        rel = relate(RelationshipType.MANY_TO_MANY, self.book, tag)
        self.assertEqual(resolve_field(self.book, rel, Side.MANY_TO_MANY)[0].name, "tags")
        self.assertEqual(resolve_field(tag, rel, Side.MANY_TO_MANY)[0].name, "books")
        self.assertIn(rel, self.book.many_to_many_relationships)
        self.assertIn(rel, tag.many_to_many_relationships)

    def test_self_referential_many_to_many(self) -> None:
        rel = relate(RelationshipType.MANY_TO_MANY, self.author, self.author, owner_name="followers", inversed_name="following")
        self.assertEqual(self.author.many_to_many_relationships, [rel])
        fields = resolve_field(self.author, rel, Side.MANY_TO_MANY)
        self.assertEqual([f.name for f in fields], ["following", "followers"])

        unnamed = relate(RelationshipType.MANY_TO_MANY, self.book, self.book)
        with self.assertRaises(ConfigurationError):
            resolve_field(self.book, unnamed, Side.MANY_TO_MANY)

    def test_unknown_relationship_type(self) -> None:
        rel = Relationship(type="sideways", owner_table=self.book, inversed_table=self.author)
        with self.assertRaises(ClassificationError):
            resolve_field(self.book, rel, Side.OWNER)

    def test_field_order_columns_owned_inversed_many_to_many(self) -> None:
        tag = table(self.schema, "tag", "id")
        series = table(self.schema, "series", "id", "book_id")
        relate(RelationshipType.MANY_TO_MANY, self.book, tag)
        relate(RelationshipType.MANY_TO_ONE, series, self.book, [series.column("book_id")], [self.book.column("id")])
        relate(RelationshipType.MANY_TO_ONE, self.book, self.author, [self.book.column("author_id")], [self.author.column("id")])

        names = [f.name for f in entity_fields(self.book)]
        self.assertEqual(names, ["id", "author_id", "author", "seriess", "tags"])
        self.assertEqual([f.name for f in entity_fields(self.book) if f.column is None], ["author", "seriess", "tags"])

    def test_iteration_is_one_shot(self) -> None:
        fields = iter_entity_fields(self.book)
        self.assertEqual(len(list(fields)), 2)
        self.assertEqual(list(fields), [])

    def test_duplicate_field_names_are_rejected(self) -> None:
        relate(RelationshipType.MANY_TO_ONE, self.book, self.author, [self.book.column("author_id")], [self.author.column("id")])
        relate(RelationshipType.ONE_TO_MANY, self.author, self.book)
        with self.assertRaises(ConfigurationError):
            entity_fields(self.author)

    def test_column_named_like_relationship_is_rejected(self) -> None:
        self.book.columns.append(Column("author", type_from_sql("TEXT")))
        relate(RelationshipType.MANY_TO_ONE, self.book, self.author, [self.book.column("author_id")], [self.author.column("id")])
        with self.assertRaises(ConfigurationError):
            entity_fields(self.book)

    def test_entity_method_names_are_rejected(self) -> None:
        self.author.columns.append(Column("props", type_from_sql("TEXT")))
        with self.assertRaises(ConfigurationError):
            entity_fields(self.author)

        relate(
            RelationshipType.MANY_TO_ONE,
            self.book,
            self.author,
            [self.book.column("author_id")],
            [self.author.column("id")],
            inversed_name="prop",
        )
        with self.assertRaises(ConfigurationError):
            entity_fields(self.book)

    def test_joinable_relationships(self) -> None:
        owned = relate(
            RelationshipType.MANY_TO_ONE,
            self.book,
            self.author,
            [self.book.column("author_id")],
            [self.author.column("id")],
            inversed_name="writer",
        )
        relate(RelationshipType.ONE_TO_MANY, self.book, self.author, inversed_name="editors")
        self.assertEqual(joinable_relationships(self.book), [owned])
        self.assertEqual(join_name(owned), "writer")

    def test_keyword_names_are_escaped(self) -> None:
        klass = table(self.schema, "class", "id")
        rel = relate(RelationshipType.ONE_TO_ONE, self.book, klass)
        self.assertEqual(resolve_field(self.book, rel, Side.OWNER)[0].name, "class_")


if __name__ == "__main__":
    unittest.main()
