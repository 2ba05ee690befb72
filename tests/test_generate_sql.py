import unittest

from generate_sql import generate_sql, render_column, render_function, render_index, render_table_sql
from schema_model import (
    ClassificationError,
    Column,
    Constraint,
    ConstraintType,
    Event,
    Function,
    FunctionArgument,
    FunctionBehaviour,
    ReferentialAction,
    ReferentialError,
    RelationshipType,
    Schema,
    StructuralError,
    Table,
    relate,
    type_from_sql,
)


def build_author(schema: Schema) -> Table:
    author = schema.add_table(Table(name="author", if_not_exists=True))
    author_id = Column("id", type_from_sql("BIGSERIAL"), primary_key=True)
    author_name = Column("name", type_from_sql("TEXT"), not_null=True)
    author.columns = [author_id, author_name]
    author.constraints = [
        Constraint(ConstraintType.PRIMARY_KEY, primary_table=author, primary_columns=[author_id]),
        Constraint(ConstraintType.INDEX, primary_table=author, primary_columns=[author_name]),
    ]
    return author


class TestGenerateSQL(unittest.TestCase):
    def test_small_schema_exact_output(self) -> None:
        schema = Schema(name="library", if_not_exists=True)
        build_author(schema)

        expected = (
            "-- do not modify, generated by schemagen\n"
            "\n"
            "CREATE SCHEMA IF NOT EXISTS library;\n"
            "\n"
            "CREATE TABLE IF NOT EXISTS library.author (\n"
            "\tid BIGSERIAL,\n"
            "\tname TEXT NOT NULL,\n"
            "\n"
            '\tCONSTRAINT "library.author_id_pkey" PRIMARY KEY (id)\n'
            ");\n"
            'CREATE INDEX IF NOT EXISTS "library.author_name_index" ON library.author (name);\n'
            "\n"
        )
        self.assertEqual(generate_sql(schema, 9.5), expected)

    def test_index_guard_depends_on_version(self) -> None:
        schema = Schema(name="library")
        author = build_author(schema)
        index = author.constraints[1]

        self.assertEqual(
            render_index(index, 9.4),
            'CREATE INDEX "library.author_name_index" ON library.author (name);',
        )
        self.assertEqual(
            render_index(index, 9.5),
            'CREATE INDEX IF NOT EXISTS "library.author_name_index" ON library.author (name);',
        )
        self.assertIn('\nCREATE INDEX "library.author_name_index" ON', generate_sql(schema))

    def test_unique_index_with_partial_predicate(self) -> None:
        schema = Schema()
        book = schema.add_table(Table(name="book"))
        isbn = Column("isbn", type_from_sql("TEXT"))
        book.columns = [isbn]
        uindex = Constraint(ConstraintType.UNIQUE_INDEX, primary_table=book, primary_columns=[isbn], where="isbn IS NOT NULL")
        plain = Constraint(ConstraintType.INDEX, primary_table=book, primary_columns=[isbn], where="ignored")

        self.assertEqual(
            render_index(uindex, 10),
            'CREATE UNIQUE INDEX IF NOT EXISTS "public.book_isbn_uindex" ON book (isbn) WHERE isbn IS NOT NULL;',
        )
        self.assertNotIn("WHERE", render_index(plain, 10))

    def test_unnamed_schema_has_no_create_schema(self) -> None:
        schema = Schema()
        build_author(schema)
        sql = generate_sql(schema)
        self.assertNotIn("CREATE SCHEMA", sql)
        self.assertIn("CREATE TABLE IF NOT EXISTS author (", sql)
        self.assertIn('"public.author_id_pkey"', sql)

    def test_schema_guard_without_name_is_rejected(self) -> None:
        with self.assertRaises(StructuralError):
            generate_sql(Schema(if_not_exists=True))

    def test_foreign_key_actions(self) -> None:
        schema = Schema(name="library")
        author = build_author(schema)
        book = schema.add_table(Table(name="book"))
        author_id = Column("author_id", type_from_sql("BIGINT"), not_null=True)
        book.columns = [Column("id", type_from_sql("BIGSERIAL"), primary_key=True), author_id]
        relate(
            RelationshipType.MANY_TO_ONE,
            book,
            author,
            owner_columns=[author_id],
            inversed_columns=author.primary_key_columns(),
            on_delete=ReferentialAction.CASCADE,
            on_update=ReferentialAction.SET_NULL,
        )

        table_sql, _ = render_table_sql(book)
        self.assertIn(
            '\tCONSTRAINT "library.book_author_id_fkey" FOREIGN KEY (author_id) '
            "REFERENCES library.author (id) ON DELETE CASCADE ON UPDATE SET NULL\n",
            table_sql,
        )

    def test_foreign_key_without_actions_has_no_action_clause(self) -> None:
        schema = Schema()
        author = build_author(schema)
        book = schema.add_table(Table(name="book"))
        author_id = Column("author_id", type_from_sql("BIGINT"))
        book.columns = [author_id]
        relate(RelationshipType.MANY_TO_ONE, book, author, [author_id], author.primary_key_columns())

        table_sql, _ = render_table_sql(book)
        self.assertIn("REFERENCES author (id)\n", table_sql)
        self.assertNotIn("ON DELETE", table_sql)
        self.assertNotIn("ON UPDATE", table_sql)

    def test_foreign_key_rejections(self) -> None:
        schema = Schema()
        author = build_author(schema)
        book = schema.add_table(Table(name="book"))
        author_id = Column("author_id", type_from_sql("BIGINT"))
        book.columns = [author_id]

        book.constraints = [Constraint(ConstraintType.FOREIGN_KEY, primary_table=book, table=author, columns=author.columns[:1])]
        with self.assertRaises(StructuralError):
            render_table_sql(book)

        book.constraints = [Constraint(ConstraintType.FOREIGN_KEY, primary_table=book, primary_columns=[author_id], table=author)]
        with self.assertRaises(ReferentialError):
            render_table_sql(book)

        book.constraints = [Constraint(ConstraintType.FOREIGN_KEY, primary_table=book, primary_columns=[author_id], columns=author.columns[:1])]
        with self.assertRaises(ReferentialError):
            render_table_sql(book)

    def test_table_without_columns_is_rejected(self) -> None:
        schema = Schema()
        schema.add_table(Table(name="empty"))
        with self.assertRaises(StructuralError):
            generate_sql(schema)

    def test_unknown_constraint_type_is_rejected(self) -> None:
        schema = Schema()
        author = build_author(schema)
        author.constraints.append(Constraint(type="bogus", primary_table=author, primary_columns=author.columns[:1]))
        with self.assertRaises(ClassificationError):
            generate_sql(schema)

    def test_duplicate_constraint_names_are_rejected(self) -> None:
        schema = Schema()
        author = build_author(schema)
        author.constraints.append(author.constraints[0])
        with self.assertRaises(StructuralError):
            generate_sql(schema)

    def test_composite_foreign_keys_follow_table_constraints_in_relationship_order(self) -> None:
        schema = Schema()
        translation = schema.add_table(Table(name="translation"))
        book_id = Column("book_id", type_from_sql("BIGINT"), primary_key=True)
        lang = Column("lang", type_from_sql("TEXT"), primary_key=True)
        translation.columns = [book_id, lang]

        edition = schema.add_table(Table(name="edition"))
        e_book, e_lang = Column("book_id", type_from_sql("BIGINT")), Column("lang", type_from_sql("TEXT"))
        o_book, o_lang = Column("orig_book_id", type_from_sql("BIGINT")), Column("orig_lang", type_from_sql("TEXT"))
        edition.columns = [e_book, e_lang, o_book, o_lang]
        edition.constraints = [Constraint(ConstraintType.CHECK, primary_table=edition, check="book_id > 0")]
        relate(RelationshipType.MANY_TO_ONE, edition, translation, [e_book, e_lang], [book_id, lang], inversed_name="translation")
        relate(RelationshipType.MANY_TO_ONE, edition, translation, [o_book, o_lang], [book_id, lang], inversed_name="original")

        self.assertEqual(len(edition.constraints), 1)
        table_sql, _ = render_table_sql(edition)
        lines = table_sql.splitlines()
        self.assertEqual(lines[6], '\tCONSTRAINT "public.edition_check" CHECK (book_id > 0),')
        self.assertEqual(
            lines[7],
            '\tCONSTRAINT "public.edition_book_id_lang_fkey" FOREIGN KEY (book_id, lang) '
            "REFERENCES translation (book_id, lang),",
        )
        self.assertEqual(
            lines[8],
            '\tCONSTRAINT "public.edition_orig_book_id_orig_lang_fkey" FOREIGN KEY (orig_book_id, orig_lang) '
            "REFERENCES translation (book_id, lang)",
        )
        self.assertEqual(lines[9], ");")

    def test_dynamic_columns_are_not_stored(self) -> None:
        schema = Schema()
        t = schema.add_table(Table(name="book"))
        t.columns = [
            Column("title", type_from_sql("TEXT")),
            Column("title_length", type_from_sql("INTEGER"), dynamic=True),
        ]
        table_sql, _ = render_table_sql(t)
        self.assertEqual(table_sql, "CREATE TABLE book (\n\ttitle TEXT\n);")

    def test_temporary_table(self) -> None:
        schema = Schema()
        t = schema.add_table(Table(name="scratch", temporary=True))
        t.columns = [Column("id", type_from_sql("INTEGER"))]
        table_sql, _ = render_table_sql(t)
        self.assertTrue(table_sql.startswith("CREATE TEMPORARY TABLE scratch ("))

    def test_column_rendering(self) -> None:
        col = Column(
            "name",
            type_from_sql("VARCHAR(255)"),
            not_null=True,
            collate='"C"',
            defaults={Event.INSERT: "''", Event.UPDATE: "'x'"},
        )
        self.assertEqual(render_column(col), "name VARCHAR(255) COLLATE \"C\" DEFAULT '' NOT NULL")

    def test_exclusion_constraint(self) -> None:
        schema = Schema()
        t = schema.add_table(Table(name="booking"))
        room, during = Column("room", type_from_sql("INTEGER")), Column("during", type_from_sql("TSRANGE"))
        t.columns = [room, during]
        t.constraints = [
            Constraint(ConstraintType.EXCLUSION, primary_table=t, primary_columns=[room, during], operators=["=", "&&"])
        ]
        table_sql, _ = render_table_sql(t)
        self.assertIn('\tCONSTRAINT "public.booking_room_during_excl" EXCLUDE USING gist (room WITH =, during WITH &&)\n', table_sql)

    def test_function_rendering(self) -> None:
        f = Function(
            name="slugify",
            type=type_from_sql("TEXT"),
            body="SELECT replace(value, ' ', '-')",
            args=[FunctionArgument("value", type_from_sql("TEXT"))],
            behaviour=FunctionBehaviour.IMMUTABLE,
        )
        self.assertEqual(
            render_function(f),
            "CREATE OR REPLACE FUNCTION slugify(value TEXT) RETURNS TEXT\n"
            "\tAS 'SELECT replace(value, '' '', ''-'')'\n"
            "\tLANGUAGE SQL\n"
            "\tIMMUTABLE;",
        )
        f.behaviour = FunctionBehaviour.UNSPECIFIED
        self.assertTrue(render_function(f).endswith("\tLANGUAGE SQL;"))

    def test_generation_is_deterministic(self) -> None:
        schema = Schema(name="library")
        build_author(schema)
        self.assertEqual(generate_sql(schema, 9.6), generate_sql(schema, 9.6))


if __name__ == "__main__":
    unittest.main()
