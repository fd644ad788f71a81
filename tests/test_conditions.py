import pytest
from sqlalchemy import Boolean, Column, ForeignKey, Integer, MetaData, String, Table
from sqlalchemy.dialects import sqlite

from junctionql.catalog import Catalog
from junctionql.conditions import JunctionConditionInjector, equality_predicates
from junctionql.core.errors import QueryContextError
from junctionql.core.inference import infer_many_to_many
from junctionql.core.omit import tag_omit
from junctionql.core.selection import LIST, RelationSelection, RowSelection
from junctionql.sql.aliases import AliasAllocator
from junctionql.sql.builders import ManyToManyQueryAssembler, QueryBuilder, QueryContext
from junctionql.adapters import SQLiteAdapter
from tests.schema import catalog, junction_schema


def _descriptor(cat=catalog, table='posts'):
    return infer_many_to_many(cat.get_table(table), cat)[0]


def _compiled(expr):
    return str(expr.compile(dialect=sqlite.dialect(), compile_kwargs={'literal_binds': True}))


def test_key_columns_are_not_filterable():
    injector = JunctionConditionInjector(_descriptor())
    assert list(injector.fields) == ['added_by', 'is_featured']
    assert [a.name for a in injector.relevant_attributes] == ['added_by', 'is_featured']


def test_filter_omitted_columns_are_excluded():
    md = MetaData()
    Table('posts', md, Column('id', Integer, primary_key=True))
    Table('tags', md, Column('id', Integer, primary_key=True))
    Table(
        'posts_tags', md,
        Column('post_id', ForeignKey('posts.id')),
        Column('tag_id', ForeignKey('tags.id')),
        Column('note', String, info={'omit': 'filter'}),
        Column('weight', Integer),
    )
    cat = Catalog.from_metadata(md)
    injector = JunctionConditionInjector(_descriptor(cat), omit=tag_omit)
    assert list(injector.fields) == ['weight']


def test_predicates_value_null_and_absent():
    injector = JunctionConditionInjector(_descriptor())
    alias = AliasAllocator().alias(injector.descriptor.junction_table)
    eq = injector.predicates(alias, {'added_by': 'alice'})
    assert [_compiled(p) for p in eq] == ["posts_tags_1.added_by = 'alice'"]
    is_null = injector.predicates(alias, {'is_featured': None})
    assert [_compiled(p) for p in is_null] == ['posts_tags_1.is_featured IS NULL']
    assert injector.predicates(alias, {}) == []
    assert injector.predicates(alias, None) == []


def test_predicates_combine_fields():
    injector = JunctionConditionInjector(_descriptor())
    alias = AliasAllocator().alias(injector.descriptor.junction_table)
    preds = injector.predicates(alias, {'added_by': 'bob', 'is_featured': 'true'})
    assert len(preds) == 2
    assert _compiled(preds[0]) == "posts_tags_1.added_by = 'bob'"
    assert _compiled(preds[1]).startswith('posts_tags_1.is_featured = ')


def test_unknown_condition_field_raises():
    injector = JunctionConditionInjector(_descriptor())
    alias = AliasAllocator().alias(injector.descriptor.junction_table)
    with pytest.raises(ValueError, match='Unknown condition field'):
        injector.predicates(alias, {'post_id': 1})


def test_camel_case_condition_fields():
    injector = JunctionConditionInjector(_descriptor(), auto_camel=True)
    alias = AliasAllocator().alias(injector.descriptor.junction_table)
    preds = injector.predicates(alias, {'addedBy': 'alice'})
    assert [_compiled(p) for p in preds] == ["posts_tags_1.added_by = 'alice'"]


def test_apply_without_junction_alias_is_fatal():
    injector = JunctionConditionInjector(_descriptor())
    posts = catalog.get_table('posts')
    ctx = QueryContext(adapter=SQLiteAdapter(), catalog=catalog, shapes={})
    qb = QueryBuilder(AliasAllocator().alias(posts), table=posts, context=ctx)
    with pytest.raises(QueryContextError):
        injector.apply(qb, {'added_by': 'alice'})
    with pytest.raises(QueryContextError):
        injector.apply(qb, None)


def test_condition_is_scoped_to_the_junction_alias():
    built = junction_schema.build()
    descriptor = _descriptor()
    injector = JunctionConditionInjector(descriptor, types=built.types)
    posts = catalog.get_table('posts')
    ctx = QueryContext(adapter=SQLiteAdapter(), catalog=catalog, shapes=built.shapes)
    parent = QueryBuilder(AliasAllocator().alias(posts), table=posts, context=ctx)
    selection = RelationSelection(
        field_name='tags', response_key='tags', mode=LIST,
        arguments={'condition': {'added_by': None}},
        rows=RowSelection(scalars=['id']),
    )
    result = ManyToManyQueryAssembler(descriptor, types=built.types).assemble(
        parent, LIST, selection, arg_hooks=[injector]
    )
    assert [_compiled(w) for w in result.builder.wheres] == ['posts_tags_1.added_by IS NULL']


def test_input_type_shape():
    injector = JunctionConditionInjector(_descriptor())
    tp = injector.build_input_type()
    definition = tp.__strawberry_definition__
    assert definition.name == 'TagsByPostsTagPostIdAndTagIdCondition'
    assert definition.is_input
    assert {f.python_name for f in definition.fields} == {'added_by', 'is_featured'}
    assert 'tags_by_posts_tag_post_id_and_tag_id' in definition.description
    # registered once, reused afterwards
    assert injector.build_input_type() is tp


def test_no_input_type_without_extra_junction_columns():
    md = MetaData()
    Table('posts', md, Column('id', Integer, primary_key=True))
    Table('tags', md, Column('id', Integer, primary_key=True), Column('active', Boolean))
    Table('posts_tags', md, Column('post_id', ForeignKey('posts.id')), Column('tag_id', ForeignKey('tags.id')))
    cat = Catalog.from_metadata(md)
    assert JunctionConditionInjector(_descriptor(cat)).build_input_type() is None


def test_equality_predicates_on_table_columns():
    posts = catalog.get_table('posts')
    alias = AliasAllocator().alias(posts)
    fields = {a.name: a for a in posts.attributes}
    preds = equality_predicates(alias, fields, {'id': '2', 'title': None})
    assert [_compiled(p) for p in preds] == ['posts_1.id = 2', 'posts_1.title IS NULL']
