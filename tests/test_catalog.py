import pytest

from junctionql.catalog import (
    Catalog,
    ConstraintKind,
    ForeignKeyConstraint,
    PrimaryKeyConstraint,
    reflect_catalog,
)
from junctionql.core.inference import infer_many_to_many
from tests.models import Base


def test_from_metadata_tables_and_attributes():
    cat = Catalog.from_metadata(Base.metadata)
    posts = cat.get_table('posts')
    assert posts.id == 'public.posts'
    assert posts.namespace.name == 'public'
    assert posts.description == 'Blog posts'
    assert [(a.name, a.num) for a in posts.attributes] == [('id', 1), ('title', 2), ('created_at', 3)]
    assert posts.attribute_by_name('title').type_modifier == 200
    assert posts.attribute_by_name('id').description == 'Post primary key'
    assert cat.attribute(posts.id, 2) is posts.attribute_by_name('title')


def test_from_metadata_constraints():
    cat = Catalog.from_metadata(Base.metadata)
    junction = cat.get_table('posts_tags')
    owned = cat.constraints_of(junction)
    assert [c.kind for c in owned] == [ConstraintKind.PRIMARY, ConstraintKind.FOREIGN, ConstraintKind.FOREIGN]
    pk = cat.primary_key_constraint(junction)
    assert isinstance(pk, PrimaryKeyConstraint)
    assert pk.key_attribute_nums == (1, 2)
    fks = cat.outgoing_foreign_keys(junction)
    assert [f.foreign_class_id for f in fks] == ['public.posts', 'public.tags']
    assert all(isinstance(f, ForeignKeyConstraint) for f in fks)
    assert [a.name for a in cat.key_attributes(fks[1])] == ['tag_id']
    assert [a.name for a in cat.foreign_key_attributes(fks[1])] == ['id']
    incoming = cat.foreign_constraints(cat.get_table('tags'))
    assert incoming == [fks[1]]


def test_primary_key_attributes_and_describe():
    cat = Catalog.from_metadata(Base.metadata)
    junction = cat.get_table('posts_tags')
    assert [a.name for a in cat.primary_key_attributes(junction)] == ['post_id', 'tag_id']
    assert cat.describe(junction) == 'table "public"."posts_tags"'
    assert cat.describe(junction.attributes[0]) == 'column "post_id" of table "posts_tags"'


@pytest.mark.asyncio
async def test_reflected_catalog_infers_relations(engine):
    cat = await reflect_catalog(engine)
    posts = cat.get_table('posts')
    assert posts is not None
    rels = infer_many_to_many(posts, cat)
    assert [(r.junction_table.name, r.right_table.name) for r in rels] == [('posts_tags', 'tags')]
