import pytest
from sqlalchemy import Column, ForeignKey, ForeignKeyConstraint, Integer, MetaData, String, Table

from junctionql import Catalog, JunctionSchema, SchemaSettings
from junctionql.core.errors import TypeResolutionError
from junctionql.core.omit import tag_omit
from junctionql.plugins import FieldSpec, ManyToManyPlugin, SchemaPlugin, TableConditionPlugin
from tests.schema import POSTS_OF_TAG, TAGS_OF_POST, catalog, junction_schema, schema


def _gql_type(sch, name):
    return sch._schema.get_type(name)


def test_strawberry_schema_compiles():
    assert schema.get_type_by_name('Query') is not None
    assert [name for name, _ in junction_schema.stages] == ['prepare', 'types', 'fields', 'finalize', 'query']


def test_row_types_expose_columns_and_relations():
    post = _gql_type(schema, 'Post')
    assert {'id', 'title', 'created_at', TAGS_OF_POST, f'{TAGS_OF_POST}_list'} == set(post.fields)
    tag = _gql_type(schema, 'Tag')
    assert {'id', 'name', POSTS_OF_TAG, f'{POSTS_OF_TAG}_list'} == set(tag.fields)
    assert post.description == 'Blog posts'
    assert post.fields['id'].description == 'Post primary key'


def test_relation_field_arguments_and_types():
    post = _gql_type(schema, 'Post')
    conn_field = post.fields[TAGS_OF_POST]
    assert set(conn_field.args) == {'first', 'offset', 'after', 'order_by', 'condition'}
    assert str(conn_field.type) == 'TagsConnection!'
    assert conn_field.description == 'Reads and enables pagination through a set of `Tag`.'
    assert str(conn_field.args['condition'].type) == 'TagsByPostsTagPostIdAndTagIdCondition'
    list_field = post.fields[f'{TAGS_OF_POST}_list']
    assert set(list_field.args) == {'first', 'offset', 'order_by', 'condition'}
    assert str(list_field.type) == '[Tag!]!'


def test_junction_condition_type():
    cond = _gql_type(schema, 'TagsByPostsTagPostIdAndTagIdCondition')
    assert set(cond.fields) == {'added_by', 'is_featured'}
    assert str(cond.fields['added_by'].type) == 'String'
    assert str(cond.fields['is_featured'].type) == 'Boolean'
    assert cond.fields['added_by'].description == 'Checks for equality with the `added_by` field in the junction table.'


def test_connection_edge_and_page_info_types():
    conn = _gql_type(schema, 'TagsConnection')
    assert set(conn.fields) == {'nodes', 'edges', 'page_info', 'total_count'}
    assert str(conn.fields['edges'].type) == '[TagsEdge!]!'
    edge = _gql_type(schema, 'TagsEdge')
    assert set(edge.fields) == {'cursor', 'node'}
    page_info = _gql_type(schema, 'PageInfo')
    assert set(page_info.fields) == {'has_next_page', 'has_previous_page', 'start_cursor', 'end_cursor'}


def test_root_collection_fields():
    query = _gql_type(schema, 'Query')
    assert {'all_posts', 'all_posts_list', 'all_tags', 'all_tags_list', 'all_posts_tags', 'all_posts_tags_list'} == set(query.fields)
    assert str(query.fields['all_posts'].args['condition'].type) == 'PostCondition'


def test_auto_camel_case_names():
    camel = JunctionSchema(catalog, settings=SchemaSettings(auto_camel_case=True)).to_strawberry()
    post = _gql_type(camel, 'Post')
    assert 'tagsByPostsTagPostIdAndTagId' in post.fields
    assert 'createdAt' in post.fields
    assert 'orderBy' in post.fields['tagsByPostsTagPostIdAndTagId'].args
    assert 'pageInfo' in _gql_type(camel, 'TagsConnection').fields


def _blog_metadata(tags_info=None, link_info=None, tag_fk_info=None):
    md = MetaData()
    Table('posts', md, Column('id', Integer, primary_key=True))
    Table('tags', md, Column('id', Integer, primary_key=True), Column('name', String), info=tags_info or {})
    Table(
        'posts_tags', md,
        Column('post_id', ForeignKey('posts.id')),
        Column('tag_id', Integer),
        Column('note', String),
        ForeignKeyConstraint(['tag_id'], ['tags.id'], info=tag_fk_info or {}),
        info=link_info or {},
    )
    return md


@pytest.mark.parametrize('setting, expected', [
    (None, {'tags_by_posts_tag_post_id_and_tag_id'}),
    ('omit', {'tags_by_posts_tag_post_id_and_tag_id'}),
    ('both', {'tags_by_posts_tag_post_id_and_tag_id', 'tags_by_posts_tag_post_id_and_tag_id_list'}),
    ('only', {'tags_by_posts_tag_post_id_and_tag_id_list'}),
])
def test_simple_collections_setting(setting, expected):
    cat = Catalog.from_metadata(_blog_metadata())
    sch = JunctionSchema(cat, settings=SchemaSettings(simple_collections=setting)).to_strawberry()
    assert set(_gql_type(sch, 'Post').fields) == {'id'} | expected


def test_right_table_tag_overrides_simple_collections():
    cat = Catalog.from_metadata(_blog_metadata(tags_info={'simple_collections': 'only'}))
    sch = JunctionSchema(cat, settings=SchemaSettings(simple_collections='omit')).to_strawberry()
    assert set(_gql_type(sch, 'Post').fields) == {'id', 'tags_by_posts_tag_post_id_and_tag_id_list'}


@pytest.mark.parametrize('fk_setting, table_setting, expected', [
    ('both', 'only', {'tags_by_posts_tag_post_id_and_tag_id', 'tags_by_posts_tag_post_id_and_tag_id_list'}),
    ('only', None, {'tags_by_posts_tag_post_id_and_tag_id_list'}),
    ('omit', 'both', {'tags_by_posts_tag_post_id_and_tag_id'}),
])
def test_junction_constraint_tag_overrides_simple_collections(fk_setting, table_setting, expected):
    cat = Catalog.from_metadata(_blog_metadata(
        tags_info={'simple_collections': table_setting} if table_setting else None,
        tag_fk_info={'simple_collections': fk_setting},
    ))
    sch = JunctionSchema(cat, settings=SchemaSettings(simple_collections='only')).to_strawberry()
    assert set(_gql_type(sch, 'Post').fields) == {'id'} | expected


def test_omitted_right_table_is_fatal():
    cat = Catalog.from_metadata(_blog_metadata(tags_info={'omit': 'read'}))
    with pytest.raises(TypeResolutionError):
        JunctionSchema(cat, omit=tag_omit).to_strawberry()


def test_omitted_junction_table_still_links():
    cat = Catalog.from_metadata(_blog_metadata(link_info={'omit': 'read'}))
    sch = JunctionSchema(cat, omit=tag_omit).to_strawberry()
    assert _gql_type(sch, 'PostsTag') is None
    assert 'tags_by_posts_tag_post_id_and_tag_id' in _gql_type(sch, 'Post').fields


class _ClashingPlugin(SchemaPlugin):
    name = 'clashing'

    def contribute_fields(self, ctx, table):
        if table.name != 'posts':
            return {}
        return {'id': FieldSpec(name='id', mode='list', target=table, arguments=(), build=lambda qb, sel: None)}


def test_plugin_field_clash_is_fatal():
    cat = Catalog.from_metadata(_blog_metadata())
    plugins = [TableConditionPlugin(), ManyToManyPlugin(), _ClashingPlugin()]
    with pytest.raises(TypeResolutionError, match="clashes"):
        JunctionSchema(cat, plugins=plugins).build()


def test_without_many_to_many_plugin():
    cat = Catalog.from_metadata(_blog_metadata())
    sch = JunctionSchema(cat, plugins=[TableConditionPlugin()]).to_strawberry()
    assert set(_gql_type(sch, 'Post').fields) == {'id'}
