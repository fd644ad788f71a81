"""Shared junctionql schema built from the test models."""
from junctionql import Catalog, JunctionSchema, SchemaSettings
from tests.models import Base

catalog = Catalog.from_metadata(Base.metadata)

junction_schema = JunctionSchema(
    catalog,
    settings=SchemaSettings(simple_collections='both', max_page_size=50),
)

schema = junction_schema.to_strawberry()

TAGS_OF_POST = 'tags_by_posts_tag_post_id_and_tag_id'
POSTS_OF_TAG = 'posts_by_posts_tag_tag_id_and_post_id'
