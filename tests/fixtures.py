"""Database fixtures for junctionql tests (shared)."""

import pytest
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Post, PostTag, Tag


async def create_sample_posts(session: AsyncSession):
    """Create and commit three posts with deterministic timestamps."""
    base = datetime(2024, 1, 1, 10, 0, 0)
    posts = [
        Post(id=1, title="First Post", created_at=base),
        Post(id=2, title="Second Post", created_at=base.replace(hour=11)),
        Post(id=3, title="Untagged Post", created_at=base.replace(hour=12)),
    ]
    session.add_all(posts)
    await session.commit()
    return posts


@pytest.fixture(scope="function")
async def sample_posts(db_session: AsyncSession):
    return await create_sample_posts(db_session)


async def create_sample_tags(session: AsyncSession):
    tags = [
        Tag(id=1, name="python"),
        Tag(id=2, name="graphql"),
        Tag(id=3, name="sql"),
    ]
    session.add_all(tags)
    await session.commit()
    return tags


@pytest.fixture(scope="function")
async def sample_tags(db_session: AsyncSession):
    return await create_sample_tags(db_session)


async def create_sample_post_tags(session: AsyncSession):
    """Post 1 carries every tag, post 2 only ``graphql``, post 3 none."""
    links = [
        PostTag(post_id=1, tag_id=1, added_by="alice", is_featured=True),
        PostTag(post_id=1, tag_id=2, added_by="bob", is_featured=None),
        PostTag(post_id=1, tag_id=3, added_by=None, is_featured=False),
        PostTag(post_id=2, tag_id=2, added_by="alice", is_featured=None),
    ]
    session.add_all(links)
    await session.commit()
    return links


@pytest.fixture(scope="function")
async def sample_post_tags(db_session: AsyncSession, sample_posts, sample_tags):
    return await create_sample_post_tags(db_session)


@pytest.fixture(scope="function")
async def populated_db(sample_posts, sample_tags, sample_post_tags):
    return {
        'posts': sample_posts,
        'tags': sample_tags,
        'post_tags': sample_post_tags,
    }
