"""Database models for junctionql tests (shared)."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for test models."""
    pass


class Post(Base):
    """Blog posts"""
    __tablename__ = 'posts'
    __table_args__ = {'comment': 'Blog posts'}

    id = Column(Integer, primary_key=True, comment='Post primary key')
    title = Column(String(200), nullable=False)
    created_at = Column(DateTime, nullable=True)


class Tag(Base):
    __tablename__ = 'tags'

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False)


class PostTag(Base):
    """Junction between posts and tags with a couple of payload columns."""
    __tablename__ = 'posts_tags'

    post_id = Column(Integer, ForeignKey('posts.id'), primary_key=True)
    tag_id = Column(Integer, ForeignKey('tags.id'), primary_key=True)
    added_by = Column(String(50), nullable=True)
    is_featured = Column(Boolean, nullable=True)
