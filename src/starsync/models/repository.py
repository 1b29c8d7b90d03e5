"""Starred repository and activity (update) models."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import JSON, Column, ForeignKey, Integer, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from starsync.models.common import utcnow

UPDATE_TYPES = ("commit", "issue", "pr", "release", "readme")


class StarredRepository(SQLModel, table=True):
    """One row per (user, GitHub repository) pair."""

    __table_args__ = (UniqueConstraint("user_id", "github_repo_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    github_repo_id: int = Field(index=True)
    repo_name: str = Field(index=True)
    owner_login: str = Field(index=True)
    repo_full_name: str
    description: Optional[str] = None
    html_url: str
    language: Optional[str] = Field(default=None, index=True)
    stargazers_count: int = 0
    fork_count: int = 0
    open_issues_count: int = 0
    owner_avatar_url: Optional[str] = None

    # Order carries no meaning; stored as a JSON list
    topics: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    updates: List["RepositoryUpdate"] = Relationship(
        back_populates="repository",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class RepositoryUpdate(SQLModel, table=True):
    """
    A commit, issue, PR, release or README change observed on a repository.

    (repo_id, url) is the natural key. Rows are only ever inserted by sync,
    never updated, so is_read survives later syncs.
    """

    __table_args__ = (UniqueConstraint("repo_id", "url"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    repo_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("starredrepository.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    update_type: str = Field(index=True)  # one of UPDATE_TYPES
    title: Optional[str] = None
    description: Optional[str] = None
    url: str
    author: Optional[str] = None
    detected_at: datetime = Field(default_factory=utcnow, index=True)
    is_read: bool = Field(default=False, index=True)

    repository: Optional[StarredRepository] = Relationship(back_populates="updates")
