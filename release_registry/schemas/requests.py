from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, conint, constr


class CommentCreate(BaseModel):
    """Body for adding a comment to a release."""

    comment_text: constr(strip_whitespace=True, min_length=1, max_length=5000)
    rating: Optional[conint(ge=1, le=5)] = None


class CommentUpdate(CommentCreate):
    """Body for editing one's own comment. Replaces text and rating."""
