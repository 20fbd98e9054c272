from pydantic import BaseModel


class SearchHit(BaseModel):
    """One similarity search result.

    Attributes:
        id:      Point id as stored in the backend.
        score:   Similarity score; higher is more similar for cosine distance.
        payload: Raw payload dict of the point.
    """

    id: str
    score: float
    payload: dict = {}
