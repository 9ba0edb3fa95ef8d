"""Server-side model of the page that plugins are injected into."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit


@dataclass(eq=False)
class ScriptTag:
    """A script element attached to the page (compared by identity)."""

    id: str
    src: Optional[str] = None
    type: str = "text/javascript"
    async_: bool = True
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    location: str = "body"

    def get_attribute(self, key: str) -> Optional[str]:
        for name, value in self.attributes:
            if name == key:
                return value
        return None


class Page:
    """The document a runtime serves: its URL plus ordered head/body elements.

    Args:
        url: Full page URL; the host drives domain checks and the query string
            carries plugin overrides.
    """

    def __init__(self, url: str = "http://localhost/") -> None:
        self.url = url
        self.head: List[ScriptTag] = []
        self.body: List[ScriptTag] = []

    @property
    def host(self) -> str:
        """Host including a non-default port, like ``location.host``."""
        return urlsplit(self.url).netloc

    @property
    def query(self) -> Dict[str, List[str]]:
        return parse_qs(urlsplit(self.url).query, keep_blank_values=True)

    def get_param(self, name: str) -> str:
        """Return the first value of a query parameter, or ``""``."""
        values = self.query.get(name)
        return values[0] if values else ""

    def container(self, location: str) -> List[ScriptTag]:
        """Return the element list for ``location``; unknown locations map to body."""
        return self.head if location == "head" else self.body

    def attach(self, tag: ScriptTag) -> None:
        self.container(tag.location).append(tag)

    def detach(self, tag: ScriptTag) -> bool:
        for elements in (self.head, self.body):
            if tag in elements:
                elements.remove(tag)
                return True
        return False

    def find(self, element_id: str) -> Optional[ScriptTag]:
        for tag in self.head + self.body:
            if tag.id == element_id:
                return tag
        return None
